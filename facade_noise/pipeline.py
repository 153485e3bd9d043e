"""
Noise field pipeline - main entry point.

This module provides compute_noise_grid(), which turns a building perimeter,
its facades and their sound power levels into a grid of outdoor sound
pressure levels ready for a heatmap renderer.
"""

import math
import time
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
from shapely.geometry.base import BaseGeometry

from .bands import active_bands, generate_segment_band_energy
from .config import FieldConfig, PhysicalParams
from .footprint import segments_from_perimeter
from .geometry import (
    interior_mask,
    loop_centroid,
    outer_loop,
    perimeter_polygon,
    project_onto_segment,
    segment_outward_normal,
    valid_segments,
)
from .overlay import hot_spot_levels
from .propagation import (
    build_all_facades,
    db_to_energy,
    energy_to_db,
    facade_re_prime,
    lp_out_at_point,
    lw_room_from_lp_in,
    resolve_re_prime,
)
from .smoothing import gaussian_smooth
from .sampler import lookup_lw
from .types import FacadeElement, NoiseGrid, Point, Segment, as_level


# Applied by build_heatmap when a single facade is loud
SINGLE_SOURCE_PRESET = {
    "smoothing": {"overlay_size": 11, "overlay_sigma": 4.0},
    "bands": {"lateral_spread_factor": 1.5, "perp_spread_factor": 1.25},
}


def build_grid_axes(
    area_size: float,
    resolution: int = 60,
    cell_size: Optional[float] = None
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Grid axes centred on the origin, covering ``[-area/2, area/2]``.

    A positive ``cell_size`` fixes the spacing and derives the sample count;
    otherwise ``resolution`` samples are spread evenly. Both give at least
    3 samples per axis.
    """
    half = area_size / 2
    if cell_size and cell_size > 0:
        n = max(3, int(math.floor(area_size / cell_size)) + 1)
        axis = -half + np.arange(n) * cell_size
    else:
        axis = np.linspace(-half, half, max(3, int(resolution)))
    return axis.copy(), axis.copy()


def facade_elements_by_segment(
    segments: Sequence[Segment],
    building_height: float,
    physical: PhysicalParams
) -> Dict[str, List[FacadeElement]]:
    """Facade elements per segment; explicit element lists take precedence."""
    facades = build_all_facades(segments, building_height, physical.r_map, physical.default_r_db)
    for seg in segments:
        explicit = physical.facade_elements.get(seg.name)
        if explicit:
            facades[seg.name] = list(explicit)
    return facades


def re_prime_by_segment(
    facades: Mapping[str, List[FacadeElement]],
    default_r: float
) -> Dict[str, float]:
    return {
        name: resolve_re_prime(facade_re_prime(elements), default_r)
        for name, elements in facades.items()
    }


def supplied_levels(lw_map: Optional[Mapping[str, float]], segments: Sequence[Segment]) -> Dict[str, float]:
    """Finite levels supplied for the given segments."""
    levels = {}
    for seg in segments:
        value = as_level((lw_map or {}).get(seg.name))
        if value is not None:
            levels[seg.name] = value
    return levels


def resolve_levels(
    segments: Sequence[Segment],
    lw_map: Optional[Mapping[str, float]],
    polygon: Optional[BaseGeometry] = None,
    centroid: Point = (0.0, 0.0)
) -> Dict[str, float]:
    """
    Lw per segment, looked up by name and then by the compass key of its
    outward normal. Segments without a usable level are left out.
    """
    levels = {}
    if not lw_map:
        return levels
    for seg in segments:
        normal = segment_outward_normal(seg, polygon, centroid)
        value = lookup_lw(seg.name, normal, lw_map, math.nan)
        if math.isfinite(value):
            levels[seg.name] = value
    return levels


def base_levels(
    segments: Sequence[Segment],
    lw_map: Optional[Mapping[str, float]],
    facades: Mapping[str, List[FacadeElement]],
    physical: PhysicalParams
) -> Dict[str, float]:
    """
    Lw per segment for the base field.

    Prefers the supplied level, then the indoor level converted with the
    facade area as equivalent absorption area, then a nominal fallback.
    """
    supplied = supplied_levels(lw_map, segments)
    levels = {}
    for seg in segments:
        if seg.name in supplied:
            levels[seg.name] = supplied[seg.name]
            continue
        lp_in = as_level(physical.lp_in_map.get(seg.name))
        if lp_in is not None:
            area = sum(e.area for e in facades.get(seg.name, [])) or 1.0
            levels[seg.name] = lw_room_from_lp_in(lp_in, area)
        else:
            levels[seg.name] = physical.fallback_lw_db
    return levels


def compute_base_field(
    xs: np.ndarray,
    ys: np.ndarray,
    segments: Sequence[Segment],
    lw_by_segment: Mapping[str, float],
    re_prime: Mapping[str, float],
    physical: Optional[PhysicalParams] = None,
    polygon: Optional[BaseGeometry] = None
) -> np.ndarray:
    """
    Physical field: each exterior cell takes the level of its nearest facade.

    Returns:
        Levels in dB of shape [len(ys), len(xs)], NaN inside the perimeter
        and everywhere when there is no facade
    """
    if physical is None:
        physical = PhysicalParams()

    gx, gy = np.meshgrid(np.asarray(xs, dtype=np.float64), np.asarray(ys, dtype=np.float64))
    field = np.full(gx.shape, np.nan)
    if not segments or gx.size == 0:
        return field

    distances = np.stack([project_onto_segment(gx, gy, seg).distance for seg in segments])
    nearest = np.argmin(distances, axis=0)
    distance = np.take_along_axis(distances, nearest[None, ...], axis=0)[0]

    lw = np.array([lw_by_segment[seg.name] for seg in segments])[nearest]
    re = np.array([re_prime.get(seg.name, physical.default_r_db) for seg in segments])[nearest]

    field = lp_out_at_point(
        lw, re, np.maximum(distance, physical.min_distance_m),
        df_room=physical.df_room,
        df_out=physical.df_out,
        atmospheric=physical.atmospheric_db,
        db_per_meter=physical.db_per_meter,
        min_distance=physical.min_distance_m
    )
    inside = interior_mask(polygon, xs, ys)
    return np.where(inside, np.nan, field)


def compute_overlay_energy(
    segments: Sequence[Segment],
    lw_map: Optional[Mapping[str, float]],
    re_prime: Mapping[str, float],
    xs: np.ndarray,
    ys: np.ndarray,
    config: FieldConfig,
    polygon: Optional[BaseGeometry] = None,
    centroid: Point = (0.0, 0.0),
    debug_hook: Optional[Callable[[dict], None]] = None
) -> np.ndarray:
    """
    Band energy of every loud facade, summed in linear units.

    Facades without a finite, positive Lw contribute nothing.
    """
    energy = np.zeros((len(ys), len(xs)))
    for seg in segments:
        lw = supplied_levels(lw_map, [seg]).get(seg.name)
        if lw is None or lw <= 0:
            continue

        normal = segment_outward_normal(seg, polygon, centroid)
        if debug_hook is not None:
            debug_hook({
                "kind": "normal",
                "segment": seg.name,
                "nx": float(normal[0]),
                "nz": float(normal[1]),
            })

        for band in active_bands(lw, config.bands):
            energy += generate_segment_band_energy(
                seg, band, lw,
                re_prime.get(seg.name, config.physical.default_r_db),
                xs, ys,
                settings=config.bands,
                physical=config.physical,
                normal=normal,
                debug_hook=debug_hook
            )
    return energy


def combine_energy(base_db: np.ndarray, overlay_energy: np.ndarray) -> np.ndarray:
    """Add overlay energy to a dB field; NaN where the total energy is zero."""
    base_db = np.asarray(base_db, dtype=np.float64)
    finite = np.isfinite(base_db)
    base_energy = np.where(finite, db_to_energy(np.where(finite, base_db, 0.0)), 0.0)
    return energy_to_db(base_energy + np.asarray(overlay_energy, dtype=np.float64))


def cap_levels(values: np.ndarray, lw_values) -> np.ndarray:
    """Clamp finite cells to the loudest finite level in ``lw_values``."""
    values = np.array(values, dtype=np.float64, copy=True)
    levels = [v for v in map(as_level, lw_values) if v is not None]
    if not levels:
        return values
    finite = np.isfinite(values)
    values[finite] = np.minimum(values[finite], max(levels))
    return values


def compute_noise_grid(
    perimeter,
    segments: Optional[Sequence] = None,
    lw_map: Optional[Mapping[str, float]] = None,
    config: Optional[FieldConfig] = None,
    verbose: bool = False,
    debug_hook: Optional[Callable[[dict], None]] = None
) -> NoiseGrid:
    """
    Compute the outdoor noise field around a building.

    Pipeline:
    1. Build the grid axes
    2. Build facade elements and R'e per facade
    3. Base physical field from the nearest facade
    4. Pre and final smoothing of the base field
    5. Band energy of every loud facade
    6. Combine base field and band energy in linear energy
    7. Hot-spot overlay, combined by maximum
    8. Overlay smoothing
    9. Mask the building interior
    10. Cap at the loudest supplied level

    Args:
        perimeter: Outer loop ``[(x, z), ...]`` or ``[outer, *holes]``
        segments: Facades (Segment, mapping or (name, p1, p2)); derived
            from the outer loop as ``segment-i`` when empty
        lw_map: Facade name (or compass key) to Lw in dB
        config: Field configuration (uses defaults if None)
        verbose: Print progress information
        debug_hook: Called with every emitted sample and resolved normal

    Returns:
        NoiseGrid; an empty grid when the perimeter has fewer than 3 points
    """
    if config is None:
        config = FieldConfig()

    poly_out = outer_loop(perimeter)
    polygon = perimeter_polygon(perimeter)
    if polygon is None:
        if verbose:
            print("Perimeter has fewer than 3 points, returning an empty grid")
        return NoiseGrid.empty(poly_out)

    start_time = time.time()

    segs = valid_segments(segments)
    if not segs:
        segs = segments_from_perimeter(perimeter)
    centroid = loop_centroid(perimeter)
    levels = resolve_levels(segs, lw_map, polygon, centroid)

    emitted: Optional[List[dict]] = [] if config.debug_emit else None

    def emit(record: dict):
        if emitted is not None:
            emitted.append(record)
        if debug_hook is not None:
            debug_hook(record)

    hook = emit if (emitted is not None or debug_hook is not None) else None

    # Step 1: Grid
    xs, ys = build_grid_axes(config.area_size, config.resolution, config.cell_size)
    if verbose:
        print(f"\n{'='*60}")
        print(f"Noise Field Pipeline")
        print(f"{'='*60}")
        print(f"\nStep 1: Grid of {len(xs)}x{len(ys)} cells over {config.area_size:.1f}m")

    # Step 2: Facades
    physical = config.physical
    facades = facade_elements_by_segment(segs, config.building_height, physical)
    re_prime = re_prime_by_segment(facades, physical.default_r_db)
    if verbose:
        print(f"\nStep 2: {len(segs)} facades")
        for seg in segs:
            print(f"  {seg.name}: length {seg.length:.2f}m, R'e {re_prime[seg.name]:.1f}dB")

    # Step 3: Base physical field
    if verbose:
        print(f"\nStep 3: Computing base field...")
    lw_base = base_levels(segs, levels, facades, physical)
    base = compute_base_field(xs, ys, segs, lw_base, re_prime, physical, polygon)

    # Step 4: Base smoothing
    smoothing = config.smoothing
    if verbose:
        print(f"\nStep 4: Smoothing base field (pre {smoothing.pre_size}/{smoothing.pre_sigma}, "
              f"final {smoothing.final_size}/{smoothing.final_sigma})...")
    base = gaussian_smooth(base, smoothing.pre_size, smoothing.pre_sigma)
    base = gaussian_smooth(base, smoothing.final_size, smoothing.final_sigma)

    # Step 5: Band energy
    if verbose:
        loud = [name for name, lw in levels.items() if lw > 0]
        print(f"\nStep 5: Band energy for {len(loud)} loud facade(s)...")
    overlay_energy = compute_overlay_energy(
        segs, levels, re_prime, xs, ys, config, polygon, centroid, hook
    )

    # Step 6: Combine
    outside = ~interior_mask(polygon, xs, ys)
    combined = np.where(outside, combine_energy(base, overlay_energy), np.nan)

    # Step 7: Hot-spot overlay
    if config.hotspot.enabled:
        if verbose:
            print(f"\nStep 7: Hot-spot overlay...")
        hot = hot_spot_levels(
            segs, levels, xs, ys,
            config.hotspot, polygon, centroid, config.effective_cell_size
        )
        combined = np.fmax(combined, hot)

    # Step 8: Overlay smoothing
    if verbose:
        print(f"\nStep 8: Smoothing overlay ({smoothing.overlay_size}/{smoothing.overlay_sigma})...")
    overlay = gaussian_smooth(combined, smoothing.overlay_size, smoothing.overlay_sigma)

    # Step 9: Interior mask, falling back to the base field where the overlay is empty
    result = np.where(outside & np.isfinite(overlay), overlay, base)
    result = np.where(outside, result, np.nan)

    # Step 10: Cap
    result = cap_levels(result, levels.values())

    grid = NoiseGrid.from_array(xs, ys, result, poly_out)
    grid.emit_points = emitted

    elapsed = time.time() - start_time
    if verbose:
        print(f"\n{'='*60}")
        print(f"Pipeline complete in {elapsed:.2f}s")
        print(f"Levels: {grid.min:.1f} - {grid.max:.1f} dB")
        print(f"{'='*60}\n")

    return grid


def build_heatmap(
    perimeter,
    lw_values: Sequence[float],
    config: Optional[FieldConfig] = None,
    verbose: bool = False
) -> NoiseGrid:
    """
    Compute a field from a perimeter loop and one level per edge.

    Edge i (``segment-i``) takes ``lw_values[i]``. When exactly one facade
    is loud, the overlay is smoothed wider and bands spread further, and
    that facade becomes the hot segment.
    """
    if config is None:
        config = FieldConfig()

    segs = segments_from_perimeter(perimeter)
    lw_map = {f"segment-{i}": float(v) for i, v in enumerate(lw_values)}

    loud = [seg.name for seg in segs
            if math.isfinite(lw_map.get(seg.name, math.nan)) and lw_map[seg.name] > 0]
    if len(loud) == 1:
        preset = dict(SINGLE_SOURCE_PRESET)
        preset["hotspot"] = {"hot_segment": loud[0]}
        config = config.with_overrides(preset)

    return compute_noise_grid(perimeter, segs, lw_map, config, verbose=verbose)
