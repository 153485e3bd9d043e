"""
Per-facade hot-spot overlay.

A second overlay computed straight from facade geometry rather than from
sampled emitters. Every exterior cell is projected onto every loud facade;
the level blends a linear and a logarithmic decay with distance, tapered
towards the facade ends and towards the hot-spot radius.
"""

import math
from typing import Mapping, Optional, Sequence

import numpy as np
from shapely.geometry.base import BaseGeometry

from .config import HotSpotParams
from .geometry import orient_normals, points_in_polygon, project_onto_segment, segment_frame
from .types import Point, Segment


def edge_taper_weight(t_clamped, length: float, lateral_taper: float) -> np.ndarray:
    """
    Weight falling to zero towards both ends of a facade.

    ``t_clamped`` is the position of the projection along the facade (m).
    A taper of 0 gives a hard cut at 15% of the length from each end.
    """
    t_clamped = np.asarray(t_clamped, dtype=np.float64)
    if length <= 0:
        return np.zeros_like(t_clamped)
    at_start = t_clamped / max(1e-6, length)
    at_end = (length - t_clamped) / max(1e-6, length)
    raw = np.minimum(at_start, at_end)
    if lateral_taper <= 1e-6:
        return np.where(raw > 0.15, 1.0, 0.0)
    return np.power(np.clip(raw * 2.0, 0.0, 1.0), 1.0 + 2.0 * lateral_taper)


def segment_hot_spot(
    segment: Segment,
    lw: float,
    gx: np.ndarray,
    gy: np.ndarray,
    params: HotSpotParams,
    polygon: Optional[BaseGeometry] = None,
    centroid: Point = (0.0, 0.0),
    cell_size: float = 1.0
) -> np.ndarray:
    """
    Hot-spot level of one facade over the grid.

    Args:
        segment: Facade
        lw: Facade power level (dB), must be finite and positive
        gx, gy: Meshgrid of cell centres
        params: Hot-spot parameters
        polygon: Perimeter polygon, used to orient normals per cell
        centroid: Fallback reference for normal orientation
        cell_size: Grid spacing (m), scales probes and lateral tolerance

    Returns:
        Levels in dB, NaN where the facade contributes nothing
    """
    shape = np.broadcast(gx, gy).shape
    nothing = np.full(shape, np.nan)
    if segment.is_degenerate or not math.isfinite(lw) or lw <= 0:
        return nothing

    proj = project_onto_segment(gx, gy, segment)
    length = proj.length
    tangent, nominal = segment_frame(segment)

    probe_step = max(0.05, cell_size * 0.25)
    normals = orient_normals(polygon, proj.closest_x, proj.closest_z,
                             nominal[0], nominal[1], centroid, probe_step)

    off_x = gx - proj.closest_x
    off_z = gy - proj.closest_z
    dist = proj.distance
    tangential = np.abs(off_x * tangent[0] + off_z * tangent[1])
    perp = off_x * normals.nx + off_z * normals.nz

    red_radius = max(params.red_radius, length * 0.6)
    red_decay = params.red_decay
    if params.hot_segment is not None and params.hot_segment == segment.name:
        red_radius *= 1.6 * params.hot_boost
        red_decay = max(2.0, red_decay * 0.5)

    lateral_tol = max(1e-6, cell_size * 0.6, length * 0.6)
    keep = normals.valid & (perp > 0)
    keep &= ~((tangential > lateral_tol) & (dist > red_radius))
    keep &= ~((dist > red_radius) & (dist > params.blue_radius))

    w_edge = edge_taper_weight(proj.t_clamped, length, params.lateral_taper)
    w_front = np.maximum(0.0, 1.0 - dist / max(1e-6, red_radius))

    linear = np.maximum(0.0, lw - red_decay * dist)
    logarithmic = lw - 20.0 * np.log10(np.maximum(dist, 0.01))
    blend = params.linear_weight * linear + (1.0 - params.linear_weight) * logarithmic
    level = np.minimum(lw, blend * w_edge * w_front)

    keep &= level > 0
    return np.where(keep, level, np.nan)


def hot_spot_levels(
    segments: Sequence[Segment],
    lw_by_segment: Mapping[str, float],
    xs: np.ndarray,
    ys: np.ndarray,
    params: Optional[HotSpotParams] = None,
    polygon: Optional[BaseGeometry] = None,
    centroid: Point = (0.0, 0.0),
    cell_size: float = 1.0
) -> np.ndarray:
    """
    Running maximum of the hot-spot levels of all loud facades.

    Only facades with a finite, positive Lw take part, and only cells
    outside the perimeter receive a level.

    Returns:
        Array of shape [len(ys), len(xs)] in dB, NaN where no facade contributes
    """
    if params is None:
        params = HotSpotParams()

    gx, gy = np.meshgrid(np.asarray(xs, dtype=np.float64), np.asarray(ys, dtype=np.float64))
    best = np.full(gx.shape, np.nan)
    if not params.enabled or gx.size == 0:
        return best

    outside = ~points_in_polygon(polygon, gx, gy)
    for segment in segments:
        lw = lw_by_segment.get(segment.name)
        if lw is None or not math.isfinite(lw) or lw <= 0:
            continue
        level = segment_hot_spot(segment, lw, gx, gy, params, polygon, centroid, cell_size)
        best = np.fmax(best, level)

    return np.where(outside, best, np.nan)
