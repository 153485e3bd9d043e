"""
Building footprints: perimeter loops, facade segments and sound level maps.

Footprints come either from parametric shape factories or from a mesh
file, sliced horizontally just above its base. Mesh coordinates are z-up;
the plan-view point of a mesh vertex is its ``(x, y)``.
"""

from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence

import numpy as np
import trimesh
from shapely.geometry import LineString, Polygon
from shapely.geometry.polygon import orient
from shapely.ops import polygonize, unary_union

from .geometry import as_loops
from .types import Point, Segment


# Decimal places for snapping section coordinates before noding
SNAP_PRECISION = 6


def square_footprint(footprint: float = 16.0) -> List[Point]:
    """Square of side ``footprint`` centred on the origin."""
    half = max(0.001, footprint) / 2
    return [(-half, -half), (half, -half), (half, half), (-half, half)]


def l_footprint(footprint: float = 16.0, leg_fraction: float = 0.45) -> List[Point]:
    """
    L-shaped loop inside a ``footprint`` x ``footprint`` bounding box.

    ``leg_fraction`` sets the leg width as a fraction of the footprint.
    The reentrant corner sits towards the top right.
    """
    side = max(0.001, footprint)
    half = side / 2
    leg = max(0.05, side * leg_fraction)
    return [
        (-half, -half),
        (half, -half),
        (half, -half + leg),
        (-half + leg, -half + leg),
        (-half + leg, half),
        (-half, half),
    ]


def u_footprint(footprint: float = 16.0) -> List[Point]:
    """U-shaped loop open towards +z, the courtyard half as wide as the building."""
    s = footprint / 2
    return [
        (-s, s),
        (-s, -s),
        (s, -s),
        (s, s),
        (s * 0.5, s),
        (s * 0.5, 0.0),
        (-s * 0.5, 0.0),
        (-s * 0.5, s),
    ]


def t_footprint(footprint: float = 16.0, stem_depth: float = 0.5) -> List[Point]:
    """T-shaped loop: a bar ``footprint`` wide and a stem 40% as wide hanging below it."""
    w = max(0.001, footprint)
    half = w / 2
    stem_half = max(0.1, w * 0.4) / 2
    bar = max(0.001, w * 0.25) / 2
    # The stem never ends inside the bar
    stem_end = -max(half * stem_depth, bar + 0.001)
    return [
        (-half, bar),
        (half, bar),
        (half, -bar),
        (stem_half, -bar),
        (stem_half, stem_end),
        (-stem_half, stem_end),
        (-stem_half, -bar),
        (-half, -bar),
    ]


def cross_footprint(footprint: float = 16.0, arm_thickness: float = 0.3) -> List[Point]:
    """Plus-shaped loop; ``arm_thickness`` is the arm width as a fraction of the footprint."""
    half = max(0.001, footprint) / 2
    t = min(max(0.05, arm_thickness * half), half * 0.95)
    return [
        (-t, -half), (t, -half), (t, -t),
        (half, -t), (half, t), (t, t),
        (t, half), (-t, half), (-t, t),
        (-half, t), (-half, -t), (-t, -t),
    ]


def polygon_footprint(vertices: Optional[Sequence[Sequence[float]]]) -> List[Point]:
    """Loop from arbitrary ordered vertices; a unit L when fewer than 3 are given."""
    if vertices is None or len(vertices) < 3:
        return l_footprint(1.0)
    return [(float(v[0]), float(v[1])) for v in vertices]


BUILDING_SHAPES: Dict[str, Callable[..., List[Point]]] = {
    "S": square_footprint,
    "L": l_footprint,
    "U": u_footprint,
    "T": t_footprint,
    "CROSS": cross_footprint,
}

SHAPE_SEGMENT_COUNTS = {"S": 4, "L": 6, "U": 8, "T": 8, "CROSS": 12}


def segments_from_perimeter(perimeter, prefix: str = "segment") -> List[Segment]:
    """
    Facade segments of the outer loop, edge i running from point i to point i+1.

    Degenerate edges are skipped but keep their index in the naming, so
    ``segment-i`` always refers to the edge starting at vertex i.
    """
    loops = as_loops(perimeter)
    if not loops or len(loops[0]) < 2:
        return []

    loop = loops[0]
    n = len(loop)
    segments = []
    for i in range(n):
        seg = Segment(name=f"{prefix}-{i}", p1=loop[i], p2=loop[(i + 1) % n])
        if not seg.is_degenerate:
            segments.append(seg)
    return segments


def extract_footprint(mesh: trimesh.Trimesh, height: Optional[float] = None) -> List[List[Point]]:
    """
    Slice a mesh horizontally and return its footprint.

    Args:
        mesh: Building mesh, z-up
        height: Section height; defaults to 1% of the mesh height above its base

    Returns:
        ``[exterior_loop, *hole_loops]`` of the largest section polygon,
        exterior counter-clockwise. Empty when the section yields no polygon.
    """
    bounds = mesh.bounds
    if height is None:
        extent = float(bounds[1][2] - bounds[0][2])
        height = float(bounds[0][2]) + max(1e-3, extent * 0.01)

    lines_3d = trimesh.intersections.mesh_plane(
        mesh,
        plane_normal=[0.0, 0.0, 1.0],
        plane_origin=[0.0, 0.0, height]
    )
    if len(lines_3d) < 3:
        return []

    lines = []
    for p0, p1 in np.round(lines_3d[:, :, :2], SNAP_PRECISION):
        if np.allclose(p0, p1):
            continue
        lines.append(LineString([tuple(p0), tuple(p1)]))
    if len(lines) < 3:
        return []

    # Node the section lines so polygonize sees shared vertices
    polygons = [p for p in polygonize(unary_union(lines)) if p.is_valid and p.area > 0]
    if not polygons:
        return []

    largest = orient(max(polygons, key=lambda p: p.area), sign=1.0)
    loops = [largest.exterior] + list(largest.interiors)
    return [[(float(x), float(y)) for x, y in ring.coords[:-1]] for ring in loops]


def load_footprint(path: str, height: Optional[float] = None) -> List[List[Point]]:
    """
    Load a mesh file and extract its footprint.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file holds no mesh or no footprint can be extracted
    """
    mesh_path = Path(path)
    if not mesh_path.exists():
        raise FileNotFoundError(f"Mesh file not found: {path}")

    loaded = trimesh.load(str(mesh_path), force="scene")
    meshes = [g for g in loaded.geometry.values() if isinstance(g, trimesh.Trimesh)]
    if not meshes:
        raise ValueError(f"No mesh geometry in {path}")

    mesh = trimesh.util.concatenate(meshes)
    footprint = extract_footprint(mesh, height)
    if not footprint:
        raise ValueError(f"Could not extract a footprint from {path}")
    return footprint


def extrude_footprint(perimeter, height: float) -> trimesh.Trimesh:
    """Prism of ``height`` over a perimeter (holes included), base at z = 0."""
    loops = as_loops(perimeter)
    if not loops or len(loops[0]) < 3:
        raise ValueError("A footprint needs at least 3 points")
    if height <= 0:
        raise ValueError("height must be positive")

    polygon = orient(Polygon(loops[0], [loop for loop in loops[1:] if len(loop) >= 3]), sign=1.0)
    return trimesh.creation.extrude_polygon(polygon, height)


def default_lw_map(
    segments: Sequence[Segment],
    primary_db: float = 100.0,
    others_db: float = 0.0,
    primary_index: int = 0
) -> Dict[str, float]:
    """One loud facade, every other facade silent."""
    return {
        seg.name: (primary_db if i == primary_index else others_db)
        for i, seg in enumerate(segments)
    }


def ensure_lw_defaults(
    lw_map: Optional[Mapping[str, float]],
    segments: Sequence[Segment],
    primary_db: float = 100.0,
    others_db: float = 0.0,
    primary_index: int = 0,
    overwrite: bool = False
) -> Dict[str, float]:
    """
    Fill in default levels for facades missing from ``lw_map``.

    With ``overwrite`` every facade is reset to the defaults. The input map
    is never modified.
    """
    defaults = default_lw_map(segments, primary_db, others_db, primary_index)
    if overwrite or not lw_map:
        return defaults
    merged = dict(lw_map)
    for name, value in defaults.items():
        merged.setdefault(name, value)
    return merged
