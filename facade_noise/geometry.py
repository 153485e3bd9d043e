"""
Plan-view geometry shared by every stage of the field computation.

Coordinates are ``(x, z)`` pairs in meters. Functions taking receiver
coordinates accept scalars or numpy arrays of any shape and broadcast.
"""

from typing import Iterable, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np
import shapely
from shapely.geometry import MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry
from shapely.validation import make_valid

from .types import MIN_SEGMENT_LENGTH, Point, Segment


class SegmentProjection(NamedTuple):
    """Projection of receiver points onto a facade segment."""
    length: float
    t_raw: np.ndarray      # Position along the facade line (m), unclamped
    t_clamped: np.ndarray  # Position clamped to [0, length] (m)
    closest_x: np.ndarray
    closest_z: np.ndarray
    distance: np.ndarray   # Distance to the closest point on the segment


class OrientedNormals(NamedTuple):
    """Outward normals resolved against the perimeter."""
    nx: np.ndarray
    nz: np.ndarray
    valid: np.ndarray      # False where the outward probe still lands inside


def as_loops(perimeter) -> List[np.ndarray]:
    """
    Normalise a perimeter into a list of (N, 2) loops.

    Accepts a single loop ``[(x, z), ...]`` or several loops
    ``[[(x, z), ...], ...]`` where the first is the outer boundary and the
    rest are holes.
    """
    if perimeter is None or len(perimeter) == 0:
        return []

    first = perimeter[0]
    if len(first) > 0 and np.ndim(first[0]) > 0:
        loops = [np.asarray(loop, dtype=np.float64) for loop in perimeter]
    else:
        loops = [np.asarray(perimeter, dtype=np.float64)]

    for loop in loops:
        if loop.ndim != 2 or loop.shape[1] != 2:
            raise ValueError(f"Perimeter loops must be sequences of (x, z) pairs, got shape {loop.shape}")

    # Drop an explicit closing point
    cleaned = []
    for loop in loops:
        if len(loop) > 1 and np.allclose(loop[0], loop[-1]):
            loop = loop[:-1]
        cleaned.append(loop)
    return cleaned


def outer_loop(perimeter) -> List[Point]:
    """The outer boundary of a perimeter as a list of points."""
    loops = as_loops(perimeter)
    if not loops:
        return []
    return [(float(x), float(z)) for x, z in loops[0]]


def perimeter_polygon(perimeter) -> Optional[BaseGeometry]:
    """
    Build a (prepared) shapely polygon from a perimeter.

    Returns None when the outer loop has fewer than 3 points. Self-intersecting
    input is repaired with make_valid and reduced to its polygonal parts.
    """
    loops = as_loops(perimeter)
    if not loops or len(loops[0]) < 3:
        return None

    holes = [loop for loop in loops[1:] if len(loop) >= 3]
    polygon = Polygon(loops[0], holes)

    if not polygon.is_valid:
        repaired = make_valid(polygon)
        parts = [g for g in getattr(repaired, "geoms", [repaired])
                 if isinstance(g, (Polygon, MultiPolygon)) and not g.is_empty]
        if not parts:
            return None
        polygon = shapely.union_all(parts)

    if polygon.is_empty:
        return None

    shapely.prepare(polygon)
    return polygon


def points_in_polygon(polygon: Optional[BaseGeometry], x, z) -> np.ndarray:
    """
    Vectorised point-in-polygon test.

    Points on the boundary count as outside; holes count as outside.
    """
    x = np.asarray(x, dtype=np.float64)
    z = np.asarray(z, dtype=np.float64)
    if polygon is None:
        return np.zeros(np.broadcast(x, z).shape, dtype=bool)
    return shapely.contains_xy(polygon, x, z)


def interior_mask(polygon: Optional[BaseGeometry], xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
    """Boolean [len(ys), len(xs)] mask of grid cells strictly inside the polygon."""
    gx, gy = np.meshgrid(xs, ys)
    return points_in_polygon(polygon, gx, gy)


def loop_centroid(perimeter) -> Point:
    """Vertex average of the outer loop, (0, 0) when empty."""
    loops = as_loops(perimeter)
    if not loops or len(loops[0]) == 0:
        return (0.0, 0.0)
    c = loops[0].mean(axis=0)
    return (float(c[0]), float(c[1]))


def segments_centroid(segments: Sequence[Segment]) -> Point:
    """Average of segment midpoints, used when no perimeter is available."""
    mids = [s.midpoint for s in segments]
    if not mids:
        return (0.0, 0.0)
    c = np.mean(mids, axis=0)
    return (float(c[0]), float(c[1]))


def valid_segments(segments: Optional[Iterable]) -> List[Segment]:
    """Coerce segments and drop degenerate ones."""
    out = []
    for seg in segments or []:
        seg = Segment.from_any(seg)
        if not seg.is_degenerate:
            out.append(seg)
    return out


def segment_frame(segment: Segment) -> Tuple[np.ndarray, np.ndarray]:
    """
    Unit tangent and nominal normal of a segment.

    The nominal normal is the tangent rotated by 90 degrees; it is not yet
    oriented outward.
    """
    p1 = np.asarray(segment.p1)
    p2 = np.asarray(segment.p2)
    length = segment.length
    if length < MIN_SEGMENT_LENGTH:
        return np.array([1.0, 0.0]), np.array([0.0, 1.0])
    t = (p2 - p1) / length
    n = np.array([-t[1], t[0]])
    return t, n


def project_onto_segment(px, pz, segment: Segment) -> SegmentProjection:
    """Project receiver points onto a segment."""
    px = np.asarray(px, dtype=np.float64)
    pz = np.asarray(pz, dtype=np.float64)
    ax, az = segment.p1
    vx = segment.p2[0] - ax
    vz = segment.p2[1] - az
    length = float(np.hypot(vx, vz))

    if length < MIN_SEGMENT_LENGTH:
        shape = np.broadcast(px, pz).shape
        cx = np.full(shape, ax)
        cz = np.full(shape, az)
        zeros = np.zeros(shape)
        return SegmentProjection(0.0, zeros, zeros, cx, cz, np.hypot(px - cx, pz - cz))

    t_frac = ((px - ax) * vx + (pz - az) * vz) / (length * length)
    t_clamped = np.clip(t_frac, 0.0, 1.0)
    cx = ax + vx * t_clamped
    cz = az + vz * t_clamped
    return SegmentProjection(
        length=length,
        t_raw=t_frac * length,
        t_clamped=t_clamped * length,
        closest_x=cx,
        closest_z=cz,
        distance=np.hypot(px - cx, pz - cz)
    )


def distance_to_segment(px, pz, segment: Segment) -> np.ndarray:
    """Distance from receiver points to the closest point of a segment."""
    return project_onto_segment(px, pz, segment).distance


def directional_key(nx: float, nz: float) -> str:
    """Compass key of a normal: east/west when |nx| dominates, else north/south."""
    if abs(nx) > abs(nz):
        return "east" if nx > 0 else "west"
    return "north" if nz > 0 else "south"


def orient_normal_to_centroid(point: Point, normal, centroid: Point) -> np.ndarray:
    """Flip ``normal`` if it points towards ``centroid`` from ``point``."""
    normal = np.asarray(normal, dtype=np.float64)
    if (point[0] - centroid[0]) * normal[0] + (point[1] - centroid[1]) * normal[1] < 0:
        return -normal
    return normal


def orient_normals(
    polygon: Optional[BaseGeometry],
    cx,
    cz,
    nx,
    nz,
    centroid: Point,
    probe_step: float
) -> OrientedNormals:
    """
    Orient normals outward by probing the perimeter on both sides of a facade.

    For each base point ``(cx, cz)`` one probe is placed along the normal and
    one against it. The normal is flipped when the outward probe is inside
    and the inward probe is outside. When the probes do not disagree (both
    inside, e.g. a deep concavity, or both outside), the centroid decides.
    Points whose outward probe still lands inside are marked invalid.
    """
    cx = np.asarray(cx, dtype=np.float64)
    cz = np.asarray(cz, dtype=np.float64)
    shape = np.broadcast(cx, cz, nx, nz).shape
    nx = np.broadcast_to(np.asarray(nx, dtype=np.float64), shape)
    nz = np.broadcast_to(np.asarray(nz, dtype=np.float64), shape)

    if polygon is None:
        towards = (cx - centroid[0]) * nx + (cz - centroid[1]) * nz < 0
        sign = np.where(towards, -1.0, 1.0)
        return OrientedNormals(nx * sign, nz * sign, np.ones(shape, dtype=bool))

    out_inside = points_in_polygon(polygon, cx + nx * probe_step, cz + nz * probe_step)
    in_inside = points_in_polygon(polygon, cx - nx * probe_step, cz - nz * probe_step)

    flip = out_inside & ~in_inside
    undecided = out_inside == in_inside
    towards = (cx - centroid[0]) * nx + (cz - centroid[1]) * nz < 0
    flip |= undecided & towards

    sign = np.where(flip, -1.0, 1.0)
    nx = nx * sign
    nz = nz * sign

    valid = ~points_in_polygon(polygon, cx + nx * probe_step, cz + nz * probe_step)
    return OrientedNormals(nx, nz, valid)


def segment_outward_normal(
    segment: Segment,
    polygon: Optional[BaseGeometry],
    centroid: Point,
    probe_step: float = 0.05
) -> np.ndarray:
    """Outward unit normal of a whole facade, probed at its midpoint."""
    _, n = segment_frame(segment)
    mid = segment.midpoint
    oriented = orient_normals(polygon, mid[0], mid[1], n[0], n[1], centroid, probe_step)
    return np.array([float(oriented.nx), float(oriented.nz)])
