"""
Discretise facades into point emitters.
"""

import math
from typing import List, Mapping, Optional, Sequence, Tuple

import numpy as np
from shapely.geometry.base import BaseGeometry

from .geometry import (
    as_loops,
    directional_key,
    loop_centroid,
    orient_normals,
    segment_frame,
    segments_centroid,
    valid_segments,
)
from .types import Point, Segment, Source, as_level


MAX_SAMPLES_PER_SEGMENT = 2048


def sample_count(length: float, spacing: float, max_samples: int = MAX_SAMPLES_PER_SEGMENT) -> int:
    """Number of sub-segments for a facade; 0 for degenerate facades."""
    if length < 1e-6:
        return 0
    spacing = max(spacing, 1e-6)
    return int(max(1, min(max_samples, math.ceil(length / spacing))))


def sample_positions(
    segment: Segment,
    spacing: float,
    max_samples: int = MAX_SAMPLES_PER_SEGMENT
) -> Tuple[np.ndarray, float]:
    """
    Sample positions at sub-segment centres, never at the endpoints.

    Returns:
        Tuple of (Nx2 positions, length of each sub-segment)
    """
    n = sample_count(segment.length, spacing, max_samples)
    if n == 0:
        return np.zeros((0, 2)), 0.0

    frac = (np.arange(n) + 0.5) / n
    p1 = np.asarray(segment.p1)
    p2 = np.asarray(segment.p2)
    positions = p1[None, :] + frac[:, None] * (p2 - p1)[None, :]
    return positions, segment.length / n


def lookup_lw(
    name: Optional[str],
    normal: Sequence[float],
    lw_map: Optional[Mapping[str, float]],
    default: float = 0.0
) -> float:
    """
    Resolve the Lw of a facade: by name, then by compass key, then ``default``.

    Non-numeric map entries count as missing.
    """
    if not lw_map:
        return default
    for key in (name, directional_key(normal[0], normal[1])):
        if key is None or key not in lw_map:
            continue
        value = as_level(lw_map[key])
        if value is not None:
            return value
    return default


def sample_segment(
    segment: Segment,
    spacing: float,
    centroid: Point,
    lw_map: Optional[Mapping[str, float]] = None,
    outward_offset: float = 0.0,
    default_lw: float = 0.0,
    polygon: Optional[BaseGeometry] = None
) -> List[Source]:
    """
    Sample one facade into point sources.

    The normal is the tangent rotated by 90 degrees, flipped when it points
    towards ``centroid``. When ``polygon`` is given the orientation is probed
    against the perimeter instead, which also handles concave shapes.

    Args:
        segment: Facade to sample
        spacing: Target distance between samples (m)
        centroid: Reference point for normal orientation
        lw_map: Segment name (or compass key) to Lw
        outward_offset: Distance to push sources off the facade (m)
        default_lw: Lw used when the map has no entry
        polygon: Optional perimeter polygon for probe-based orientation

    Returns:
        List of Source objects, empty for degenerate facades
    """
    positions, _ = sample_positions(segment, spacing)
    if len(positions) == 0:
        return []

    _, n = segment_frame(segment)
    mid = segment.midpoint
    if polygon is not None:
        oriented = orient_normals(polygon, mid[0], mid[1], n[0], n[1], centroid, 0.05)
        n = np.array([float(oriented.nx), float(oriented.nz)])
    elif (mid[0] - centroid[0]) * n[0] + (mid[1] - centroid[1]) * n[1] < 0:
        n = -n

    normal = (float(n[0]), float(n[1]))
    lw = lookup_lw(segment.name, normal, lw_map, default_lw)

    return [
        Source(
            position=(float(x + n[0] * outward_offset), float(z + n[1] * outward_offset)),
            normal=normal,
            Lw=lw,
            segment=segment.name
        )
        for x, z in positions
    ]


def generate_sources(
    perimeter,
    segments: Optional[Sequence] = None,
    spacing: float = 1.0,
    lw_map: Optional[Mapping[str, float]] = None,
    outward_offset: float = 0.0,
    default_lw: float = 0.0,
    polygon: Optional[BaseGeometry] = None
) -> List[Source]:
    """
    Sample every facade of a building into point sources.

    When ``segments`` is empty the outer perimeter loop is sampled edge by
    edge instead; edge k is looked up as ``segment-k``, falling back to the
    compass key of its normal.
    """
    segs = valid_segments(segments)
    loops = as_loops(perimeter)
    if not segs and not loops:
        return []

    if loops:
        centroid = loop_centroid(perimeter)
    else:
        centroid = segments_centroid(segs)

    sources: List[Source] = []
    if segs:
        for seg in segs:
            sources.extend(sample_segment(
                seg, spacing, centroid, lw_map, outward_offset, default_lw, polygon
            ))
        return sources

    loop = loops[0]
    for k in range(len(loop)):
        edge = Segment(name=f"segment-{k}", p1=loop[k], p2=loop[(k + 1) % len(loop)])
        if edge.is_degenerate:
            continue
        sources.extend(sample_segment(
            edge, spacing, centroid, lw_map, outward_offset, default_lw, polygon
        ))
    return sources

