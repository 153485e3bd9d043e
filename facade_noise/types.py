"""
Data types for facade noise field synthesis.
"""

import json
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np


Point = Tuple[float, float]  # (x, z) plan-view coordinates in meters

# Segments shorter than this are treated as degenerate and skipped everywhere
MIN_SEGMENT_LENGTH = 1e-6


@dataclass
class Segment:
    """A named facade between two perimeter points."""
    name: str
    p1: Point
    p2: Point

    def __post_init__(self):
        self.p1 = _as_point(self.p1)
        self.p2 = _as_point(self.p2)

    @property
    def length(self) -> float:
        """Length of the facade in meters."""
        return math.hypot(self.p2[0] - self.p1[0], self.p2[1] - self.p1[1])

    @property
    def midpoint(self) -> Point:
        return ((self.p1[0] + self.p2[0]) / 2, (self.p1[1] + self.p2[1]) / 2)

    @property
    def is_degenerate(self) -> bool:
        return self.length < MIN_SEGMENT_LENGTH

    @classmethod
    def from_any(cls, value: Any) -> "Segment":
        """Build a Segment from a Segment, a mapping or a (name, p1, p2) tuple."""
        if isinstance(value, Segment):
            return value
        if isinstance(value, dict):
            return cls(name=str(value["name"]), p1=value["p1"], p2=value["p2"])
        name, p1, p2 = value
        return cls(name=str(name), p1=p1, p2=p2)


@dataclass
class FacadeElement:
    """A sub-component (wall, window, door) of a facade."""
    area: float  # m²
    R: float     # Sound reduction index (dB)


@dataclass
class Source:
    """A point emitter sampled from a facade."""
    position: Point
    normal: Point     # Outward unit normal
    Lw: float         # Sound power level (dB)
    segment: Optional[str] = None


@dataclass
class PropagationResult:
    """Level received at one point from one or many sources."""
    Lp: float         # Sound pressure level (dB), non-finite if nothing arrives
    energy: float     # Linear energy 10^(Lp/10)
    distance: float   # Distance to the (nearest) source in meters


@dataclass
class NoiseGrid:
    """
    Result of a field computation.

    ``z[j][i]`` holds the level at ``(x[i], y[j])``. Masked cells and cells
    no source reaches are ``None``.
    """
    x: List[float]
    y: List[float]
    z: List[List[Optional[float]]]
    min: float
    max: float
    poly: List[Point] = field(default_factory=list)

    # Sample trace, only filled when debug emission is enabled
    emit_points: Optional[List[dict]] = field(default=None, repr=False)

    @classmethod
    def empty(cls, poly: Optional[List[Point]] = None) -> "NoiseGrid":
        """Degenerate grid returned for unusable perimeters."""
        return cls(x=[], y=[], z=[[]], min=math.nan, max=math.nan, poly=list(poly or []))

    @classmethod
    def from_array(
        cls,
        xs: np.ndarray,
        ys: np.ndarray,
        values: np.ndarray,
        poly: Optional[List[Point]] = None
    ) -> "NoiseGrid":
        """Convert a float matrix (NaN = no data) into the output contract."""
        finite = np.isfinite(values)
        if finite.any():
            z_min = float(values[finite].min())
            z_max = float(values[finite].max())
        else:
            z_min = z_max = math.nan

        z = [
            [float(v) if ok else None for v, ok in zip(row, row_ok)]
            for row, row_ok in zip(values, finite)
        ]
        return cls(
            x=[float(v) for v in xs],
            y=[float(v) for v in ys],
            z=z,
            min=z_min,
            max=z_max,
            poly=[(float(p[0]), float(p[1])) for p in (poly or [])]
        )

    def to_array(self) -> np.ndarray:
        """Return ``z`` as a float matrix with NaN for missing cells."""
        if not self.x or not self.y:
            return np.zeros((0, 0))
        return np.array(
            [[np.nan if v is None else v for v in row] for row in self.z],
            dtype=np.float64
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe representation (non-finite min/max become None)."""
        return {
            "x": list(self.x),
            "y": list(self.y),
            "z": [list(row) for row in self.z],
            "min": self.min if math.isfinite(self.min) else None,
            "max": self.max if math.isfinite(self.max) else None,
            "poly": [list(p) for p in self.poly],
        }

    def to_json(self, **kwargs) -> str:
        return json.dumps(self.to_dict(), allow_nan=False, **kwargs)


def _as_point(value: Any) -> Point:
    try:
        x, z = value
    except (TypeError, ValueError):
        raise ValueError(f"Expected an (x, z) pair, got {value!r}")
    return (float(x), float(z))


def as_level(value: Any) -> Optional[float]:
    """Finite float from a level entry (numpy scalars included), else None. Bools are rejected."""
    if isinstance(value, (bool, np.bool_)):
        return None
    try:
        value = float(value)
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None
