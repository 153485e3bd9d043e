"""
Colour ramps for rendering noise grids.

Ramps are lists of ``(position, "#rrggbb")`` stops with positions in
[0, 1], the format linear colour-ramp renderers expect.
"""

from typing import List, Mapping, Optional, Tuple

import numpy as np


ColorStop = Tuple[float, str]

DEEP_BLUE = "#001f7a"
BLUE = "#0047ab"
GREEN = "#00ff00"
YELLOW = "#ffff00"
RED = "#ff0000"

# Threshold stops stay inside this range so they never sit on the ramp ends
SOFT_CLAMP = (0.02, 0.98)
MIN_STOP_GAP = 0.02
RESAMPLE_STEPS = 128

DEFAULT_THRESHOLDS = {"blue": 45.0, "green": 60.0, "yellow": 75.0, "red": 90.0}


def default_colorscale() -> List[ColorStop]:
    """Fixed deep blue to red ramp used when thresholds cannot be placed."""
    return [
        (0.0, DEEP_BLUE),
        (0.15, BLUE),
        (0.30, "#00ffff"),
        (0.55, GREEN),
        (0.75, YELLOW),
        (0.90, "#ffa500"),
        (1.0, RED),
    ]


def _hex_to_rgb(color: str) -> np.ndarray:
    h = color.lstrip("#")
    return np.array([int(h[i:i + 2], 16) for i in (0, 2, 4)], dtype=np.float64)


def _rgb_to_hex(rgb) -> str:
    return "#" + "".join(f"{int(round(min(255.0, max(0.0, c)))):02x}" for c in rgb)


def _resolve_thresholds(thresholds) -> Optional[dict]:
    if thresholds is None:
        return None
    if hasattr(thresholds, "thresholds"):
        thresholds = thresholds.thresholds
    if not isinstance(thresholds, Mapping) or not thresholds:
        return None
    resolved = dict(DEFAULT_THRESHOLDS)
    for band in DEFAULT_THRESHOLDS:
        value = thresholds.get(band)
        if value is not None and np.isfinite(value):
            resolved[band] = float(value)
    return resolved


def _spread_positions(positions: List[float]) -> List[float]:
    """Enforce a minimum gap between interior stops, keeping them in SOFT_CLAMP."""
    low, high = SOFT_CLAMP
    out = list(positions)
    for i in range(1, len(out)):
        out[i] = max(out[i], out[i - 1] + MIN_STOP_GAP)
    out[-1] = min(out[-1], high)
    for i in range(len(out) - 2, -1, -1):
        out[i] = min(out[i], out[i + 1] - MIN_STOP_GAP)
    out[0] = max(out[0], low)
    return out


def build_color_scale(z_min: float, z_max: float, thresholds=None) -> List[ColorStop]:
    """
    Ramp whose blue, green, yellow and red stops sit at the threshold levels.

    Args:
        z_min, z_max: Range of the data being rendered (dB)
        thresholds: Mapping band -> dB, or an object with a ``thresholds``
            mapping such as BandSettings; missing bands use defaults

    Returns:
        ``RESAMPLE_STEPS`` stops with strictly increasing positions from 0 to 1,
        or the default ramp when the range is empty or thresholds are absent
    """
    resolved = _resolve_thresholds(thresholds)
    if (resolved is None or z_min is None or z_max is None
            or not np.isfinite(z_min) or not np.isfinite(z_max) or z_max <= z_min):
        return default_colorscale()

    span = z_max - z_min
    order = sorted(("blue", "green", "yellow", "red"), key=lambda band: resolved[band])
    low, high = SOFT_CLAMP
    raw = [min(high, max(low, (resolved[band] - z_min) / span)) for band in order]
    inner = _spread_positions(raw)

    colors = {"blue": BLUE, "green": GREEN, "yellow": YELLOW, "red": RED}
    anchor_pos = np.array([0.0] + inner + [1.0])
    anchor_rgb = np.array(
        [_hex_to_rgb(DEEP_BLUE)] + [_hex_to_rgb(colors[band]) for band in order] + [_hex_to_rgb(RED)]
    )

    positions = np.linspace(0.0, 1.0, RESAMPLE_STEPS)
    channels = [np.interp(positions, anchor_pos, anchor_rgb[:, c]) for c in range(3)]
    return [
        (float(p), _rgb_to_hex((r, g, b)))
        for p, r, g, b in zip(positions, *channels)
    ]


def apply_color_attenuation(z, dist, db_per_meter: float = 0.5) -> np.ndarray:
    """
    Subtract ``db_per_meter`` per meter of distance from a level grid.

    Non-finite distances count as 0. Returns a new array.
    """
    z = np.asarray(z, dtype=np.float64)
    dist = np.asarray(dist, dtype=np.float64)
    if z.shape != dist.shape:
        raise ValueError(f"Level and distance grids differ in shape: {z.shape} vs {dist.shape}")
    return z - db_per_meter * np.where(np.isfinite(dist), dist, 0.0)
