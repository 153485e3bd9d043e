"""
Visual band energy generation.

Each facade is sampled into point emitters, and every emitter spreads its
share of the facade's energy over the grid with an anisotropic Gaussian
kernel: narrow away from the facade (the acoustic direction), wider along
it. Bands differ only in kernel shape and gain. Narrow bands draw the
crisp stripe close to loud facades, wide bands the soft halo.

Energy is returned in linear units so bands and facades can be summed.
"""

import math
from typing import Callable, List, Optional, Sequence

import numpy as np
from shapely.geometry.base import BaseGeometry

from .config import BANDS, BandParams, BandSettings, PhysicalParams
from .geometry import segment_frame, segment_outward_normal
from .propagation import lp_out_at_point
from .sampler import sample_positions
from .types import Point, Segment


# Red is the thinnest band; finer sampling only multiplies work
MIN_RED_SPACING = 0.05


def active_bands(lw: float, settings: BandSettings) -> List[str]:
    """
    Bands drawn for a facade of level ``lw``.

    Blue and green are always drawn; yellow and red only for facades louder
    than their thresholds.
    """
    bands = ["blue", "green"]
    if lw > settings.yellow_threshold:
        bands.append("yellow")
    if lw > settings.red_threshold:
        bands.append("red")
    return bands


def sample_power_db(lw: float, segment_length: float, n_samples: int, sample_length: float,
                    normalize: str) -> float:
    """
    Power level assigned to each emitter of a facade.

    ``per_meter`` spreads the facade power over its length and gives each
    emitter its length share; ``per_sample`` divides it evenly between
    emitters; ``none`` gives every emitter the full facade level.
    """
    if normalize == "none" or n_samples <= 0:
        return lw
    if normalize == "per_sample":
        return lw - 10.0 * math.log10(n_samples)
    share = sample_length / max(segment_length, 1e-9)
    return lw + 10.0 * math.log10(max(share, 1e-12))


def band_spacing(band: str, params: BandParams) -> float:
    if band == "red":
        return max(MIN_RED_SPACING, params.sample_spacing)
    return params.sample_spacing


def generate_segment_band_energy(
    segment: Segment,
    band: str,
    lw: float,
    re_prime: float,
    xs: np.ndarray,
    ys: np.ndarray,
    settings: Optional[BandSettings] = None,
    physical: Optional[PhysicalParams] = None,
    polygon: Optional[BaseGeometry] = None,
    centroid: Point = (0.0, 0.0),
    normal: Optional[Sequence[float]] = None,
    debug_hook: Optional[Callable[[dict], None]] = None
) -> np.ndarray:
    """
    Linear energy one facade contributes to the grid in one band.

    Args:
        segment: Facade to sample
        band: One of red, yellow, green, blue
        lw: Facade power level (dB)
        re_prime: Apparent sound reduction index of the facade (dB)
        xs, ys: Grid axes
        settings: Band settings (defaults if None)
        physical: Propagation parameters (defaults if None)
        polygon: Perimeter polygon used to orient the outward normal
        centroid: Fallback reference for normal orientation
        normal: Precomputed outward normal, skips orientation
        debug_hook: Called once per emitter with its position and levels

    Returns:
        Energy array of shape [len(ys), len(xs)], zero where nothing arrives
    """
    if band not in BANDS:
        raise ValueError(f"Unknown band: {band!r}")
    if settings is None:
        settings = BandSettings()
    if physical is None:
        physical = PhysicalParams()

    xs = np.asarray(xs, dtype=np.float64)
    ys = np.asarray(ys, dtype=np.float64)
    energy = np.zeros((len(ys), len(xs)))
    if segment.is_degenerate or energy.size == 0 or not math.isfinite(lw):
        return energy

    params = settings.bands[band]
    positions, sample_length = sample_positions(segment, band_spacing(band, params))
    if len(positions) == 0:
        return energy

    tangent, _ = segment_frame(segment)
    if normal is None:
        n = segment_outward_normal(segment, polygon, centroid)
    else:
        n = np.asarray(normal, dtype=np.float64)

    length = segment.length
    lw_sample = sample_power_db(lw, length, len(positions), sample_length, settings.normalize)

    sigma_perp = params.sigma_perp * settings.perp_spread_factor
    sigma_along = max(params.min_sigma_along,
                      params.along_fraction * settings.lateral_spread_factor * length)
    min_distance = physical.min_distance_m

    gx, gy = np.meshgrid(xs, ys)
    for index, (sx, sz) in enumerate(positions):
        vx = gx - sx
        vz = gy - sz
        perp = vx * n[0] + vz * n[1]
        along = vx * tangent[0] + vz * tangent[1]
        r = np.hypot(vx, vz)

        with np.errstate(divide="ignore", invalid="ignore"):
            dot = np.where(r > 1e-9, perp / np.where(r > 1e-9, r, 1.0), 1.0)
        frontal = dot > settings.dot_threshold

        d_perp = np.maximum(np.abs(perp), min_distance)
        lp = lp_out_at_point(
            lw_sample, re_prime, d_perp,
            df_room=physical.df_room,
            df_out=physical.df_out,
            atmospheric=physical.atmospheric_db,
            db_per_meter=physical.db_per_meter,
            min_distance=min_distance
        )

        weight = params.gain * np.exp(-(perp * perp) / (2.0 * sigma_perp * sigma_perp))
        weight = weight * np.exp(-(along * along) / (2.0 * sigma_along * sigma_along))
        beyond = np.maximum(0.0, np.abs(perp) - params.max_dist)
        weight = weight * np.exp(-beyond / params.falloff_scale)

        energy += np.where(frontal, np.power(10.0, lp / 10.0) * weight, 0.0)

        if debug_hook is not None:
            debug_hook({
                "kind": "sample",
                "segment": segment.name,
                "band": band,
                "index": index,
                "x": float(sx),
                "z": float(sz),
                "length": float(sample_length),
                "lw": float(lw_sample),
            })

    return energy
