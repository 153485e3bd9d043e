"""
Simplified outdoor propagation model for sound radiated by facades.

    A_geo(r) = 8 + 20*log10(r)
    Lp_out   = Lw_room - R'e - Df_room - Df_out - A_geo(r) - A_atm - db_per_meter*r

All level functions accept numpy arrays for the distance and broadcast.
"""

import math
from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional, Sequence

import numpy as np

from .types import FacadeElement, Point, PropagationResult, Segment, Source, as_level


MIN_DISTANCE = 0.01
DEFAULT_R_DB = 30.0
DIRECTIVITY_FLOOR = 1e-6


@dataclass
class PropagationOptions:
    """Terms applied between a source and a receiver."""
    re_prime: float = DEFAULT_R_DB
    df_room: float = 6.0
    df_out: float = 0.0
    atmospheric_db: float = 0.0
    db_per_meter: float = 0.0
    min_distance: float = MIN_DISTANCE

    # Directivity: weight energy by max(0, cos(theta))^cut when sources carry a normal
    directional: bool = False
    cut: float = 1.0
    directivity_floor: float = DIRECTIVITY_FLOOR


def db_to_energy(level_db):
    """Linear energy 10^(L/10)."""
    return np.power(10.0, np.asarray(level_db, dtype=np.float64) / 10.0)


def energy_to_db(energy):
    """10*log10(E), NaN where E <= 0 or E is not finite."""
    energy = np.asarray(energy, dtype=np.float64)
    positive = np.isfinite(energy) & (energy > 0)
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.where(positive, 10.0 * np.log10(np.where(positive, energy, 1.0)), np.nan)


def a_geo(distance, min_distance: float = MIN_DISTANCE):
    """Divergence plus ground reflection over a reflective plane."""
    r = np.maximum(np.asarray(distance, dtype=np.float64), min_distance)
    return 8.0 + 20.0 * np.log10(r)


def a_atm(distance) -> float:
    """Atmospheric absorption; the simplified model ignores it."""
    return 0.0


def lw_room_from_lp_in(lp_in: float, a_eq: float) -> float:
    """Estimate the power level radiated into a facade from the indoor level."""
    return lp_in + 10.0 * math.log10(max(1e-6, a_eq))


def lp_out_at_point(
    lw_room,
    re_prime,
    distance,
    df_room: float = 6.0,
    df_out: float = 0.0,
    atmospheric: Optional[float] = None,
    db_per_meter: float = 0.0,
    min_distance: float = MIN_DISTANCE
):
    """
    Outdoor sound pressure level at ``distance`` from a facade.

    Args:
        lw_room: Power level radiated by the room onto the facade (dB)
        re_prime: Apparent facade sound reduction index R'e (dB)
        distance: Receiver distance in meters (scalar or array)
        df_room: Room-side directivity correction (dB)
        df_out: Outdoor directivity correction (dB)
        atmospheric: Explicit atmospheric term (dB); None uses a_atm
        db_per_meter: Extra linear attenuation per meter of distance
        min_distance: Distances are clamped to this before log10

    Returns:
        Lp in dB, same shape as ``distance``
    """
    r = np.maximum(np.asarray(distance, dtype=np.float64), min_distance)
    if atmospheric is None or not math.isfinite(atmospheric):
        atmospheric = a_atm(r)
    level = (lw_room - re_prime - df_room - df_out
             - a_geo(r, min_distance) - atmospheric - db_per_meter * r)
    if np.ndim(level) == 0:
        return float(level)
    return level


def facade_re_prime(
    elements: Optional[Iterable[FacadeElement]],
    total_area: Optional[float] = None
) -> float:
    """
    Area-weighted apparent sound reduction index of a facade.

        R'e = -10*log10( sum_j(S_j * 10^(-R_j/10)) / S_total )

    Elements with non-positive area or non-finite R are ignored. Returns NaN
    when no usable element remains; callers substitute a default.
    """
    if not elements:
        return math.nan

    area_sum = 0.0
    weighted = 0.0
    for element in elements:
        area = float(element.area) if element.area is not None else 0.0
        r = float(element.R) if element.R is not None else math.nan
        if not area > 0 or not math.isfinite(r):
            continue
        area_sum += area
        weighted += area * 10.0 ** (-r / 10.0)

    facade_area = total_area if (total_area is not None and total_area > 0) else area_sum
    if facade_area <= 0 or weighted <= 0:
        return math.nan
    return -10.0 * math.log10(weighted / facade_area)


def resolve_re_prime(value: float, default: float = DEFAULT_R_DB) -> float:
    """Substitute ``default`` for an undefined R'e."""
    return value if math.isfinite(value) else default


def build_facade_elements(
    segment: Segment,
    building_height: float,
    r_map: Optional[Mapping[str, float]] = None,
    default_r: float = DEFAULT_R_DB
) -> List[FacadeElement]:
    """Single wall element covering the whole facade."""
    height = max(0.1, building_height or 3.0)
    area = max(1e-4, segment.length * height)
    r_value = as_level((r_map or {}).get(segment.name))
    if r_value is None:
        r_value = default_r
    return [FacadeElement(area=area, R=r_value)]


def build_all_facades(
    segments: Sequence[Segment],
    building_height: float,
    r_map: Optional[Mapping[str, float]] = None,
    default_r: float = DEFAULT_R_DB
) -> dict:
    """Map each segment name to its facade elements."""
    return {
        seg.name: build_facade_elements(seg, building_height, r_map, default_r)
        for seg in segments
    }


def directivity_weight(normal, direction, cut: float = 1.0, floor: float = DIRECTIVITY_FLOOR):
    """
    Cosine lobe weight ``max(0, cos(theta))^cut``, floored at ``floor``.

    ``direction`` is the (unnormalised) vector from source to receiver,
    given as a pair of arrays or scalars.
    """
    dx, dz = direction
    dx = np.asarray(dx, dtype=np.float64)
    dz = np.asarray(dz, dtype=np.float64)
    norm = np.hypot(dx, dz)
    with np.errstate(divide="ignore", invalid="ignore"):
        cos_theta = np.where(norm > 0, (dx * normal[0] + dz * normal[1]) / np.where(norm > 0, norm, 1.0), 1.0)
    weight = np.power(np.maximum(0.0, cos_theta), max(1.0, cut))
    return np.maximum(weight, floor)


def inverse_power_energy(
    lw: float,
    distance,
    dot=1.0,
    exponent: float = 2.0,
    min_distance: float = 0.001,
    epsilon: float = 1e-6,
    dir_power: float = 1.0,
    spread: float = 1.0
):
    """
    Energy of a point source under an inverse-power law with a cosine lobe.

        E = 10^(Lw/10) / (4*pi*(d/spread)^exponent + epsilon) * max(0, dot)^dir_power
    """
    d = np.maximum(np.asarray(distance, dtype=np.float64), min_distance)
    energy = 10.0 ** (lw / 10.0) / (4.0 * math.pi * np.power(d / spread, exponent) + epsilon)
    if dir_power > 0:
        energy = energy * np.power(np.maximum(0.0, dot), dir_power)
    return energy


def propagate(
    source: Source,
    receiver: Point,
    options: Optional[PropagationOptions] = None
) -> PropagationResult:
    """Level at ``receiver`` from a single point source."""
    if options is None:
        options = PropagationOptions()

    dx = receiver[0] - source.position[0]
    dz = receiver[1] - source.position[1]
    distance = max(math.hypot(dx, dz), options.min_distance)

    lp = lp_out_at_point(
        source.Lw, options.re_prime, distance,
        df_room=options.df_room,
        df_out=options.df_out,
        atmospheric=options.atmospheric_db,
        db_per_meter=options.db_per_meter,
        min_distance=options.min_distance
    )
    energy = 10.0 ** (lp / 10.0)

    if options.directional and source.normal is not None:
        energy *= float(directivity_weight(source.normal, (dx, dz), options.cut, options.directivity_floor))
        lp = 10.0 * math.log10(energy)

    return PropagationResult(Lp=lp, energy=energy, distance=distance)


def propagate_many(
    sources: Iterable[Source],
    receiver: Point,
    options: Optional[PropagationOptions] = None
) -> PropagationResult:
    """
    Energy sum of many point sources at one receiver.

    ``distance`` is the distance to the nearest source. With no sources the
    level is NaN and the energy 0.
    """
    total = 0.0
    nearest = math.inf
    for source in sources:
        result = propagate(source, receiver, options)
        if math.isfinite(result.energy):
            total += result.energy
        nearest = min(nearest, result.distance)

    return PropagationResult(
        Lp=10.0 * math.log10(total) if total > 0 else math.nan,
        energy=total,
        distance=nearest
    )
