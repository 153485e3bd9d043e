import math

import numpy as np
import pytest

from facade_noise.bands import (
    active_bands,
    generate_segment_band_energy,
    sample_power_db,
)
from facade_noise.config import BandSettings, PhysicalParams
from facade_noise.geometry import loop_centroid, perimeter_polygon
from facade_noise.sampler import sample_positions
from facade_noise.types import Segment


FRONT = (0.0, 1.0)


def level_at(segment, band, x, z, settings=None, lw=80.0):
    energy = generate_segment_band_energy(
        segment, band, lw, 30.0, np.array([x]), np.array([z]),
        settings=settings, normal=FRONT
    )
    return 10.0 * math.log10(energy[0, 0])


def test_active_bands():
    settings = BandSettings()
    assert active_bands(50.0, settings) == ["blue", "green"]
    assert active_bands(80.0, settings) == ["blue", "green", "yellow"]
    assert active_bands(95.0, settings) == ["blue", "green", "yellow", "red"]


def test_sample_power_db_modes():
    assert sample_power_db(80.0, 10.0, 10, 1.0, "none") == 80.0
    assert sample_power_db(80.0, 10.0, 10, 1.0, "per_sample") == pytest.approx(70.0)
    assert sample_power_db(80.0, 10.0, 10, 1.0, "per_meter") == pytest.approx(70.0)
    assert sample_power_db(80.0, 10.0, 4, 1.0, "per_meter") == pytest.approx(70.0)


@pytest.mark.parametrize("band", ["red", "yellow", "green", "blue"])
def test_level_independent_of_facade_length(band):
    short = Segment("short", (-2.5, 0.0), (2.5, 0.0))
    long = Segment("long", (-10.0, 0.0), (10.0, 0.0))
    assert abs(level_at(short, band, 0.0, 3.0) - level_at(long, band, 0.0, 3.0)) < 1.0


def test_energy_decreases_away_from_facade(single_segment):
    levels = [level_at(single_segment, "green", 0.0, d) for d in (1.0, 2.0, 4.0, 8.0)]
    assert all(a > b for a, b in zip(levels, levels[1:]))


def test_soft_falloff_beyond_max_distance(single_segment):
    settings = BandSettings()
    max_dist = settings.bands["red"].max_dist
    inside = level_at(single_segment, "red", 0.0, max_dist - 0.5)
    beyond = level_at(single_segment, "red", 0.0, max_dist + 0.5)
    assert math.isfinite(beyond)
    assert beyond < inside


def test_no_energy_behind_facade(single_segment):
    energy = generate_segment_band_energy(
        single_segment, "blue", 80.0, 30.0, np.array([0.0]), np.array([-3.0]), normal=FRONT
    )
    assert energy[0, 0] == 0.0


def test_reentrant_corner_gets_nothing_from_far_facade(l_perimeter):
    """A cell in the notch sits behind the bottom facade of the L."""
    polygon = perimeter_polygon(l_perimeter)
    bottom = Segment("s0", l_perimeter[0], l_perimeter[1])
    for band in ("red", "yellow", "green", "blue"):
        energy = generate_segment_band_energy(
            bottom, band, 100.0, 30.0, np.array([2.0]), np.array([2.0]),
            polygon=polygon, centroid=loop_centroid(l_perimeter)
        )
        assert energy[0, 0] == 0.0


def test_energy_is_non_negative_everywhere(l_perimeter):
    polygon = perimeter_polygon(l_perimeter)
    xs = np.linspace(-20, 20, 21)
    for k in range(len(l_perimeter)):
        seg = Segment(f"s{k}", l_perimeter[k], l_perimeter[(k + 1) % len(l_perimeter)])
        energy = generate_segment_band_energy(
            seg, "green", 90.0, 30.0, xs, xs, polygon=polygon, centroid=loop_centroid(l_perimeter)
        )
        assert energy.shape == (21, 21)
        assert np.all(np.isfinite(energy))
        assert np.all(energy >= 0.0)


def test_normalize_none_is_louder(single_segment):
    per_meter = level_at(single_segment, "blue", 0.0, 3.0)
    none = level_at(single_segment, "blue", 0.0, 3.0, settings=BandSettings(normalize="none"))
    positions, _ = sample_positions(single_segment, BandSettings().bands["blue"].sample_spacing)
    assert none - per_meter == pytest.approx(10.0 * math.log10(len(positions)))


def test_perp_spread_widens_band(single_segment):
    narrow = level_at(single_segment, "yellow", 0.0, 6.0)
    wide = level_at(single_segment, "yellow", 0.0, 6.0, settings=BandSettings(perp_spread_factor=2.0))
    assert wide > narrow


def test_db_per_meter_attenuates():
    seg = Segment("s", (-5.0, 0.0), (5.0, 0.0))
    xs, ys = np.array([0.0]), np.array([5.0])
    plain = generate_segment_band_energy(seg, "blue", 80.0, 30.0, xs, ys, normal=FRONT)
    damped = generate_segment_band_energy(
        seg, "blue", 80.0, 30.0, xs, ys, physical=PhysicalParams(db_per_meter=1.0), normal=FRONT
    )
    assert 10 * math.log10(plain[0, 0] / damped[0, 0]) == pytest.approx(5.0)


def test_debug_hook_called_once_per_sample(single_segment):
    records = []
    generate_segment_band_energy(
        single_segment, "blue", 80.0, 30.0, np.linspace(-5, 5, 11), np.linspace(-5, 5, 11),
        normal=FRONT, debug_hook=records.append
    )
    positions, _ = sample_positions(single_segment, BandSettings().bands["blue"].sample_spacing)
    assert len(records) == len(positions)
    assert {r["segment"] for r in records} == {"facade"}
    assert all(r["kind"] == "sample" for r in records)


def test_degenerate_segment_and_unknown_band():
    seg = Segment("p", (1.0, 1.0), (1.0, 1.0))
    energy = generate_segment_band_energy(seg, "red", 90.0, 30.0, np.zeros(3), np.zeros(2))
    assert energy.shape == (2, 3)
    assert not energy.any()
    with pytest.raises(ValueError):
        generate_segment_band_energy(seg, "purple", 90.0, 30.0, np.zeros(3), np.zeros(2))
