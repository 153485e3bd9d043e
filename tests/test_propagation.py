import math

import numpy as np
import pytest

from facade_noise.propagation import (
    PropagationOptions,
    a_atm,
    a_geo,
    build_all_facades,
    build_facade_elements,
    db_to_energy,
    directivity_weight,
    energy_to_db,
    facade_re_prime,
    inverse_power_energy,
    lp_out_at_point,
    lw_room_from_lp_in,
    propagate,
    propagate_many,
    resolve_re_prime,
)
from facade_noise.types import FacadeElement, Segment, Source


def test_a_geo():
    assert a_geo(1.0) == pytest.approx(8.0)
    assert a_geo(10.0) == pytest.approx(28.0)
    # Distances are clamped before log10
    assert a_geo(0.0) == pytest.approx(8.0 + 20.0 * math.log10(0.01))
    assert np.all(np.isfinite(a_geo(np.array([0.0, 1e-9, 5.0]))))


def test_a_atm_is_zero():
    assert a_atm(100.0) == 0.0


def test_lp_out_at_point_closed_form():
    assert lp_out_at_point(80.0, 30.0, 10.0) == pytest.approx(80 - 30 - 6 - 0 - 28)
    assert lp_out_at_point(80.0, 30.0, 10.0, df_room=0.0, db_per_meter=0.5) == pytest.approx(80 - 30 - 28 - 5)
    assert lp_out_at_point(80.0, 30.0, 10.0, atmospheric=2.0) == pytest.approx(80 - 30 - 6 - 28 - 2)


def test_lp_out_at_point_broadcasts():
    levels = lp_out_at_point(80.0, 30.0, np.array([1.0, 2.0, 4.0]))
    assert levels.shape == (3,)
    assert np.all(np.diff(levels) < 0)


def test_lw_room_from_lp_in():
    assert lw_room_from_lp_in(70.0, 100.0) == pytest.approx(90.0)
    assert math.isfinite(lw_room_from_lp_in(70.0, 0.0))


def test_facade_re_prime_single_element():
    assert facade_re_prime([FacadeElement(area=30.0, R=30.0)]) == pytest.approx(30.0)


def test_facade_re_prime_is_area_weighted():
    elements = [FacadeElement(area=10.0, R=30.0), FacadeElement(area=10.0, R=20.0)]
    expected = -10.0 * math.log10((10 * 1e-3 + 10 * 1e-2) / 20.0)
    assert facade_re_prime(elements) == pytest.approx(expected)
    # A weak window dominates the facade
    assert facade_re_prime(elements) < 25.0


def test_facade_re_prime_undefined_without_usable_elements():
    assert math.isnan(facade_re_prime([]))
    assert math.isnan(facade_re_prime(None))
    assert math.isnan(facade_re_prime([FacadeElement(area=0.0, R=30.0)]))
    assert math.isnan(facade_re_prime([FacadeElement(area=5.0, R=float("nan"))]))
    assert resolve_re_prime(facade_re_prime([])) == 30.0
    assert resolve_re_prime(25.0) == 25.0


def test_build_facade_elements():
    seg = Segment("north", (0.0, 0.0), (10.0, 0.0))
    (element,) = build_facade_elements(seg, 3.0)
    assert element.area == pytest.approx(30.0)
    assert element.R == 30.0

    (element,) = build_facade_elements(seg, 3.0, r_map={"north": 42.0})
    assert element.R == 42.0

    # Non-numeric overrides are ignored
    (element,) = build_facade_elements(seg, 3.0, r_map={"north": "thick"})
    assert element.R == 30.0


def test_build_all_facades():
    segs = [Segment("a", (0.0, 0.0), (1.0, 0.0)), Segment("b", (1.0, 0.0), (1.0, 2.0))]
    facades = build_all_facades(segs, 10.0)
    assert sorted(facades) == ["a", "b"]
    assert facades["b"][0].area == pytest.approx(20.0)


def test_energy_round_trip_and_zero_energy():
    assert db_to_energy(30.0) == pytest.approx(1000.0)
    assert energy_to_db(1000.0) == pytest.approx(30.0)
    converted = energy_to_db(np.array([0.0, -1.0, np.inf, 10.0]))
    assert np.isnan(converted[:3]).all()
    assert converted[3] == pytest.approx(10.0)


def test_directivity_weight():
    assert float(directivity_weight((0.0, 1.0), (0.0, 5.0))) == pytest.approx(1.0)
    assert float(directivity_weight((0.0, 1.0), (1.0, 1.0), cut=2.0)) == pytest.approx(0.5)
    assert float(directivity_weight((0.0, 1.0), (0.0, -5.0), floor=1e-6)) == pytest.approx(1e-6)


def test_inverse_power_energy():
    near = inverse_power_energy(80.0, 1.0)
    far = inverse_power_energy(80.0, 2.0)
    assert near / far == pytest.approx(4.0, rel=1e-3)
    assert inverse_power_energy(80.0, 1.0, dot=-0.5) == 0.0
    assert inverse_power_energy(80.0, 1.0, dot=-0.5, dir_power=0.0) == pytest.approx(near)


def test_propagate_single_source():
    source = Source(position=(0.0, 0.0), normal=(0.0, 1.0), Lw=80.0)
    result = propagate(source, (0.0, 10.0))
    assert result.distance == pytest.approx(10.0)
    assert result.Lp == pytest.approx(80 - 30 - 6 - 28)
    assert result.energy == pytest.approx(10 ** (result.Lp / 10))


def test_propagate_directional_source():
    source = Source(position=(0.0, 0.0), normal=(0.0, 1.0), Lw=80.0)
    options = PropagationOptions(directional=True)
    front = propagate(source, (0.0, 10.0), options)
    behind = propagate(source, (0.0, -10.0), options)
    assert front.Lp == pytest.approx(propagate(source, (0.0, 10.0)).Lp)
    assert behind.Lp < front.Lp - 50


def test_propagate_many_sums_energy():
    sources = [Source(position=(0.0, 0.0), normal=(0.0, 1.0), Lw=80.0)] * 2
    single = propagate(sources[0], (0.0, 10.0))
    double = propagate_many(sources, (0.0, 10.0))
    assert double.Lp == pytest.approx(single.Lp + 10 * math.log10(2))
    assert double.distance == pytest.approx(10.0)


def test_propagate_many_without_sources():
    result = propagate_many([], (0.0, 0.0))
    assert math.isnan(result.Lp)
    assert result.energy == 0.0


def test_build_facade_elements_accepts_numpy_overrides():
    seg = Segment("north", (0.0, 0.0), (10.0, 0.0))
    (element,) = build_facade_elements(seg, 3.0, r_map={"north": np.int64(42)})
    assert element.R == 42.0
    (element,) = build_facade_elements(seg, 3.0, r_map={"north": True})
    assert element.R == 30.0
