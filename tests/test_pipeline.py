import copy
import json
import math

import numpy as np
import pytest

from facade_noise.config import PhysicalParams
from facade_noise.geometry import interior_mask, perimeter_polygon
from facade_noise.pipeline import (
    base_levels,
    build_grid_axes,
    build_heatmap,
    cap_levels,
    combine_energy,
    compute_base_field,
    compute_noise_grid,
    facade_elements_by_segment,
    re_prime_by_segment,
    resolve_levels,
    supplied_levels,
)
from facade_noise.propagation import a_geo
from facade_noise.types import Segment


LOUD = {"segment-0": 95.0}


def cell(grid, x, z):
    return grid.z[grid.y.index(z)][grid.x.index(x)]


def test_grid_axes_from_resolution():
    xs, ys = build_grid_axes(10.0, resolution=5)
    assert xs.tolist() == pytest.approx([-5.0, -2.5, 0.0, 2.5, 5.0])
    np.testing.assert_array_equal(xs, ys)


def test_grid_axes_from_cell_size():
    xs, _ = build_grid_axes(10.0, resolution=5, cell_size=1.0)
    assert len(xs) == 11
    assert xs[0] == pytest.approx(-5.0)
    assert xs[-1] == pytest.approx(5.0)


def test_grid_axes_minimum_three_samples():
    assert len(build_grid_axes(10.0, resolution=1)[0]) == 3
    assert len(build_grid_axes(10.0, cell_size=50.0)[0]) == 3


@pytest.mark.parametrize("perimeter", [[], [(0.0, 0.0), (1.0, 0.0)]])
def test_short_perimeter_gives_empty_grid(perimeter):
    grid = compute_noise_grid(perimeter, [], LOUD)
    assert grid.x == [] and grid.y == [] and grid.z == [[]]
    assert math.isnan(grid.min) and math.isnan(grid.max)
    assert json.loads(grid.to_json())["min"] is None


def test_base_field_matches_closed_form(single_segment):
    """Single 10 m facade, Lw 80 dB, 0.5 dB/m extra loss, no directivity terms."""
    physical = PhysicalParams(df_room=0.0, df_out=0.0, db_per_meter=0.5)
    facades = facade_elements_by_segment([single_segment], 10.0, physical)
    re_prime = re_prime_by_segment(facades, physical.default_r_db)
    distances = [1.0, 2.0, 4.0, 8.0]

    field = compute_base_field(
        np.array([0.0]), np.array(distances), [single_segment],
        {"facade": 80.0}, re_prime, physical
    )
    levels = field[:, 0]

    assert np.all(np.diff(levels) < 0)
    for level, r in zip(levels, distances):
        expected = 80.0 - re_prime["facade"] - a_geo(r) - 0.5 * r
        assert level == pytest.approx(expected, abs=0.5)


def test_base_field_masks_interior(l_perimeter):
    polygon = perimeter_polygon(l_perimeter)
    segs = [Segment(f"s{k}", l_perimeter[k], l_perimeter[(k + 1) % 6]) for k in range(6)]
    xs = np.linspace(-10, 10, 11)
    lw = {s.name: 70.0 for s in segs}
    re = {s.name: 30.0 for s in segs}
    field = compute_base_field(xs, xs, segs, lw, re, polygon=polygon)
    inside = interior_mask(polygon, xs, xs)
    assert np.isnan(field[inside]).all()
    assert np.isfinite(field[~inside]).all()


def test_base_field_without_segments_is_empty():
    field = compute_base_field(np.zeros(3), np.zeros(2), [], {}, {})
    assert field.shape == (2, 3)
    assert np.isnan(field).all()


def test_base_levels_fallbacks(single_segment):
    physical = PhysicalParams(lp_in_map={"facade": 70.0})
    facades = facade_elements_by_segment([single_segment], 10.0, physical)
    # Facade area 10 m x 10 m = 100 m2
    assert base_levels([single_segment], {}, facades, physical)["facade"] == pytest.approx(90.0)
    assert base_levels([single_segment], {"facade": 75.0}, facades, physical)["facade"] == 75.0
    assert base_levels([single_segment], {"facade": float("nan")}, facades, PhysicalParams())["facade"] == 60.0


def test_explicit_facade_elements_take_precedence(single_segment):
    physical = PhysicalParams(facade_elements={"facade": [{"area": 10.0, "R": 20.0}]})
    facades = facade_elements_by_segment([single_segment], 10.0, physical)
    assert re_prime_by_segment(facades, 30.0)["facade"] == pytest.approx(20.0)


def test_combine_energy():
    base = np.array([[60.0, np.nan, np.nan]])
    overlay = np.array([[1e6, 1e3, 0.0]])
    combined = combine_energy(base, overlay)
    assert combined[0, 0] == pytest.approx(10 * math.log10(2e6))
    assert combined[0, 1] == pytest.approx(30.0)
    assert np.isnan(combined[0, 2])


def test_cap_levels():
    values = np.array([[50.0, 120.0, np.nan]])
    capped = cap_levels(values, [90.0, float("nan"), 10.0])
    assert capped[0, :2].tolist() == [50.0, 90.0]
    assert np.isnan(capped[0, 2])
    np.testing.assert_array_equal(cap_levels(values, []), values)


def test_interior_cells_are_null(l_perimeter, small_config):
    grid = compute_noise_grid(l_perimeter, None, {"segment-0": 100.0, "segment-3": 100.0}, small_config)
    polygon = perimeter_polygon(l_perimeter)
    inside = interior_mask(polygon, np.array(grid.x), np.array(grid.y))
    assert inside.any()
    for j, i in zip(*np.nonzero(inside)):
        assert grid.z[j][i] is None


def test_output_is_capped_and_json_safe(l_perimeter, small_config):
    grid = compute_noise_grid(l_perimeter, None, LOUD, small_config)
    values = [v for row in grid.z for v in row if v is not None]
    assert values
    assert all(math.isfinite(v) for v in values)
    assert max(values) <= 95.0
    assert grid.max <= 95.0
    assert grid.min == pytest.approx(min(values))

    payload = json.loads(grid.to_json())
    assert set(payload) == {"x", "y", "z", "min", "max", "poly"}
    assert len(payload["z"]) == len(grid.y)
    assert all(len(row) == len(grid.x) for row in payload["z"])
    assert payload["poly"] == [list(p) for p in l_perimeter]


def test_loud_facade_dominates(l_perimeter, small_config):
    grid = compute_noise_grid(l_perimeter, None, LOUD, small_config)
    # Two metres in front of the loud bottom facade vs. the silent left one
    assert cell(grid, 0.0, -10.0) > cell(grid, -10.0, 0.0) + 10.0
    # And louder close to it than far from it
    assert cell(grid, 0.0, -10.0) > cell(grid, 0.0, -19.0)


def test_field_without_levels_uses_fallback(l_perimeter, small_config):
    grid = compute_noise_grid(l_perimeter, None, None, small_config)
    values = [v for row in grid.z for v in row if v is not None]
    assert values
    assert grid.max < 60.0


def test_computation_is_idempotent_and_pure(l_perimeter, small_config):
    lw_map = dict(LOUD)
    perimeter = copy.deepcopy(l_perimeter)
    first = compute_noise_grid(perimeter, None, lw_map, small_config).to_json()
    second = compute_noise_grid(perimeter, None, lw_map, small_config).to_json()
    assert first == second
    assert lw_map == LOUD
    assert perimeter == l_perimeter


def test_hot_spot_pass_can_be_disabled(l_perimeter, small_config):
    config = small_config.with_overrides({"hotspot": {"enabled": False}})
    with_hot = compute_noise_grid(l_perimeter, None, LOUD, small_config)
    without_hot = compute_noise_grid(l_perimeter, None, LOUD, config)
    assert cell(without_hot, 0.0, -10.0) <= cell(with_hot, 0.0, -10.0) + 1e-9


def test_debug_emission(l_perimeter, small_config):
    records = []
    config = small_config.with_overrides({"debug_emit": True})
    grid = compute_noise_grid(l_perimeter, None, LOUD, config, debug_hook=records.append)
    assert grid.emit_points
    assert len(grid.emit_points) == len(records)
    kinds = {r["kind"] for r in grid.emit_points}
    assert kinds == {"normal", "sample"}
    # Only the loud facade emits
    assert {r["segment"] for r in grid.emit_points} == {"segment-0"}

    assert compute_noise_grid(l_perimeter, None, LOUD, small_config).emit_points is None


def test_verbose_progress(l_perimeter, small_config, capsys):
    compute_noise_grid(l_perimeter, None, LOUD, small_config, verbose=True)
    out = capsys.readouterr().out
    assert "Noise Field Pipeline" in out
    assert "Pipeline complete" in out


def test_build_heatmap_assigns_levels_by_edge(l_perimeter, small_config):
    grid = build_heatmap(l_perimeter, [0.0, 0.0, 0.0, 90.0, 0.0, 0.0], small_config)
    assert grid.max <= 90.0
    # segment-3 is the inner facade facing +x into the notch
    assert cell(grid, 2.0, 4.0) > cell(grid, -10.0, 4.0)


def test_build_heatmap_short_perimeter():
    grid = build_heatmap([(0.0, 0.0)], [80.0])
    assert grid.x == []


def test_compass_key_matches_named_level(l_perimeter, small_config):
    by_name = compute_noise_grid(l_perimeter, None, {"segment-0": 95.0}, small_config)
    by_compass = compute_noise_grid(l_perimeter, None, {"south": 95.0}, small_config)
    assert by_compass.to_json() == by_name.to_json()


def test_resolve_levels_prefers_name_over_compass_key(l_perimeter):
    polygon = perimeter_polygon(l_perimeter)
    segs = [Segment(f"segment-{k}", l_perimeter[k], l_perimeter[(k + 1) % 6]) for k in range(6)]
    levels = resolve_levels(segs, {"south": 80.0, "north": 70.0, "segment-2": 50.0}, polygon, (0.0, 0.0))
    assert levels["segment-0"] == 80.0
    assert levels["segment-2"] == 50.0
    assert levels["segment-4"] == 70.0
    # No east/west entries
    assert "segment-1" not in levels and "segment-5" not in levels
    assert resolve_levels(segs, None, polygon) == {}


def test_numpy_levels_are_accepted(single_segment):
    segs = [single_segment]
    assert supplied_levels({"facade": np.int64(90)}, segs) == {"facade": 90.0}
    assert supplied_levels({"facade": np.float32(90.0)}, segs) == {"facade": 90.0}
    assert supplied_levels({"facade": True}, segs) == {}

    capped = cap_levels(np.array([[120.0]]), [np.float32(90.0), True])
    assert capped[0, 0] == 90.0

    physical = PhysicalParams(lp_in_map={"facade": np.int64(70)})
    facades = facade_elements_by_segment(segs, 10.0, physical)
    assert base_levels(segs, {}, facades, physical)["facade"] == pytest.approx(90.0)


def test_numpy_level_map_matches_float_map(l_perimeter, small_config):
    plain = compute_noise_grid(l_perimeter, None, {"segment-0": 95.0}, small_config)
    typed = compute_noise_grid(l_perimeter, None, {"segment-0": np.int64(95)}, small_config)
    assert typed.to_json() == plain.to_json()


def test_facade_elements_use_r_map_and_explicit_lists():
    segs = [Segment("a", (0.0, 0.0), (4.0, 0.0)), Segment("b", (4.0, 0.0), (4.0, 2.0))]
    physical = PhysicalParams(
        r_map={"a": 40.0},
        facade_elements={"b": [{"area": 3.0, "R": 25.0}]}
    )
    facades = facade_elements_by_segment(segs, 10.0, physical)
    assert facades["a"][0].R == 40.0
    assert facades["a"][0].area == pytest.approx(40.0)
    assert [e.R for e in facades["b"]] == [25.0]
