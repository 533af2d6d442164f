from __future__ import annotations

import math

import pytest

from ntmflow.flow.fundamental_diagram import FundamentalDiagram


def _area_diagram() -> FundamentalDiagram:
    return FundamentalDiagram.from_area(free_speed_kmh=50.0, road_length_km=5.0, capacity_vph=2000.0)


def test_from_area_derives_thresholds_from_capacity():
    fd = _area_diagram()

    assert fd.critical_1 == pytest.approx(200.0)
    assert fd.critical_2 == pytest.approx(320.0)
    assert fd.jam == pytest.approx(750.0)
    assert fd.breakpoints == (0.0, fd.critical_1, fd.critical_2, fd.jam)


@pytest.mark.parametrize(
    "accumulation, expected",
    [
        (-1.0, 0.0),
        (0.0, 0.0),
        (100.0, 1000.0),
        (200.0, 2000.0),
        (260.0, 2000.0),
        (320.0, 2000.0),
        (535.0, 1000.0),
        (750.0, 0.0),
        (900.0, 0.0),
    ],
)
def test_production_is_piecewise_linear(accumulation, expected):
    assert _area_diagram().production(accumulation) == pytest.approx(expected)


def test_production_is_continuous_at_breakpoints():
    fd = _area_diagram()
    for point in fd.breakpoints[1:]:
        below = fd.production(point - 1e-9)
        above = fd.production(point + 1e-9)
        assert below == pytest.approx(above, abs=1e-4)


def test_explicit_thresholds_take_precedence():
    fd = FundamentalDiagram.from_area(
        free_speed_kmh=40.0,
        road_length_km=2.0,
        accumulation_thresholds=[50.0, 80.0, 300.0],
    )

    assert (fd.critical_1, fd.critical_2, fd.jam) == (50.0, 80.0, 300.0)
    # capacity keeps speed continuous at the first threshold
    assert fd.capacity_vph == pytest.approx(40.0 * 50.0 / 2.0)


def test_from_area_without_capacity_uses_critical_density():
    fd = FundamentalDiagram.from_area(free_speed_kmh=30.0, road_length_km=4.0, critical_density=25.0)

    assert fd.critical_1 == pytest.approx(100.0)
    assert fd.capacity_vph == pytest.approx(750.0)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"critical_1": 10.0, "critical_2": 5.0, "jam": 20.0},
        {"critical_1": 0.0, "critical_2": 5.0, "jam": 20.0},
        {"critical_1": 5.0, "critical_2": 20.0, "jam": 20.0},
    ],
)
def test_invalid_thresholds_raise(kwargs):
    with pytest.raises(ValueError):
        FundamentalDiagram(capacity_vph=1000.0, free_speed_kmh=50.0, road_length_km=1.0, **kwargs)


def test_non_positive_capacity_raises():
    with pytest.raises(ValueError, match="capacity"):
        FundamentalDiagram(10.0, 20.0, 30.0, 0.0, 50.0, 1.0)


def test_flow_link_diagram_is_triangular():
    fd = FundamentalDiagram.for_flow_link(
        capacity_vph=3600.0, free_speed_kmh=100.0, lanes=2, cell_length_km=0.25
    )

    assert fd.critical_1 == fd.critical_2 == pytest.approx(9.0)
    assert fd.jam == pytest.approx(75.0)


def test_point_queue_never_jams():
    fd = FundamentalDiagram.point_queue(capacity_vph=3600.0, free_speed_kmh=100.0, time_step_seconds=10.0)

    assert math.isinf(fd.jam)
    assert fd.critical_1 == pytest.approx(10.0)
    assert fd.production(1e6) == pytest.approx(3600.0)


def test_accumulation_limit_sits_where_production_meets_the_floor():
    fd = _area_diagram()

    limit = fd.accumulation_limit(0.1)

    assert limit == pytest.approx(707.0)
    assert fd.production(limit) == pytest.approx(200.0)
    assert fd.accumulation_limit(0.0) == pytest.approx(fd.jam)


def test_point_queue_has_no_accumulation_limit():
    fd = FundamentalDiagram.point_queue(capacity_vph=3600.0, free_speed_kmh=100.0, time_step_seconds=10.0)

    assert math.isinf(fd.accumulation_limit(0.1))
