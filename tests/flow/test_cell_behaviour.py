from __future__ import annotations

import math

import pytest

from ntmflow.flow.cell_behaviour import BehaviourKind, CellBehaviour, TripInfoByDestination
from ntmflow.flow.fundamental_diagram import FundamentalDiagram
from ntmflow.network.domain_types import TrafficBehaviourType


def _ntm(**kwargs) -> CellBehaviour:
    fd = FundamentalDiagram.from_area(free_speed_kmh=50.0, road_length_km=5.0, capacity_vph=2000.0)
    return CellBehaviour(kind=BehaviourKind.NTM, parameters=fd, **kwargs)


@pytest.mark.parametrize(
    "tag, kind",
    [
        (TrafficBehaviourType.NTM, BehaviourKind.NTM),
        (TrafficBehaviourType.ROAD, BehaviourKind.NTM),
        (TrafficBehaviourType.FLOW, BehaviourKind.FLOW),
        (TrafficBehaviourType.CORDON, BehaviourKind.CORDON),
        ("cordon", BehaviourKind.CORDON),
    ],
)
def test_variant_follows_behaviour_tag(tag, kind):
    assert CellBehaviour.for_behaviour_type(tag).kind is kind


def test_unknown_tag_raises():
    with pytest.raises(ValueError):
        CellBehaviour.for_behaviour_type("TRAIN")


def test_supply_is_capacity_until_first_threshold():
    behaviour = _ntm()

    assert behaviour.supply(0.0) == pytest.approx(2000.0)
    assert behaviour.supply(199.0) == pytest.approx(2000.0)


def test_supply_is_clamped_from_below_until_jam():
    behaviour = _ntm()

    assert behaviour.supply(700.0) == pytest.approx(2000.0 * 50.0 / 430.0)
    assert behaviour.supply(740.0) == pytest.approx(200.0)
    assert behaviour.supply(750.0) == 0.0
    assert behaviour.supply(800.0) == 0.0


def test_demand_is_raw_production():
    behaviour = _ntm()

    assert behaviour.demand(0.0) == 0.0
    assert behaviour.demand(100.0) == pytest.approx(1000.0)
    assert behaviour.demand(740.0) == pytest.approx(2000.0 * 10.0 / 430.0)


def test_speed_drops_only_when_congested():
    behaviour = _ntm()

    assert behaviour.current_speed(0.0) == pytest.approx(50.0)
    assert behaviour.current_speed(150.0) == pytest.approx(50.0)
    assert behaviour.current_speed(250.0) == pytest.approx(40.0)
    assert behaviour.current_speed(400.0) == pytest.approx((2000.0 * 350.0 / 430.0) / 80.0)


def test_sending_capacity_is_bounded_by_accumulation():
    behaviour = _ntm()

    assert behaviour.sending_capacity(10.0, 100.0) == pytest.approx(1000.0 * 10.0 / 3600.0)
    assert behaviour.sending_capacity(10.0, 0.0) == 0.0
    assert behaviour.sending_capacity(3600.0, 100.0) == pytest.approx(100.0)


def test_cordon_sends_its_reservoir_and_has_no_demand():
    cordon = CellBehaviour(kind=BehaviourKind.CORDON, cordon_supply_cap_vph=500.0)

    assert cordon.demand(40.0) == 0.0
    assert cordon.sending_capacity(10.0, 40.0) == pytest.approx(40.0)
    assert cordon.supply(0.0) == pytest.approx(500.0)
    assert CellBehaviour(kind=BehaviourKind.CORDON).supply() == math.inf


def test_receiving_capacity_is_supply_until_room_runs_out():
    behaviour = _ntm()

    assert behaviour.room(100.0) == pytest.approx(607.0)
    assert behaviour.receiving_capacity(10.0, 100.0) == pytest.approx(2000.0 * 10.0 / 3600.0)
    assert behaviour.receiving_capacity(3600.0, 706.0) == pytest.approx(1.0)
    assert behaviour.receiving_capacity(10.0, 707.0) == 0.0


def test_unit_past_the_limit_has_no_room_but_keeps_sending():
    behaviour = _ntm()

    assert behaviour.room(749.9) == 0.0
    assert behaviour.receiving_capacity(10.0, 749.9) == 0.0
    assert behaviour.sending_capacity(10.0, 707.0) == pytest.approx(200.0 * 10.0 / 3600.0)


def test_cordon_room_is_unbounded():
    cordon = CellBehaviour(kind=BehaviourKind.CORDON, cordon_supply_cap_vph=500.0)

    assert cordon.room(1e6) == math.inf
    assert cordon.receiving_capacity(36.0, 1e6) == pytest.approx(5.0)


def test_missing_parameters_raise():
    with pytest.raises(RuntimeError):
        CellBehaviour(kind=BehaviourKind.NTM).supply(1.0)


def test_trip_bookkeeping_keeps_totals_consistent():
    behaviour = _ntm()
    behaviour.add_trips("B", 30.0)
    behaviour.add_trips("C", 10.0)
    behaviour.remove_trips("B", 30.0 - 1e-13)

    assert behaviour.trips["B"].accumulated == 0.0
    assert behaviour.accumulation == pytest.approx(10.0)
    assert behaviour.destination_share("C") == pytest.approx(1.0)
    assert behaviour.destination_share("missing") == 0.0


def test_empty_unit_has_zero_destination_share():
    behaviour = _ntm()
    behaviour.trip_info("B")

    assert behaviour.destination_share("B") == 0.0


def test_trip_info_shares_fall_back_to_neighbour():
    info = TripInfoByDestination(destination="D", neighbour="B")
    assert info.shares() == {"B": 1.0}

    info.route_shares = {"B": 0.5, "C": 0.5}
    assert info.shares() == {"B": 0.5, "C": 0.5}
    assert TripInfoByDestination(destination="D").shares() == {}
