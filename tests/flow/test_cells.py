from __future__ import annotations

import pytest

from ntmflow.flow.cell_behaviour import BehaviourKind
from ntmflow.flow.cells import CellChain, create_cells
from ntmflow.network.domain_types import Link, TrafficBehaviourType


def _flow_link(length_km: float, capacity_vph=4000.0) -> Link:
    return Link(
        id="H1",
        start_node_id="a",
        end_node_id="b",
        length_km=length_km,
        free_speed_kmh=100.0,
        capacity_vph=capacity_vph,
        behaviour_type=TrafficBehaviourType.FLOW,
    )


def test_cells_cover_the_link_length():
    cells = create_cells(_flow_link(1.0), 10.0)
    nominal = 100.0 * 10.0 / 3600.0

    assert [cell.id for cell in cells] == ["H1/0", "H1/1", "H1/2", "H1/3"]
    assert [cell.index for cell in cells] == [0, 1, 2, 3]
    assert cells[0].length_km == pytest.approx(nominal)
    assert cells[-1].length_km == pytest.approx(1.0 - 3 * nominal)
    assert sum(cell.length_km for cell in cells) == pytest.approx(1.0)
    assert all(cell.behaviour.kind is BehaviourKind.FLOW for cell in cells)


def test_short_link_gets_one_cell():
    cells = create_cells(_flow_link(0.05), 10.0)

    assert len(cells) == 1
    assert cells[0].length_km == pytest.approx(0.05)


def test_cell_parameters_follow_link():
    cells = create_cells(_flow_link(1.0), 10.0, jam_density=120.0)
    params = cells[0].behaviour.parameters

    assert params.capacity_vph == pytest.approx(4000.0)
    assert params.free_speed_kmh == pytest.approx(100.0)
    assert params.jam == pytest.approx(120.0 * 2 * cells[0].length_km)


def test_cells_require_capacity():
    with pytest.raises(ValueError):
        create_cells(_flow_link(1.0, capacity_vph=None), 10.0)


def test_chain_next_unit_ends_at_end_vertex():
    link = _flow_link(1.0)
    chain = CellChain(link=link, start_vertex="a", end_vertex="b", cells=create_cells(link, 10.0))

    assert len(chain) == 4
    assert chain.head.id == "H1/0"
    assert chain.next_unit(0) == "H1/1"
    assert chain.next_unit(3) == "b"
