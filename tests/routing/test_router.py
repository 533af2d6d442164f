from __future__ import annotations

import math

import networkx as nx
import pytest
from shapely.geometry import Point

from ntmflow.network.domain_types import BoundedNode, TrafficBehaviourType
from ntmflow.network.graph_builder import AREA_EDGE, BuildDiagnostics, NetworkGraphs, build
from ntmflow.network.preprocessing import classify_flow_links
from ntmflow.routing import Router


def _diamond() -> NetworkGraphs:
    """A -> B -> D and A -> C -> D with equal lengths, plus a short cut B -> C."""
    graph = nx.DiGraph()
    vertices = {}
    for i, name in enumerate("ABCD"):
        vertices[name] = BoundedNode(id=name, point=Point(i, 0), behaviour_type=TrafficBehaviourType.NTM, area_id=name)
        graph.add_node(name)
    for start, end, weight in [("A", "B", 1.0), ("B", "D", 3.0), ("A", "C", 2.0), ("C", "D", 1.0), ("B", "C", 1.0)]:
        graph.add_edge(start, end, weight=weight, kind=AREA_EDGE, link=None)
    return NetworkGraphs(
        link_graph=nx.DiGraph(),
        area_graph=graph,
        link_vertices={},
        area_vertices=vertices,
        chains={},
        centroid_by_area={name: name for name in vertices},
        touching={},
        diagnostics=BuildDiagnostics(),
    )


def test_distances_to_destination():
    router = Router(_diamond())
    router.compute()

    assert router.distance("A", "D") == pytest.approx(3.0)
    assert router.distance("B", "D") == pytest.approx(2.0)
    assert router.distance("C", "D") == pytest.approx(1.0)
    assert router.distance("D", "D") == 0.0
    assert router.distance("D", "A") == math.inf


def test_tied_successors_share_equally():
    router = Router(_diamond())
    router.compute()

    assert router.route_shares("A", "D") == {"B": 0.5, "C": 0.5}
    assert router.next_hop("A", "D") == "B"
    assert router.next_hop("B", "D") == "C"
    assert router.route_shares("B", "D") == {"C": 1.0}
    assert router.path("A", "D") == ["A", "B", "C", "D"]


def test_next_hop_lies_on_shortest_path():
    graphs = _diamond()
    router = Router(graphs)
    router.compute()

    for destination in graphs.destinations():
        for start, end, data in graphs.area_graph.edges(data=True):
            if router.distance(end, destination) < math.inf:
                assert router.distance(start, destination) <= data["weight"] + router.distance(end, destination) + 1e-12
        for origin in graphs.area_vertices:
            hop = router.next_hop(origin, destination)
            if hop is not None:
                weight = graphs.area_graph.edges[origin, hop]["weight"]
                assert router.distance(origin, destination) == pytest.approx(weight + router.distance(hop, destination))


def test_unreachable_pairs_are_reported():
    router = Router(_diamond())
    router.compute()

    assert not router.has_route("D", "A")
    assert router.has_route("A", "A")
    assert router.next_hop("D", "A") is None
    assert router.path("D", "A") == []
    assert ("D", "A") in router.unreachable_pairs()
    assert ("A", "D") not in router.unreachable_pairs()


def test_reweight_changes_routes():
    graphs = _diamond()
    router = Router(graphs)
    router.compute()

    router.reweight({("A", "C"): 0.5})
    router.compute()

    assert router.route_shares("A", "D") == {"C": 1.0}
    assert graphs.area_vertices["A"].behaviour.trip_info("D").neighbour == "C"


def test_reweight_rejects_bad_input():
    router = Router(_diamond())

    with pytest.raises(KeyError):
        router.reweight({("A", "D"): 1.0})
    with pytest.raises(ValueError):
        router.reweight({("A", "B"): -1.0})


def test_routes_are_propagated_into_flow_cells(highway):
    network = highway()
    classify_flow_links(network.links, network.nodes)
    graphs = build(network.areas, network.nodes, network.links, network.centroids)
    router = Router(graphs)

    router.compute()

    assert router.path("cA", "cB") == ["cA", "h1", "h2", "cB"]
    chain = graphs.chains[("h1", "h2")]
    assert chain.head.behaviour.trip_info("cB").neighbour == "h1-h2/1"
    assert chain.tail.behaviour.trip_info("cB").neighbour == "h2"
    assert chain.tail.behaviour.trip_info("cB").shares() == {"h2": 1.0}
    assert ("cB", "cA") in router.unreachable_pairs()
