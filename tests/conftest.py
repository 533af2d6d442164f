from __future__ import annotations

import json
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest
import yaml
from shapely.geometry import LineString, Point, box, mapping

from ntmflow.demand.profiles import DepartureTimeProfile
from ntmflow.demand.trip_demand import TripDemand
from ntmflow.network.data_source import NetworkData
from ntmflow.network.domain_types import Area, Link, Node, TrafficBehaviourType


def make_link(
    link_id: str,
    nodes: Dict[str, Node],
    start: str,
    end: str,
    *,
    speed: float = 50.0,
    capacity: Optional[float] = 1500.0,
    behaviour: TrafficBehaviourType = TrafficBehaviourType.ROAD,
) -> Link:
    a, b = nodes[start], nodes[end]
    return Link(
        id=link_id,
        start_node_id=start,
        end_node_id=end,
        length_km=a.distance_to(b) / 1000.0,
        free_speed_kmh=speed,
        capacity_vph=capacity,
        behaviour_type=behaviour,
        geometry=LineString([a.point, b.point]),
    )


def two_area_network(
    *, corridor_capacity: Optional[float] = 1800.0, trips: float = 100.0
) -> NetworkData:
    """Areas A and B sharing the border x=1000, joined by one road link."""
    areas = [
        Area(
            id="A",
            geometry=box(0, 0, 1000, 1000),
            centroid_node_id="cA",
            free_speed_kmh=50.0,
            road_length_km=5.0,
            capacity_vph=2000.0,
        ),
        Area(
            id="B",
            geometry=box(1000, 0, 2000, 1000),
            centroid_node_id="cB",
            free_speed_kmh=50.0,
            road_length_km=5.0,
            capacity_vph=1500.0,
        ),
    ]
    centroids = {
        "cA": Node("cA", Point(500, 500), TrafficBehaviourType.CENTROID),
        "cB": Node("cB", Point(1500, 500), TrafficBehaviourType.CENTROID),
    }
    nodes = {
        "n1": Node("n1", Point(900, 500)),
        "n2": Node("n2", Point(1100, 500)),
    }
    every = {**nodes, **centroids}
    links = [
        make_link("cA-n1", every, "cA", "n1", capacity=2000.0),
        make_link("n1-n2", every, "n1", "n2", capacity=corridor_capacity),
        make_link("n2-cB", every, "n2", "cB", capacity=2000.0),
    ]
    demand = TripDemand()
    if trips:
        demand.add("A", "B", trips)
    return NetworkData(areas=areas, nodes=nodes, links=links, centroids=centroids, trip_demand=demand)


def highway_network(trips: float = 50.0) -> NetworkData:
    """Two separated areas joined only by a highway link between h1 and h2."""
    areas = [
        Area(id="A", geometry=box(0, 0, 1000, 1000), centroid_node_id="cA",
             free_speed_kmh=50.0, road_length_km=5.0, capacity_vph=2000.0),
        Area(id="B", geometry=box(3000, 0, 4000, 1000), centroid_node_id="cB",
             free_speed_kmh=50.0, road_length_km=5.0, capacity_vph=2000.0),
    ]
    centroids = {
        "cA": Node("cA", Point(500, 500), TrafficBehaviourType.CENTROID),
        "cB": Node("cB", Point(3500, 500), TrafficBehaviourType.CENTROID),
    }
    nodes = {
        "h1": Node("h1", Point(1200, 500)),
        "h2": Node("h2", Point(2800, 500)),
    }
    every = {**nodes, **centroids}
    links = [
        make_link("cA-h1", every, "cA", "h1"),
        make_link("h1-h2", every, "h1", "h2", speed=100.0, capacity=4000.0),
        make_link("h2-cB", every, "h2", "cB"),
    ]
    demand = TripDemand()
    demand.add("A", "B", trips)
    return NetworkData(areas=areas, nodes=nodes, links=links, centroids=centroids, trip_demand=demand)


def three_area_network(
    *, bottleneck_capacity: float = 100.0, trips: float = 1500.0, spread_seconds: Optional[float] = None
) -> NetworkData:
    """Areas A, B and C in a row; A and C only meet through B, and C drains slowly."""
    areas = [
        Area(id=area_id, geometry=box(x, 0, x + 1000, 1000), centroid_node_id=f"c{area_id}",
             free_speed_kmh=50.0, road_length_km=5.0, capacity_vph=capacity)
        for area_id, x, capacity in [("A", 0, 2000.0), ("B", 1000, 2000.0), ("C", 2000, bottleneck_capacity)]
    ]
    centroids = {
        f"c{area_id}": Node(f"c{area_id}", Point(x, 500), TrafficBehaviourType.CENTROID)
        for area_id, x in [("A", 500), ("B", 1500), ("C", 2500)]
    }
    nodes = {
        node_id: Node(node_id, Point(x, 500))
        for node_id, x in [("n1", 900), ("n2", 1100), ("n3", 1900), ("n4", 2100)]
    }
    every = {**nodes, **centroids}
    links = [
        make_link("cA-n1", every, "cA", "n1", capacity=2000.0),
        make_link("n1-n2", every, "n1", "n2", capacity=5000.0),
        make_link("n2-cB", every, "n2", "cB", capacity=2000.0),
        make_link("cB-n3", every, "cB", "n3", capacity=2000.0),
        make_link("n3-n4", every, "n3", "n4", capacity=5000.0),
        make_link("n4-cC", every, "n4", "cC", capacity=2000.0),
    ]
    demand = TripDemand()
    profiles: Dict[str, DepartureTimeProfile] = {}
    if spread_seconds is None:
        demand.add("A", "C", trips)
    else:
        profiles["spread"] = DepartureTimeProfile.uniform("spread", spread_seconds)
        demand.add("A", "C", trips, "spread")
    return NetworkData(
        areas=areas, nodes=nodes, links=links, centroids=centroids, trip_demand=demand, profiles=profiles
    )


def _feature(geometry: Dict[str, object], **properties: object) -> Dict[str, object]:
    return {"type": "Feature", "geometry": geometry, "properties": properties}


def _collection(features: List[Dict[str, object]]) -> Dict[str, object]:
    return {"type": "FeatureCollection", "features": features}


def write_geojson_scenario(directory: Path, trips: float = 100.0) -> Path:
    """Write the two-area network as GeoJSON layers plus demand and scenario YAML."""
    areas = _collection(
        [
            _feature(mapping(box(0, 0, 1000, 1000)), id="A", centroid="cA", free_speed=50, road_length=5, capacity=2000),
            _feature(mapping(box(1000, 0, 2000, 1000)), id="B", centroid="cB", free_speed=50, road_length=5, capacity=1500),
        ]
    )
    points = {"cA": (500, 500), "cB": (1500, 500), "n1": (900, 500), "n2": (1100, 500)}
    nodes = _collection(
        [
            _feature(mapping(Point(*xy)), id=node_id, centroid=node_id.startswith("c"))
            for node_id, xy in points.items()
        ]
    )
    links = _collection(
        [
            _feature(mapping(LineString([points[a], points[b]])), id=f"{a}-{b}", start=a, end=b,
                     free_speed=50, capacity=capacity)
            for a, b, capacity in [("cA", "n1", 2000), ("n1", "n2", 1800), ("n2", "cB", 2000)]
        ]
    )
    for name, payload in (("areas", areas), ("nodes", nodes), ("links", links)):
        (directory / f"{name}.geojson").write_text(json.dumps(payload), encoding="utf-8")
    demand = {"trips": [{"origin": "A", "destination": "B", "trips": trips}]}
    (directory / "demand.yaml").write_text(yaml.safe_dump(demand), encoding="utf-8")
    scenario = {
        "network": {
            "areas": "areas.geojson",
            "nodes": "nodes.geojson",
            "links": "links.geojson",
            "demand": "demand.yaml",
        },
        "simulation": {"time_step_seconds": 10, "duration_seconds": 600, "start_time": "07:00"},
    }
    scenario_path = directory / "scenario.yaml"
    scenario_path.write_text(yaml.safe_dump(scenario), encoding="utf-8")
    return scenario_path


def write_big_areas(directory: Path) -> Path:
    """Big areas W and E covering areas A and B of the two-area network."""
    big_areas = _collection(
        [
            _feature(mapping(box(0, 0, 1000, 1000)), id="W", free_speed=50, road_length=5, capacity=2000),
            _feature(mapping(box(1000, 0, 2000, 1000)), id="E", free_speed=50, road_length=5, capacity=1500),
        ]
    )
    path = directory / "big_areas.geojson"
    path.write_text(json.dumps(big_areas), encoding="utf-8")
    return path


@pytest.fixture
def two_areas() -> Callable[..., NetworkData]:
    return two_area_network


@pytest.fixture
def three_areas() -> Callable[..., NetworkData]:
    return three_area_network


@pytest.fixture
def highway() -> Callable[..., NetworkData]:
    return highway_network


@pytest.fixture
def geojson_scenario(tmp_path) -> Path:
    return write_geojson_scenario(tmp_path)


@pytest.fixture
def big_areas_layer() -> Callable[[Path], Path]:
    return write_big_areas
