"""Loading network data from GeoJSON layers."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd
from shapely.geometry import LineString, Point, shape

from ntmflow.demand.profiles import DepartureTimeProfile
from ntmflow.demand.trip_demand import TripDemand, demand_from_yaml

from .domain_types import Area, Link, Node, TrafficBehaviourType

logger = logging.getLogger(__name__)


@dataclass
class NetworkData:
    """Already-parsed network and demand handed to the model."""

    areas: List[Area]
    nodes: Dict[str, Node]
    links: List[Link]
    centroids: Dict[str, Node] = field(default_factory=dict)
    trip_demand: TripDemand = field(default_factory=TripDemand)
    profiles: Dict[str, DepartureTimeProfile] = field(default_factory=dict)
    big_areas: List[Area] = field(default_factory=list)

    @classmethod
    def from_geojson(
        cls,
        areas_path: str | Path,
        nodes_path: str | Path,
        links_path: str | Path,
        demand_path: Optional[str | Path] = None,
        big_areas_path: Optional[str | Path] = None,
    ) -> "NetworkData":
        """Read area polygons, nodes and links from GeoJSON feature collections.

        Nodes flagged with ``centroid: true`` (or tagged CENTROID) are the area
        centroids. Coordinates must be in a metric projection. The optional big
        areas layer uses the same properties as the areas layer and turns on
        area compression in the model.
        """
        areas = [_area_from_row(row) for row in _load_geojson_dataframe(areas_path, "id").itertuples(index=False)]
        nodes: Dict[str, Node] = {}
        centroids: Dict[str, Node] = {}
        for row in _load_geojson_dataframe(nodes_path, "id").itertuples(index=False):
            node_id = str(getattr(row, "id"))
            geometry = getattr(row, "geometry")
            if not isinstance(geometry, Point):
                raise ValueError(f"Node {node_id} must have a Point geometry")
            behaviour = TrafficBehaviourType.parse(_value(row, "behaviour_type") or "ROAD")
            node = Node(id=node_id, point=geometry, behaviour_type=behaviour)
            if bool(_value(row, "centroid")) or behaviour is TrafficBehaviourType.CENTROID:
                centroids[node_id] = node
            else:
                nodes[node_id] = node

        big_areas: List[Area] = []
        if big_areas_path is not None:
            big_areas = [
                _area_from_row(row) for row in _load_geojson_dataframe(big_areas_path, "id").itertuples(index=False)
            ]

        links: List[Link] = []
        for row in _load_geojson_dataframe(links_path, "id").itertuples(index=False):
            links.append(_link_from_row(row, nodes, centroids))

        demand = TripDemand()
        profiles: Dict[str, DepartureTimeProfile] = {}
        if demand_path is not None:
            demand, profiles = demand_from_yaml(demand_path)
        logger.info(
            "Loaded %d areas, %d nodes, %d centroids and %d links",
            len(areas),
            len(nodes),
            len(centroids),
            len(links),
        )
        return cls(
            areas=areas,
            nodes=nodes,
            links=links,
            centroids=centroids,
            trip_demand=demand,
            profiles=profiles,
            big_areas=big_areas,
        )


def _load_geojson_dataframe(path: str | Path, id_column: str) -> pd.DataFrame:
    """Read a GeoJSON file into a pandas DataFrame with shapely geometries."""
    geojson_path = Path(path)
    if not geojson_path.exists():
        raise FileNotFoundError(f"GeoJSON file not found at {geojson_path}")
    with geojson_path.open("r", encoding="utf-8") as f:
        payload = json.load(f)

    rows = []
    for feature in payload.get("features") or []:
        properties = feature.get("properties") or {}
        geometry = feature.get("geometry")
        rows.append({**properties, "geometry": shape(geometry) if geometry else None})
    frame = pd.DataFrame(rows)
    if rows and id_column not in frame.columns:
        raise ValueError(f"GeoJSON file {geojson_path} must have an '{id_column}' property.")
    return frame


def _value(row: object, name: str) -> object:
    value = getattr(row, name, None)
    if value is None or (isinstance(value, float) and pd.isna(value)) or value == "":
        return None
    return value


def _float(row: object, name: str) -> Optional[float]:
    value = _value(row, name)
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Property {name!r} must be numeric, got {value!r}") from None


def _float_or(row: object, name: str, default: float) -> float:
    value = _float(row, name)
    return default if value is None else value


def _area_from_row(row: object) -> Area:
    area_id = str(getattr(row, "id"))
    geometry = getattr(row, "geometry")
    if geometry is None or geometry.is_empty:
        raise ValueError(f"Area {area_id} has no geometry")
    centroid = _value(row, "centroid")
    thresholds = [_float(row, name) for name in ("critical_1", "critical_2", "jam")]
    area = Area(
        id=area_id,
        geometry=geometry,
        centroid_node_id=str(centroid) if centroid is not None else None,
        behaviour_type=TrafficBehaviourType.parse(_value(row, "behaviour_type") or "NTM"),
        free_speed_kmh=_float_or(row, "free_speed", 0.0),
        road_length_km=_float_or(row, "road_length", 0.0),
        demand_scaling_factor=_float_or(row, "demand_scaling_factor", 1.0),
        capacity_vph=_float(row, "capacity"),
    )
    if all(value is not None for value in thresholds):
        area.accumulation_thresholds = tuple(thresholds)
    return area


def _link_from_row(row: object, nodes: Dict[str, Node], centroids: Dict[str, Node]) -> Link:
    link_id = str(getattr(row, "id"))
    start = _value(row, "start")
    end = _value(row, "end")
    if start is None or end is None:
        raise ValueError(f"Link {link_id} needs 'start' and 'end' node ids")
    geometry = getattr(row, "geometry")
    if geometry is not None and not isinstance(geometry, LineString):
        raise ValueError(f"Link {link_id} must have a LineString geometry")
    length_km = _float(row, "length")
    if length_km is None:
        if geometry is None:
            start_node = nodes.get(str(start)) or centroids.get(str(start))
            end_node = nodes.get(str(end)) or centroids.get(str(end))
            if start_node is None or end_node is None:
                raise ValueError(f"Link {link_id} has neither a length nor a geometry")
            length_km = start_node.distance_to(end_node) / 1000.0
        else:
            length_km = geometry.length / 1000.0
    speed = _float(row, "free_speed")
    if speed is None:
        raise ValueError(f"Link {link_id} needs a 'free_speed'")
    lanes = _float(row, "lanes")
    return Link(
        id=link_id,
        start_node_id=str(start),
        end_node_id=str(end),
        length_km=length_km,
        free_speed_kmh=speed,
        capacity_vph=_float(row, "capacity"),
        behaviour_type=TrafficBehaviourType.parse(_value(row, "behaviour_type") or "ROAD"),
        geometry=geometry,
        number_of_lanes=int(lanes) if lanes is not None else 0,
    )


__all__ = ["NetworkData"]
