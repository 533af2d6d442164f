"""Network preparation applied before the graphs are built."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from .domain_types import Area, Link, Node, TrafficBehaviourType

logger = logging.getLogger(__name__)


def classify_flow_links(
    links: Iterable[Link],
    nodes: Mapping[str, Node],
    *,
    centroids: Optional[Mapping[str, Node]] = None,
    min_speed_kmh: float = 70.0,
    min_capacity_vph: float = 3400.0,
) -> List[str]:
    """Tag highway links (and their end nodes) as FLOW.

    Links that start or end at a centroid are connectors into an area and stay
    ROAD links, whatever their speed and capacity.

    Returns the ids of the links that were tagged, in input order.
    """
    centroid_ids = set(centroids or {})
    flow_ids: List[str] = []
    for link in links:
        if link.behaviour_type not in (TrafficBehaviourType.ROAD, TrafficBehaviourType.FLOW):
            continue
        if link.start_node_id in centroid_ids or link.end_node_id in centroid_ids:
            if link.behaviour_type is TrafficBehaviourType.FLOW:
                logger.warning("Link %s touches a centroid; treating it as a ROAD link", link.id)
                link.behaviour_type = TrafficBehaviourType.ROAD
            continue
        if link.capacity_vph is None:
            continue
        if link.free_speed_kmh >= min_speed_kmh and link.capacity_vph > min_capacity_vph:
            link.behaviour_type = TrafficBehaviourType.FLOW
            for node_id in (link.start_node_id, link.end_node_id):
                node = nodes.get(node_id)
                if node is not None:
                    node.behaviour_type = TrafficBehaviourType.FLOW
            flow_ids.append(link.id)
    logger.info("Classified %d of the road links as FLOW links", len(flow_ids))
    return flow_ids


def determine_road_length_in_areas(
    links: Iterable[Link],
    areas: Sequence[Area],
    *,
    default_road_length_km: float = 1.0,
    default_speed_kmh: float = 30.0,
) -> Dict[str, float]:
    """Fill in lane-km and average free speed of areas that lack them.

    A ROAD link fully inside an area counts for its full lane length, a link
    crossing the border for half of it. Returns the road length per area id.
    """
    pending = [area for area in areas if area.road_length_km <= 0]
    lane_km: Dict[str, float] = {area.id: 0.0 for area in pending}
    speed_weighted: Dict[str, float] = {area.id: 0.0 for area in pending}
    if pending:
        for link in links:
            if link.behaviour_type is not TrafficBehaviourType.ROAD or link.geometry is None:
                continue
            lanes = max(link.number_of_lanes, 1)
            for area in pending:
                if not area.geometry.intersects(link.geometry):
                    continue
                covers = 1.0 if area.geometry.contains(link.geometry) else 0.5
                length = covers * link.length_km * lanes
                lane_km[area.id] += length
                speed_weighted[area.id] += link.free_speed_kmh * length

    for area in pending:
        if lane_km[area.id] > 0:
            area.road_length_km = lane_km[area.id]
            area.free_speed_kmh = speed_weighted[area.id] / lane_km[area.id]
        else:
            logger.warning(
                "Area %s contains no road links; using default road length %.2f km and speed %.1f km/h",
                area.id,
                default_road_length_km,
                default_speed_kmh,
            )
            area.road_length_km = default_road_length_km
            if area.free_speed_kmh <= 0:
                area.free_speed_kmh = default_speed_kmh
    for area in areas:
        if area.free_speed_kmh <= 0:
            area.free_speed_kmh = default_speed_kmh
    return {area.id: area.road_length_km for area in areas}


__all__ = ["classify_flow_links", "determine_road_length_in_areas"]
