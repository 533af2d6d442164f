"""Merging small areas into bigger ones before the graphs are built.

Every small area whose centroid lies inside a big area is folded into it:
the big area gets a new centroid node (named after the big area and placed at
its polygon centroid), links ending at a small centroid are re-attached to
that new centroid and the trip demand is summed per pair of big areas. A big
area covering more cordon areas than ordinary areas becomes a cordon itself.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Set

from ntmflow.demand.trip_demand import TripDemand

from .area_locator import AreaLocator
from .data_source import NetworkData
from .domain_types import Area, Link, Node, TrafficBehaviourType

logger = logging.getLogger(__name__)


@dataclass
class AreaCompression:
    """Compressed network plus the mapping used to build it."""

    network: NetworkData
    big_area_of: Dict[str, str] = field(default_factory=dict)
    dropped_links: List[str] = field(default_factory=list)

    def big_area_for(self, key: str) -> Optional[str]:
        """Big area that a small area id or small centroid id was merged into."""
        return self.big_area_of.get(key)


def compress_areas(network: NetworkData, big_areas: Optional[List[Area]] = None) -> AreaCompression:
    """Fold the areas of ``network`` into ``big_areas`` (``network.big_areas`` by default)."""
    big_areas = list(network.big_areas if big_areas is None else big_areas)
    if not big_areas:
        raise ValueError("Area compression needs at least one big area")
    locator = AreaLocator(big_areas)

    big_centroids: Dict[str, Node] = {}
    for big in big_areas:
        if big.id in network.nodes:
            raise ValueError(f"Big area id {big.id} clashes with a network node id")
        big_centroids[big.id] = Node(big.id, big.centroid, TrafficBehaviourType.CENTROID)

    big_area_of: Dict[str, str] = {}
    cordons: Dict[str, int] = {big.id: 0 for big in big_areas}
    ordinary: Dict[str, int] = {big.id: 0 for big in big_areas}
    for area in network.areas:
        centroid = network.centroids.get(area.centroid_node_id) if area.centroid_node_id else None
        point = centroid.point if centroid is not None else area.centroid
        big = locator.find_area(point)
        if big is None:
            logger.warning("Area %s lies outside every big area; it is left out", area.id)
            continue
        big_area_of[area.id] = big.id
        if centroid is not None:
            big_area_of[centroid.id] = big.id
        if area.behaviour_type is TrafficBehaviourType.CORDON:
            cordons[big.id] += 1
        else:
            ordinary[big.id] += 1

    compressed_areas: List[Area] = []
    for big in big_areas:
        behaviour = big.behaviour_type
        if cordons[big.id] > ordinary[big.id]:
            behaviour = TrafficBehaviourType.CORDON
        compressed_areas.append(replace(big, centroid_node_id=big.id, behaviour_type=behaviour, touching=set()))

    links: List[Link] = []
    dropped: List[str] = []
    for link in network.links:
        start = _endpoint(link.start_node_id, network, big_area_of)
        end = _endpoint(link.end_node_id, network, big_area_of)
        if start is None or end is None:
            logger.warning("Link %s ends at a centroid outside every big area; it is dropped", link.id)
            dropped.append(link.id)
            continue
        if start == end:
            dropped.append(link.id)
            continue
        if (start, end) != (link.start_node_id, link.end_node_id):
            link = replace(link, start_node_id=start, end_node_id=end)
        links.append(link)

    logger.info(
        "Compressed %d areas into %d big areas; %d links dropped",
        len(network.areas),
        len(compressed_areas),
        len(dropped),
    )
    return AreaCompression(
        network=NetworkData(
            areas=compressed_areas,
            nodes=dict(network.nodes),
            links=links,
            centroids=big_centroids,
            trip_demand=compress_trip_demand(network.trip_demand, big_area_of, set(big_centroids)),
            profiles=dict(network.profiles),
        ),
        big_area_of=big_area_of,
        dropped_links=dropped,
    )


def compress_trip_demand(demand: TripDemand, big_area_of: Dict[str, str], big_ids: Set[str]) -> TripDemand:
    """Sum trips per pair of big areas.

    Keys may be small area ids, small centroid ids or big area ids. Pairs with
    an unknown end are dropped with a warning.
    """
    compressed = TripDemand(scaling_factor=demand.scaling_factor)
    for origin, destination, entry in demand.pairs():
        big_origin = origin if origin in big_ids else big_area_of.get(origin)
        big_destination = destination if destination in big_ids else big_area_of.get(destination)
        if big_origin is None or big_destination is None:
            logger.warning(
                "Trips from %s to %s fall outside the big areas; %.2f trips dropped",
                origin,
                destination,
                entry.trips,
            )
            continue
        compressed.add(big_origin, big_destination, entry.trips, entry.profile)
    return compressed


def _endpoint(node_id: str, network: NetworkData, big_area_of: Dict[str, str]) -> Optional[str]:
    if node_id in network.centroids:
        return big_area_of.get(node_id)
    return node_id


__all__ = ["AreaCompression", "compress_areas", "compress_trip_demand"]
