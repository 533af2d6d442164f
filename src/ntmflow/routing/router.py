"""Shortest-path routing over the area graph.

One Dijkstra run per destination on the reversed area graph gives the
distance of every vertex to that destination. The next hop of an origin is
the first successor (in edge insertion order) lying on a shortest path; all
successors that tie with it share the outgoing trips equally.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, List, Mapping, Optional, Tuple

import networkx as nx

from ntmflow.network.graph_builder import FLOW_EDGE, EdgeKey, NetworkGraphs

logger = logging.getLogger(__name__)


class Router:
    def __init__(self, graphs: NetworkGraphs, *, tie_tolerance: float = 1e-9) -> None:
        self.graphs = graphs
        self.tie_tolerance = tie_tolerance
        self._distances: Dict[str, Dict[str, float]] = {}
        self._shares: Dict[Tuple[str, str], Dict[str, float]] = {}
        self._unreachable: Dict[str, List[str]] = {}

    # ---------------------------------------------------------------------- API --
    def compute(self) -> None:
        """(Re)compute next hops for every origin and destination."""
        graph = self.graphs.area_graph
        reversed_graph = graph.reverse(copy=False)
        self._distances.clear()
        self._shares.clear()
        self._unreachable.clear()
        for destination in self.graphs.destinations():
            distances = nx.single_source_dijkstra_path_length(reversed_graph, destination, weight="weight")
            self._distances[destination] = dict(distances)
            for origin in self.graphs.area_vertices:
                self._assign(origin, destination, distances)
        unreachable = sum(len(origins) for origins in self._unreachable.values())
        if unreachable:
            logger.warning(
                "%d origin-destination pairs have no route in the area graph (%d destinations affected)",
                unreachable,
                len(self._unreachable),
            )
        logger.info("Computed routes to %d destinations", len(self._distances))

    def reweight(self, edge_times: Mapping[EdgeKey, float]) -> None:
        """Replace area-graph edge weights (hours); call :meth:`compute` afterwards."""
        graph = self.graphs.area_graph
        for (start, end), hours in edge_times.items():
            if not graph.has_edge(start, end):
                raise KeyError(f"No area-graph edge {start} -> {end}")
            if hours < 0 or math.isnan(hours):
                raise ValueError(f"Edge weight for {start} -> {end} must be non-negative")
            graph.edges[start, end]["weight"] = hours

    def distance(self, origin: str, destination: str) -> float:
        """Shortest travel time (h); ``inf`` when there is no route."""
        return self._distances.get(destination, {}).get(origin, math.inf)

    def next_hop(self, origin: str, destination: str) -> Optional[str]:
        shares = self._shares.get((origin, destination))
        if not shares:
            return None
        return next(iter(shares))

    def route_shares(self, origin: str, destination: str) -> Dict[str, float]:
        return dict(self._shares.get((origin, destination), {}))

    def has_route(self, origin: str, destination: str) -> bool:
        return origin == destination or (origin, destination) in self._shares

    def path(self, origin: str, destination: str) -> List[str]:
        """Vertex ids from ``origin`` to ``destination`` following first next hops."""
        if not self.has_route(origin, destination):
            return []
        vertices = [origin]
        current = origin
        while current != destination:
            current = self.next_hop(current, destination)
            if current is None or current in vertices:
                raise RuntimeError(f"Routing table inconsistent between {origin} and {destination}")
            vertices.append(current)
        return vertices

    def unreachable_pairs(self) -> List[Tuple[str, str]]:
        return [(origin, destination) for destination, origins in self._unreachable.items() for origin in origins]

    # ----------------------------------------------------------------- internal --
    def _assign(self, origin: str, destination: str, distances: Mapping[str, float]) -> None:
        vertex = self.graphs.area_vertices[origin]
        info = vertex.behaviour.trip_info(destination)
        info.neighbour = None
        info.route_shares = {}
        if origin == destination:
            return
        if origin not in distances:
            self._unreachable.setdefault(destination, []).append(origin)
            return
        tied = self._tied_successors(origin, distances)
        if not tied:
            self._unreachable.setdefault(destination, []).append(origin)
            return
        share = 1.0 / len(tied)
        info.neighbour = tied[0]
        info.route_shares = {successor: share for successor in tied}
        self._shares[(origin, destination)] = dict(info.route_shares)
        for successor in tied:
            if self.graphs.edge_kind(origin, successor) == FLOW_EDGE:
                self._assign_cells(origin, successor, destination)

    def _tied_successors(self, origin: str, distances: Mapping[str, float]) -> List[str]:
        graph = self.graphs.area_graph
        best = distances[origin]
        limit = best + self.tie_tolerance * max(1.0, abs(best))
        tied = []
        for successor in graph.successors(origin):
            if successor not in distances:
                continue
            through = graph.edges[origin, successor]["weight"] + distances[successor]
            if through <= limit:
                tied.append(successor)
        return tied

    def _assign_cells(self, start: str, end: str, destination: str) -> None:
        chain = self.graphs.chains[(start, end)]
        for cell in chain.cells:
            info = cell.behaviour.trip_info(destination)
            neighbour = chain.next_unit(cell.index)
            info.neighbour = neighbour
            info.route_shares = {neighbour: 1.0}


__all__ = ["Router"]
