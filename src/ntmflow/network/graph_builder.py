"""Build the link graph and the aggregated area graph.

The link graph keeps the physical network: one vertex per node, one edge per
link weighted by ``free speed x length``. The area graph has one vertex per
area centroid plus the end points of FLOW links. Its edges are

* ``area`` edges between centroids of touching areas, weighted by the travel
  time (h) between the centroids and carrying the aggregated corridor capacity;
* ``flow`` edges along FLOW links, each carrying a :class:`CellChain`;
* ``connector`` edges tying FLOW end points and isolated areas to the areas
  around them.

Both graphs are :class:`networkx.DiGraph` instances keyed by string ids; the
vertex objects live in separate id-keyed dictionaries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

import networkx as nx

from ntmflow.flow.cells import CellChain, create_cells
from ntmflow.flow.fundamental_diagram import DEFAULT_JAM_DENSITY

from .area_locator import AreaLocator
from .domain_types import Area, BoundedNode, Link, Node, TrafficBehaviourType

logger = logging.getLogger(__name__)

EdgeKey = Tuple[str, str]

AREA_EDGE = "area"
FLOW_EDGE = "flow"
CONNECTOR_EDGE = "connector"


class DuplicateVertexError(RuntimeError):
    """Raised when a vertex id is inserted twice into the same graph."""


@dataclass(frozen=True)
class GraphSettings:
    """Knobs used while building the graphs."""

    ctm_time_step_seconds: float = 10.0
    connector_capacity_vph: float = 4000.0
    connector_speed_kmh: float = 70.0
    detour_factor: float = 1.3
    assumed_speed_kmh: float = 30.0
    isolated_search_distance_m: float = 8000.0
    isolated_target_count: int = 6
    jam_density: float = DEFAULT_JAM_DENSITY
    min_capacity_fraction: float = 0.1


@dataclass
class BuildDiagnostics:
    """Structural gaps found while building; the build continues past all of them."""

    missing_centroids: List[str] = field(default_factory=list)
    nodes_without_area: List[str] = field(default_factory=list)
    reconnected_areas: List[str] = field(default_factory=list)
    unreachable_areas: List[str] = field(default_factory=list)
    skipped_edges: List[EdgeKey] = field(default_factory=list)


@dataclass
class NetworkGraphs:
    """Result of a graph build."""

    link_graph: nx.DiGraph
    area_graph: nx.DiGraph
    link_vertices: Dict[str, BoundedNode]
    area_vertices: Dict[str, BoundedNode]
    chains: Dict[EdgeKey, CellChain]
    centroid_by_area: Dict[str, str]
    touching: Dict[str, Set[str]]
    diagnostics: BuildDiagnostics

    def edge_link(self, start: str, end: str) -> Link:
        return self.area_graph.edges[start, end]["link"]

    def edge_kind(self, start: str, end: str) -> str:
        return self.area_graph.edges[start, end]["kind"]

    def destinations(self) -> List[str]:
        """Area-graph vertices that act as traffic sinks (NTM or CORDON)."""
        return [
            vertex_id
            for vertex_id, vertex in self.area_vertices.items()
            if vertex.behaviour_type in (TrafficBehaviourType.NTM, TrafficBehaviourType.CORDON)
        ]

    def edge_signature(self) -> List[Tuple[str, str, float]]:
        """Sorted ``(start, end, weight)`` triples of the area graph."""
        return sorted((u, v, float(data["weight"])) for u, v, data in self.area_graph.edges(data=True))


# ---------------------------------------------------------------------- API --
def build(
    areas: Sequence[Area],
    nodes: Mapping[str, Node],
    links: Iterable[Link],
    centroids: Mapping[str, Node],
    settings: Optional[GraphSettings] = None,
) -> NetworkGraphs:
    """Build both graphs from already-preprocessed network data."""
    return _GraphBuilder(areas, nodes, list(links), centroids, settings or GraphSettings()).run()


# ----------------------------------------------------------------- internal --
class _GraphBuilder:
    def __init__(
        self,
        areas: Sequence[Area],
        nodes: Mapping[str, Node],
        links: List[Link],
        centroids: Mapping[str, Node],
        settings: GraphSettings,
    ) -> None:
        self.areas = list(areas)
        self.areas_by_id = {area.id: area for area in self.areas}
        self.nodes = nodes
        self.links = links
        self.centroids = centroids
        self.settings = settings
        self.locator = AreaLocator(self.areas)
        self.link_graph = nx.DiGraph()
        self.area_graph = nx.DiGraph()
        self.link_vertices: Dict[str, BoundedNode] = {}
        self.area_vertices: Dict[str, BoundedNode] = {}
        self.chains: Dict[EdgeKey, CellChain] = {}
        self.centroid_by_area: Dict[str, str] = {}
        self.touching: Dict[str, Set[str]] = {}
        self.diagnostics = BuildDiagnostics()

    def run(self) -> NetworkGraphs:
        self._build_link_graph()
        self._add_centroids()
        self.touching = self.locator.find_touching()
        for area in self.areas:
            self.touching.setdefault(area.id, set())
        self._connect_isolated_areas()
        self._add_area_edges()
        self._add_flow_edges()
        for area in self.areas:
            area.touching = set(self.touching.get(area.id, set()))
        logger.info(
            "Built link graph (%d vertices, %d edges) and area graph (%d vertices, %d edges)",
            self.link_graph.number_of_nodes(),
            self.link_graph.number_of_edges(),
            self.area_graph.number_of_nodes(),
            self.area_graph.number_of_edges(),
        )
        return NetworkGraphs(
            link_graph=self.link_graph,
            area_graph=self.area_graph,
            link_vertices=self.link_vertices,
            area_vertices=self.area_vertices,
            chains=self.chains,
            centroid_by_area=self.centroid_by_area,
            touching=self.touching,
            diagnostics=self.diagnostics,
        )

    # ------------------------------------------------------------- vertices --
    def _bounded(self, node: Node, behaviour_type: TrafficBehaviourType) -> BoundedNode:
        area = self.locator.find_area(node.point)
        if area is None:
            self.diagnostics.nodes_without_area.append(node.id)
            logger.warning("Node %s does not lie in any area", node.id)
        return BoundedNode(
            id=node.id,
            point=node.point,
            behaviour_type=behaviour_type,
            area_id=area.id if area is not None else None,
        )

    def _add_vertex(self, graph: nx.DiGraph, registry: Dict[str, BoundedNode], vertex: BoundedNode) -> None:
        if vertex.id in registry or graph.has_node(vertex.id):
            raise DuplicateVertexError(f"Vertex {vertex.id} already exists in the graph")
        registry[vertex.id] = vertex
        graph.add_node(vertex.id)

    def _node(self, node_id: str) -> Optional[Node]:
        node = self.nodes.get(node_id)
        if node is None:
            node = self.centroids.get(node_id)
        return node

    def _build_link_graph(self) -> None:
        for link in self.links:
            endpoints = []
            for node_id in (link.start_node_id, link.end_node_id):
                node = self._node(node_id)
                if node is None:
                    logger.warning("Link %s refers to unknown node %s; link skipped", link.id, node_id)
                    break
                endpoints.append(node)
            if len(endpoints) != 2:
                continue
            for node in endpoints:
                if node.id not in self.link_vertices:
                    self._add_vertex(self.link_graph, self.link_vertices, self._bounded(node, link.behaviour_type))
            if self.link_graph.has_edge(link.start_node_id, link.end_node_id):
                logger.debug("Parallel link %s ignored in the link graph", link.id)
            else:
                self.link_graph.add_edge(
                    link.start_node_id, link.end_node_id, link=link, weight=link.link_graph_weight
                )
            if link.behaviour_type is TrafficBehaviourType.FLOW:
                for node in endpoints:
                    if node.id not in self.area_vertices:
                        self._add_vertex(
                            self.area_graph,
                            self.area_vertices,
                            self._bounded(node, TrafficBehaviourType.FLOW),
                        )

    def _find_centroid(self, area: Area) -> Optional[Node]:
        if area.centroid_node_id is not None and area.centroid_node_id in self.centroids:
            return self.centroids[area.centroid_node_id]
        match: Optional[Node] = None
        for node in self.centroids.values():
            if area.geometry.contains(node.point):
                if node.id == area.id:
                    return node
                if match is None:
                    match = node
        return match

    def _add_centroids(self) -> None:
        for area in self.areas:
            centroid = self._find_centroid(area)
            if centroid is None:
                self.diagnostics.missing_centroids.append(area.id)
                logger.warning("No centroid found for area %s; area left out of the area graph", area.id)
                continue
            vertex = BoundedNode(
                id=centroid.id,
                point=centroid.point,
                behaviour_type=area.behaviour_type,
                area_id=area.id,
            )
            self._add_vertex(self.area_graph, self.area_vertices, vertex)
            self.centroid_by_area[area.id] = centroid.id
            area.centroid_node_id = centroid.id

    # ---------------------------------------------------------------- edges --
    def _add_edge(self, start: str, end: str, link: Link, kind: str, chain: Optional[CellChain] = None) -> bool:
        if start == end:
            logger.debug("Self-loop %s ignored in the area graph", start)
            return False
        if start not in self.area_vertices or end not in self.area_vertices:
            logger.warning("Cannot add %s edge %s -> %s: vertex missing", kind, start, end)
            self.diagnostics.skipped_edges.append((start, end))
            return False
        if self.area_graph.has_edge(start, end):
            return False
        attributes = {"link": link, "weight": link.travel_time_hours, "kind": kind}
        if chain is not None:
            attributes["chain"] = chain
            self.chains[(start, end)] = chain
        self.area_graph.add_edge(start, end, **attributes)
        return True

    def _centroid_travel_time(self, start: BoundedNode, end: BoundedNode) -> float:
        """Travel time (h) along the link graph, or a detour-weighted straight line."""
        if self.link_graph.has_node(start.id) and self.link_graph.has_node(end.id):
            try:
                path = nx.dijkstra_path(self.link_graph, start.id, end.id, weight="weight")
            except nx.NetworkXNoPath:
                path = None
            if path:
                return sum(
                    self.link_graph.edges[u, v]["link"].travel_time_hours for u, v in zip(path, path[1:])
                )
        speeds = [
            self.areas_by_id[vertex.area_id].free_speed_kmh
            for vertex in (start, end)
            if vertex.area_id in self.areas_by_id and self.areas_by_id[vertex.area_id].free_speed_kmh > 0
        ]
        speed = sum(speeds) / len(speeds) if speeds else self.settings.assumed_speed_kmh
        distance_km = self.settings.detour_factor * start.distance_to(end) / 1000.0
        return distance_km / speed

    def _add_graph_connector(
        self, start: BoundedNode, end: BoundedNode, capacity_vph: Optional[float], kind: str
    ) -> bool:
        if self.area_graph.has_edge(start.id, end.id):
            return False
        connector = Link.create_connector(
            start,
            end,
            capacity_vph=capacity_vph,
            speed_kmh=self.settings.connector_speed_kmh,
            behaviour_type=TrafficBehaviourType.NTM,
            time_hours=self._centroid_travel_time(start, end),
        )
        return self._add_edge(start.id, end.id, connector, kind)

    def _add_area_edges(self) -> None:
        for link in self.links:
            if link.behaviour_type is TrafficBehaviourType.FLOW:
                continue
            start_node = self._node(link.start_node_id)
            end_node = self._node(link.end_node_id)
            if start_node is None or end_node is None:
                continue
            area_a = self.locator.find_area(start_node.point)
            area_b = self.locator.find_area(end_node.point)
            if area_a is None or area_b is None or area_b.id not in self.touching.get(area_a.id, set()):
                continue
            centroid_a = self.centroid_by_area.get(area_a.id)
            centroid_b = self.centroid_by_area.get(area_b.id)
            if centroid_a is None or centroid_b is None or centroid_a == centroid_b:
                continue
            if self.area_graph.has_edge(centroid_a, centroid_b):
                if link.capacity_vph is not None:
                    self.area_graph.edges[centroid_a, centroid_b]["link"].add_corridor_capacity(link.capacity_vph)
                continue
            self._add_graph_connector(
                self.area_vertices[centroid_a], self.area_vertices[centroid_b], link.capacity_vph, AREA_EDGE
            )

    def _add_flow_edges(self) -> None:
        for link in self.links:
            if link.behaviour_type is not TrafficBehaviourType.FLOW:
                continue
            start, end = link.start_node_id, link.end_node_id
            if start not in self.area_vertices or end not in self.area_vertices:
                continue
            cells = create_cells(
                link,
                self.settings.ctm_time_step_seconds,
                jam_density=self.settings.jam_density,
                min_capacity_fraction=self.settings.min_capacity_fraction,
            )
            chain = CellChain(link=link, start_vertex=start, end_vertex=end, cells=cells)
            self._add_edge(start, end, link, FLOW_EDGE, chain)
            self._add_flow_connectors(link)

    def _flow_connector(self, start: BoundedNode, end: BoundedNode) -> None:
        connector = Link.create_connector(
            start,
            end,
            capacity_vph=self.settings.connector_capacity_vph,
            speed_kmh=self.settings.connector_speed_kmh,
            behaviour_type=TrafficBehaviourType.NTM,
        )
        self._add_edge(start.id, end.id, connector, CONNECTOR_EDGE)

    def _add_flow_connectors(self, flow_link: Link) -> None:
        flow_start = self.area_vertices[flow_link.start_node_id]
        flow_end = self.area_vertices[flow_link.end_node_id]
        for other in self.links:
            if other.behaviour_type in (TrafficBehaviourType.ROAD, TrafficBehaviourType.NTM):
                if other.end_node_id == flow_start.id:
                    centroid = self._centroid_of_node(other.start_node_id)
                    if centroid is not None:
                        self._flow_connector(centroid, flow_start)
                if other.start_node_id == flow_end.id:
                    centroid = self._centroid_of_node(other.end_node_id)
                    if centroid is not None:
                        self._flow_connector(flow_end, centroid)
            elif other.behaviour_type is TrafficBehaviourType.CORDON:
                if other.end_node_id == flow_start.id and other.start_node_id in self.area_vertices:
                    self._flow_connector(self.area_vertices[other.start_node_id], flow_start)
                elif other.start_node_id == flow_end.id and other.end_node_id in self.area_vertices:
                    self._flow_connector(flow_end, self.area_vertices[other.end_node_id])

    def _centroid_of_node(self, node_id: str) -> Optional[BoundedNode]:
        node = self._node(node_id)
        if node is None:
            return None
        area = self.locator.find_area(node.point)
        if area is None or area.id not in self.centroid_by_area:
            logger.warning("No area centroid to connect a FLOW link to at node %s", node_id)
            return None
        return self.area_vertices[self.centroid_by_area[area.id]]

    # ------------------------------------------------------------- isolated --
    def _connect_isolated_areas(self) -> None:
        for area in self.areas:
            if self.touching.get(area.id) or area.id not in self.centroid_by_area:
                continue
            logger.warning("Area %s touches no other area; searching nearby areas", area.id)
            if self._reconnect(area):
                self.diagnostics.reconnected_areas.append(area.id)
            else:
                self.diagnostics.unreachable_areas.append(area.id)
                logger.warning("Isolated area %s could not be connected to the network", area.id)

    def _reconnect(self, isolated: Area) -> bool:
        source = self.area_vertices[self.centroid_by_area[isolated.id]]
        if not self.link_graph.has_node(source.id):
            return False
        connected = False
        candidates = self.locator.nearby_areas(
            isolated,
            max_distance=self.settings.isolated_search_distance_m,
            target_count=self.settings.isolated_target_count,
        )
        for near in candidates:
            target = self.centroid_by_area.get(near.id)
            if target is None or not self.link_graph.has_node(target):
                continue
            try:
                path = nx.dijkstra_path(self.link_graph, source.id, target, weight="weight")
            except nx.NetworkXNoPath:
                continue
            for u, v in zip(path, path[1:]):
                link: Link = self.link_graph.edges[u, v]["link"]
                if link.behaviour_type is TrafficBehaviourType.FLOW:
                    flow_start = self.area_vertices.get(link.start_node_id)
                    if flow_start is not None:
                        self._connect_both_ways(source, flow_start, link.capacity_vph)
                        connected = True
                    break
                entered = self.locator.find_area(self.link_vertices[v].point)
                if entered is None or entered.id == isolated.id or entered.id not in self.centroid_by_area:
                    continue
                self.touching[isolated.id].add(entered.id)
                self.touching.setdefault(entered.id, set()).add(isolated.id)
                self._connect_both_ways(
                    source, self.area_vertices[self.centroid_by_area[entered.id]], link.capacity_vph
                )
                connected = True
                break
        return connected

    def _connect_both_ways(self, first: BoundedNode, second: BoundedNode, capacity_vph: Optional[float]) -> None:
        self._add_graph_connector(first, second, capacity_vph, CONNECTOR_EDGE)
        self._add_graph_connector(second, first, capacity_vph, CONNECTOR_EDGE)


__all__ = [
    "AREA_EDGE",
    "BuildDiagnostics",
    "CONNECTOR_EDGE",
    "DuplicateVertexError",
    "FLOW_EDGE",
    "GraphSettings",
    "NetworkGraphs",
    "build",
]
