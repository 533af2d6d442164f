"""High-level API that ties network data, graph building, routing and propagation.

The :class:`NTMModel` service runs the whole pipeline:

1. **Compression** (only when the network carries big areas): small areas
   are folded into the big areas covering their centroids, see
   :mod:`ntmflow.network.compression`.
2. **Preprocessing**: highway links above the speed and capacity thresholds
   become FLOW links; areas without a road length get one from the ROAD
   links inside them.
3. **Graph build**: the link graph and the area graph (see
   :mod:`ntmflow.network.graph_builder`).
4. **Parameters**: every area-graph vertex receives a fundamental diagram
   (areas from their speed/road length/capacity, FLOW junctions as point
   queues) and every outgoing edge a border capacity.
5. **Routing**: next hops for every origin and destination.
6. **Propagation**: the flow propagation engine runs the configured window.

Example Usage
-------------

.. code-block:: python

    from ntmflow.network.data_source import NetworkData
    from ntmflow.simulation.model import NTMModel
    from ntmflow.simulation.settings import SimulationSettings

    network = NetworkData.from_geojson(
        "data/areas.geojson", "data/nodes.geojson", "data/links.geojson", "data/demand.yaml"
    )
    settings = SimulationSettings.from_yaml("data/scenario.yaml")
    result = NTMModel(network, settings).run()
    print(result.unit_series.head())

Notes
-----
- OD demand may be keyed by area-graph vertex ids or by area ids; area ids
  are mapped to their centroid vertex.
- Each call to :meth:`NTMModel.run` starts from an empty network.
- With big areas, demand keyed by small areas is summed per big area and
  results are keyed by the big area ids.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import networkx as nx
import pandas as pd

from ntmflow.demand.trip_demand import TripDemand
from ntmflow.flow.cell_behaviour import DEFAULT_BORDER_CAPACITY_VPH
from ntmflow.flow.fundamental_diagram import FundamentalDiagram
from ntmflow.network.compression import AreaCompression, compress_areas
from ntmflow.network.data_source import NetworkData
from ntmflow.network.domain_types import TrafficBehaviourType
from ntmflow.network.graph_builder import FLOW_EDGE, NetworkGraphs, build
from ntmflow.network.preprocessing import classify_flow_links, determine_road_length_in_areas
from ntmflow.routing.router import Router

from .engine import FlowPropagationEngine
from .results import RunResult
from .settings import SimulationSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelRunResult:
    """Structured payload returned by :meth:`NTMModel.run`."""

    run: RunResult
    unit_series: pd.DataFrame
    flux: pd.DataFrame
    od_departures: pd.DataFrame
    arrivals: pd.DataFrame
    graphs: NetworkGraphs


class NTMModel:
    """Orchestrates preprocessing, graph building, routing and flow propagation."""

    def __init__(self, network: NetworkData, settings: Optional[SimulationSettings] = None) -> None:
        self.compression: Optional[AreaCompression] = None
        if network.big_areas:
            self.compression = compress_areas(network)
            network = self.compression.network
        self.network = network
        self.settings = settings or SimulationSettings()
        self._graphs: Optional[NetworkGraphs] = None
        self._router: Optional[Router] = None
        self._used = False

    # ---------------------------------------------------------------------- API --
    def prepare(self) -> NetworkGraphs:
        """Build graphs, assign parameters and compute routes (once per run)."""
        settings = self.settings
        classify_flow_links(
            self.network.links,
            self.network.nodes,
            centroids=self.network.centroids,
            min_speed_kmh=settings.flow_link_min_speed_kmh,
            min_capacity_vph=settings.flow_link_min_capacity_vph,
        )
        determine_road_length_in_areas(
            self.network.links,
            self.network.areas,
            default_road_length_km=settings.default_road_length_km,
            default_speed_kmh=settings.default_speed_kmh,
        )
        graphs = build(
            self.network.areas,
            self.network.nodes,
            self.network.links,
            self.network.centroids,
            settings.graph_settings(),
        )
        self._assign_parameters(graphs)
        router = Router(graphs)
        router.compute()
        self._graphs = graphs
        self._router = router
        self._used = False
        return graphs

    @property
    def graphs(self) -> NetworkGraphs:
        if self._graphs is None:
            self.prepare()
        return self._graphs

    @property
    def link_graph(self) -> nx.DiGraph:
        return self.graphs.link_graph

    @property
    def area_graph(self) -> nx.DiGraph:
        return self.graphs.area_graph

    @property
    def router(self) -> Router:
        if self._router is None:
            self.prepare()
        return self._router

    def engine(self) -> FlowPropagationEngine:
        """Fresh engine over freshly built graphs."""
        if self._graphs is None or self._used:
            self.prepare()
        self._used = True
        graphs = self._graphs
        return FlowPropagationEngine(
            graphs,
            self._router,
            self._resolve_demand(graphs),
            self.network.profiles,
            self.settings,
            area_factors=self._area_factors(graphs),
        )

    def run(
        self, num_steps: Optional[int] = None, progress: Optional[Callable[[int], None]] = None
    ) -> ModelRunResult:
        engine = self.engine()
        run = engine.run(num_steps, progress=progress)
        logger.info(
            "Run finished after %d steps: %.2f trips departed, %.2f arrived, "
            "%.2f still travelling, %.2f waiting at their origin",
            run.num_steps,
            run.total_departures(),
            run.total_arrivals(),
            engine.total_accumulation(),
            engine.total_waiting(),
        )
        return ModelRunResult(
            run=run,
            unit_series=run.unit_frame(),
            flux=run.flux_frame(),
            od_departures=run.od_frame(),
            arrivals=run.arrival_frame(),
            graphs=engine.graphs,
        )

    # ----------------------------------------------------------------- internal --
    def _assign_parameters(self, graphs: NetworkGraphs) -> None:
        settings = self.settings
        areas = {area.id: area for area in self.network.areas}
        for vertex_id, vertex in graphs.area_vertices.items():
            behaviour = vertex.behaviour
            behaviour.min_capacity_fraction = settings.min_capacity_fraction
            behaviour.cordon_supply_cap_vph = settings.cordon_supply_cap_vph
            if vertex.behaviour_type is TrafficBehaviourType.FLOW:
                behaviour.parameters = self._junction_parameters(graphs, vertex_id)
                continue
            area = areas[vertex.area_id]
            area.parameters = FundamentalDiagram.from_area(
                free_speed_kmh=area.free_speed_kmh,
                road_length_km=area.road_length_km,
                capacity_vph=area.capacity_vph,
                accumulation_thresholds=area.accumulation_thresholds,
                critical_density=settings.critical_density,
                critical_ratio=settings.critical_ratio,
                jam_density=settings.jam_density,
            )
            behaviour.parameters = area.parameters

        for start, end, data in graphs.area_graph.edges(data=True):
            if data["kind"] == FLOW_EDGE:
                continue
            corridor = data["link"].corridor_capacity_vph
            capacity = corridor if corridor is not None else DEFAULT_BORDER_CAPACITY_VPH
            factor = settings.border_capacity_factors.get((start, end), 1.0)
            graphs.area_vertices[start].behaviour.border_capacity[end] = capacity * factor

    def _junction_parameters(self, graphs: NetworkGraphs, vertex_id: str) -> FundamentalDiagram:
        graph = graphs.area_graph
        incident = [data["link"] for _, _, data in graph.in_edges(vertex_id, data=True) if data["kind"] == FLOW_EDGE]
        incident += [data["link"] for _, _, data in graph.out_edges(vertex_id, data=True) if data["kind"] == FLOW_EDGE]
        capacities = [link.capacity_vph for link in incident if link.capacity_vph]
        speeds = [link.free_speed_kmh for link in incident]
        return FundamentalDiagram.point_queue(
            capacity_vph=max(capacities) if capacities else self.settings.connector_capacity_vph,
            free_speed_kmh=max(speeds) if speeds else self.settings.connector_speed_kmh,
            time_step_seconds=self.settings.time_step_seconds,
        )

    def _resolve_demand(self, graphs: NetworkGraphs) -> TripDemand:
        source = self.network.trip_demand
        resolved = TripDemand(scaling_factor=source.scaling_factor * self.settings.demand_scaling_factor)
        for origin, destination, entry in source.pairs():
            resolved.add(
                self._vertex_for(graphs, origin),
                self._vertex_for(graphs, destination),
                entry.trips,
                entry.profile,
            )
        return resolved

    @staticmethod
    def _vertex_for(graphs: NetworkGraphs, key: str) -> str:
        if key in graphs.area_vertices:
            return key
        return graphs.centroid_by_area.get(key, key)

    def _area_factors(self, graphs: NetworkGraphs) -> Dict[str, float]:
        factors: Dict[str, float] = {}
        for area in self.network.areas:
            vertex_id = graphs.centroid_by_area.get(area.id)
            if vertex_id is not None:
                factors[vertex_id] = area.demand_scaling_factor
        return factors


__all__ = ["ModelRunResult", "NTMModel"]
