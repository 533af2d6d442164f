"""Flow propagation over area-graph vertices and flow cells.

Each step runs in two phases. The snapshot phase freezes every unit's
accumulation, computes supply and demand from the fundamental diagram and
builds the requested transfers per ``(unit, destination, neighbour)``. The
commit phase scales those requests by edge (corridor) capacity and by the
receiving unit's receiving capacity, then applies them all at once, so the
result does not depend on the order in which units are visited.

Departures first wait in a reservoir per OD pair and enter their origin only
as far as the origin has room, so injection never pushes a unit into jam.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Callable, Dict, Mapping, Optional, Set, Tuple

from ntmflow.demand.profiles import DepartureTimeProfile
from ntmflow.demand.trip_demand import TripDemand
from ntmflow.flow.cell_behaviour import BehaviourKind, CellBehaviour
from ntmflow.network.graph_builder import FLOW_EDGE, EdgeKey, NetworkGraphs
from ntmflow.routing.router import Router

from .results import RunResult, UnitTimeSeries
from .settings import SimulationSettings

logger = logging.getLogger(__name__)

# Lower bound (km/h) on speeds used for re-routing travel times.
_MIN_ROUTING_SPEED = 1.0

TransferKey = Tuple[str, str, str]


class FlowPropagationEngine:
    def __init__(
        self,
        graphs: NetworkGraphs,
        router: Router,
        demand: TripDemand,
        profiles: Mapping[str, DepartureTimeProfile],
        settings: SimulationSettings,
        *,
        area_factors: Optional[Mapping[str, float]] = None,
    ) -> None:
        self.graphs = graphs
        self.router = router
        self.demand = demand
        self.profiles = dict(profiles)
        self.settings = settings
        self.area_factors = dict(area_factors or {})
        self.step_index = 0

        self.units: Dict[str, CellBehaviour] = {}
        kinds: Dict[str, str] = {}
        for vertex_id, vertex in graphs.area_vertices.items():
            self.units[vertex_id] = vertex.behaviour
            kinds[vertex_id] = vertex.behaviour_type.value
        for chain in graphs.chains.values():
            for cell in chain.cells:
                self.units[cell.id] = cell.behaviour
                kinds[cell.id] = "CELL"

        self._receivers: Dict[EdgeKey, str] = {}
        for start, end in graphs.area_graph.edges():
            chain = graphs.chains.get((start, end))
            self._receivers[(start, end)] = chain.head.id if chain is not None else end
        for chain in graphs.chains.values():
            for cell in chain.cells:
                self._receivers[(cell.id, chain.next_unit(cell.index))] = chain.next_unit(cell.index)
        self._base_weights: Dict[EdgeKey, float] = {
            (start, end): float(data["weight"]) for start, end, data in graphs.area_graph.edges(data=True)
        }
        self._destinations: Set[str] = set(graphs.destinations())
        self._warned_pairs: Set[Tuple[str, str]] = set()
        self._waiting: Dict[Tuple[str, str], float] = {}

        self.result = RunResult(
            time_step_seconds=settings.time_step_seconds,
            start_minutes=settings.start_minutes,
        )
        for unit_id in self.units:
            self.result.by_unit[unit_id] = UnitTimeSeries(kind=kinds[unit_id])
        for key in self._receivers:
            self.result.flux[key] = []
        for origin, destination, _ in demand.pairs():
            self.result.od_departures[(origin, destination)] = []
        for destination in graphs.destinations():
            self.result.destination_arrivals[destination] = []

    # ---------------------------------------------------------------------- API --
    def run(
        self, num_steps: Optional[int] = None, progress: Optional[Callable[[int], None]] = None
    ) -> RunResult:
        """Advance ``num_steps`` steps (the whole configured window by default)."""
        steps = self.settings.num_steps if num_steps is None else num_steps
        if steps < 0:
            raise ValueError("num_steps must be non-negative")
        for _ in range(steps):
            self.step()
            if progress is not None:
                progress(self.step_index)
        return self.result

    def step(self) -> None:
        dt = self.settings.time_step_seconds
        start_seconds = self.step_index * dt
        departures: Dict[str, float] = defaultdict(float)
        od_departures: Dict[Tuple[str, str], float] = defaultdict(float)
        self._inject(start_seconds, start_seconds + dt, departures, od_departures)

        snapshot, receiving, requests, exits = self._snapshot(dt)
        transfers = self._apply_capacities(requests, receiving, dt)
        inflow, outflow, arrivals, flux, destination_arrivals = self._commit(transfers, exits)

        queued = self.waiting_by_origin()
        self.result.times.append(start_seconds)
        for unit_id, behaviour in self.units.items():
            supply, demand, speed = snapshot[unit_id]
            self.result.by_unit[unit_id].append(
                accumulation=behaviour.accumulation,
                speed=speed,
                demand=demand,
                supply=supply,
                inflow=inflow.get(unit_id, 0.0),
                outflow=outflow.get(unit_id, 0.0),
                departures=departures.get(unit_id, 0.0),
                arrivals=arrivals.get(unit_id, 0.0),
                queued=queued.get(unit_id, 0.0),
            )
        for key, series in self.result.flux.items():
            series.append(flux.get(key, 0.0))
        for key, series in self.result.od_departures.items():
            series.append(od_departures.get(key, 0.0))
        for key, series in self.result.destination_arrivals.items():
            series.append(destination_arrivals.get(key, 0.0))

        self.step_index += 1
        interval = self.settings.reroute_interval_steps
        if interval and self.step_index % interval == 0:
            self.reroute()

    def total_accumulation(self) -> float:
        return sum(behaviour.accumulation for behaviour in self.units.values())

    def waiting_by_origin(self) -> Dict[str, float]:
        """Trips that departed but have not yet entered their origin unit."""
        waiting: Dict[str, float] = defaultdict(float)
        for (origin, _), amount in self._waiting.items():
            waiting[origin] += amount
        return dict(waiting)

    def total_waiting(self) -> float:
        return sum(self._waiting.values())

    def reroute(self) -> None:
        """Recompute routes on travel times derived from the current speeds."""
        edge_times: Dict[EdgeKey, float] = {}
        for start, end, data in self.graphs.area_graph.edges(data=True):
            if data["kind"] == FLOW_EDGE:
                chain = self.graphs.chains[(start, end)]
                edge_times[(start, end)] = sum(
                    cell.length_km / max(cell.behaviour.current_speed(), _MIN_ROUTING_SPEED)
                    for cell in chain.cells
                )
                continue
            base = self._base_weights[(start, end)]
            behaviour = self.units[start]
            if behaviour.parameters is None:
                edge_times[(start, end)] = base
                continue
            speed = max(behaviour.current_speed(), _MIN_ROUTING_SPEED)
            edge_times[(start, end)] = base * behaviour.parameters.free_speed_kmh / speed
        self.router.reweight(edge_times)
        self.router.compute()
        logger.debug("Re-routed at step %d", self.step_index)

    # ----------------------------------------------------------------- internal --
    def _inject(
        self,
        start_seconds: float,
        end_seconds: float,
        departures: Dict[str, float],
        od_departures: Dict[Tuple[str, str], float],
    ) -> None:
        for origin, destination, _ in self.demand.pairs():
            amount = self.demand.departures(
                origin,
                destination,
                start_seconds,
                end_seconds,
                self.profiles,
                area_factor=self.area_factors.get(origin, 1.0),
            )
            if amount <= 0.0:
                continue
            key = (origin, destination)
            if (
                origin not in self.graphs.area_vertices
                or destination not in self._destinations
                or not self.router.has_route(origin, destination)
            ):
                self.result.unassigned_trips[key] = self.result.unassigned_trips.get(key, 0.0) + amount
                if key not in self._warned_pairs:
                    self._warned_pairs.add(key)
                    logger.warning("No route from %s to %s; trips are not assigned", origin, destination)
                continue
            self._waiting[key] = self._waiting.get(key, 0.0) + amount
        self._release(departures, od_departures)

    def _release(self, departures: Dict[str, float], od_departures: Dict[Tuple[str, str], float]) -> None:
        """Move waiting trips into their origin, sharing the origin's room across destinations."""
        waiting = self.waiting_by_origin()
        factors: Dict[str, float] = {}
        for origin, total in waiting.items():
            if total <= 0.0:
                continue
            factors[origin] = min(1.0, self.units[origin].room() / total)
        for (origin, destination), amount in list(self._waiting.items()):
            factor = factors.get(origin, 0.0)
            if amount <= 0.0 or factor <= 0.0:
                continue
            released = amount * factor
            self._waiting[(origin, destination)] = 0.0 if factor >= 1.0 else amount - released
            behaviour = self.units[origin]
            behaviour.add_trips(destination, released)
            behaviour.trip_info(destination).departed += released
            departures[origin] += released
            od_departures[(origin, destination)] += released

    def _snapshot(self, dt: float):
        snapshot: Dict[str, Tuple[float, float, float]] = {}
        receiving: Dict[str, float] = {}
        requests: Dict[TransferKey, float] = defaultdict(float)
        exits: Dict[Tuple[str, str], float] = {}
        for unit_id, behaviour in self.units.items():
            accumulation = behaviour.accumulation
            snapshot[unit_id] = (
                behaviour.supply(accumulation),
                behaviour.demand(accumulation),
                behaviour.current_speed(accumulation),
            )
            receiving[unit_id] = behaviour.receiving_capacity(dt, accumulation)
            sending = behaviour.sending_capacity(dt, accumulation)
            if sending <= 0.0:
                continue
            for destination, info in behaviour.trips.items():
                if info.accumulated <= 0.0:
                    continue
                amount = sending * behaviour.destination_share(destination, accumulation)
                if amount <= 0.0:
                    continue
                if destination == unit_id:
                    exits[(unit_id, destination)] = amount
                    continue
                for neighbour, share in info.shares().items():
                    if share > 0.0:
                        requests[(unit_id, destination, neighbour)] += amount * share
        return snapshot, receiving, requests, exits

    def _apply_capacities(
        self,
        requests: Mapping[TransferKey, float],
        receiving: Mapping[str, float],
        dt: float,
    ) -> Dict[TransferKey, float]:
        edge_totals: Dict[EdgeKey, float] = defaultdict(float)
        for (unit_id, _, neighbour), amount in requests.items():
            edge_totals[(unit_id, neighbour)] += amount
        edge_factor: Dict[EdgeKey, float] = {}
        for (unit_id, neighbour), total in edge_totals.items():
            allowed = self.units[unit_id].border_capacity_to(neighbour) * dt / 3600.0
            edge_factor[(unit_id, neighbour)] = min(1.0, allowed / total)

        receiver_totals: Dict[str, float] = defaultdict(float)
        for (unit_id, _, neighbour), amount in requests.items():
            receiver = self._receivers[(unit_id, neighbour)]
            receiver_totals[receiver] += amount * edge_factor[(unit_id, neighbour)]
        receiver_factor: Dict[str, float] = {}
        for receiver, total in receiver_totals.items():
            if total <= 0.0:
                receiver_factor[receiver] = 0.0
                continue
            receiver_factor[receiver] = min(1.0, receiving[receiver] / total)

        transfers: Dict[TransferKey, float] = {}
        for (unit_id, destination, neighbour), amount in requests.items():
            factor = edge_factor[(unit_id, neighbour)] * receiver_factor[self._receivers[(unit_id, neighbour)]]
            moved = amount * factor
            if moved > 0.0:
                transfers[(unit_id, destination, neighbour)] = moved
        return transfers

    def _commit(self, transfers: Mapping[TransferKey, float], exits: Mapping[Tuple[str, str], float]):
        inflow: Dict[str, float] = defaultdict(float)
        outflow: Dict[str, float] = defaultdict(float)
        arrivals: Dict[str, float] = defaultdict(float)
        flux: Dict[EdgeKey, float] = defaultdict(float)
        destination_arrivals: Dict[str, float] = defaultdict(float)

        for (unit_id, destination, neighbour), amount in transfers.items():
            self.units[unit_id].remove_trips(destination, amount)
            outflow[unit_id] += amount
            flux[(unit_id, neighbour)] += amount
        for (unit_id, destination), amount in exits.items():
            behaviour = self.units[unit_id]
            behaviour.remove_trips(destination, amount)
            behaviour.trip_info(destination).arrived += amount
            outflow[unit_id] += amount
            arrivals[unit_id] += amount
            destination_arrivals[destination] += amount

        for (unit_id, destination, neighbour), amount in transfers.items():
            receiver = self._receivers[(unit_id, neighbour)]
            behaviour = self.units[receiver]
            inflow[receiver] += amount
            if behaviour.kind is BehaviourKind.CORDON and receiver == destination:
                behaviour.trip_info(destination).arrived += amount
                arrivals[receiver] += amount
                destination_arrivals[destination] += amount
            else:
                behaviour.add_trips(destination, amount)
        return inflow, outflow, arrivals, flux, destination_arrivals


__all__ = ["FlowPropagationEngine"]
