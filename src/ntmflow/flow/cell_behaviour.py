"""Flow state of an area-graph vertex or a CTM cell.

The three behaviours of the model (NTM area, CTM flow cell, cordon boundary)
are kept as one tagged class. Every variant answers the same questions:

* ``supply``: the flow rate (veh/h) the unit can currently accept;
* ``demand``: the flow rate (veh/h) the unit currently wants to send;
* ``current_speed``: the space-mean speed (km/h) at the current accumulation;
* ``sending_capacity``: the number of vehicles allowed to leave in one step;
* ``receiving_capacity``: the number of vehicles allowed to enter in one step.
  It never fills a unit past the accumulation where production falls to the
  capacity floor, so a congested unit always keeps draining.

Only the accumulation and the per-destination trip records persist between
steps; everything else is recomputed from the fundamental diagram.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from .fundamental_diagram import FundamentalDiagram

DEFAULT_BORDER_CAPACITY_VPH = 99999.0
_EPSILON = 1e-12


class BehaviourKind(str, Enum):
    NTM = "NTM"
    FLOW = "FLOW"
    CORDON = "CORDON"


_KIND_BY_TYPE = {
    "NTM": BehaviourKind.NTM,
    "ROAD": BehaviourKind.NTM,
    "CENTROID": BehaviourKind.NTM,
    "FLOW": BehaviourKind.FLOW,
    "CORDON": BehaviourKind.CORDON,
}


@dataclass
class TripInfoByDestination:
    """Bookkeeping for the trips inside one unit that head to one destination."""

    destination: str
    accumulated: float = 0.0
    neighbour: Optional[str] = None
    route_shares: Dict[str, float] = field(default_factory=dict)
    departed: float = 0.0
    arrived: float = 0.0

    def shares(self) -> Dict[str, float]:
        """Fraction of the outgoing trips sent to each neighbour."""
        if self.route_shares:
            return dict(self.route_shares)
        if self.neighbour is None:
            return {}
        return {self.neighbour: 1.0}


@dataclass
class CellBehaviour:
    """Tagged variant over the NTM, FLOW and CORDON behaviours."""

    kind: BehaviourKind
    parameters: Optional[FundamentalDiagram] = None
    min_capacity_fraction: float = 0.1
    cordon_supply_cap_vph: float = math.inf
    accumulation: float = 0.0
    trips: Dict[str, TripInfoByDestination] = field(default_factory=dict)
    border_capacity: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def for_behaviour_type(cls, behaviour_type: object) -> "CellBehaviour":
        """Pick the variant matching a traffic behaviour tag (enum member or name)."""
        key = str(getattr(behaviour_type, "value", behaviour_type)).strip().upper()
        if key not in _KIND_BY_TYPE:
            raise ValueError(f"No cell behaviour for traffic behaviour type {behaviour_type!r}")
        return cls(kind=_KIND_BY_TYPE[key])

    # ------------------------------------------------------------ diagram --
    def supply(self, accumulation: Optional[float] = None) -> float:
        acc = self.accumulation if accumulation is None else accumulation
        if self.kind is BehaviourKind.CORDON:
            capacity = self.parameters.capacity_vph if self.parameters is not None else math.inf
            return min(capacity, self.cordon_supply_cap_vph)
        params = self._require_parameters()
        if acc < params.critical_1:
            return params.capacity_vph
        if acc >= params.jam:
            return 0.0
        floor = self.min_capacity_fraction * params.capacity_vph
        return max(params.production(acc), floor)

    def demand(self, accumulation: Optional[float] = None) -> float:
        acc = self.accumulation if accumulation is None else accumulation
        if self.kind is BehaviourKind.CORDON:
            return 0.0
        return self._require_parameters().production(acc)

    def current_speed(self, accumulation: Optional[float] = None) -> float:
        acc = self.accumulation if accumulation is None else accumulation
        params = self.parameters
        if params is None:
            return 0.0
        if self.kind is BehaviourKind.CORDON or not params.is_congested(acc):
            return params.free_speed_kmh
        density = acc / params.road_length_km
        return min(self.supply(acc) / density, params.free_speed_kmh)

    def sending_capacity(self, time_step_seconds: float, accumulation: Optional[float] = None) -> float:
        """Vehicles allowed to leave during one step of ``time_step_seconds``."""
        acc = self.accumulation if accumulation is None else accumulation
        if acc <= 0.0:
            return 0.0
        if self.kind is BehaviourKind.CORDON:
            # Cordons release what was injected into them, limited downstream only.
            return acc
        return min(acc, self.demand(acc) * time_step_seconds / 3600.0)

    def room(self, accumulation: Optional[float] = None) -> float:
        """Vehicles the unit can still take before production drops under the capacity floor."""
        acc = self.accumulation if accumulation is None else accumulation
        if self.kind is BehaviourKind.CORDON or self.parameters is None:
            return math.inf
        return max(0.0, self.parameters.accumulation_limit(self.min_capacity_fraction) - acc)

    def receiving_capacity(self, time_step_seconds: float, accumulation: Optional[float] = None) -> float:
        """Vehicles allowed to enter during one step: supply, bounded by the remaining room."""
        acc = self.accumulation if accumulation is None else accumulation
        return min(self.supply(acc) * time_step_seconds / 3600.0, self.room(acc))

    def _require_parameters(self) -> FundamentalDiagram:
        if self.parameters is None:
            raise RuntimeError(f"{self.kind.value} behaviour has no fundamental diagram assigned")
        return self.parameters

    # -------------------------------------------------------------- trips --
    def trip_info(self, destination: str) -> TripInfoByDestination:
        info = self.trips.get(destination)
        if info is None:
            info = TripInfoByDestination(destination=destination)
            self.trips[destination] = info
        return info

    def add_trips(self, destination: str, amount: float) -> None:
        if amount <= 0.0:
            return
        self.trip_info(destination).accumulated += amount
        self.accumulation += amount

    def remove_trips(self, destination: str, amount: float) -> None:
        if amount <= 0.0:
            return
        info = self.trip_info(destination)
        info.accumulated = _snap(info.accumulated - amount)
        self.accumulation = _snap(self.accumulation - amount)

    def destination_share(self, destination: str, accumulation: Optional[float] = None) -> float:
        """Share of the accumulation heading to ``destination``; zero for an empty unit."""
        acc = self.accumulation if accumulation is None else accumulation
        info = self.trips.get(destination)
        if info is None or acc <= 0.0:
            return 0.0
        return min(info.accumulated / acc, 1.0)

    def border_capacity_to(self, neighbour: str) -> float:
        return self.border_capacity.get(neighbour, math.inf)


def _snap(value: float) -> float:
    if value < _EPSILON:
        return 0.0
    return value


__all__ = [
    "BehaviourKind",
    "CellBehaviour",
    "DEFAULT_BORDER_CAPACITY_VPH",
    "TripInfoByDestination",
]
