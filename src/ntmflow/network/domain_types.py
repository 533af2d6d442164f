"""Core dataclasses shared across the network package."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional, Set, Tuple

from shapely.geometry import LineString, Point
from shapely.geometry.base import BaseGeometry

if TYPE_CHECKING:  # pragma: no cover - import for annotations only
    from ntmflow.flow.cell_behaviour import CellBehaviour
    from ntmflow.flow.fundamental_diagram import FundamentalDiagram


class TrafficBehaviourType(str, Enum):
    """How traffic is modelled on a node, link or area."""

    ROAD = "ROAD"
    FLOW = "FLOW"
    NTM = "NTM"
    CORDON = "CORDON"
    CENTROID = "CENTROID"

    @classmethod
    def parse(cls, value: object) -> "TrafficBehaviourType":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().upper()
        try:
            return cls(text)
        except ValueError:
            raise ValueError(f"Unknown traffic behaviour type: {value!r}") from None


# (minimum free speed km/h, upper capacity bounds veh/h for 1..5 lanes)
_LANE_CAPACITY_BANDS = (
    (80.0, (3000.0, 5000.0, 7000.0, 9000.0, 10500.0)),
    (40.0, (2000.0, 3000.0, 4000.0, 5000.0, 6000.0)),
    (0.0, (1800.0, 3200.0, 4400.0, 5400.0, 6400.0)),
)


def estimate_lanes(capacity: Optional[float], free_speed: float) -> int:
    """Estimate the number of lanes from a capacity band table; 0 when capacity is unknown."""
    if capacity is None:
        return 0
    for min_speed, bounds in _LANE_CAPACITY_BANDS:
        if free_speed >= min_speed:
            for lanes, upper in enumerate(bounds, start=1):
                if capacity < upper:
                    return lanes
            return len(bounds) + 1
    return 0


@dataclass
class Node:
    """Point location in the physical network."""

    id: str
    point: Point
    behaviour_type: TrafficBehaviourType = TrafficBehaviourType.ROAD

    @property
    def x(self) -> float:
        return float(self.point.x)

    @property
    def y(self) -> float:
        return float(self.point.y)

    def distance_to(self, other: "Node") -> float:
        """Euclidean distance in metres."""
        return math.hypot(self.x - other.x, self.y - other.y)


@dataclass
class Link:
    """Directed edge between two nodes, used as edge payload in both graphs."""

    id: str
    start_node_id: str
    end_node_id: str
    length_km: float
    free_speed_kmh: float
    capacity_vph: Optional[float] = None
    behaviour_type: TrafficBehaviourType = TrafficBehaviourType.ROAD
    geometry: Optional[LineString] = None
    fixed_time_hours: Optional[float] = None
    corridor_capacity_vph: Optional[float] = None
    number_of_lanes: int = field(default=0)

    def __post_init__(self) -> None:
        if self.length_km < 0:
            raise ValueError(f"Link {self.id} has a negative length")
        if self.free_speed_kmh <= 0:
            raise ValueError(f"Link {self.id} must have a positive free speed")
        if not self.number_of_lanes:
            self.number_of_lanes = estimate_lanes(self.capacity_vph, self.free_speed_kmh)

    @property
    def travel_time_hours(self) -> float:
        if self.fixed_time_hours is not None:
            return self.fixed_time_hours
        return self.length_km / self.free_speed_kmh

    @property
    def link_graph_weight(self) -> float:
        # Free speed times length is the travel-time proxy used on the link graph.
        return self.free_speed_kmh * self.length_km

    def add_corridor_capacity(self, capacity_vph: float) -> None:
        if self.corridor_capacity_vph is None:
            self.corridor_capacity_vph = 0.0
        self.corridor_capacity_vph += float(capacity_vph)

    @classmethod
    def create_connector(
        cls,
        start: Node,
        end: Node,
        *,
        capacity_vph: Optional[float],
        speed_kmh: float,
        behaviour_type: TrafficBehaviourType,
        time_hours: Optional[float] = None,
    ) -> "Link":
        """Straight synthetic link between two nodes."""
        length_km = start.distance_to(end) / 1000.0
        return cls(
            id=f"{start.id} - {end.id}",
            start_node_id=start.id,
            end_node_id=end.id,
            length_km=length_km,
            free_speed_kmh=speed_kmh,
            capacity_vph=capacity_vph,
            behaviour_type=behaviour_type,
            geometry=LineString([start.point, end.point]),
            fixed_time_hours=time_hours,
            corridor_capacity_vph=capacity_vph,
        )


@dataclass(eq=False)
class Area:
    """Polygonal zone aggregated into a single area-graph vertex."""

    id: str
    geometry: BaseGeometry
    centroid_node_id: Optional[str] = None
    behaviour_type: TrafficBehaviourType = TrafficBehaviourType.NTM
    free_speed_kmh: float = 0.0
    road_length_km: float = 0.0
    demand_scaling_factor: float = 1.0
    capacity_vph: Optional[float] = None
    accumulation_thresholds: Optional[Tuple[float, float, float]] = None
    parameters: Optional["FundamentalDiagram"] = None
    touching: Set[str] = field(default_factory=set)

    @property
    def centroid(self) -> Point:
        return self.geometry.centroid

    def __hash__(self) -> int:
        return hash(self.id)


@dataclass(eq=False)
class BoundedNode(Node):
    """Graph vertex bound to one area and owning one cell behaviour."""

    area_id: Optional[str] = None
    behaviour: Optional["CellBehaviour"] = None

    def __post_init__(self) -> None:
        from ntmflow.flow.cell_behaviour import CellBehaviour

        if self.behaviour is None:
            self.behaviour = CellBehaviour.for_behaviour_type(self.behaviour_type)

    def __hash__(self) -> int:
        return hash(self.id)


__all__ = [
    "Area",
    "BoundedNode",
    "Link",
    "Node",
    "TrafficBehaviourType",
    "estimate_lanes",
]
