"""Cell transmission sub-model for FLOW links."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List

from .cell_behaviour import BehaviourKind, CellBehaviour
from .fundamental_diagram import DEFAULT_JAM_DENSITY, FundamentalDiagram

if TYPE_CHECKING:  # pragma: no cover - import for annotations only
    from ntmflow.network.domain_types import Link


@dataclass(eq=False)
class FlowCell:
    """Fixed-length segment of a FLOW link."""

    id: str
    index: int
    length_km: float
    behaviour: CellBehaviour

    def __hash__(self) -> int:
        return hash(self.id)


@dataclass
class CellChain:
    """Ordered cells of one FLOW link between two area-graph vertices."""

    link: "Link"
    start_vertex: str
    end_vertex: str
    cells: List[FlowCell] = field(default_factory=list)

    @property
    def head(self) -> FlowCell:
        return self.cells[0]

    @property
    def tail(self) -> FlowCell:
        return self.cells[-1]

    def next_unit(self, index: int) -> str:
        """Id of the unit downstream of cell ``index``: the next cell or the end vertex."""
        if index + 1 < len(self.cells):
            return self.cells[index + 1].id
        return self.end_vertex

    def __len__(self) -> int:
        return len(self.cells)


def create_cells(
    link: "Link",
    time_step_seconds: float,
    *,
    jam_density: float = DEFAULT_JAM_DENSITY,
    min_capacity_fraction: float = 0.1,
) -> List[FlowCell]:
    """Split a FLOW link into cells a vehicle crosses in one step at free speed.

    The last cell absorbs the remainder so the cell lengths add up to the link length.
    """
    if time_step_seconds <= 0:
        raise ValueError("CTM time step must be positive")
    if link.capacity_vph is None or link.capacity_vph <= 0:
        raise ValueError(f"FLOW link {link.id} needs a positive capacity to build cells")

    nominal_length = link.free_speed_kmh * time_step_seconds / 3600.0
    count = max(1, int(round(link.length_km / nominal_length)))
    cells: List[FlowCell] = []
    for index in range(count):
        if index < count - 1:
            length = nominal_length
        else:
            length = link.length_km - nominal_length * (count - 1)
        if length <= 0:
            # Zero-length links still get a single nominal cell.
            length = nominal_length
        parameters = FundamentalDiagram.for_flow_link(
            capacity_vph=link.capacity_vph,
            free_speed_kmh=link.free_speed_kmh,
            lanes=link.number_of_lanes,
            cell_length_km=length,
            jam_density=jam_density,
        )
        behaviour = CellBehaviour(
            kind=BehaviourKind.FLOW,
            parameters=parameters,
            min_capacity_fraction=min_capacity_fraction,
        )
        cells.append(FlowCell(id=f"{link.id}/{index}", index=index, length_km=length, behaviour=behaviour))
    return cells


__all__ = ["CellChain", "FlowCell", "create_cells"]
