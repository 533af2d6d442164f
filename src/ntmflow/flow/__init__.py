"""Flow package exports."""

from .cell_behaviour import (
    DEFAULT_BORDER_CAPACITY_VPH,
    BehaviourKind,
    CellBehaviour,
    TripInfoByDestination,
)
from .cells import CellChain, FlowCell, create_cells
from .fundamental_diagram import FundamentalDiagram

__all__ = [
    "BehaviourKind",
    "CellBehaviour",
    "CellChain",
    "DEFAULT_BORDER_CAPACITY_VPH",
    "FlowCell",
    "FundamentalDiagram",
    "TripInfoByDestination",
    "create_cells",
]
