from .engine import FlowPropagationEngine
from .model import ModelRunResult, NTMModel
from .results import RunResult, UnitTimeSeries
from .settings import SimulationSettings

__all__ = [
    "FlowPropagationEngine",
    "ModelRunResult",
    "NTMModel",
    "RunResult",
    "SimulationSettings",
    "UnitTimeSeries",
]
