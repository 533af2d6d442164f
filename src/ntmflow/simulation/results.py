"""Per-run telemetry keyed by stable unit ids."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Tuple

import numpy as np
import pandas as pd

UNIT_COLUMNS = (
    "accumulation",
    "speed",
    "demand",
    "supply",
    "inflow",
    "outflow",
    "departures",
    "arrivals",
    "queued",
)


@dataclass
class UnitTimeSeries:
    """Per-step statistics of one area-graph vertex or flow cell."""

    kind: str
    accumulation: List[float] = field(default_factory=list)
    speed: List[float] = field(default_factory=list)
    demand: List[float] = field(default_factory=list)
    supply: List[float] = field(default_factory=list)
    inflow: List[float] = field(default_factory=list)
    outflow: List[float] = field(default_factory=list)
    departures: List[float] = field(default_factory=list)
    arrivals: List[float] = field(default_factory=list)
    queued: List[float] = field(default_factory=list)

    def append(self, **values: float) -> None:
        for column in UNIT_COLUMNS:
            getattr(self, column).append(float(values.get(column, 0.0)))


@dataclass
class RunResult:
    """Telemetry of a simulation run.

    ``flux`` holds vehicles moved per step from a unit to a neighbour,
    ``od_departures`` the vehicles entering their origin per step per OD pair
    and ``destination_arrivals`` the vehicles arriving per step per
    destination. Departures still waiting for room in their origin show up in
    the origin's ``queued`` series. Trips are tracked by destination only, so
    arrivals carry no origin.
    """

    time_step_seconds: float
    start_minutes: int = 0
    times: List[float] = field(default_factory=list)
    by_unit: Dict[str, UnitTimeSeries] = field(default_factory=dict)
    flux: Dict[Tuple[str, str], List[float]] = field(default_factory=dict)
    od_departures: Dict[Tuple[str, str], List[float]] = field(default_factory=dict)
    destination_arrivals: Dict[str, List[float]] = field(default_factory=dict)
    unassigned_trips: Dict[Tuple[str, str], float] = field(default_factory=dict)

    @property
    def num_steps(self) -> int:
        return len(self.times)

    def total_departures(self) -> float:
        return sum(sum(series) for series in self.od_departures.values())

    def total_arrivals(self) -> float:
        return sum(sum(series) for series in self.destination_arrivals.values())

    def cumulative_arrivals(self, destination: str) -> float:
        return sum(self.destination_arrivals.get(destination, []))

    def cumulative_departures(self, origin: str) -> float:
        return sum(sum(series) for (orig, _), series in self.od_departures.items() if orig == origin)

    def series_matrix(self, column: str) -> np.ndarray:
        """Array of shape ``(units, steps)`` for one unit column, rows in unit order."""
        if column not in UNIT_COLUMNS:
            raise KeyError(f"Unknown unit column {column!r}")
        if not self.by_unit:
            return np.zeros((0, self.num_steps))
        return np.array([getattr(series, column) for series in self.by_unit.values()], dtype=float)

    # -------------------------------------------------------------- frames --
    def _clock(self) -> List[str]:
        labels = []
        for seconds in self.times:
            minutes = (self.start_minutes + int(seconds // 60)) % 1440
            hours, mins = divmod(minutes, 60)
            labels.append(f"{hours:02d}:{mins:02d}:{int(seconds % 60):02d}")
        return labels

    def unit_frame(self) -> pd.DataFrame:
        """Tidy frame with one row per unit and step."""
        rows = []
        clock = self._clock()
        for unit_id, series in self.by_unit.items():
            for step, time_seconds in enumerate(self.times):
                row = {
                    "unit_id": unit_id,
                    "kind": series.kind,
                    "step": step,
                    "time_seconds": time_seconds,
                    "clock": clock[step],
                }
                for column in UNIT_COLUMNS:
                    row[column] = getattr(series, column)[step]
                rows.append(row)
        columns = ["unit_id", "kind", "step", "time_seconds", "clock", *UNIT_COLUMNS]
        return pd.DataFrame(rows, columns=columns)

    def flux_frame(self) -> pd.DataFrame:
        rows = [
            {"unit_id": unit_id, "neighbour": neighbour, "step": step, "vehicles": value}
            for (unit_id, neighbour), series in self.flux.items()
            for step, value in enumerate(series)
        ]
        return pd.DataFrame(rows, columns=["unit_id", "neighbour", "step", "vehicles"])

    def od_frame(self) -> pd.DataFrame:
        rows = [
            {"origin": origin, "destination": destination, "step": step, "departures": value}
            for (origin, destination), series in sorted(self.od_departures.items())
            for step, value in enumerate(series)
        ]
        return pd.DataFrame(rows, columns=["origin", "destination", "step", "departures"])

    def arrival_frame(self) -> pd.DataFrame:
        rows = [
            {"destination": destination, "step": step, "arrivals": value}
            for destination, series in sorted(self.destination_arrivals.items())
            for step, value in enumerate(series)
        ]
        return pd.DataFrame(rows, columns=["destination", "step", "arrivals"])

    def write_csv(self, output_dir: str | Path) -> List[Path]:
        """Write all telemetry frames as CSV files; returns the written paths."""
        target = Path(output_dir)
        target.mkdir(parents=True, exist_ok=True)
        written = []
        for name, frame in (
            ("units.csv", self.unit_frame()),
            ("flux.csv", self.flux_frame()),
            ("od_departures.csv", self.od_frame()),
            ("arrivals.csv", self.arrival_frame()),
        ):
            path = target / name
            frame.to_csv(path, index=False)
            written.append(path)
        return written


__all__ = ["RunResult", "UNIT_COLUMNS", "UnitTimeSeries"]
