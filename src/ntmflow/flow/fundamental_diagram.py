"""Piecewise-linear fundamental diagram shared by NTM areas and CTM cells."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence

# Default densities in vehicles per lane-km.
DEFAULT_JAM_DENSITY = 150.0
DEFAULT_CRITICAL_RATIO = 1.6


@dataclass(frozen=True)
class FundamentalDiagram:
    """Accumulation thresholds and flow limits of one area or cell.

    The production curve runs through ``(0, 0)``, ``(critical_1, capacity)``,
    ``(critical_2, capacity)`` and ``(jam, 0)``.
    """

    critical_1: float
    critical_2: float
    jam: float
    capacity_vph: float
    free_speed_kmh: float
    road_length_km: float

    def __post_init__(self) -> None:
        if self.capacity_vph <= 0:
            raise ValueError("Fundamental diagram capacity must be positive")
        if self.free_speed_kmh <= 0:
            raise ValueError("Fundamental diagram free speed must be positive")
        if self.road_length_km <= 0:
            raise ValueError("Fundamental diagram road length must be positive")
        if not 0 < self.critical_1 <= self.critical_2 < self.jam:
            raise ValueError(
                "Fundamental diagram requires 0 < critical_1 <= critical_2 < jam "
                f"(got {self.critical_1}, {self.critical_2}, {self.jam})"
            )

    # ---------------------------------------------------------------- curve --
    def production(self, accumulation: float) -> float:
        """Flow rate (veh/h) produced at the given accumulation."""
        if accumulation <= 0.0 or accumulation >= self.jam:
            return 0.0
        if accumulation < self.critical_1:
            return self.capacity_vph * accumulation / self.critical_1
        if accumulation <= self.critical_2 or math.isinf(self.jam):
            return self.capacity_vph
        return self.capacity_vph * (self.jam - accumulation) / (self.jam - self.critical_2)

    def is_congested(self, accumulation: float) -> bool:
        return accumulation > self.critical_1

    def accumulation_limit(self, min_capacity_fraction: float) -> float:
        """Accumulation at which production has fallen to ``min_capacity_fraction x capacity``.

        Units are never filled beyond this point so they keep producing at
        least the capacity floor.
        """
        if math.isinf(self.jam):
            return math.inf
        return self.jam - min_capacity_fraction * (self.jam - self.critical_2)

    @property
    def breakpoints(self) -> Sequence[float]:
        return (0.0, self.critical_1, self.critical_2, self.jam)

    # ---------------------------------------------------------- constructors --
    @classmethod
    def from_area(
        cls,
        *,
        free_speed_kmh: float,
        road_length_km: float,
        capacity_vph: Optional[float] = None,
        accumulation_thresholds: Optional[Sequence[float]] = None,
        critical_density: float = 25.0,
        critical_ratio: float = DEFAULT_CRITICAL_RATIO,
        jam_density: float = DEFAULT_JAM_DENSITY,
    ) -> "FundamentalDiagram":
        """Build area parameters from explicit thresholds or from speed and road length.

        Without a capacity the first threshold comes from ``critical_density``
        and capacity follows from ``free_speed * critical_1 / road_length`` so that
        the speed is continuous at the first threshold.
        """
        if accumulation_thresholds is not None:
            if len(accumulation_thresholds) != 3:
                raise ValueError("accumulation_thresholds must hold [critical_1, critical_2, jam]")
            c1, c2, jam = (float(value) for value in accumulation_thresholds)
            if capacity_vph is None:
                capacity_vph = free_speed_kmh * c1 / road_length_km
            return cls(c1, c2, jam, float(capacity_vph), free_speed_kmh, road_length_km)

        if capacity_vph is None:
            c1 = critical_density * road_length_km
            capacity_vph = free_speed_kmh * c1 / road_length_km
        else:
            c1 = capacity_vph * road_length_km / free_speed_kmh
        c2 = c1 * critical_ratio
        jam = max(jam_density * road_length_km, c2 * 1.5)
        return cls(c1, c2, jam, float(capacity_vph), free_speed_kmh, road_length_km)

    @classmethod
    def for_flow_link(
        cls,
        *,
        capacity_vph: float,
        free_speed_kmh: float,
        lanes: int,
        cell_length_km: float,
        jam_density: float = DEFAULT_JAM_DENSITY,
    ) -> "FundamentalDiagram":
        """Triangular CTM diagram of a single cell."""
        critical = capacity_vph * cell_length_km / free_speed_kmh
        jam = max(jam_density * max(lanes, 1) * cell_length_km, critical * 2.0)
        return cls(critical, critical, jam, capacity_vph, free_speed_kmh, cell_length_km)

    @classmethod
    def point_queue(
        cls, *, capacity_vph: float, free_speed_kmh: float, time_step_seconds: float
    ) -> "FundamentalDiagram":
        """Junction vertex that discharges its content within one step up to capacity."""
        road_length_km = free_speed_kmh * time_step_seconds / 3600.0
        critical = capacity_vph * time_step_seconds / 3600.0
        return cls(critical, critical, math.inf, capacity_vph, free_speed_kmh, road_length_km)


__all__ = ["DEFAULT_CRITICAL_RATIO", "DEFAULT_JAM_DENSITY", "FundamentalDiagram"]
