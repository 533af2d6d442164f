"""Sparse origin-destination trip demand."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

import yaml

from .profiles import DepartureTimeProfile, load_profiles

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TripDemandEntry:
    trips: float
    profile: Optional[str] = None

    def __post_init__(self) -> None:
        if self.trips < 0:
            raise ValueError("Number of trips must be non-negative")


@dataclass
class TripDemand:
    """Trips per ``origin -> destination`` keyed by area-graph vertex id.

    An entry without a profile releases all of its trips at time zero.
    """

    entries: Dict[str, Dict[str, TripDemandEntry]] = field(default_factory=dict)
    scaling_factor: float = 1.0

    def add(self, origin: str, destination: str, trips: float, profile: Optional[str] = None) -> None:
        row = self.entries.setdefault(str(origin), {})
        previous = row.get(str(destination))
        if previous is not None:
            if previous.profile != profile:
                raise ValueError(
                    f"Trips from {origin} to {destination} use different departure profiles"
                )
            trips += previous.trips
        row[str(destination)] = TripDemandEntry(trips=float(trips), profile=profile)

    def get(self, origin: str, destination: str) -> Optional[TripDemandEntry]:
        return self.entries.get(origin, {}).get(destination)

    def pairs(self) -> Iterator[Tuple[str, str, TripDemandEntry]]:
        for origin, row in self.entries.items():
            for destination, entry in row.items():
                yield origin, destination, entry

    def origins(self) -> List[str]:
        return list(self.entries)

    @property
    def total_trips(self) -> float:
        return sum(entry.trips for _, _, entry in self.pairs())

    def departures(
        self,
        origin: str,
        destination: str,
        start_seconds: float,
        end_seconds: float,
        profiles: Mapping[str, DepartureTimeProfile],
        *,
        area_factor: float = 1.0,
    ) -> float:
        """Trips leaving ``origin`` for ``destination`` during ``[start_seconds, end_seconds)``."""
        entry = self.get(origin, destination)
        if entry is None or entry.trips <= 0:
            return 0.0
        if entry.profile is None:
            fraction = 1.0 if start_seconds <= 0.0 < end_seconds else 0.0
        else:
            profile = profiles.get(entry.profile)
            if profile is None:
                raise KeyError(f"Unknown departure profile {entry.profile!r} for {origin} -> {destination}")
            fraction = profile.fraction_between(start_seconds, end_seconds)
        return entry.trips * fraction * self.scaling_factor * area_factor

    # ------------------------------------------------------------------ I/O --
    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> "TripDemand":
        """Parse ``{scaling_factor, trips: [{origin, destination, trips, profile}]}``."""
        if not isinstance(data, Mapping):
            raise TypeError("Trip demand must be a mapping")
        scaling = float(data.get("scaling_factor", 1.0))
        if scaling < 0:
            raise ValueError("Demand scaling_factor must be non-negative")
        demand = cls(scaling_factor=scaling)
        rows = data.get("trips") or []
        if not isinstance(rows, list):
            raise TypeError("'trips' must be a list of OD entries")
        for raw in rows:
            if not isinstance(raw, Mapping):
                raise TypeError("OD entries must be mappings")
            for key in ("origin", "destination", "trips"):
                if key not in raw:
                    raise ValueError(f"OD entry {dict(raw)!r} is missing '{key}'")
            profile = raw.get("profile")
            demand.add(
                str(raw["origin"]),
                str(raw["destination"]),
                float(raw["trips"]),
                str(profile) if profile is not None else None,
            )
        return demand

    def to_mapping(self) -> Dict[str, object]:
        rows = []
        for origin, destination, entry in self.pairs():
            row: Dict[str, object] = {"origin": origin, "destination": destination, "trips": entry.trips}
            if entry.profile is not None:
                row["profile"] = entry.profile
            rows.append(row)
        return {"scaling_factor": self.scaling_factor, "trips": rows}


def demand_from_yaml(path: str | Path) -> Tuple[TripDemand, Dict[str, DepartureTimeProfile]]:
    """Load trip demand and its departure profiles from one YAML file."""
    demand_path = Path(path)
    if not demand_path.exists():
        raise FileNotFoundError(f"Trip demand YAML not found at {demand_path}")
    with demand_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, Mapping):
        raise TypeError("Trip demand YAML must contain a mapping at the top level")
    profiles = load_profiles(data.get("profiles"))
    demand = TripDemand.from_mapping(data)
    unknown = sorted(
        {entry.profile for _, _, entry in demand.pairs() if entry.profile is not None} - set(profiles)
    )
    if unknown:
        raise ValueError(f"Trip demand refers to undefined departure profiles: {', '.join(unknown)}")
    logger.info("Loaded %.1f trips over %d origins from %s", demand.total_trips, len(demand.entries), demand_path)
    return demand, profiles


__all__ = ["TripDemand", "TripDemandEntry", "demand_from_yaml"]
