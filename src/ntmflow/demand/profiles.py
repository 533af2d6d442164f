"""Departure-time profiles spreading OD trips over the simulation window."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Sequence

import yaml

logger = logging.getLogger(__name__)

_FRACTION_TOLERANCE = 1e-6


@dataclass(frozen=True)
class ProfileSegment:
    """Constant departure rate over ``[start_seconds, start_seconds + duration_seconds)``."""

    start_seconds: float
    duration_seconds: float
    fraction: float

    def __post_init__(self) -> None:
        if self.start_seconds < 0:
            raise ValueError("Profile segment start must be non-negative")
        if self.duration_seconds <= 0:
            raise ValueError("Profile segment duration must be positive")
        if self.fraction < 0:
            raise ValueError("Profile segment fraction must be non-negative")

    @property
    def end_seconds(self) -> float:
        return self.start_seconds + self.duration_seconds


@dataclass
class DepartureTimeProfile:
    name: str
    segments: List[ProfileSegment] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.segments = sorted(self.segments, key=lambda segment: segment.start_seconds)
        for prev, curr in zip(self.segments, self.segments[1:]):
            if curr.start_seconds < prev.end_seconds:
                raise ValueError(f"Departure profile {self.name!r} has overlapping segments")
        total = self.total_fraction
        if self.segments and not math.isclose(total, 1.0, abs_tol=_FRACTION_TOLERANCE):
            logger.warning("Fractions of departure profile %s sum to %.4f instead of 1", self.name, total)

    @property
    def total_fraction(self) -> float:
        return sum(segment.fraction for segment in self.segments)

    def fraction_between(self, start_seconds: float, end_seconds: float) -> float:
        """Share of the trips departing in ``[start_seconds, end_seconds)``."""
        if end_seconds <= start_seconds:
            return 0.0
        fraction = 0.0
        for segment in self.segments:
            overlap = min(end_seconds, segment.end_seconds) - max(start_seconds, segment.start_seconds)
            if overlap > 0:
                fraction += segment.fraction * overlap / segment.duration_seconds
        return fraction

    @classmethod
    def uniform(cls, name: str, duration_seconds: float, start_seconds: float = 0.0) -> "DepartureTimeProfile":
        return cls(name=name, segments=[ProfileSegment(start_seconds, duration_seconds, 1.0)])

    @classmethod
    def from_mapping(cls, name: str, raw: object) -> "DepartureTimeProfile":
        """Parse a list of ``{start, duration, fraction}`` entries (seconds)."""
        if isinstance(raw, Mapping):
            raw = raw.get("segments")
        if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)):
            raise TypeError(f"Departure profile {name!r} must be a list of segments")
        segments: List[ProfileSegment] = []
        for entry in raw:
            if not isinstance(entry, Mapping):
                raise TypeError(f"Segments of departure profile {name!r} must be mappings")
            missing = [key for key in ("start", "duration", "fraction") if key not in entry]
            if missing:
                raise ValueError(f"Segment of departure profile {name!r} is missing {', '.join(missing)}")
            segments.append(
                ProfileSegment(
                    start_seconds=float(entry["start"]),
                    duration_seconds=float(entry["duration"]),
                    fraction=float(entry["fraction"]),
                )
            )
        return cls(name=str(name), segments=segments)

    def to_mapping(self) -> List[Dict[str, float]]:
        return [
            {
                "start": segment.start_seconds,
                "duration": segment.duration_seconds,
                "fraction": segment.fraction,
            }
            for segment in self.segments
        ]


def load_profiles(raw: object) -> Dict[str, DepartureTimeProfile]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise TypeError("'profiles' must be a mapping of profile names to segment lists")
    return {str(name): DepartureTimeProfile.from_mapping(str(name), value) for name, value in raw.items()}


def profiles_from_yaml(path: str | Path) -> Dict[str, DepartureTimeProfile]:
    profile_path = Path(path)
    if not profile_path.exists():
        raise FileNotFoundError(f"Departure profile YAML not found at {profile_path}")
    with profile_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, Mapping):
        raise TypeError("Departure profile YAML must contain a mapping at the top level")
    return load_profiles(data.get("profiles", data))


__all__ = ["DepartureTimeProfile", "ProfileSegment", "load_profiles", "profiles_from_yaml"]
