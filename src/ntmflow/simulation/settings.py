from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Dict, Mapping, Tuple

import yaml

from ntmflow.network.graph_builder import GraphSettings

logger = logging.getLogger(__name__)


def _parse_hhmm(token: object) -> int:
    """Parse an HH:MM clock time into minutes since midnight."""
    if not isinstance(token, str) or not token.strip():
        raise ValueError("start_time must be a non-empty HH:MM string")
    text = token.strip()
    parts = text.split(":")
    if len(parts) != 2 or not parts[0].isdigit() or not parts[1].isdigit():
        raise ValueError(f"start_time must be in HH:MM format: {text!r}")
    hour, minute = int(parts[0]), int(parts[1])
    if hour > 23 or minute > 59:
        raise ValueError(f"start_time out of range: {text!r}")
    return hour * 60 + minute


def _format_hhmm(minutes: int) -> str:
    hours, mins = divmod(int(minutes), 60)
    return f"{hours:02d}:{mins:02d}"


@dataclass(frozen=True)
class SimulationSettings:
    time_step_seconds: float = 10.0
    ctm_time_step_seconds: float = 10.0
    duration_seconds: float = 10800.0
    start_minutes: int = 0
    min_capacity_fraction: float = 0.1
    cordon_supply_cap_vph: float = math.inf
    connector_capacity_vph: float = 4000.0
    connector_speed_kmh: float = 70.0
    detour_factor: float = 1.3
    assumed_speed_kmh: float = 30.0
    isolated_search_distance_m: float = 8000.0
    isolated_target_count: int = 6
    flow_link_min_speed_kmh: float = 70.0
    flow_link_min_capacity_vph: float = 3400.0
    critical_density: float = 25.0
    critical_ratio: float = 1.6
    jam_density: float = 150.0
    default_road_length_km: float = 1.0
    default_speed_kmh: float = 30.0
    demand_scaling_factor: float = 1.0
    reroute_interval_steps: int = 0
    border_capacity_factors: Dict[Tuple[str, str], float] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        positive = (
            "time_step_seconds",
            "ctm_time_step_seconds",
            "duration_seconds",
            "connector_capacity_vph",
            "connector_speed_kmh",
            "assumed_speed_kmh",
            "isolated_search_distance_m",
            "critical_density",
            "jam_density",
            "default_road_length_km",
            "default_speed_kmh",
        )
        for name in positive:
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.ctm_time_step_seconds < self.time_step_seconds:
            raise ValueError("ctm_time_step_seconds must not be smaller than time_step_seconds")
        if not 0.0 < self.min_capacity_fraction <= 1.0:
            raise ValueError("min_capacity_fraction must lie in (0, 1]")
        if self.cordon_supply_cap_vph < 0:
            raise ValueError("cordon_supply_cap_vph must be non-negative")
        if self.critical_ratio < 1.0:
            raise ValueError("critical_ratio must be at least 1")
        if self.detour_factor < 1.0:
            raise ValueError("detour_factor must be at least 1")
        if self.isolated_target_count < 1:
            raise ValueError("isolated_target_count must be at least 1")
        if self.demand_scaling_factor < 0:
            raise ValueError("demand_scaling_factor must be non-negative")
        if self.reroute_interval_steps < 0:
            raise ValueError("reroute_interval_steps must be non-negative")
        if not 0 <= self.start_minutes < 1440:
            raise ValueError("start_minutes must lie within one day")
        for key, factor in self.border_capacity_factors.items():
            if factor < 0:
                raise ValueError(f"Border capacity factor for {key[0]} -> {key[1]} must be non-negative")

    @property
    def num_steps(self) -> int:
        return int(math.ceil(self.duration_seconds / self.time_step_seconds - 1e-9))

    @property
    def start_time(self) -> str:
        return _format_hhmm(self.start_minutes)

    def graph_settings(self) -> GraphSettings:
        return GraphSettings(
            ctm_time_step_seconds=self.ctm_time_step_seconds,
            connector_capacity_vph=self.connector_capacity_vph,
            connector_speed_kmh=self.connector_speed_kmh,
            detour_factor=self.detour_factor,
            assumed_speed_kmh=self.assumed_speed_kmh,
            isolated_search_distance_m=self.isolated_search_distance_m,
            isolated_target_count=self.isolated_target_count,
            jam_density=self.jam_density,
            min_capacity_fraction=self.min_capacity_fraction,
        )

    # ------------------------------------------------------------------ I/O --
    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> "SimulationSettings":
        if not isinstance(data, Mapping):
            raise TypeError("Simulation settings must be a mapping")
        known = {f.name for f in fields(cls)} | {"start_time"}
        unknown = sorted(str(key) for key in data if key not in known)
        if unknown:
            raise ValueError(f"Unknown simulation settings: {', '.join(unknown)}")
        values: Dict[str, object] = {}
        for f in fields(cls):
            if f.name in ("border_capacity_factors", "start_minutes") or f.name not in data:
                continue
            raw = data[f.name]
            if f.name == "cordon_supply_cap_vph" and raw is None:
                values[f.name] = math.inf
            elif f.name in ("isolated_target_count", "reroute_interval_steps"):
                if isinstance(raw, bool) or not isinstance(raw, int):
                    raise TypeError(f"{f.name} must be an integer")
                values[f.name] = raw
            else:
                if isinstance(raw, bool) or not isinstance(raw, (int, float)):
                    raise TypeError(f"{f.name} must be numeric")
                values[f.name] = float(raw)
        if "start_time" in data:
            values["start_minutes"] = _parse_hhmm(data["start_time"])
        elif "start_minutes" in data:
            values["start_minutes"] = int(data["start_minutes"])
        values["border_capacity_factors"] = cls._parse_border_factors(data.get("border_capacity_factors"))
        return cls(**values)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "SimulationSettings":
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Simulation settings YAML not found at {config_path}")
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
        if not isinstance(data, Mapping):
            raise TypeError("Simulation settings YAML must contain a mapping at the top level")
        return cls.from_mapping(data.get("simulation", data))

    def to_yaml(self, path: str | Path) -> None:
        output: Dict[str, object] = asdict(self)
        output.pop("start_minutes")
        output["start_time"] = self.start_time
        if math.isinf(self.cordon_supply_cap_vph):
            output["cordon_supply_cap_vph"] = None
        output["border_capacity_factors"] = [
            {"from": start, "to": end, "factor": float(factor)}
            for (start, end), factor in sorted(self.border_capacity_factors.items())
        ]
        dest = Path(path)
        dest.parent.mkdir(parents=True, exist_ok=True)
        with dest.open("w", encoding="utf-8") as handle:
            yaml.safe_dump({"simulation": output}, handle, sort_keys=True)

    @staticmethod
    def _parse_border_factors(raw: object) -> Dict[Tuple[str, str], float]:
        if raw is None:
            return {}
        if not isinstance(raw, list):
            raise TypeError("'border_capacity_factors' must be a list of {from, to, factor} entries")
        factors: Dict[Tuple[str, str], float] = {}
        for entry in raw:
            if not isinstance(entry, Mapping):
                raise TypeError("Border capacity factor entries must be mappings")
            for key in ("from", "to", "factor"):
                if key not in entry:
                    raise ValueError(f"Border capacity factor entry is missing '{key}'")
            edge = (str(entry["from"]), str(entry["to"]))
            if edge in factors:
                logger.warning("Border capacity factor for %s -> %s given twice; using the last", *edge)
            factors[edge] = float(entry["factor"])
        return factors


__all__ = ["SimulationSettings"]
