"""Run an NTM/CTM traffic assignment scenario and write its telemetry as CSV."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Mapping, Sequence

import yaml
from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)
from rich.table import Table

from ntmflow.network.data_source import NetworkData
from ntmflow.simulation.model import ModelRunResult, NTMModel
from ntmflow.simulation.settings import SimulationSettings

logger = logging.getLogger(__name__)

_NETWORK_KEYS = ("areas", "nodes", "links")


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--scenario",
        required=True,
        help="Scenario YAML with a 'network' section (GeoJSON/YAML paths) and optional 'simulation' settings.",
    )
    parser.add_argument(
        "--output-dir",
        default="output",
        help="Directory receiving units.csv, flux.csv, od_departures.csv and arrivals.csv.",
    )
    parser.add_argument(
        "--steps",
        type=int,
        default=None,
        help="Number of steps to simulate (defaults to duration / time step).",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    return parser.parse_args(argv)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(message)s",
    )


def load_scenario(path: str | Path) -> tuple[NetworkData, SimulationSettings]:
    scenario_path = Path(path)
    if not scenario_path.exists():
        raise FileNotFoundError(f"Scenario YAML not found at {scenario_path}")
    with scenario_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, Mapping):
        raise TypeError("Scenario YAML must contain a mapping at the top level")
    network_section = data.get("network")
    if not isinstance(network_section, Mapping):
        raise ValueError("Scenario YAML needs a 'network' mapping")
    missing = [key for key in _NETWORK_KEYS if key not in network_section]
    if missing:
        raise ValueError(f"Scenario 'network' section is missing: {', '.join(missing)}")

    base = scenario_path.parent

    def resolve(value: object) -> Path:
        candidate = Path(str(value))
        return candidate if candidate.is_absolute() else base / candidate

    demand = network_section.get("demand")
    big_areas = network_section.get("big_areas")
    network = NetworkData.from_geojson(
        resolve(network_section["areas"]),
        resolve(network_section["nodes"]),
        resolve(network_section["links"]),
        resolve(demand) if demand is not None else None,
        big_areas_path=resolve(big_areas) if big_areas is not None else None,
    )
    settings = SimulationSettings.from_mapping(data.get("simulation") or {})
    return network, settings


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    configure_logging(args.log_level)
    console = Console()
    try:
        network, settings = load_scenario(args.scenario)
    except (FileNotFoundError, TypeError, ValueError) as exc:
        raise SystemExit(str(exc)) from exc

    model = NTMModel(network, settings)
    num_steps = settings.num_steps if args.steps is None else args.steps
    result = _run_with_progress(model, num_steps)
    written = result.run.write_csv(args.output_dir)
    _print_summary(console, result)
    for path in written:
        logger.info("Wrote %s", path)


def _run_with_progress(model: NTMModel, num_steps: int) -> ModelRunResult:
    """Run the model while displaying a progress bar over simulation steps."""
    progress = Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        TimeElapsedColumn(),
        TimeRemainingColumn(),
        transient=True,
    )
    with progress:
        task_id = progress.add_task("Propagating flows", total=num_steps)
        return model.run(num_steps, progress=lambda _step: progress.advance(task_id))


def _print_summary(console: Console, result: ModelRunResult) -> None:
    run = result.run
    table = Table(title="Run summary")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Steps", str(run.num_steps))
    table.add_row("Area-graph vertices", str(result.graphs.area_graph.number_of_nodes()))
    table.add_row("Area-graph edges", str(result.graphs.area_graph.number_of_edges()))
    table.add_row("Trips departed", f"{run.total_departures():.2f}")
    table.add_row("Trips arrived", f"{run.total_arrivals():.2f}")
    table.add_row("Trips unassigned", f"{sum(run.unassigned_trips.values()):.2f}")
    waiting = sum(series.queued[-1] for series in run.by_unit.values() if series.queued)
    table.add_row("Trips waiting at origin", f"{waiting:.2f}")
    console.print(table)


if __name__ == "__main__":
    main()
