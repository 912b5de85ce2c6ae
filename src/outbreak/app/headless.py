from __future__ import annotations

import argparse
import csv
import json
import logging
import math
from pathlib import Path
from typing import Optional

from ..sim.core.config import SimulationConfig
from ..sim.core.world import World
from ..sim.types.metrics import TickMetrics
from .terminal import CLEAR, render_world

logger = logging.getLogger(__name__)


_BASIC_HEADER = [
    "tick",
    "population",
    "susceptible",
    "exposed",
    "infectious",
    "recovered",
    "deaths",
    "tick_ms",
]

_DETAILED_HEADER = [
    "tick",
    "population",
    "susceptible",
    "exposed",
    "infectious",
    "recovered",
    "deaths",
    "new_infections",
    "contact_checks",
    "tick_ms",
    "leaves",
    "nodes",
    "attack_rate",
    "contact_checks_per_infectious",
    "agents_per_leaf",
    "tick_ms_per_agent",
    "sim_day",
]


def _format_basic_row(metrics: TickMetrics, tick_ms: float) -> list[object]:
    return [
        metrics.tick,
        metrics.population,
        metrics.susceptible,
        metrics.exposed,
        metrics.infectious,
        metrics.recovered,
        metrics.deaths,
        f"{tick_ms:.3f}",
    ]


def _format_detailed_row(world: World, metrics: TickMetrics, tick_ms: float) -> list[object]:
    population = metrics.population
    ever_alive = population + world.total_deaths
    attack_rate = 0.0 if ever_alive <= 0 else len(world.contacts) / ever_alive
    tick_ms_per_agent = 0.0 if population <= 0 else tick_ms / population
    checks_per_infectious = 0.0 if metrics.infectious <= 0 else metrics.contact_checks / metrics.infectious
    agents_per_leaf = 0.0 if metrics.leaves <= 0 else population / metrics.leaves
    return [
        metrics.tick,
        population,
        metrics.susceptible,
        metrics.exposed,
        metrics.infectious,
        metrics.recovered,
        metrics.deaths,
        metrics.new_infections,
        metrics.contact_checks,
        f"{tick_ms:.3f}",
        metrics.leaves,
        metrics.nodes,
        f"{attack_rate:.4f}",
        f"{checks_per_infectious:.4f}",
        f"{agents_per_leaf:.4f}",
        f"{tick_ms_per_agent:.4f}",
        f"{world.sim_seconds / 86400.0:.4f}",
    ]


def _percentile(sorted_values: list[float], percentile: float) -> float:
    if not sorted_values:
        return 0.0
    if len(sorted_values) == 1:
        return float(sorted_values[0])
    pos = (len(sorted_values) - 1) * percentile
    low = int(math.floor(pos))
    high = int(math.ceil(pos))
    if low == high:
        return float(sorted_values[low])
    weight = pos - low
    return float(sorted_values[low] + (sorted_values[high] - sorted_values[low]) * weight)


def _summary_stats(values: list[float]) -> dict[str, float]:
    if not values:
        return {"min": 0.0, "max": 0.0, "avg": 0.0, "p50": 0.0, "p90": 0.0, "p95": 0.0, "p99": 0.0}
    sorted_values = sorted(values)
    total = sum(values)
    count = len(values)
    return {
        "min": float(sorted_values[0]),
        "max": float(sorted_values[-1]),
        "avg": float(total / count),
        "p50": _percentile(sorted_values, 0.50),
        "p90": _percentile(sorted_values, 0.90),
        "p95": _percentile(sorted_values, 0.95),
        "p99": _percentile(sorted_values, 0.99),
    }


def run_headless(
    steps: int,
    seed: Optional[int],
    log_path: Optional[Path],
    deterministic_log: bool = False,
    log_format: str = "detailed",
    summary_path: Optional[Path] = None,
    summary_window: int = 500,
    config_path: Optional[Path] = None,
    svg_path: Optional[Path] = None,
    contacts_path: Optional[Path] = None,
    render: bool = False,
) -> World:
    log_mode = log_format.lower().strip()
    if log_mode not in {"basic", "detailed"}:
        raise ValueError(f"Unknown log format: {log_format}")

    config = SimulationConfig.from_yaml(config_path) if config_path else SimulationConfig()
    if seed is not None:
        config.seed = seed
    world = World(config)

    writer = None
    csv_file = None
    if log_path:
        csv_file = Path(log_path).open("w", newline="")
        writer = csv.writer(csv_file)
        writer.writerow(_DETAILED_HEADER if log_mode == "detailed" else _BASIC_HEADER)

    tick_ms_series: list[float] = []
    infectious_series: list[int] = []
    contact_checks_series: list[int] = []
    leaves_series: list[int] = []
    peak_infectious = (-1, -1)
    max_tick_ms = (-1.0, -1)

    try:
        for tick in range(steps):
            metrics = world.step(tick)
            tick_ms = 0.0 if deterministic_log else metrics.tick_duration_ms

            if summary_path:
                tick_ms_series.append(tick_ms)
                infectious_series.append(metrics.infectious)
                contact_checks_series.append(metrics.contact_checks)
                leaves_series.append(metrics.leaves)
                if metrics.infectious > peak_infectious[0]:
                    peak_infectious = (metrics.infectious, tick)
                if tick_ms > max_tick_ms[0]:
                    max_tick_ms = (tick_ms, tick)

            if writer:
                if log_mode == "detailed":
                    writer.writerow(_format_detailed_row(world, metrics, tick_ms))
                else:
                    writer.writerow(_format_basic_row(metrics, tick_ms))

            if render:
                print(CLEAR + render_world(world, tick), flush=True)
    finally:
        if csv_file:
            csv_file.close()

    final = world.metrics
    logger.info(
        "Ran %d steps: %d infections recorded, %d deaths, %d agents alive",
        steps,
        len(world.contacts),
        world.total_deaths,
        len(world.agents),
    )

    if summary_path:
        window = max(1, int(summary_window))
        tail_slice = slice(max(0, len(tick_ms_series) - window), len(tick_ms_series))
        summary = {
            "steps": steps,
            "seed": config.seed,
            "log_format": log_mode,
            "deterministic_log": deterministic_log,
            "total_infections": len(world.contacts),
            "total_deaths": world.total_deaths,
            "final_population": len(world.agents),
            "final_recovered": final.recovered if final is not None else 0,
            "average_contact_degree": world.contacts.average_degree(),
            "tick_ms": _summary_stats(tick_ms_series),
            "infectious": _summary_stats([float(v) for v in infectious_series]),
            "contact_checks": _summary_stats([float(v) for v in contact_checks_series]),
            "leaves": _summary_stats([float(v) for v in leaves_series]),
            "peaks": {
                "infectious": {"value": peak_infectious[0], "tick": peak_infectious[1]},
                "tick_ms": {"value": float(max_tick_ms[0]), "tick": max_tick_ms[1]},
            },
            "tail_window": {
                "window": window,
                "tick_ms": _summary_stats(tick_ms_series[tail_slice]),
                "infectious": _summary_stats([float(v) for v in infectious_series[tail_slice]]),
            },
        }
        Path(summary_path).write_text(json.dumps(summary, indent=2))

    if svg_path:
        Path(svg_path).write_text(world.tree.render_svg())
    if contacts_path:
        Path(contacts_path).write_text(world.contacts.to_dot())
    return world


def main() -> None:
    parser = argparse.ArgumentParser(description="Headless epidemic simulation")
    parser.add_argument("--steps", type=int, default=24 * 90)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--config", type=Path, default=None, help="YAML file overriding the default configuration")
    parser.add_argument("--log", type=Path, default=None, help="CSV file to write metrics")
    parser.add_argument(
        "--log-format",
        choices=["basic", "detailed"],
        default="detailed",
        help="CSV format to write when --log is provided (basic keeps only compartment counts).",
    )
    parser.add_argument(
        "--summary",
        type=Path,
        default=None,
        help="Optional JSON file to write summary stats for the run.",
    )
    parser.add_argument(
        "--summary-window",
        type=int,
        default=500,
        help="Tail window size (ticks) for summary stats.",
    )
    parser.add_argument(
        "--deterministic-log",
        action="store_true",
        help="Write deterministic CSV (tick_ms is forced to 0.000 so identical seeds match).",
    )
    parser.add_argument("--svg", type=Path, default=None, help="Write the final quadtree leaves as SVG.")
    parser.add_argument("--contacts", type=Path, default=None, help="Write the contact graph as Graphviz DOT.")
    parser.add_argument("--render", action="store_true", help="Print the world grid after every step.")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    args = parser.parse_args()
    logging.basicConfig(level=args.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    run_headless(
        args.steps,
        args.seed,
        args.log,
        deterministic_log=args.deterministic_log,
        log_format=args.log_format,
        summary_path=args.summary,
        summary_window=args.summary_window,
        config_path=args.config,
        svg_path=args.svg,
        contacts_path=args.contacts,
        render=args.render,
    )


if __name__ == "__main__":
    main()
