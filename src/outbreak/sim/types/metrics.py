from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class TickMetrics:
    tick: int
    population: int
    susceptible: int
    exposed: int
    infectious: int
    recovered: int
    deaths: int
    new_infections: int
    contact_checks: int
    leaves: int
    nodes: int
    tick_duration_ms: float = 0.0
