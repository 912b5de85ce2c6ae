from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from .metrics import TickMetrics


@dataclass(slots=True)
class Snapshot:
    tick: int
    metrics: TickMetrics
    agents: List[Dict[str, Any]]
    world: "SnapshotWorld"
    metadata: "SnapshotMetadata"
    leaves: List[Tuple[float, float, float, float]]


@dataclass(slots=True)
class SnapshotWorld:
    width: float
    height: float


@dataclass(slots=True)
class SnapshotMetadata:
    step_seconds: int
    sim_seconds: int
    seed: int
    config_version: str
    total_infections: int
