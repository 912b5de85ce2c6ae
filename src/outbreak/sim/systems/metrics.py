from __future__ import annotations

from typing import TYPE_CHECKING, Dict

from ..core.agent import Status
from ..types.metrics import TickMetrics

if TYPE_CHECKING:
    from ..core.world import World


def count_statuses(world: World) -> Dict[Status, int]:
    counts = {status: 0 for status in Status}
    for agent in world._tree:
        counts[agent.status] += 1
    return counts


def create_metrics(
    world: World,
    tick: int,
    deaths: int,
    new_infections: int,
    contact_checks: int,
    duration_ms: float,
) -> TickMetrics:
    counts = count_statuses(world)
    tree = world._tree
    return TickMetrics(
        tick=tick,
        population=len(tree),
        susceptible=counts[Status.SUSCEPTIBLE],
        exposed=counts[Status.EXPOSED],
        infectious=counts[Status.INFECTIOUS],
        recovered=counts[Status.RECOVERED],
        deaths=deaths,
        new_infections=new_infections,
        contact_checks=contact_checks,
        leaves=sum(1 for _ in tree.leaves()),
        nodes=tree.node_count,
        tick_duration_ms=duration_ms,
    )
