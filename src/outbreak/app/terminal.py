from __future__ import annotations

import math
from typing import Dict, Tuple

from ..sim.core.agent import SECONDS_PER_DAY, Agent, Status
from ..sim.core.world import World

CLEAR = "\x1b[H\x1b[2J"
RESET = "\x1b[0m"

_STATUS_STYLE = {
    Status.SUSCEPTIBLE: ("\x1b[32m", "S"),
    Status.EXPOSED: ("\x1b[38;5;208m", "E"),
    Status.INFECTIOUS: ("\x1b[31m", "I"),
    Status.RECOVERED: ("\x1b[33m", "R"),
    Status.DEAD: ("\x1b[34m", "D"),
}


def agent_glyph(agent: Agent, color: bool = True) -> str:
    style, letter = _STATUS_STYLE[agent.status]
    if agent.status in (Status.EXPOSED, Status.INFECTIOUS):
        cell = f"{letter}{min(9, agent.status_seconds // SECONDS_PER_DAY // 7)} "
    else:
        cell = f" {letter} "
    return f"{style}{cell}{RESET}" if color else cell


def render_world(world: World, tick: int, cell_size: float = 1.0, color: bool = True) -> str:
    """Grid view of the world with one glyph per occupied cell.

    Only the first agent found in a cell is drawn. The digit after E/I is the
    number of whole weeks spent in that status.
    """
    config = world.config
    columns = int(math.ceil(config.world_width / cell_size))
    rows = int(math.ceil(config.world_height / cell_size))
    occupied: Dict[Tuple[int, int], Agent] = {}
    for agent in world.agents:
        # Agents on the far edge share the last row/column.
        key = (
            min(columns - 1, int(agent.position.x // cell_size)),
            min(rows - 1, int(agent.position.y // cell_size)),
        )
        occupied.setdefault(key, agent)

    lines = [f"----- Tick {tick:4d} (day {world.sim_seconds // SECONDS_PER_DAY}) -----"]
    for row in reversed(range(rows)):
        cells = []
        for column in range(columns):
            agent = occupied.get((column, row))
            cells.append("   " if agent is None else agent_glyph(agent, color))
        lines.append("".join(cells).rstrip())
    return "\n".join(lines)
