from __future__ import annotations

from typing import TYPE_CHECKING

from pygame.math import Vector2

from ..core.agent import SECONDS_PER_DAY, Agent, Task
from ..core.config import PopulationConfig, ScheduleConfig
from ..core.rng import DeterministicRng
from ..utils.geometry import clamp_mag, is_nan, nan_vector

if TYPE_CHECKING:
    from ..core.world import World


def task_for(agent: Agent, seconds_of_day: float, schedule: ScheduleConfig, population: PopulationConfig) -> Task:
    hour = (seconds_of_day % SECONDS_PER_DAY) / 3600.0
    if schedule.work_start_hour <= hour < schedule.work_end_hour:
        age = agent.age_years
        if age >= population.adult_age_years and not is_nan(agent.workplace):
            return Task.WORK
        if population.school_age_years <= age < population.adult_age_years and not is_nan(agent.school):
            return Task.SCHOOL
    if not is_nan(agent.home):
        return Task.HOME
    return Task.NONE


def destination_for(agent: Agent) -> Vector2:
    if agent.task is Task.HOME:
        return Vector2(agent.home)
    if agent.task is Task.WORK:
        return Vector2(agent.workplace)
    if agent.task is Task.SCHOOL:
        return Vector2(agent.school)
    return nan_vector()


def movement_vector(agent: Agent, step_seconds: int, rng: DeterministicRng) -> Vector2:
    reach = agent.speed * step_seconds
    destination = destination_for(agent)
    if is_nan(destination):
        return rng.next_unit_circle() * reach
    return clamp_mag(destination - agent.position, reach)


def move_agents(world: World) -> int:
    """Relocate every living agent through the index. Returns how many moved."""
    tree = world._tree
    bounds = tree.bounds
    rng = world._rng
    config = world._config
    seconds_of_day = world.sim_seconds % SECONDS_PER_DAY
    moved = 0
    for handle in tree.handles():
        agent = tree.get(handle)
        if agent.status.is_dead:
            continue
        agent.task = task_for(agent, seconds_of_day, config.schedule, config.population)
        offset = movement_vector(agent, config.step_seconds, rng)
        if offset.length_squared() == 0.0:
            continue
        if tree.move(handle, bounds.clip(agent.position + offset)):
            moved += 1
    return moved
