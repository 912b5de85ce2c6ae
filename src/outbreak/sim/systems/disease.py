from __future__ import annotations

from typing import TYPE_CHECKING, Tuple

from pygame.math import Vector2

from ..core.agent import SECONDS_PER_DAY, SECONDS_PER_YEAR, Agent, Status
from ..core.config import DiseaseConfig
from ..core.rng import DeterministicRng
from ..utils.geometry import Rect, _clamp_value

if TYPE_CHECKING:
    from ..core.world import World


def infect(agent: Agent, source: int | None, tick: int) -> bool:
    if not agent.status.is_susceptible:
        return False
    agent.status = Status.EXPOSED
    agent.status_seconds = 0
    agent.infected_by = source
    agent.infected_at = tick
    return True


def annual_mortality(age_years: float) -> float:
    """Piecewise-linear fit of the SSA 2019 actuarial life table.

    Values are the average of the male and female annual probabilities of
    death; see https://www.ssa.gov/oact/STATS/table4c6.html
    """
    years = int(age_years)
    if years <= 20:
        return 0.001
    if years <= 50:
        return 0.0001 * (age_years - 20.0) + 0.001
    if years <= 80:
        return 0.0001 * (age_years - 50.0) + 0.005
    if years <= 100:
        return 0.01 * (age_years - 80.0) + 0.05
    if years <= 119:
        return 0.03 * (age_years - 100.0) + 0.2
    return 0.9


def death_probability(agent: Agent, step_seconds: int, config: DiseaseConfig) -> float:
    annual = annual_mortality(agent.age_years)
    if agent.status.is_infectious:
        annual += config.infectious_mortality_bonus
    return _clamp_value(annual / SECONDS_PER_YEAR * step_seconds, 0.0, 1.0)


def advance_agent(agent: Agent, step_seconds: int, rng: DeterministicRng, config: DiseaseConfig) -> None:
    status = agent.status
    if status.is_dead:
        return
    if status is Status.EXPOSED:
        if agent.status_seconds > config.incubation_days * SECONDS_PER_DAY:
            agent.status = Status.INFECTIOUS
            agent.status_seconds = 0
        else:
            agent.status_seconds += step_seconds
    elif status is Status.INFECTIOUS:
        if agent.status_seconds > config.infectious_days * SECONDS_PER_DAY:
            agent.status = Status.RECOVERED
            agent.status_seconds = 0
        else:
            agent.status_seconds += step_seconds

    agent.age_seconds += step_seconds

    if config.mortality_enabled and rng.next_bool(death_probability(agent, step_seconds, config)):
        agent.status = Status.DEAD


def spread_infection(world: World, tick: int) -> Tuple[int, int]:
    """Expose susceptible agents near every infectious agent.

    Returns ``(new_infections, contact_checks)``.
    """
    tree = world._tree
    contacts = world._contacts
    rng = world._rng
    config = world._config.disease
    radius = config.infection_radius
    radius_sq = radius * radius
    side = Vector2(2.0 * radius, 2.0 * radius)

    infectious = [handle for handle, agent in tree.items() if agent.status.is_infectious]
    new_infections = 0
    contact_checks = 0
    for handle in infectious:
        source = tree.get(handle)
        origin = source.position
        for candidate in tree.find_agents_in(Rect.from_center(origin, side)):
            if candidate == handle:
                continue
            contact_checks += 1
            other = tree.get(candidate)
            if not other.status.is_susceptible:
                continue
            if config.exact_contact_radius and (other.position - origin).length_squared() > radius_sq:
                continue
            if rng.next_bool(config.transmission_probability) and infect(other, handle, tick):
                contacts.add_node(candidate, handle)
                new_infections += 1
    return new_infections, contact_checks
