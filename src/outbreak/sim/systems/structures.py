from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from pygame.math import Vector2

from ..core.agent import Agent
from ..core.config import PopulationConfig, StructureConfig
from ..core.rng import DeterministicRng
from ..utils.geometry import Rect


@dataclass(slots=True)
class Structures:
    homes: List[Vector2] = field(default_factory=list)
    workplaces: List[Vector2] = field(default_factory=list)
    schools: List[Vector2] = field(default_factory=list)


def _sample_points(bounds: Rect, count: int, rng: DeterministicRng) -> List[Vector2]:
    return [
        Vector2(rng.next_range(bounds.bl.x, bounds.tr.x), rng.next_range(bounds.bl.y, bounds.tr.y))
        for _ in range(count)
    ]


def place_structures(bounds: Rect, config: StructureConfig, rng: DeterministicRng) -> Structures:
    return Structures(
        homes=_sample_points(bounds, config.homes, rng),
        workplaces=_sample_points(bounds, config.workplaces, rng),
        schools=_sample_points(bounds, config.schools, rng),
    )


def assign_structures(
    agent: Agent, structures: Structures, population: PopulationConfig, rng: DeterministicRng
) -> None:
    # Unassigned destinations keep their NaN sentinel.
    home = rng.sample_choice(structures.homes)
    if home is not None:
        agent.home = Vector2(home)
    age = agent.age_years
    if age >= population.adult_age_years:
        workplace = rng.sample_choice(structures.workplaces)
        if workplace is not None:
            agent.workplace = Vector2(workplace)
    elif age >= population.school_age_years:
        school = rng.sample_choice(structures.schools)
        if school is not None:
            agent.school = Vector2(school)
