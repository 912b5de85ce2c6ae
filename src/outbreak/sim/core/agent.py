from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from pygame.math import Vector2

from ..utils.geometry import nan_vector

SECONDS_PER_DAY = 86_400
SECONDS_PER_YEAR = 365 * SECONDS_PER_DAY


class Status(str, Enum):
    SUSCEPTIBLE = "Susceptible"
    EXPOSED = "Exposed"
    INFECTIOUS = "Infectious"
    RECOVERED = "Recovered"
    DEAD = "Dead"

    @property
    def is_susceptible(self) -> bool:
        return self is Status.SUSCEPTIBLE

    @property
    def is_infectious(self) -> bool:
        return self is Status.INFECTIOUS

    @property
    def is_dead(self) -> bool:
        return self is Status.DEAD


class Task(str, Enum):
    HOME = "Home"
    WORK = "Work"
    SCHOOL = "School"
    NONE = "None"


@dataclass(slots=True)
class Agent:
    position: Vector2
    speed: float
    status: Status = Status.SUSCEPTIBLE
    # Seconds spent in the current exposed or infectious status.
    status_seconds: int = 0
    task: Task = Task.HOME
    home: Vector2 = field(default_factory=nan_vector)
    workplace: Vector2 = field(default_factory=nan_vector)
    school: Vector2 = field(default_factory=nan_vector)
    age_seconds: int = 0
    infected_by: Optional[int] = None
    infected_at: Optional[int] = None

    @property
    def age_years(self) -> float:
        return self.age_seconds / SECONDS_PER_YEAR
