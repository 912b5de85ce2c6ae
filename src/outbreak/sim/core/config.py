from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml


class ConfigError(ValueError):
    """Raised when a configuration value is out of range."""


@dataclass
class IndexConfig:
    leaf_capacity: int = 4
    min_leaf_width: float = 2.0


@dataclass
class DiseaseConfig:
    incubation_days: float = 21.0
    infectious_days: float = 28.0
    infection_radius: float = 2.0
    transmission_probability: float = 1.0
    # False keeps every agent that shares a leaf with the query square.
    exact_contact_radius: bool = True
    infectious_mortality_bonus: float = 0.001
    mortality_enabled: bool = True


@dataclass
class PopulationConfig:
    min_age_years: float = 0.0
    max_age_years: float = 85.0
    min_speed: float = 0.002
    max_speed: float = 0.01
    adult_age_years: float = 18.0
    school_age_years: float = 5.0


@dataclass
class ScheduleConfig:
    work_start_hour: float = 8.0
    work_end_hour: float = 17.0


@dataclass
class StructureConfig:
    homes: int = 80
    workplaces: int = 12
    schools: int = 3


@dataclass
class SimulationConfig:
    step_seconds: int = 3600
    initial_population: int = 300
    initial_infected: int = 1
    world_width: float = 100.0
    world_height: float = 100.0
    consolidate_until_stable: bool = False
    seed: int = 42
    config_version: str = "v1"
    index: IndexConfig = field(default_factory=IndexConfig)
    disease: DiseaseConfig = field(default_factory=DiseaseConfig)
    population: PopulationConfig = field(default_factory=PopulationConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    structures: StructureConfig = field(default_factory=StructureConfig)

    @staticmethod
    def from_yaml(path: Path) -> "SimulationConfig":
        data = yaml.safe_load(Path(path).read_text()) or {}
        return load_config(data)

    def validate(self) -> "SimulationConfig":
        if self.world_width <= 0 or self.world_height <= 0:
            raise ConfigError(f"world size must be positive, got {self.world_width}x{self.world_height}")
        if self.step_seconds <= 0:
            raise ConfigError(f"step_seconds must be positive, got {self.step_seconds}")
        if self.initial_population < 0:
            raise ConfigError(f"initial_population must not be negative, got {self.initial_population}")
        if not 0 <= self.initial_infected <= self.initial_population:
            raise ConfigError(
                f"initial_infected must be between 0 and {self.initial_population}, got {self.initial_infected}"
            )
        if self.index.leaf_capacity < 1:
            raise ConfigError(f"index.leaf_capacity must be at least 1, got {self.index.leaf_capacity}")
        if self.index.min_leaf_width < 0:
            raise ConfigError(f"index.min_leaf_width must not be negative, got {self.index.min_leaf_width}")
        if self.disease.infection_radius < 0:
            raise ConfigError(f"disease.infection_radius must not be negative, got {self.disease.infection_radius}")
        if not 0.0 <= self.disease.transmission_probability <= 1.0:
            raise ConfigError(
                f"disease.transmission_probability must be within [0, 1], got {self.disease.transmission_probability}"
            )
        population = self.population
        if population.min_age_years > population.max_age_years:
            raise ConfigError("population.min_age_years exceeds population.max_age_years")
        if population.min_speed > population.max_speed:
            raise ConfigError("population.min_speed exceeds population.max_speed")
        if not 0 <= self.schedule.work_start_hour <= self.schedule.work_end_hour <= 24:
            raise ConfigError("schedule hours must satisfy 0 <= work_start_hour <= work_end_hour <= 24")
        structures = self.structures
        if min(structures.homes, structures.workplaces, structures.schools) < 0:
            raise ConfigError("structure counts must not be negative")
        return self


_NESTED = {
    "index": IndexConfig,
    "disease": DiseaseConfig,
    "population": PopulationConfig,
    "schedule": ScheduleConfig,
    "structures": StructureConfig,
}


def load_config(raw: dict) -> SimulationConfig:
    sim_values = {k: v for k, v in raw.items() if k not in _NESTED}
    try:
        nested = {key: factory(**(raw.get(key) or {})) for key, factory in _NESTED.items()}
        config = SimulationConfig(**nested, **sim_values)
    except TypeError as exc:
        raise ConfigError(f"invalid configuration: {exc}") from exc
    return config.validate()
