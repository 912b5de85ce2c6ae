from __future__ import annotations

import logging
from time import perf_counter
from typing import Any, Dict, List

from pygame.math import Vector2

from .agent import SECONDS_PER_YEAR, Agent, Status
from .config import SimulationConfig
from .contacts import ContactGraph
from .quadtree import Quadtree
from .rng import DeterministicRng
from ..systems import disease, metrics as metrics_system, movement
from ..systems.structures import Structures, assign_structures, place_structures
from ..types.metrics import TickMetrics
from ..types.snapshot import Snapshot, SnapshotMetadata, SnapshotWorld
from ..utils.geometry import Rect, is_nan

logger = logging.getLogger(__name__)

_STRUCTURE_RNG_SALT = 0x5EED57A7C0FFEE11


def _derive_stream_seed(seed: int, salt: int) -> int:
    return (int(seed) ^ int(salt)) & 0xFFFFFFFFFFFFFFFF


class World:
    def __init__(self, config: SimulationConfig):
        self._config = config.validate()
        self._rng = DeterministicRng(config.seed)
        self._structure_rng = DeterministicRng(_derive_stream_seed(config.seed, _STRUCTURE_RNG_SALT))
        self._bounds = Rect(Vector2(0.0, 0.0), Vector2(config.world_width, config.world_height))
        self._tree = self._new_tree()
        self._contacts = ContactGraph()
        self._structures = Structures()
        self._sim_seconds = 0
        self._total_deaths = 0
        self._metrics: TickMetrics | None = None
        self._bootstrap()
        logger.info(
            "World created: %d agents on %.1fx%.1f, %d index case(s)",
            len(self._tree),
            config.world_width,
            config.world_height,
            len(self._contacts),
        )

    @property
    def config(self) -> SimulationConfig:
        return self._config

    @property
    def agents(self) -> Quadtree:
        return self._tree

    @property
    def tree(self) -> Quadtree:
        return self._tree

    @property
    def contacts(self) -> ContactGraph:
        return self._contacts

    @property
    def structures(self) -> Structures:
        return self._structures

    @property
    def metrics(self) -> TickMetrics | None:
        return self._metrics

    @property
    def sim_seconds(self) -> int:
        return self._sim_seconds

    @property
    def total_deaths(self) -> int:
        return self._total_deaths

    def reset(self) -> None:
        self._rng.reset()
        self._structure_rng.reset()
        self._tree = self._new_tree()
        self._contacts.clear()
        self._sim_seconds = 0
        self._total_deaths = 0
        self._metrics = None
        self._bootstrap()
        logger.info("World reset to seed %d", self._config.seed)

    def step(self, tick: int) -> TickMetrics:
        start = perf_counter()
        config = self._config

        new_infections, contact_checks = disease.spread_infection(self, tick)

        tree = self._tree
        dead: List[int] = []
        for handle, agent in tree.items():
            disease.advance_agent(agent, config.step_seconds, self._rng, config.disease)
            if agent.status.is_dead:
                dead.append(handle)
        for handle in dead:
            tree.remove(handle)
        self._total_deaths += len(dead)

        movement.move_agents(self)
        tree.clean(until_stable=config.consolidate_until_stable)
        self._sim_seconds += config.step_seconds

        duration_ms = (perf_counter() - start) * 1000.0
        self._metrics = metrics_system.create_metrics(
            self, tick, len(dead), new_infections, contact_checks, duration_ms
        )
        logger.debug(
            "tick %d: %d new infections, %d deaths, %d leaves",
            tick,
            new_infections,
            len(dead),
            self._metrics.leaves,
        )
        return self._metrics

    def add_agent(self, agent: Agent) -> int | None:
        return self._tree.add(agent)

    def infect_index_case(self, handle: int | None = None, tick: int = 0) -> int | None:
        """Make one susceptible agent infectious with no recorded source."""
        if handle is None:
            candidates = [h for h, agent in self._tree.items() if agent.status.is_susceptible]
            handle = self._rng.sample_choice(candidates)
            if handle is None:
                return None
        agent = self._tree.get(handle)
        if agent is None or not agent.status.is_susceptible:
            return None
        agent.status = Status.INFECTIOUS
        agent.status_seconds = 0
        agent.infected_at = tick
        self._contacts.add_node(handle, None)
        return handle

    def snapshot(self, tick: int) -> Snapshot:
        metrics = self._metrics
        if metrics is None:
            metrics = metrics_system.create_metrics(self, tick, 0, 0, 0, 0.0)
        config = self._config
        return Snapshot(
            tick=tick,
            metrics=metrics,
            agents=[self._agent_snapshot(handle, agent) for handle, agent in self._tree.items()],
            world=SnapshotWorld(width=config.world_width, height=config.world_height),
            metadata=SnapshotMetadata(
                step_seconds=config.step_seconds,
                sim_seconds=self._sim_seconds,
                seed=config.seed,
                config_version=config.config_version,
                total_infections=len(self._contacts),
            ),
            leaves=[node.bounds.as_tuple() for _, node in self._tree.leaves()],
        )

    @staticmethod
    def _agent_snapshot(handle: int, agent: Agent) -> Dict[str, Any]:
        return {
            "id": handle,
            "x": agent.position.x,
            "y": agent.position.y,
            "status": agent.status.value,
            "task": agent.task.value,
            "age": round(agent.age_years, 2),
            "infected_by": agent.infected_by,
        }

    def _new_tree(self) -> Quadtree:
        index = self._config.index
        return Quadtree(self._bounds, leaf_capacity=index.leaf_capacity, min_leaf_width=index.min_leaf_width)

    def _bootstrap(self) -> None:
        config = self._config
        population = config.population
        self._structures = place_structures(self._bounds, config.structures, self._structure_rng)
        for _ in range(config.initial_population):
            agent = Agent(
                position=Vector2(),
                speed=self._rng.next_range(population.min_speed, population.max_speed),
                age_seconds=int(
                    self._rng.next_range(population.min_age_years, population.max_age_years) * SECONDS_PER_YEAR
                ),
            )
            assign_structures(agent, self._structures, population, self._structure_rng)
            if is_nan(agent.home):
                agent.position = Vector2(
                    self._rng.next_range(self._bounds.bl.x, self._bounds.tr.x),
                    self._rng.next_range(self._bounds.bl.y, self._bounds.tr.y),
                )
            else:
                agent.position = Vector2(agent.home)
            self._tree.add(agent)
        for _ in range(config.initial_infected):
            self.infect_index_case()
