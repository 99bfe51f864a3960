"""Generation and batch lifecycle orchestrator."""

from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from parkevo.agents.car import (
    CarAgent,
    GenomeDecoder,
    batch_slice,
    batches_total,
    generation_to_cars,
)
from parkevo.agents.genome import GenomePool
from parkevo.configs.loader import ConfigurationError, EvolutionConfig
from parkevo.core.checkpointing import Checkpoint
from parkevo.core.deterministic_rng import DeterministicRNG
from parkevo.core.event_bus import (
    BATCH_STARTED,
    GENERATION_FINISHED,
    GENERATION_STARTED,
    SCHEDULER_FAILED,
    SCHEDULER_RESET,
    EventBus,
)
from parkevo.core.fitness_ledger import BestRecord, FitnessLedger, GenerationFitness, UNKNOWN_FITNESS
from parkevo.engine.batch_timer import BatchTimer, TimerFactory
from parkevo.evolution.base import EvolutionParams, GenerationFactory
from parkevo.evolution.ga import ElitistGenerationFactory


LOGGER = logging.getLogger(__name__)

_HYPERPARAMETERS = frozenset(
    {
        "generation_size",
        "batch_size",
        "generation_lifetime",
        "mutation_probability",
        "long_living_champions_percentage",
        "performance_boost",
    }
)


class SchedulerPhase(str, enum.Enum):
    """Lifecycle phases of the batch scheduler."""

    IDLE = "idle"
    GENERATION_STARTING = "generation_starting"
    BATCH_ACTIVE = "batch_active"
    BATCH_BOUNDARY = "batch_boundary"
    GENERATION_BOUNDARY = "generation_boundary"


class SchedulerStateError(RuntimeError):
    """Raised when an operation is not valid in the current phase."""


class SchedulerExecutionError(RuntimeError):
    """Raised when the generation factory breaks its contract."""


class StaleTimerFired(RuntimeError):
    """A batch window fired for a countdown that was already superseded."""


def world_version(generation_index: int | None, batch_index: int | None) -> str:
    """Identifier of the simulated world for one batch window."""
    generation = -1 if generation_index is None else generation_index
    batch = -1 if batch_index is None else batch_index
    return f"world-{generation}-{batch}"


@dataclass(frozen=True)
class SchedulerState:
    """Read-only view of the scheduler for display purposes."""

    phase: SchedulerPhase
    world_index: int
    generation_index: int | None
    batch_index: int | None
    batches_total: int
    generation_size: int
    batch_size: int
    generation_lifetime: float
    performance_boost: bool
    remaining_time: float | None

    @property
    def batch_version(self) -> str:
        return world_version(self.generation_index, self.batch_index)


@dataclass(frozen=True)
class BatchStarted:
    world_index: int
    generation_index: int
    batch_index: int
    batches_total: int
    agents: tuple[CarAgent, ...]


@dataclass(frozen=True)
class GenerationStarted:
    world_index: int
    generation_index: int
    generation_size: int


@dataclass(frozen=True)
class GenerationFinished:
    world_index: int
    generation_index: int
    min_fitness: float
    average_fitness: float
    best: BestRecord | None
    fitness: GenerationFitness
    generation: GenomePool
    checkpoint: Checkpoint

    @property
    def diversity(self) -> float:
        return self.generation.diversity()


@dataclass(frozen=True)
class SchedulerFailed:
    world_index: int
    generation_index: int | None
    batch_index: int | None
    error: SchedulerExecutionError


class BatchScheduler:
    """Drives a population through timed batch windows, one generation at a time.

    Lifecycle:
      IDLE -> GENERATION_STARTING(g) -> BATCH_ACTIVE(g, b) -> BATCH_BOUNDARY(g, b)
      -> BATCH_ACTIVE(g, b + 1) | GENERATION_BOUNDARY(g) -> GENERATION_STARTING(g + 1)

    Every state transition happens under one re-entrant lock and at most one
    batch countdown is live at any time. Fitness reports bypass the lock and
    go straight into the ledger.
    """

    def __init__(
        self,
        config: EvolutionConfig,
        factory: GenerationFactory | None = None,
        *,
        decode: GenomeDecoder | None = None,
        event_bus: EventBus | None = None,
        timer_factory: TimerFactory = threading.Timer,
        clock: Callable[[], float] = time.monotonic,
        ledger: FitnessLedger | None = None,
    ) -> None:
        self.config = config
        self.factory = factory or ElitistGenerationFactory(config.gene_alphabet)
        self.decode = decode
        self.event_bus = event_bus
        self.ledger = ledger or FitnessLedger()
        self.rng = DeterministicRNG(config.seed)

        self._timer = BatchTimer(timer_factory=timer_factory, clock=clock)
        self._lock = threading.RLock()

        self._phase = SchedulerPhase.IDLE
        self._world_index = 0
        self._generation_index: int | None = None
        self._batch_index: int | None = None
        self._pool: GenomePool | None = None
        self._cars: dict[str, CarAgent] = {}
        self._car_list: tuple[CarAgent, ...] = ()
        self._batch: tuple[CarAgent, ...] = ()
        self._loss_history: list[float] = []
        self._avg_loss_history: list[float] = []
        self._best: BestRecord | None = None
        self._failure: SchedulerExecutionError | None = None

    def __enter__(self) -> "BatchScheduler":
        return self

    def __exit__(self, *_exc: Any) -> None:
        self.close()

    def close(self) -> None:
        """Cancel the pending batch countdown without touching run state."""
        with self._lock:
            self._timer.cancel()

    # Commands

    def start(self) -> None:
        """Create generation 0 and enter its first batch window."""
        with self._lock:
            if self._phase is not SchedulerPhase.IDLE:
                raise SchedulerStateError(f"start() is only valid from idle, scheduler is {self._phase.value}.")
            config = self.config.validate()
            pool = self.factory.create_initial(
                config.generation_size,
                config.genome_length,
                self.rng.stream("initial"),
            )
            self._check_population(pool, config)
            self._loss_history = []
            self._avg_loss_history = []
            self._failure = None
            LOGGER.info(
                "Starting evolution world #%d: %d cars, batches of %d, %.2fs per batch",
                self._world_index,
                config.generation_size,
                config.batch_size,
                config.generation_lifetime,
            )
            self._begin_generation(0, pool)

    def on_batch_window_elapsed(self) -> bool:
        """Close the active batch window and advance to the next batch or generation.

        Returns ``False`` (and does nothing) when no batch is active.
        """
        with self._lock:
            if self._phase is not SchedulerPhase.BATCH_ACTIVE:
                LOGGER.debug("Ignoring batch window end while %s", self._phase.value)
                return False
            self._timer.cancel()
            self._advance()
            return True

    def reset(self) -> None:
        """Cancel the pending countdown and drop all run state. Idempotent."""
        with self._lock:
            self._timer.cancel()
            was_idle = self._phase is SchedulerPhase.IDLE and self._pool is None
            self._clear()
            self.rng.enter_world(self._world_index)
            if not was_idle:
                LOGGER.info("Evolution world #%d reset", self._world_index)
                self._publish(SCHEDULER_RESET, self._world_index)

    def restart(self) -> None:
        """Reset and start again under a new world index."""
        with self._lock:
            self.config.validate()
            self._timer.cancel()
            self._clear()
            self._world_index += 1
            self.rng.enter_world(self._world_index)
            self._publish(SCHEDULER_RESET, self._world_index)
            self.start()

    def restore_from_checkpoint(self, checkpoint: Checkpoint) -> None:
        """Replace all run state with ``checkpoint`` and resume at its batch 0."""
        with self._lock:
            try:
                pool = GenomePool.from_genes(checkpoint.generation)
            except ValueError as exc:
                raise ConfigurationError(f"Checkpoint generation is unusable: {exc}") from exc
            config = self.config.replace(
                generation_size=int(checkpoint.generation_size),
                batch_size=int(checkpoint.batch_size),
                generation_lifetime=float(checkpoint.generation_lifetime),
                mutation_probability=float(checkpoint.mutation_probability),
                long_living_champions_percentage=float(checkpoint.long_living_champions_percentage),
                performance_boost=bool(checkpoint.performance_boost),
                genome_length=pool.genome_length or self.config.genome_length,
            )
            self._check_population(pool, config)

            self._timer.cancel()
            self._clear()
            self._world_index += 1
            self.config = config
            self.rng.enter_world(self._world_index)
            self._loss_history = [float(value) for value in checkpoint.loss_history]
            self._avg_loss_history = [float(value) for value in checkpoint.avg_loss_history]
            LOGGER.info(
                "Restoring evolution at generation #%d (%d cars) as world #%d",
                checkpoint.generation_index,
                len(pool),
                self._world_index,
            )
            self._publish(SCHEDULER_RESET, self._world_index)
            self._begin_generation(int(checkpoint.generation_index), pool)

    def checkpoint(self) -> Checkpoint:
        """Capture generation, histories, and hyperparameters in effect."""
        with self._lock:
            if self._pool is None or self._generation_index is None:
                raise SchedulerStateError("No active generation to checkpoint.")
            return self._capture_checkpoint(self._generation_index, self._pool)

    def on_hyperparameter_change(self, **changes: Any) -> None:
        """Apply new hyperparameters.

        Changing ``generation_size`` or ``batch_size`` changes the population
        shape and restarts a running evolution. Other values apply from the
        next batch window or generation.
        """
        unknown = sorted(set(changes) - _HYPERPARAMETERS)
        if unknown:
            raise ConfigurationError(f"Unknown hyperparameter(s): {unknown}")
        with self._lock:
            config = self.config.replace(**changes)
            shape_changed = (
                config.generation_size != self.config.generation_size
                or config.batch_size != self.config.batch_size
            )
            self.config = config
            LOGGER.info("Hyperparameters changed: %s", changes)
            if shape_changed and self._phase is not SchedulerPhase.IDLE:
                self.restart()

    def on_fitness_update(self, agent_id: str, value: float | None, generation_index: int | None = None) -> bool:
        """Record a fitness report from the simulation. Never blocks."""
        return self.ledger.record(agent_id, value, generation_index)

    # Read accessors

    @property
    def phase(self) -> SchedulerPhase:
        with self._lock:
            return self._phase

    @property
    def generation_index(self) -> int | None:
        with self._lock:
            return self._generation_index

    @property
    def batch_index(self) -> int | None:
        with self._lock:
            return self._batch_index

    @property
    def batches_total(self) -> int:
        with self._lock:
            return batches_total(len(self._car_list), self.config.batch_size)

    @property
    def world_version(self) -> str:
        with self._lock:
            return world_version(self._generation_index, self._batch_index)

    def generation(self) -> GenomePool | None:
        with self._lock:
            return self._pool

    def cars(self) -> tuple[CarAgent, ...]:
        with self._lock:
            return self._car_list

    def current_batch_agents(self) -> tuple[CarAgent, ...]:
        with self._lock:
            return self._batch

    def current_generation_fitness_snapshot(self) -> GenerationFitness:
        """Fitness of the current generation as of the last batch boundary."""
        with self._lock:
            if self._generation_index is None:
                return self.ledger.snapshot()
            return self.ledger.published(self._generation_index)

    def live_fitness_snapshot(self) -> GenerationFitness:
        """Fitness of the current generation including in-flight reports."""
        return self.ledger.snapshot()

    def fitness_history(self) -> tuple[float, ...]:
        with self._lock:
            return tuple(self._loss_history)

    def average_fitness_history(self) -> tuple[float, ...]:
        with self._lock:
            return tuple(self._avg_loss_history)

    def best_record(self) -> BestRecord | None:
        with self._lock:
            return self._best

    def last_error(self) -> SchedulerExecutionError | None:
        """Failure that stopped the last timer-driven run, if any."""
        with self._lock:
            return self._failure

    def scheduler_state(self) -> SchedulerState:
        with self._lock:
            return SchedulerState(
                phase=self._phase,
                world_index=self._world_index,
                generation_index=self._generation_index,
                batch_index=self._batch_index,
                batches_total=batches_total(len(self._car_list), self.config.batch_size),
                generation_size=self.config.generation_size,
                batch_size=self.config.batch_size,
                generation_lifetime=self.config.generation_lifetime,
                performance_boost=self.config.performance_boost,
                remaining_time=self._timer.remaining(),
            )

    # Internals

    def _begin_generation(self, generation_index: int, pool: GenomePool) -> None:
        self._phase = SchedulerPhase.GENERATION_STARTING
        self._generation_index = generation_index
        self._pool = pool
        self._cars = generation_to_cars(pool, generation_index, self.on_fitness_update, self.decode)
        self._car_list = tuple(self._cars.values())
        self._best = None
        self.ledger.open_generation(generation_index, self._cars)
        LOGGER.info("Generation #%d started with %d cars", generation_index, len(pool))
        self._publish(
            GENERATION_STARTED,
            GenerationStarted(
                world_index=self._world_index,
                generation_index=generation_index,
                generation_size=len(pool),
            ),
        )
        self._enter_batch(0)

    def _enter_batch(self, batch_index: int) -> None:
        self._batch_index = batch_index
        self._batch = batch_slice(self._car_list, batch_index, self.config.batch_size)
        self._phase = SchedulerPhase.BATCH_ACTIVE
        self._timer.arm(self.config.generation_lifetime, self._on_timer)
        total = batches_total(len(self._car_list), self.config.batch_size)
        LOGGER.debug(
            "Batch %d/%d of generation #%d started with %d cars",
            batch_index + 1,
            total,
            self._generation_index,
            len(self._batch),
        )
        self._publish(
            BATCH_STARTED,
            BatchStarted(
                world_index=self._world_index,
                generation_index=int(self._generation_index or 0),
                batch_index=batch_index,
                batches_total=total,
                agents=self._batch,
            ),
        )

    def _advance(self) -> None:
        generation_index = int(self._generation_index or 0)
        next_batch = int(self._batch_index or 0) + 1
        total = batches_total(len(self._car_list), self.config.batch_size)

        snapshot = self.ledger.publish()
        best = FitnessLedger.best_of(snapshot, self._cars)
        next_pool: GenomePool | None = None
        if next_batch >= total:
            next_pool = self._evolve(snapshot)

        self._phase = SchedulerPhase.BATCH_BOUNDARY
        self._best = best
        self._record_history(generation_index, snapshot)

        if next_pool is None:
            self._enter_batch(next_batch)
            return

        self._phase = SchedulerPhase.GENERATION_BOUNDARY
        self._batch_index = None
        self._batch = ()
        finished = GenerationFinished(
            world_index=self._world_index,
            generation_index=generation_index,
            min_fitness=self._loss_history[generation_index],
            average_fitness=self._avg_loss_history[generation_index],
            best=best,
            fitness=snapshot,
            generation=self._pool,
            checkpoint=self._capture_checkpoint(generation_index + 1, next_pool),
        )
        LOGGER.info(
            "Generation #%d finished: min loss %s, best car %s",
            generation_index,
            finished.min_fitness,
            best.licence_plate if best is not None else "-",
        )
        self._publish(GENERATION_FINISHED, finished)
        self._begin_generation(generation_index + 1, next_pool)

    def _evolve(self, snapshot: GenerationFitness) -> GenomePool:
        if self._pool is None:
            raise SchedulerStateError("No generation to evolve.")
        params = EvolutionParams(
            mutation_probability=self.config.mutation_probability,
            long_living_champions_percentage=self.config.long_living_champions_percentage,
        )
        try:
            next_pool = self.factory.evolve(self._pool, snapshot, params, self.rng.stream("evolve"))
        except Exception as exc:
            raise SchedulerExecutionError(f"generation factory evolve failed: {exc}") from exc
        if len(next_pool) != len(self._pool):
            raise SchedulerExecutionError("Generation factory must preserve generation size.")
        return next_pool

    def _record_history(self, generation_index: int, snapshot: GenerationFitness) -> None:
        for history in (self._loss_history, self._avg_loss_history):
            while len(history) <= generation_index:
                history.append(UNKNOWN_FITNESS)
        self._loss_history[generation_index] = FitnessLedger.min_fitness(snapshot)
        self._avg_loss_history[generation_index] = FitnessLedger.average_fitness(snapshot)

    def _capture_checkpoint(self, generation_index: int, pool: GenomePool) -> Checkpoint:
        return Checkpoint(
            date_time=datetime.now(timezone.utc).isoformat(),
            generation_index=generation_index,
            loss_history=tuple(self._loss_history),
            avg_loss_history=tuple(self._avg_loss_history),
            performance_boost=self.config.performance_boost,
            generation_size=self.config.generation_size,
            generation_lifetime=self.config.generation_lifetime,
            batch_size=self.config.batch_size,
            mutation_probability=self.config.mutation_probability,
            long_living_champions_percentage=self.config.long_living_champions_percentage,
            generation=pool.to_genes(),
        )

    def _on_timer(self, epoch: int) -> None:
        with self._lock:
            try:
                self._check_timer(epoch)
            except StaleTimerFired as exc:
                LOGGER.debug("%s", exc)
                return
            self._timer.cancel()
            try:
                self._advance()
            except SchedulerExecutionError as exc:
                self._fail(exc)

    def _fail(self, error: SchedulerExecutionError) -> None:
        """Stop a timer-driven run and report ``error`` on the event bus."""
        failed = SchedulerFailed(
            world_index=self._world_index,
            generation_index=self._generation_index,
            batch_index=self._batch_index,
            error=error,
        )
        LOGGER.error(
            "Evolution world #%d stopped in generation #%s: %s",
            self._world_index,
            self._generation_index,
            error,
        )
        self._clear()
        self._failure = error
        self._publish(SCHEDULER_FAILED, failed)

    def _check_timer(self, epoch: int) -> None:
        if self._phase is not SchedulerPhase.BATCH_ACTIVE or not self._timer.is_current(epoch):
            raise StaleTimerFired(
                f"Batch timer #{epoch} fired after being superseded (current #{self._timer.epoch})."
            )

    def _clear(self) -> None:
        self._phase = SchedulerPhase.IDLE
        self._generation_index = None
        self._batch_index = None
        self._pool = None
        self._cars = {}
        self._car_list = ()
        self._batch = ()
        self._loss_history = []
        self._avg_loss_history = []
        self._best = None
        self._failure = None
        self.ledger.clear()

    @staticmethod
    def _check_population(pool: GenomePool, config: EvolutionConfig) -> None:
        if batches_total(len(pool), config.batch_size) == 0:
            raise ConfigurationError("Population is empty: there is no batch to run.")
        if len(pool) != config.generation_size:
            raise ConfigurationError(
                f"Generation holds {len(pool)} genomes but generation_size is {config.generation_size}."
            )

    def _publish(self, event_type: str, payload: Any) -> None:
        if self.event_bus is not None:
            self.event_bus.publish(event_type, payload)
