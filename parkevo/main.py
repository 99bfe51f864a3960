"""Component wiring for headless evolution runs."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any

from parkevo.configs.loader import ConfigLoader, EvolutionConfig
from parkevo.core.checkpointing import Checkpoint
from parkevo.core.deterministic_rng import DeterministicRNG
from parkevo.core.analytics import summarize_history
from parkevo.core.event_bus import GENERATION_FINISHED, SCHEDULER_FAILED, EventBus
from parkevo.data.checkpoint_store import CheckpointStore
from parkevo.data.logger import GenerationRecord, RunLogger
from parkevo.engine.batch_timer import TimerFactory
from parkevo.engine.scheduler import BatchScheduler, GenerationFinished, SchedulerExecutionError, SchedulerFailed
from parkevo.evolution.base import GenerationFactory
from parkevo.evolution.ga import ElitistGenerationFactory
from parkevo.evolution.trivial import PassThroughGenerationFactory
from parkevo.simulations.base import BatchSimulation
from parkevo.simulations.parking_lot import ParkingLotSimulation


LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "configs" / "example_evolution.yaml"

_FACTORIES: dict[str, type[GenerationFactory]] = {
    "elitist": ElitistGenerationFactory,
    "pass_through": PassThroughGenerationFactory,
}


def create_factory(config: EvolutionConfig) -> GenerationFactory:
    """Build the generation factory named by the ``factory`` config key."""
    name = str(config.get("factory", "elitist"))
    try:
        factory_cls = _FACTORIES[name]
    except KeyError as exc:
        raise ValueError(f"Unknown generation factory '{name}'. Expected one of {sorted(_FACTORIES)}.") from exc
    return factory_cls(config.gene_alphabet)


class EvolutionRun:
    """A scheduler, its simulation, and the listeners persisting its progress.

    ``run`` blocks until the requested number of generations has finished,
    then resets the scheduler. With a checkpoint directory, a checkpoint is
    written every ``checkpoint_interval`` generations and once at the end.
    A failure on the scheduler's timer thread ends the wait and is re-raised
    from ``run``.
    """

    def __init__(
        self,
        scheduler: BatchScheduler,
        event_bus: EventBus,
        simulation: BatchSimulation,
        logger: RunLogger | None = None,
        checkpoint_store: CheckpointStore | None = None,
        checkpoint_dir: Path | None = None,
    ) -> None:
        self.scheduler = scheduler
        self.event_bus = event_bus
        self.simulation = simulation
        self.logger = logger
        self.checkpoint_store = checkpoint_store
        self.checkpoint_dir = checkpoint_dir
        self.run_id: str | None = None
        self.checkpoints: list[Path] = []
        self.finished = threading.Event()
        self.summary: dict[str, float] | None = None
        self._last_generation: int | None = None
        self._failure: SchedulerExecutionError | None = None

        self.simulation.attach(event_bus)
        event_bus.subscribe(GENERATION_FINISHED, self._on_generation_finished)
        event_bus.subscribe(SCHEDULER_FAILED, self._on_scheduler_failed)

    def __enter__(self) -> "EvolutionRun":
        return self

    def __exit__(self, *_exc: Any) -> None:
        self.close()

    def run(
        self,
        generations: int,
        checkpoint: Checkpoint | None = None,
        timeout: float | None = None,
    ) -> tuple[float, ...]:
        """Train ``generations`` generations and return their loss history.

        When ``checkpoint`` is given the run resumes from it, and the returned
        history includes the generations recorded before the checkpoint.
        """
        first = checkpoint.generation_index if checkpoint is not None else 0
        if generations <= 0:
            return tuple(checkpoint.loss_history[:first]) if checkpoint is not None else ()

        config = self.scheduler.config
        if self.logger is not None:
            self.run_id = self.logger.start_run(
                config.to_dict(),
                seed=config.seed,
                metadata={"resumed_from_generation": first} if checkpoint is not None else None,
            )

        self.finished.clear()
        self.summary = None
        self._failure = None
        self._last_generation = first + generations - 1
        if checkpoint is not None:
            self.scheduler.restore_from_checkpoint(checkpoint)
        else:
            self.scheduler.start()

        if not self.finished.wait(timeout):
            self.scheduler.reset()
            raise TimeoutError(f"Evolution did not finish {generations} generation(s) in {timeout}s.")
        if self._failure is not None:
            raise self._failure

        history = self.scheduler.fitness_history()[: self._last_generation + 1]
        self.scheduler.reset()
        self.summary = summarize_history(history[first:], first_generation=first)
        LOGGER.info(
            "Run summary: best loss %s at generation #%d, latest loss %s, improvement rate %.4f",
            self.summary["best_loss"],
            int(self.summary["best_generation"]),
            self.summary["latest_loss"],
            self.summary["improvement_rate"],
        )
        return history

    def close(self) -> None:
        self.scheduler.close()
        self.event_bus.close()
        self.simulation.close()
        if self.logger is not None:
            self.logger.close()

    def _on_generation_finished(self, event: GenerationFinished) -> None:
        if self._last_generation is None or event.generation_index > self._last_generation:
            return
        if self.logger is not None and self.run_id is not None:
            self.logger.log_generation(
                self.run_id,
                GenerationRecord(
                    generation_index=event.generation_index,
                    min_loss=event.min_fitness,
                    avg_loss=event.average_fitness,
                    best_licence_plate=event.best.licence_plate if event.best is not None else None,
                    diversity=event.diversity,
                    world_index=event.world_index,
                ),
            )

        last = event.generation_index == self._last_generation
        interval = self.scheduler.config.checkpoint_interval
        periodic = interval > 0 and (event.generation_index + 1) % interval == 0
        if last or periodic:
            self._save_checkpoint(event.checkpoint)
        if last:
            LOGGER.info("Evolution finished after generation #%d", event.generation_index)
            self.finished.set()

    def _on_scheduler_failed(self, event: SchedulerFailed) -> None:
        if self.finished.is_set():
            return
        self._failure = event.error
        self.finished.set()

    def _save_checkpoint(self, checkpoint: Checkpoint) -> None:
        if self.checkpoint_store is None or self.checkpoint_dir is None:
            return
        path = self.checkpoint_store.checkpoint_path(self.checkpoint_dir, checkpoint)
        self.checkpoints.append(self.checkpoint_store.save(checkpoint, path))


def build_components(
    config: EvolutionConfig,
    logger: RunLogger | None = None,
    checkpoint_dir: str | Path | None = None,
    factory: GenerationFactory | None = None,
    simulation: BatchSimulation | None = None,
    timer_factory: TimerFactory = threading.Timer,
) -> EvolutionRun:
    """Build a scheduler, a parking-lot simulation, and their listeners."""
    event_bus = EventBus()
    scheduler = BatchScheduler(
        config,
        factory or create_factory(config),
        event_bus=event_bus,
        timer_factory=timer_factory,
    )
    if simulation is None:
        simulation = ParkingLotSimulation(
            params={
                "genome_length": config.genome_length,
                "gene_alphabet": list(config.gene_alphabet),
                "workers": int(config.get("simulation_workers", 4)),
            },
            rng=DeterministicRNG(config.seed).stream("parking-lot"),
        )
    return EvolutionRun(
        scheduler=scheduler,
        event_bus=event_bus,
        simulation=simulation,
        logger=logger,
        checkpoint_store=CheckpointStore() if checkpoint_dir is not None else None,
        checkpoint_dir=Path(checkpoint_dir) if checkpoint_dir is not None else None,
    )


def main(config_path: str | Path = DEFAULT_CONFIG_PATH) -> None:
    """Load config, build components, and train for ``config.generations``."""
    config = ConfigLoader.load(config_path)
    with build_components(config=config, logger=RunLogger(Path("parkevo_runs.db"))) as run:
        run.run(config.generations)


if __name__ == "__main__":
    main()
