"""Headless parking-lot task used to train cars without a physics engine."""

from __future__ import annotations

import logging
import random
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from parkevo.agents.car import CarAgent
from parkevo.agents.genome import Genome
from parkevo.simulations.base import BatchSimulation


LOGGER = logging.getLogger(__name__)


class ParkingLotSimulation(BatchSimulation):
    """Scores each car by how far its genome is from an ideal parking manoeuvre.

    The ideal manoeuvre is a genome drawn once from ``rng``. The loss of a car
    is the fraction of genes that differ from it, so 0.0 means parked
    perfectly. Cars of a batch are evaluated concurrently and report on their
    own, the way independent physics bodies would.

    Params:
        genome_length: Length of the ideal genome (required).
        gene_alphabet: Alleles the ideal genome is drawn from, default ``[0, 1]``.
        workers: Size of the evaluation pool, default 4.
    """

    def __init__(self, params: dict[str, Any], rng: random.Random) -> None:
        super().__init__(params, rng)
        alphabet = tuple(params.get("gene_alphabet", (0, 1)))
        length = int(params["genome_length"])
        self.target = Genome(genes=tuple(rng.choice(alphabet) for _ in range(length)))
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, int(params.get("workers", 4))),
            thread_name_prefix="parkevo-sim",
        )

    def run_batch(self, agents: tuple[CarAgent, ...]) -> None:
        LOGGER.debug("Evaluating %d cars", len(agents))
        futures = [self._executor.submit(self._drive, agent) for agent in agents]
        for future in futures:
            future.result()

    def evaluate(self, agent: CarAgent) -> float | None:
        if len(agent.genome) != len(self.target):
            return None
        return agent.genome.distance(self.target) / max(1, len(self.target))

    def close(self) -> None:
        super().close()
        self._executor.shutdown(wait=True)

    def _drive(self, agent: CarAgent) -> None:
        agent.report_fitness(self.evaluate(agent))
