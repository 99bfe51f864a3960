"""Runtime car agents bound to generation genomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from parkevo.agents.genome import Genome, GenomePool


FitnessCallback = Callable[[str, float | None, int | None], Any]
GenomeDecoder = Callable[[Genome], Any]


def licence_plate(genome_index: int) -> str:
    """Return the stable identifier of the genome at ``genome_index``."""
    return f"CAR-{genome_index + 1}"


def plate_index(plate: str) -> int | None:
    """Genome index encoded in ``plate``, or ``None`` for foreign identifiers."""
    prefix, _, number = plate.partition("-")
    if prefix != "CAR" or not number.isdigit() or int(number) < 1:
        return None
    return int(number) - 1


@dataclass(frozen=True)
class CarAgent:
    """Runtime handle binding one genome to one licence plate.

    Agents are recreated whenever a generation is materialized and are never
    persisted. The simulation reports fitness through ``report_fitness``; the
    agent forwards its own generation index so late reports from a torn-down
    generation can be told apart from reports of the next one.
    """

    licence_plate: str
    genome_index: int
    generation_index: int
    genome: Genome
    behavior: Any = None
    on_fitness_update: FitnessCallback | None = field(default=None, compare=False, repr=False)

    def report_fitness(self, value: float | None) -> bool:
        """Forward one fitness measurement to the owning scheduler."""
        if self.on_fitness_update is None:
            return False
        return bool(self.on_fitness_update(self.licence_plate, value, self.generation_index))


def generation_to_cars(
    pool: GenomePool,
    generation_index: int,
    on_fitness_update: FitnessCallback | None = None,
    decode: GenomeDecoder | None = None,
) -> dict[str, CarAgent]:
    """Materialize one agent per genome, keyed by licence plate in genome order."""
    cars: dict[str, CarAgent] = {}
    for genome_index, genome in enumerate(pool):
        plate = licence_plate(genome_index)
        cars[plate] = CarAgent(
            licence_plate=plate,
            genome_index=genome_index,
            generation_index=generation_index,
            genome=genome,
            behavior=decode(genome) if decode is not None else None,
            on_fitness_update=on_fitness_update,
        )
    return cars


def batches_total(population_size: int, batch_size: int) -> int:
    """Number of batches needed to cover ``population_size`` agents."""
    if batch_size <= 0:
        return 0
    return -(-max(0, population_size) // batch_size)


def batch_slice(cars: Sequence[CarAgent], batch_index: int, batch_size: int) -> tuple[CarAgent, ...]:
    """Return the contiguous agents evaluated in batch ``batch_index``."""
    start = batch_size * batch_index
    return tuple(cars[start:start + batch_size])
