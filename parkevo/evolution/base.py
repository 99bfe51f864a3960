"""Generation factory contracts."""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Mapping, Sequence

from parkevo.agents.car import licence_plate
from parkevo.agents.genome import BINARY_ALPHABET, Genome, GenomePool


@dataclass(frozen=True)
class EvolutionParams:
    """Hyperparameters consumed by ``GenerationFactory.evolve``."""

    mutation_probability: float = 0.04
    long_living_champions_percentage: float = 6.0


class GenerationFactory(ABC):
    """Produces generation 0 and every following generation.

    Concrete factories may implement any selection policy, provided they
    operate through explicit inputs and produce deterministic outcomes for an
    equivalent ``rng`` state.
    """

    def __init__(self, gene_alphabet: Sequence[int] = BINARY_ALPHABET) -> None:
        alphabet = tuple(dict.fromkeys(int(allele) for allele in gene_alphabet))
        if not alphabet:
            raise ValueError("gene_alphabet must be non-empty.")
        self.gene_alphabet = alphabet

    def create_initial(self, size: int, genome_length: int, rng: random.Random) -> GenomePool:
        """Create ``size`` uniformly random genomes of ``genome_length`` genes."""
        if size < 0 or genome_length < 0:
            raise ValueError("size and genome_length must be non-negative.")
        return GenomePool(
            genomes=tuple(
                Genome(genes=tuple(rng.choice(self.gene_alphabet) for _ in range(genome_length)))
                for _ in range(size)
            )
        )

    @abstractmethod
    def evolve(
        self,
        previous: GenomePool,
        fitness: Mapping[str, float | None],
        params: EvolutionParams,
        rng: random.Random,
    ) -> GenomePool:
        """Generate the next generation from ``previous`` and its fitness.

        Args:
            previous (GenomePool): The generation that just finished.
            fitness (Mapping[str, float | None]): Loss per licence plate;
                lower is better, ``None`` means never measured.
            params (EvolutionParams): Mutation and champion settings.
            rng (random.Random): Source of all random draws.

        Returns:
            GenomePool: Next generation.

        Invariants:
            - Output length must equal ``len(previous)``.
            - Must not mutate ``previous`` or ``fitness``.
        """


def rank_genome_indices(size: int, fitness: Mapping[str, float | None]) -> list[int]:
    """Order genome indices by ascending loss, unmeasured cars last.

    Ties keep genome order, so the earliest car wins.
    """
    def sort_key(genome_index: int) -> tuple[int, float, int]:
        value = fitness.get(licence_plate(genome_index))
        if value is None:
            return (1, 0.0, genome_index)
        return (0, float(value), genome_index)

    return sorted(range(size), key=sort_key)
