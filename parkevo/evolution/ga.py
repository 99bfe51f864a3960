"""Elitist genetic algorithm generation factory."""

from __future__ import annotations

import math
import random
from typing import Mapping, Sequence

from parkevo.agents.genome import BINARY_ALPHABET, Genome, GenomePool
from parkevo.evolution.base import EvolutionParams, GenerationFactory, rank_genome_indices


class ElitistGenerationFactory(GenerationFactory):
    """Champions survive unmutated, the rest come from ranked parents.

    Policy:
      1) rank cars by ascending loss with unmeasured cars last,
      2) copy the top ``long_living_champions_percentage`` genomes as-is,
      3) fill the remainder with uniform crossover of two parents drawn with
         linear rank weights, followed by per-gene mutation.
    """

    def __init__(self, gene_alphabet: Sequence[int] = BINARY_ALPHABET) -> None:
        super().__init__(gene_alphabet)
        self.last_mutation_ratio: float = 0.0

    def evolve(
        self,
        previous: GenomePool,
        fitness: Mapping[str, float | None],
        params: EvolutionParams,
        rng: random.Random,
    ) -> GenomePool:
        """Return the next generation with preserved size."""
        size = len(previous)
        if size == 0:
            return GenomePool(genomes=())

        ranking = rank_genome_indices(size, fitness)
        champions_num = self.champions_count(size, params.long_living_champions_percentage)
        next_genomes: list[Genome] = [previous[index] for index in ranking[:champions_num]]

        # Best rank gets weight ``size``, worst gets 1.
        weights = [float(size - rank) for rank in range(size)]
        mutated_genes = 0
        total_genes = 0
        while len(next_genomes) < size:
            parent_a, parent_b = rng.choices(ranking, weights=weights, k=2)
            child = previous[parent_a].crossover(previous[parent_b], rng)
            mutant = child.mutate(params.mutation_probability, rng, self.gene_alphabet)
            mutated_genes += int(child.distance(mutant))
            total_genes += len(mutant)
            next_genomes.append(mutant)

        self.last_mutation_ratio = float(mutated_genes) / float(total_genes) if total_genes else 0.0
        return GenomePool(genomes=tuple(next_genomes))

    @staticmethod
    def champions_count(size: int, percentage: float) -> int:
        """Number of genomes carried over unmutated."""
        if size <= 0 or percentage <= 0:
            return 0
        return min(size, max(1, math.floor(size * percentage / 100.0)))
