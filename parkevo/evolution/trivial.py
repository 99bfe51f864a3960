"""Pass-through generation factory."""

from __future__ import annotations

import random
from typing import Mapping

from parkevo.agents.genome import GenomePool
from parkevo.evolution.base import EvolutionParams, GenerationFactory


class PassThroughGenerationFactory(GenerationFactory):
    """Next generation is a copy of the previous one.

    Draws no random numbers in ``evolve``, which makes resumed runs replay
    exactly the same genomes.
    """

    def evolve(
        self,
        previous: GenomePool,
        fitness: Mapping[str, float | None],
        params: EvolutionParams,
        rng: random.Random,
    ) -> GenomePool:
        """Return the previous genomes in their original order."""
        return GenomePool(genomes=tuple(previous))
