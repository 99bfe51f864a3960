"""Genome and generation containers used by evolutionary operators."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Iterator, Sequence


BINARY_ALPHABET: tuple[int, ...] = (0, 1)


@dataclass(frozen=True)
class Genome:
    """Fixed-length sequence of small integer genes.

    Genomes are immutable: crossover and mutation always return new instances
    and never alter either parent. The gene alphabet is owned by the caller
    (usually the generation factory), so the genome itself stays
    alphabet-agnostic.
    """

    genes: tuple[int, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "genes", tuple(int(gene) for gene in self.genes))

    def __len__(self) -> int:
        return len(self.genes)

    def __iter__(self) -> Iterator[int]:
        return iter(self.genes)

    def __getitem__(self, index: int) -> int:
        return self.genes[index]

    def crossover(self, other: "Genome", rng: random.Random) -> "Genome":
        """Create an offspring by picking every gene from either parent.

        Args:
            other (Genome): The second parent genome.
            rng (random.Random): Source of randomness for gene selection.

        Returns:
            Genome: A newly created offspring genome.

        Invariants:
            - Parents must have equal length.
            - Must not mutate either parent genome.
        """
        if len(other) != len(self):
            raise ValueError(
                f"Genome crossover requires equal lengths, got {len(self)} and {len(other)}."
            )
        return Genome(
            genes=tuple(
                gene_a if rng.random() < 0.5 else gene_b
                for gene_a, gene_b in zip(self.genes, other.genes)
            )
        )

    def mutate(
        self,
        probability: float,
        rng: random.Random,
        alphabet: Sequence[int] = BINARY_ALPHABET,
    ) -> "Genome":
        """Return a copy where each gene is replaced with ``probability``.

        A replaced gene always takes a different allele from ``alphabet``, so
        for the binary alphabet mutation is a bit flip.
        """
        if not 0.0 <= probability <= 1.0:
            raise ValueError("Mutation probability must be in [0.0, 1.0].")
        if len(alphabet) < 2:
            return self

        genes: list[int] = []
        for gene in self.genes:
            if rng.random() < probability:
                choices = [allele for allele in alphabet if allele != gene]
                genes.append(int(rng.choice(choices)))
            else:
                genes.append(gene)
        return Genome(genes=tuple(genes))

    def distance(self, other: "Genome") -> float:
        """Hamming distance between this genome and ``other``."""
        if len(other) != len(self):
            raise ValueError("Genome distance requires equal lengths.")
        return float(sum(1 for gene_a, gene_b in zip(self.genes, other.genes) if gene_a != gene_b))


@dataclass(frozen=True)
class GenomePool:
    """One generation: an ordered, fixed-size collection of genomes."""

    genomes: tuple[Genome, ...]

    def __post_init__(self) -> None:
        genomes = tuple(
            genome if isinstance(genome, Genome) else Genome(genes=tuple(genome))
            for genome in self.genomes
        )
        lengths = {len(genome) for genome in genomes}
        if len(lengths) > 1:
            raise ValueError(f"All genomes in a generation must share one length, got {sorted(lengths)}.")
        object.__setattr__(self, "genomes", genomes)

    @classmethod
    def from_genes(cls, rows: Sequence[Sequence[int]]) -> "GenomePool":
        return cls(genomes=tuple(Genome(genes=tuple(row)) for row in rows))

    def __len__(self) -> int:
        return len(self.genomes)

    def __iter__(self) -> Iterator[Genome]:
        return iter(self.genomes)

    def __getitem__(self, index: int) -> Genome:
        return self.genomes[index]

    @property
    def genome_length(self) -> int:
        return len(self.genomes[0]) if self.genomes else 0

    def to_genes(self) -> tuple[tuple[int, ...], ...]:
        return tuple(genome.genes for genome in self.genomes)

    def diversity(self) -> float:
        """Mean pairwise Hamming distance, used for generation metrics."""
        if len(self.genomes) < 2:
            return 0.0
        total = 0.0
        pairs = 0
        for i in range(len(self.genomes)):
            for j in range(i + 1, len(self.genomes)):
                total += self.genomes[i].distance(self.genomes[j])
                pairs += 1
        return total / pairs if pairs else 0.0
