"""Tests for genomes, generation creation, and the elitist GA factory."""

from __future__ import annotations

import random

import pytest

from parkevo.agents.car import batch_slice, batches_total, generation_to_cars, licence_plate, plate_index
from parkevo.agents.genome import Genome, GenomePool
from parkevo.core.deterministic_rng import DeterministicRNG
from parkevo.evolution.base import EvolutionParams, rank_genome_indices
from parkevo.evolution.ga import ElitistGenerationFactory
from parkevo.evolution.trivial import PassThroughGenerationFactory


def _pool() -> GenomePool:
    return GenomePool.from_genes(
        [
            (1, 1, 1, 1, 1, 1),
            (0, 0, 0, 0, 0, 0),
            (1, 0, 1, 0, 1, 0),
            (0, 0, 0, 0, 0, 1),
            (1, 1, 0, 0, 1, 1),
        ]
    )


def test_crossover_takes_each_gene_from_a_parent() -> None:
    parent_a = Genome(genes=(0,) * 32)
    parent_b = Genome(genes=(1,) * 32)

    child = parent_a.crossover(parent_b, random.Random(3))

    assert len(child) == 32
    assert set(child) == {0, 1}
    assert parent_a.genes == (0,) * 32


def test_crossover_rejects_different_lengths() -> None:
    with pytest.raises(ValueError):
        Genome(genes=(0, 1)).crossover(Genome(genes=(0, 1, 1)), random.Random(0))


def test_mutation_replaces_genes_with_other_alleles() -> None:
    genome = Genome(genes=(0, 1, 2, 0))

    assert genome.mutate(0.0, random.Random(1)) == genome
    assert genome.mutate(1.0, random.Random(1), alphabet=(0, 1)).genes[:2] == (1, 0)
    flipped = genome.mutate(1.0, random.Random(1), alphabet=(0, 1, 2))
    assert all(a != b for a, b in zip(genome, flipped))

    with pytest.raises(ValueError):
        genome.mutate(1.5, random.Random(1))


def test_pool_rejects_mixed_genome_lengths() -> None:
    with pytest.raises(ValueError):
        GenomePool.from_genes([(0, 1), (0, 1, 1)])


def test_initial_generation_is_deterministic_per_seed() -> None:
    factory = ElitistGenerationFactory((0, 1))

    first = factory.create_initial(8, 180, random.Random(42))
    second = factory.create_initial(8, 180, random.Random(42))

    assert first == second
    assert len(first) == 8
    assert first.genome_length == 180
    assert first.diversity() > 0.0


def test_ranking_puts_unmeasured_cars_last_and_keeps_order_on_ties() -> None:
    fitness = {"CAR-1": 2.0, "CAR-2": None, "CAR-3": 1.0, "CAR-5": 2.0}

    assert rank_genome_indices(5, fitness) == [2, 0, 4, 1, 3]


@pytest.mark.parametrize(
    "size, percentage, expected",
    [(50, 6.0, 3), (10, 6.0, 1), (10, 0.0, 0), (4, 100.0, 4), (0, 6.0, 0)],
)
def test_champions_count(size, percentage, expected) -> None:
    assert ElitistGenerationFactory.champions_count(size, percentage) == expected


def test_elitist_evolve_keeps_champions_and_size() -> None:
    pool = _pool()
    fitness = {licence_plate(i): float(sum(genome)) for i, genome in enumerate(pool)}
    factory = ElitistGenerationFactory()

    nxt = factory.evolve(
        pool,
        fitness,
        EvolutionParams(mutation_probability=0.5, long_living_champions_percentage=40.0),
        random.Random(9),
    )

    assert len(nxt) == len(pool)
    assert nxt[0] == pool[1]
    assert nxt[1] == pool[3]
    assert 0.0 < factory.last_mutation_ratio < 1.0
    assert pool == _pool()


def test_elitist_evolve_is_deterministic_for_equal_rng() -> None:
    pool = _pool()
    params = EvolutionParams()
    factory = ElitistGenerationFactory()

    assert factory.evolve(pool, {}, params, random.Random(5)) == factory.evolve(pool, {}, params, random.Random(5))


def test_pass_through_factory_copies_previous_generation() -> None:
    pool = _pool()

    assert PassThroughGenerationFactory().evolve(pool, {}, EvolutionParams(), random.Random(0)) == pool


def test_cars_follow_genome_order_and_split_into_batches() -> None:
    cars = generation_to_cars(_pool(), generation_index=4, decode=lambda genome: sum(genome))
    ordered = tuple(cars.values())

    assert list(cars) == ["CAR-1", "CAR-2", "CAR-3", "CAR-4", "CAR-5"]
    assert ordered[0].behavior == 6
    assert ordered[2].generation_index == 4
    assert batches_total(5, 2) == 3
    assert batches_total(5, 0) == 0
    assert [car.licence_plate for car in batch_slice(ordered, 2, 2)] == ["CAR-5"]
    assert ordered[0].report_fitness(1.0) is False
    assert [plate_index(plate) for plate in cars] == [0, 1, 2, 3, 4]
    assert plate_index("CAR-0") is None
    assert plate_index("TRUCK-2") is None


@pytest.mark.parametrize("size, batch_size", [(10, 4), (7, 7), (5, 1), (3, 8)])
def test_batches_cover_generation_exactly_once(size, batch_size) -> None:
    pool = ElitistGenerationFactory().create_initial(size, 4, random.Random(size))
    ordered = tuple(generation_to_cars(pool, 0).values())

    covered = [
        car.licence_plate
        for batch_index in range(batches_total(size, batch_size))
        for car in batch_slice(ordered, batch_index, batch_size)
    ]

    assert covered == [licence_plate(i) for i in range(size)]


def test_rng_streams_replay_per_world() -> None:
    rng = DeterministicRNG(seed=3)
    first = [rng.stream("evolve").random() for _ in range(3)]

    rng.enter_world(1)
    other_world = [rng.stream("evolve").random() for _ in range(3)]
    rng.enter_world(0)

    assert [rng.stream("evolve").random() for _ in range(3)] == first
    assert other_world != first
    assert rng.stream("initial") is not rng.stream("evolve")
