"""Per-generation fitness accumulation with snapshot semantics."""

from __future__ import annotations

import math
from dataclasses import dataclass
from statistics import fmean
from types import MappingProxyType
from typing import Callable, Iterable, Mapping

from parkevo.agents.car import CarAgent, plate_index
from parkevo.agents.genome import Genome


GenerationFitness = Mapping[str, float | None]

UNKNOWN_FITNESS = math.inf

_EMPTY: GenerationFitness = MappingProxyType({})


@dataclass(frozen=True)
class BestRecord:
    """Best (lowest loss) car observed in a generation so far."""

    licence_plate: str
    fitness: float
    genome: Genome | None = None
    genome_index: int | None = None


def _genome_order(mapping: GenerationFitness) -> Callable[[str], tuple[int, int]]:
    position = {plate: offset for offset, plate in enumerate(mapping)}

    def key(plate: str) -> tuple[int, int]:
        index = plate_index(plate)
        return (0, index) if index is not None else (1, position[plate])

    return key


@dataclass(frozen=True)
class _OpenSlot:
    generation_index: int
    agent_ids: frozenset[str]
    values: dict[str, float | None]


class FitnessLedger:
    """Fast last-write-wins sink for fitness reports.

    The live mapping of the open generation is only ever written with single
    item assignments, so concurrent reporters never tear a value and never
    contend on a lock. Readers get copies: ``snapshot`` returns a read-only
    view of a fresh dict, and ``publish`` additionally keeps that copy as the
    generation's displayed state.
    """

    def __init__(self) -> None:
        self._slot: _OpenSlot | None = None
        self._published: dict[int, GenerationFitness] = {}

    @property
    def generation_index(self) -> int | None:
        slot = self._slot
        return slot.generation_index if slot is not None else None

    def open_generation(self, generation_index: int, agent_ids: Iterable[str]) -> None:
        """Start accepting reports for ``agent_ids`` of ``generation_index``."""
        values: dict[str, float | None] = {}
        self._published.pop(generation_index, None)
        self._slot = _OpenSlot(
            generation_index=generation_index,
            agent_ids=frozenset(agent_ids),
            values=values,
        )

    def clear(self) -> None:
        """Drop every generation, published snapshot, and the open slot."""
        self._slot = None
        self._published = {}

    def record(self, agent_id: str, value: float | None, generation_index: int | None = None) -> bool:
        """Store the latest ``value`` for ``agent_id`` in the open generation.

        Reports for unknown cars, for a generation other than the open one, or
        while no generation is open are ignored and return ``False``.
        """
        slot = self._slot
        if slot is None or agent_id not in slot.agent_ids:
            return False
        if generation_index is not None and generation_index != slot.generation_index:
            return False
        if value is not None:
            value = float(value)
            if math.isnan(value):
                value = None
        slot.values[agent_id] = value
        return True

    def snapshot(self) -> GenerationFitness:
        """Return a read-only copy of the open generation's mapping."""
        slot = self._slot
        if slot is None:
            return _EMPTY
        return MappingProxyType(slot.values.copy())

    def publish(self) -> GenerationFitness:
        """Snapshot the open generation and keep it as its displayed copy."""
        slot = self._slot
        if slot is None:
            return _EMPTY
        frozen = MappingProxyType(slot.values.copy())
        self._published[slot.generation_index] = frozen
        return frozen

    def published(self, generation_index: int) -> GenerationFitness:
        """Return the last published snapshot of ``generation_index``."""
        return self._published.get(generation_index, _EMPTY)

    @staticmethod
    def best_of(
        mapping: GenerationFitness,
        agents: Mapping[str, CarAgent] | None = None,
    ) -> BestRecord | None:
        """Pick the lowest measured loss, ties going to the earliest car.

        When ``agents`` is given, candidates are scanned in genome order and
        reports for cars outside ``agents`` are skipped. Otherwise the genome
        index encoded in each licence plate orders them, and identifiers that
        are not licence plates come last in mapping order.
        """
        if agents is not None:
            candidates = [plate for plate in agents if plate in mapping]
        else:
            candidates = sorted(mapping, key=_genome_order(mapping))

        best_plate: str | None = None
        best_value = math.inf
        for plate in candidates:
            value = mapping[plate]
            if value is None:
                continue
            if best_plate is None or value < best_value:
                best_plate = plate
                best_value = float(value)

        if best_plate is None:
            return None
        agent = agents.get(best_plate) if agents is not None else None
        return BestRecord(
            licence_plate=best_plate,
            fitness=best_value,
            genome=agent.genome if agent is not None else None,
            genome_index=agent.genome_index if agent is not None else None,
        )

    @staticmethod
    def min_fitness(mapping: GenerationFitness) -> float:
        """Lowest measured loss, or ``UNKNOWN_FITNESS`` if nothing was measured."""
        measured = [float(value) for value in mapping.values() if value is not None]
        return min(measured) if measured else UNKNOWN_FITNESS

    @staticmethod
    def average_fitness(mapping: GenerationFitness) -> float:
        """Mean measured loss, or ``UNKNOWN_FITNESS`` if nothing was measured."""
        measured = [float(value) for value in mapping.values() if value is not None]
        return float(fmean(measured)) if measured else UNKNOWN_FITNESS
