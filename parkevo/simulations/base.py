"""Base contract for simulations that evaluate car batches."""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from typing import Any

from parkevo.agents.car import CarAgent
from parkevo.core.event_bus import BATCH_STARTED, EventBus


class BatchSimulation(ABC):
    """Abstract simulation evaluating the cars of each batch window.

    All simulation state must be instance-local. The simulation learns about
    new batches from ``batch_started`` events and talks back to the scheduler
    only through ``CarAgent.report_fitness``.
    """

    def __init__(self, params: dict[str, Any], rng: random.Random) -> None:
        """Store simulation parameters and RNG.

        Args:
            params: Simulation-specific parameters.
            rng: Deterministic RNG owned by the caller.
        """
        self.params = params
        self.rng = rng
        self._bus: EventBus | None = None

    def attach(self, bus: EventBus) -> None:
        """Start evaluating every batch published on ``bus``."""
        self.detach()
        bus.subscribe(BATCH_STARTED, self.on_batch_started)
        self._bus = bus

    def detach(self) -> None:
        if self._bus is not None:
            self._bus.unsubscribe(BATCH_STARTED, self.on_batch_started)
            self._bus = None

    def on_batch_started(self, event: Any) -> None:
        self.run_batch(tuple(event.agents))

    @abstractmethod
    def run_batch(self, agents: tuple[CarAgent, ...]) -> None:
        """Evaluate ``agents`` and report their fitness."""

    @abstractmethod
    def evaluate(self, agent: CarAgent) -> float | None:
        """Return the loss of ``agent``, or ``None`` when it cannot be measured."""

    def close(self) -> None:
        """Release simulation resources."""
        self.detach()
