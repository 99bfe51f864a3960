"""Checkpoint contract for saving and resuming evolution runs."""

from __future__ import annotations

from dataclasses import dataclass


CHECKPOINT_SCHEMA_VERSION = 1


@dataclass(frozen=True)
class Checkpoint:
    """Immutable snapshot of the full trainable state.

    Restoring from a checkpoint fully replaces scheduler and ledger state.
    In-flight details such as the active batch index are deliberately absent:
    a restored run always resumes at batch 0 of ``generation_index``.
    """

    date_time: str
    generation_index: int
    loss_history: tuple[float, ...]
    avg_loss_history: tuple[float, ...]
    performance_boost: bool
    generation_size: int
    generation_lifetime: float
    batch_size: int
    mutation_probability: float
    long_living_champions_percentage: float
    generation: tuple[tuple[int, ...], ...]
    schema_version: int = CHECKPOINT_SCHEMA_VERSION

    @property
    def file_name(self) -> str:
        return f"evolution-checkpoint--gen-{self.generation_index}--size-{self.generation_size}.json"
