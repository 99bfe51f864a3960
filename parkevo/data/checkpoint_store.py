"""Checkpoint JSON encoding and persistent storage with atomic writes."""

from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Any, Mapping

from parkevo.core.checkpointing import CHECKPOINT_SCHEMA_VERSION, Checkpoint


LOGGER = logging.getLogger(__name__)

CHECKPOINT_GLOB = "evolution-checkpoint--gen-*--size-*.json"

_REQUIRED_FIELDS: tuple[str, ...] = (
    "dateTime",
    "generationIndex",
    "lossHistory",
    "avgLossHistory",
    "performanceBoost",
    "generationSize",
    "generationLifetime",
    "carsBatchSize",
    "mutationProbability",
    "longLivingChampionsPercentage",
    "generation",
)


class MalformedCheckpoint(ValueError):
    """Raised when a checkpoint document is missing fields or has the wrong shape."""


class CheckpointCodec:
    """Convert between ``Checkpoint`` and its JSON document.

    Unmeasured history entries (``math.inf``) are written as ``null``, which
    is what the files produced by the browser tool contain, and read back as
    ``math.inf``. Documents without ``schemaVersion`` are treated as version 1.
    """

    @staticmethod
    def encode(checkpoint: Checkpoint) -> dict[str, Any]:
        return {
            "schemaVersion": checkpoint.schema_version,
            "dateTime": checkpoint.date_time,
            "generationIndex": checkpoint.generation_index,
            "lossHistory": [_encode_loss(value) for value in checkpoint.loss_history],
            "avgLossHistory": [_encode_loss(value) for value in checkpoint.avg_loss_history],
            "performanceBoost": checkpoint.performance_boost,
            "generationSize": checkpoint.generation_size,
            "generationLifetime": checkpoint.generation_lifetime,
            "carsBatchSize": checkpoint.batch_size,
            "mutationProbability": checkpoint.mutation_probability,
            "longLivingChampionsPercentage": checkpoint.long_living_champions_percentage,
            "generation": [list(genes) for genes in checkpoint.generation],
        }

    @staticmethod
    def decode(document: Any) -> Checkpoint:
        if not isinstance(document, Mapping):
            raise MalformedCheckpoint("Checkpoint document must be a JSON object.")

        version = document.get("schemaVersion", CHECKPOINT_SCHEMA_VERSION)
        if version != CHECKPOINT_SCHEMA_VERSION:
            raise MalformedCheckpoint(
                f"Checkpoint schema mismatch: expected {CHECKPOINT_SCHEMA_VERSION}, got {version!r}."
            )

        missing = [key for key in _REQUIRED_FIELDS if key not in document]
        if missing:
            raise MalformedCheckpoint(f"Checkpoint is missing fields: {', '.join(missing)}")

        generation = _decode_generation(document["generation"])
        generation_index = _non_negative_int(document, "generationIndex")
        generation_size = _non_negative_int(document, "generationSize")
        if generation_size != len(generation):
            raise MalformedCheckpoint(
                f"generationSize is {generation_size} but generation holds {len(generation)} genomes."
            )
        batch_size = _non_negative_int(document, "carsBatchSize")
        if batch_size == 0:
            raise MalformedCheckpoint("carsBatchSize must be > 0.")

        return Checkpoint(
            date_time=str(document["dateTime"]),
            generation_index=generation_index,
            loss_history=_decode_history(document, "lossHistory"),
            avg_loss_history=_decode_history(document, "avgLossHistory"),
            performance_boost=bool(document["performanceBoost"]),
            generation_size=generation_size,
            generation_lifetime=_number(document, "generationLifetime"),
            batch_size=batch_size,
            mutation_probability=_number(document, "mutationProbability"),
            long_living_champions_percentage=_number(document, "longLivingChampionsPercentage"),
            generation=generation,
            schema_version=CHECKPOINT_SCHEMA_VERSION,
        )

    @classmethod
    def dumps(cls, checkpoint: Checkpoint) -> str:
        return json.dumps(cls.encode(checkpoint), allow_nan=False)

    @classmethod
    def loads(cls, text: str) -> Checkpoint:
        try:
            document = json.loads(text)
        except json.JSONDecodeError as exc:
            raise MalformedCheckpoint(f"Checkpoint is not valid JSON: {exc}") from exc
        return cls.decode(document)


class CheckpointStore:
    """Save/load/list checkpoint files without scheduler dependencies."""

    def __init__(self, codec: CheckpointCodec | None = None) -> None:
        self.codec = codec or CheckpointCodec()

    def save(self, checkpoint: Checkpoint, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        tmp_path.write_text(self.codec.dumps(checkpoint), encoding="utf-8")
        tmp_path.replace(path)
        LOGGER.info("Checkpoint for generation #%d written to %s", checkpoint.generation_index, path)
        return path

    def load(self, path: Path) -> Checkpoint:
        return self.codec.loads(Path(path).read_text(encoding="utf-8"))

    def list_checkpoints(self, directory: Path) -> list[Path]:
        base = Path(directory)
        if not base.exists():
            return []
        files = [p for p in base.glob(CHECKPOINT_GLOB) if p.is_file()]
        return sorted(files, key=lambda p: (_generation_of(p), p.name))

    def checkpoint_path(self, directory: Path, checkpoint: Checkpoint) -> Path:
        return Path(directory) / checkpoint.file_name


def _encode_loss(value: float) -> float | None:
    return None if math.isinf(value) or math.isnan(value) else float(value)


def _decode_history(document: Mapping[str, Any], key: str) -> tuple[float, ...]:
    raw = document[key]
    if not isinstance(raw, list):
        raise MalformedCheckpoint(f"{key} must be a list.")
    history: list[float] = []
    for value in raw:
        if value is None:
            history.append(math.inf)
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            history.append(float(value))
        else:
            raise MalformedCheckpoint(f"{key} holds a non-numeric entry: {value!r}")
    return tuple(history)


def _decode_generation(raw: Any) -> tuple[tuple[int, ...], ...]:
    if not isinstance(raw, list) or not raw:
        raise MalformedCheckpoint("generation must be a non-empty list of genomes.")
    rows: list[tuple[int, ...]] = []
    for row in raw:
        if not isinstance(row, list) or not all(isinstance(g, int) and not isinstance(g, bool) for g in row):
            raise MalformedCheckpoint("every genome must be a list of integers.")
        rows.append(tuple(row))
    if len({len(row) for row in rows}) != 1:
        raise MalformedCheckpoint("all genomes must have the same length.")
    return tuple(rows)


def _number(document: Mapping[str, Any], key: str) -> float:
    value = document[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedCheckpoint(f"{key} must be a number, got {value!r}.")
    return float(value)


def _non_negative_int(document: Mapping[str, Any], key: str) -> int:
    value = document[key]
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise MalformedCheckpoint(f"{key} must be a non-negative integer, got {value!r}.")
    return value


def _generation_of(path: Path) -> int:
    # evolution-checkpoint--gen-<g>--size-<n>.json
    try:
        return int(path.name.split("--")[1].removeprefix("gen-"))
    except (IndexError, ValueError):
        return -1
