"""SQLite-backed run metadata and per-generation loss logging."""

from __future__ import annotations

import hashlib
import json
import math
import platform
import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping


@dataclass(frozen=True)
class GenerationRecord:
    """One finished generation as persisted by ``RunLogger``."""

    generation_index: int
    min_loss: float
    avg_loss: float
    best_licence_plate: str | None = None
    diversity: float = 0.0
    world_index: int = 0


class RunLogger:
    """Persist run metadata and per-generation losses in SQLite.

    Unmeasured losses (``math.inf``) are stored as NULL and read back as
    ``math.inf``. Calls are serialized so event-bus workers can log safely.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.connection = sqlite3.connect(self.db_path, check_same_thread=False)
        self.connection.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    def close(self) -> None:
        with self._lock:
            self.connection.close()

    def _ensure_schema(self) -> None:
        self.connection.executescript(
            """
            CREATE TABLE IF NOT EXISTS run_metadata (
                run_id TEXT PRIMARY KEY,
                config_hash TEXT NOT NULL,
                seed INTEGER NOT NULL,
                config_json TEXT NOT NULL,
                runtime_metadata TEXT NOT NULL,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS generation_losses (
                run_id TEXT NOT NULL,
                world_index INTEGER NOT NULL,
                generation_index INTEGER NOT NULL,
                min_loss REAL,
                avg_loss REAL,
                best_licence_plate TEXT,
                diversity REAL NOT NULL,
                PRIMARY KEY (run_id, world_index, generation_index),
                FOREIGN KEY (run_id)
                    REFERENCES run_metadata (run_id)
                    ON DELETE CASCADE
            );
            """
        )
        self.connection.commit()

    def start_run(self, config: Mapping[str, Any], seed: int, metadata: Mapping[str, Any] | None = None) -> str:
        config_json = json.dumps(dict(config), sort_keys=True, default=str)
        runtime_metadata: dict[str, Any] = {
            "python_version": platform.python_version(),
            "platform": platform.platform(),
        }
        if metadata:
            runtime_metadata.update(dict(metadata))
        config_hash = hashlib.sha256(config_json.encode("utf-8")).hexdigest()
        run_nonce = str(time.time_ns())
        run_id = hashlib.sha256(f"{config_hash}:{seed}:{run_nonce}".encode("utf-8")).hexdigest()[:16]
        metadata_json = json.dumps(runtime_metadata, sort_keys=True, default=str)

        with self._lock:
            self.connection.execute(
                """
                INSERT OR IGNORE INTO run_metadata (
                    run_id, config_hash, seed, config_json, runtime_metadata
                ) VALUES (?, ?, ?, ?, ?)
                """,
                (run_id, config_hash, seed, config_json, metadata_json),
            )
            self.connection.commit()
        return run_id

    def log_generation(self, run_id: str, record: GenerationRecord) -> None:
        with self._lock:
            self.connection.execute(
                """
                INSERT OR REPLACE INTO generation_losses (
                    run_id,
                    world_index,
                    generation_index,
                    min_loss,
                    avg_loss,
                    best_licence_plate,
                    diversity
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    run_id,
                    record.world_index,
                    record.generation_index,
                    _to_sql(record.min_loss),
                    _to_sql(record.avg_loss),
                    record.best_licence_plate,
                    float(record.diversity),
                ),
            )
            self.connection.commit()

    def fetch_history(self, run_id: str) -> list[GenerationRecord]:
        """Return the run's generations ordered by world then generation."""
        with self._lock:
            rows = self.connection.execute(
                """
                SELECT world_index, generation_index, min_loss, avg_loss, best_licence_plate, diversity
                FROM generation_losses
                WHERE run_id = ?
                ORDER BY world_index ASC, generation_index ASC
                """,
                (run_id,),
            ).fetchall()
        return [
            GenerationRecord(
                generation_index=int(row["generation_index"]),
                min_loss=_from_sql(row["min_loss"]),
                avg_loss=_from_sql(row["avg_loss"]),
                best_licence_plate=row["best_licence_plate"],
                diversity=float(row["diversity"]),
                world_index=int(row["world_index"]),
            )
            for row in rows
        ]

    def latest_run_id(self) -> str | None:
        """Return most recently created run id, if any."""
        with self._lock:
            row = self.connection.execute(
                """
                SELECT run_id
                FROM run_metadata
                ORDER BY created_at DESC, rowid DESC
                LIMIT 1
                """
            ).fetchone()
        return str(row[0]) if row is not None else None


def _to_sql(value: float) -> float | None:
    return None if math.isinf(value) or math.isnan(value) else float(value)


def _from_sql(value: float | None) -> float:
    return math.inf if value is None else float(value)
