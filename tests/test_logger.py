"""Tests for SQLite-backed run logger and loss analytics."""

from __future__ import annotations

import math
import sqlite3

import pytest

from parkevo.core.analytics import running_best, summarize_history
from parkevo.data.logger import GenerationRecord, RunLogger


def test_logger_persists_metadata_and_generations(tmp_path) -> None:
    db_path = tmp_path / "runs.db"
    logger = RunLogger(db_path)

    run_id = logger.start_run(config={"generation_size": 4, "batch_size": 2}, seed=42)
    logger.log_generation(run_id, GenerationRecord(generation_index=0, min_loss=math.inf, avg_loss=math.inf))
    logger.log_generation(
        run_id,
        GenerationRecord(generation_index=1, min_loss=0.25, avg_loss=0.5, best_licence_plate="CAR-3", diversity=2.0),
    )
    assert logger.latest_run_id() == run_id
    history = logger.fetch_history(run_id)
    logger.close()

    assert [record.generation_index for record in history] == [0, 1]
    assert math.isinf(history[0].min_loss)
    assert history[1].best_licence_plate == "CAR-3"

    conn = sqlite3.connect(db_path)
    rows = conn.execute("SELECT min_loss FROM generation_losses ORDER BY generation_index").fetchall()
    metadata_count = conn.execute("SELECT COUNT(*) FROM run_metadata").fetchone()[0]
    conn.close()

    assert rows == [(None,), (0.25,)]
    assert metadata_count == 1


def test_latest_run_id_is_none_for_empty_database(tmp_path) -> None:
    logger = RunLogger(tmp_path / "empty.db")
    try:
        assert logger.latest_run_id() is None
    finally:
        logger.close()


def test_summary_skips_unmeasured_generations() -> None:
    summary = summarize_history([math.inf, 4.0, 3.0, math.inf, 1.0])

    assert summary["generations"] == 5.0
    assert summary["measured_generations"] == 3.0
    assert summary["best_generation"] == 4.0
    assert summary["best_loss"] == 1.0
    assert summary["latest_loss"] == 1.0
    assert summary["improvement_rate"] < 0.0


def test_summary_numbers_generations_from_first_generation() -> None:
    summary = summarize_history([3.0, 1.0, 2.0], first_generation=4)

    assert summary["best_generation"] == 5.0
    assert summary["generations"] == 3.0
    assert summary["improvement_rate"] == pytest.approx(-0.5)


def test_summary_of_unmeasured_history() -> None:
    summary = summarize_history([math.inf, math.inf])

    assert summary["best_generation"] == -1.0
    assert math.isinf(summary["best_loss"])
    assert summary["improvement_rate"] == 0.0


def test_running_best_is_monotonic() -> None:
    best = running_best([math.inf, 4.0, 5.0, 2.0])

    assert math.isnan(best[0])
    assert list(best[1:]) == pytest.approx([4.0, 4.0, 2.0])
