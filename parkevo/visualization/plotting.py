"""Plot utilities for persisted evolution runs."""

from __future__ import annotations

from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402

from parkevo.core.analytics import finite_losses, running_best  # noqa: E402
from parkevo.data.logger import RunLogger  # noqa: E402


def plot_run(db_path: str | Path, run_id: str, output_path: str | Path) -> Path:
    """Render min/average loss and diversity curves for a run from SQLite logs.

    Unmeasured generations leave gaps in the curves.
    """
    logger = RunLogger(db_path)
    try:
        records = logger.fetch_history(run_id)
    finally:
        logger.close()

    output = Path(output_path)
    output.parent.mkdir(parents=True, exist_ok=True)

    generations = [record.generation_index for record in records]
    min_loss = finite_losses([record.min_loss for record in records])
    avg_loss = finite_losses([record.avg_loss for record in records])
    diversity = [record.diversity for record in records]

    fig, (ax1, ax2) = plt.subplots(2, 1, figsize=(8, 6), sharex=True)
    ax1.plot(generations, min_loss, label="min_loss", marker="o")
    ax1.plot(generations, avg_loss, label="avg_loss")
    ax1.plot(generations, running_best([record.min_loss for record in records]), label="best_so_far", linestyle="--")
    ax1.set_ylabel("loss")
    ax1.legend()

    ax2.plot(generations, diversity, label="diversity", color="tab:green")
    ax2.set_ylabel("diversity")
    ax2.set_xlabel("generation")
    ax2.legend()

    fig.tight_layout()
    fig.savefig(output)
    plt.close(fig)
    return output
