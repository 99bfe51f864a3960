"""Loss-history analytics decoupled from plotting and storage."""

from __future__ import annotations

from typing import Sequence

import numpy as np


def finite_losses(history: Sequence[float]) -> np.ndarray:
    """Return history as float array with unmeasured entries as NaN."""
    values = np.asarray(list(history), dtype=float)
    values[~np.isfinite(values)] = np.nan
    return values


def summarize_history(history: Sequence[float], first_generation: int = 0) -> dict[str, float]:
    """Build aggregate metrics from a per-generation minimum loss history.

    ``history[0]`` belongs to generation ``first_generation``, so a resumed
    run reports generation numbers of the original run.
    ``best_generation`` is -1 when no generation was measured. The improvement
    rate is the slope of a least-squares line through measured generations;
    negative means the loss is going down.
    """
    values = finite_losses(history)
    measured = ~np.isnan(values)
    count = int(measured.sum())
    if count == 0:
        return {
            "generations": float(len(values)),
            "measured_generations": 0.0,
            "best_generation": -1.0,
            "best_loss": float("inf"),
            "latest_loss": float("inf"),
            "improvement_rate": 0.0,
        }

    generations = np.arange(first_generation, first_generation + len(values), dtype=float)[measured]
    losses = values[measured]
    best_position = int(np.argmin(losses))
    if count > 1:
        slope = float(np.polyfit(generations, losses, 1)[0])
    else:
        slope = 0.0

    return {
        "generations": float(len(values)),
        "measured_generations": float(count),
        "best_generation": float(generations[best_position]),
        "best_loss": float(losses[best_position]),
        "latest_loss": float(losses[-1]),
        "improvement_rate": slope,
    }


def running_best(history: Sequence[float]) -> np.ndarray:
    """Best loss seen so far at each generation, NaN until the first measurement."""
    values = finite_losses(history)
    filled = np.where(np.isnan(values), np.inf, values)
    best = np.minimum.accumulate(filled) if len(filled) else filled
    best[np.isinf(best)] = np.nan
    return best
