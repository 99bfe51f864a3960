"""Single owned countdown driving batch windows."""

from __future__ import annotations

import threading
import time
from typing import Callable, Protocol


class TimerHandle(Protocol):
    """Subset of ``threading.Timer`` the scheduler relies on."""

    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


class BatchTimer:
    """At most one live countdown at a time.

    Every ``arm`` and ``cancel`` bumps the epoch. The fire callback receives
    the epoch it was armed with, so the owner can reject a fire that raced a
    cancellation by comparing it with ``is_current``.

    Not thread-safe on its own: the owner serializes calls.
    """

    def __init__(
        self,
        timer_factory: TimerFactory = threading.Timer,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._timer_factory = timer_factory
        self._clock = clock
        self._handle: TimerHandle | None = None
        self._deadline: float | None = None
        self._epoch = 0

    @property
    def epoch(self) -> int:
        return self._epoch

    def arm(self, seconds: float, on_fire: Callable[[int], None]) -> int:
        """Cancel any pending countdown and start a new one of ``seconds``."""
        self.cancel()
        self._epoch += 1
        epoch = self._epoch
        handle = self._timer_factory(max(0.0, float(seconds)), lambda: on_fire(epoch))
        if isinstance(handle, threading.Thread):
            handle.daemon = True
        self._handle = handle
        self._deadline = self._clock() + max(0.0, float(seconds))
        handle.start()
        return epoch

    def cancel(self) -> None:
        """Cancel the pending countdown, if any. Idempotent."""
        self._epoch += 1
        handle = self._handle
        self._handle = None
        self._deadline = None
        if handle is not None:
            handle.cancel()

    def is_current(self, epoch: int) -> bool:
        return self._handle is not None and epoch == self._epoch

    def remaining(self) -> float | None:
        """Seconds left in the live window, or ``None`` when idle."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())
