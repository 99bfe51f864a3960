"""Thread-safe non-blocking pub/sub event bus for scheduler lifecycle events."""

from __future__ import annotations

import logging
from collections import defaultdict
from concurrent.futures import Future, ThreadPoolExecutor
from threading import Lock, Semaphore
from typing import Any, Callable


LOGGER = logging.getLogger(__name__)

Callback = Callable[[Any], None]

BATCH_STARTED = "batch_started"
GENERATION_STARTED = "generation_started"
GENERATION_FINISHED = "generation_finished"
SCHEDULER_RESET = "scheduler_reset"
SCHEDULER_FAILED = "scheduler_failed"


class EventBus:
    """Minimal non-blocking event bus.

    Callbacks execute in a worker pool so publish() never blocks the
    scheduler. With a single worker, callbacks run in publish order.
    """

    def __init__(self, max_workers: int = 1, max_pending: int = 2048) -> None:
        self._subs: dict[str, list[Callback]] = defaultdict(list)
        self._lock = Lock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="parkevo-events")
        self._pending = Semaphore(max(1, int(max_pending)))
        self._closed = False

    def subscribe(self, event_type: str, callback: Callback) -> None:
        with self._lock:
            self._subs[event_type].append(callback)

    def unsubscribe(self, event_type: str, callback: Callback) -> None:
        with self._lock:
            callbacks = self._subs.get(event_type, [])
            if callback in callbacks:
                callbacks.remove(callback)

    def publish(self, event_type: str, payload: Any) -> list[Future]:
        """Queue ``payload`` for every subscriber of ``event_type``."""
        with self._lock:
            if self._closed:
                return []
            callbacks = list(self._subs.get(event_type, []))
        futures: list[Future] = []
        for callback in callbacks:
            if not self._pending.acquire(blocking=False):
                LOGGER.warning("Dropping %s event: too many pending callbacks", event_type)
                continue
            future = self._executor.submit(self._safe_invoke, event_type, callback, payload)
            future.add_done_callback(lambda _f: self._pending.release())
            futures.append(future)
        return futures

    def close(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait)

    @staticmethod
    def _safe_invoke(event_type: str, callback: Callback, payload: Any) -> None:
        try:
            callback(payload)
        except Exception:
            LOGGER.exception("Subscriber %r failed while handling %s", callback, event_type)
