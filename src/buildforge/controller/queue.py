"""Deduplicating work queue with per-key serialization.

A key is in at most one of three places: waiting in the queue, being
processed by a worker, or both "processing" and "dirty" (re-added while a
worker holds it).  A dirty key goes back on the queue when its worker calls
:meth:`WorkQueue.done`, so a key is never processed by two workers at once
and bursts of triggers collapse into one reconcile.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque

import structlog

from buildforge.resilience.retry import RetryPolicy

logger = structlog.get_logger(__name__)


class WorkQueue:
    """Asyncio work queue keyed by object key (``namespace/name``).

    Args:
        name: Queue name used in log events.
        rate_limiter: Backoff policy for :meth:`add_rate_limited`; its
            ``compute_delay`` is applied to the key's failure count.
    """

    def __init__(self, name: str = "queue", rate_limiter: RetryPolicy | None = None) -> None:
        self.name = name
        self._rate_limiter = rate_limiter or RetryPolicy(
            backoff_base=0.05, backoff_max=300.0, jitter=False
        )
        self._queue: deque[str] = deque()
        self._dirty: set[str] = set()
        self._processing: set[str] = set()
        self._failures: dict[str, int] = {}
        self._timers: dict[str, tuple[float, asyncio.TimerHandle]] = {}
        self._wakeup = asyncio.Event()
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._queue)

    def __repr__(self) -> str:
        return (
            f"WorkQueue(name={self.name!r}, queued={len(self._queue)}, "
            f"processing={len(self._processing)})"
        )

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, key: str) -> None:
        """Mark *key* as needing a reconcile."""
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._wakeup.set()

    def add_after(self, key: str, delay: float) -> None:
        """Add *key* once *delay* seconds have passed.

        Only the earliest pending deadline per key is kept.
        """
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return
        deadline = time.monotonic() + delay
        pending = self._timers.get(key)
        if pending is not None:
            if pending[0] <= deadline:
                return
            pending[1].cancel()
        handle = asyncio.get_running_loop().call_later(delay, self._fire, key)
        self._timers[key] = (deadline, handle)

    def add_rate_limited(self, key: str) -> float:
        """Requeue *key* with exponential backoff; returns the delay used."""
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        delay = self._rate_limiter.compute_delay(failures)
        self.add_after(key, delay)
        return delay

    def forget(self, key: str) -> None:
        """Reset the backoff of *key* after a successful reconcile."""
        self._failures.pop(key, None)

    def num_requeues(self, key: str) -> int:
        return self._failures.get(key, 0)

    async def get(self) -> str | None:
        """Wait for the next key; ``None`` once the queue is shut down."""
        while not self._queue:
            if self._shutting_down:
                return None
            self._wakeup.clear()
            await self._wakeup.wait()
        key = self._queue.popleft()
        self._processing.add(key)
        self._dirty.discard(key)
        return key

    def done(self, key: str) -> None:
        """Release *key*; it is queued again if it was re-added meanwhile."""
        self._processing.discard(key)
        if key in self._dirty and not self._shutting_down:
            self._queue.append(key)
            self._wakeup.set()

    def shut_down(self) -> None:
        self._shutting_down = True
        for _, handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self._queue.clear()
        self._wakeup.set()
        logger.debug("workqueue_shut_down", queue=self.name)

    def _fire(self, key: str) -> None:
        self._timers.pop(key, None)
        self.add(key)
