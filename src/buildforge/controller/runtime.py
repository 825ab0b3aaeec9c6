"""Reconcile workers: pull keys off a :class:`WorkQueue` and reconcile them."""

from __future__ import annotations

import asyncio
from typing import Protocol, runtime_checkable

import structlog
from pydantic import BaseModel

from buildforge.controller.queue import WorkQueue
from buildforge.core.exceptions import BuildForgeError
from buildforge.core.types import Resource

logger = structlog.get_logger(__name__)


class ReconcileRequest(BaseModel):
    namespace: str | None = None
    name: str

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}" if self.namespace else self.name

    @classmethod
    def from_key(cls, key: str) -> ReconcileRequest:
        namespace, _, name = key.rpartition("/")
        return cls(namespace=namespace or None, name=name)


class ReconcileResult(BaseModel):
    """What the worker should do with the key after a reconcile.

    Attributes:
        requeue: Requeue with the key's exponential backoff.
        requeue_after: Requeue after exactly this many seconds (wins over
            ``requeue``).
    """

    requeue: bool = False
    requeue_after: float | None = None


@runtime_checkable
class Reconciler(Protocol):
    async def reconcile(self, request: ReconcileRequest) -> ReconcileResult: ...


class Controller:
    """Runs *workers* concurrent reconcile loops over one queue.

    The queue guarantees a key is handled by at most one worker at a time;
    different keys reconcile in parallel.  Errors never escape a worker:
    retryable errors (write conflicts, unavailable store) and unexpected
    exceptions requeue the key with backoff.
    """

    def __init__(
        self,
        name: str,
        reconciler: Reconciler,
        *,
        workers: int = 1,
        queue: WorkQueue | None = None,
    ) -> None:
        self.name = name
        self.reconciler = reconciler
        self.workers = workers
        self.queue = queue or WorkQueue(name)

    def __repr__(self) -> str:
        return f"Controller(name={self.name!r}, workers={self.workers})"

    def enqueue(self, obj: Resource | str) -> None:
        self.queue.add(obj if isinstance(obj, str) else obj.key)

    async def run(self) -> None:
        """Run the workers until :meth:`stop` is called."""
        logger.info("controller_started", controller=self.name, workers=self.workers)
        try:
            await asyncio.gather(*(self._worker() for _ in range(self.workers)))
        finally:
            self.queue.shut_down()
            logger.info("controller_stopped", controller=self.name)

    def stop(self) -> None:
        self.queue.shut_down()

    async def process_next(self) -> bool:
        """Reconcile one queued key; ``False`` once the queue is shut down."""
        key = await self.queue.get()
        if key is None:
            return False
        try:
            await self._reconcile(key)
        finally:
            self.queue.done(key)
        return True

    async def _worker(self) -> None:
        while await self.process_next():
            pass

    async def _reconcile(self, key: str) -> None:
        with structlog.contextvars.bound_contextvars(controller=self.name, key=key):
            try:
                result = await self.reconciler.reconcile(ReconcileRequest.from_key(key))
            except BuildForgeError as exc:
                delay = self.queue.add_rate_limited(key)
                if exc.is_retryable:
                    logger.info("reconcile_retry", error=str(exc), delay=round(delay, 3))
                else:
                    logger.error("reconcile_failed", error=str(exc), delay=round(delay, 3))
                return
            except Exception:
                delay = self.queue.add_rate_limited(key)
                logger.exception("reconcile_crashed", delay=round(delay, 3))
                return

            if result.requeue_after is not None:
                self.queue.forget(key)
                self.queue.add_after(key, result.requeue_after)
            elif result.requeue:
                self.queue.add_rate_limited(key)
            else:
                self.queue.forget(key)
