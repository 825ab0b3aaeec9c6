from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import AsyncIterator

from buildforge.backend.base import JobHandle, JobObservation, JobSpec, StepResult
from buildforge.core.constants import JobPhase
from buildforge.core.exceptions import JobAlreadyExistsError, JobNotFoundError, SubmissionError


class MockExecutionBackend:
    """In-memory execution backend for testing.

    Usage::

        backend = MockExecutionBackend()
        handle = await backend.submit(job)
        backend.set_running(handle.name)
        backend.succeed(handle.name, results={"image-digest": "sha256:..."})

        observation = await backend.observe(handle)
        assert observation.phase == JobPhase.SUCCEEDED

    Inject submission failures with :meth:`fail_next_submit`; every state
    change is published to :meth:`watch` subscribers.
    """

    def __init__(self) -> None:
        self.jobs: dict[tuple[str, str], JobSpec] = {}
        self._observations: dict[tuple[str, str], JobObservation] = {}
        self._submit_failures: list[Exception] = []
        self._events: asyncio.Queue[JobHandle | None] = asyncio.Queue()
        self.calls: list[tuple[str, str]] = []

    # ------------------------------------------------------------------ #
    # ExecutionBackend implementation
    # ------------------------------------------------------------------ #

    async def submit(self, job: JobSpec) -> JobHandle:
        self.calls.append(("submit", job.name))
        if self._submit_failures:
            raise self._submit_failures.pop(0)
        key = (job.namespace, job.name)
        if key in self.jobs:
            raise JobAlreadyExistsError(f"job {job.namespace}/{job.name} already exists")
        self.jobs[key] = job.model_copy(deep=True)
        self._observations[key] = JobObservation(name=job.name, phase=JobPhase.PENDING)
        handle = JobHandle(name=job.name, namespace=job.namespace)
        self._events.put_nowait(handle)
        return handle

    async def observe(self, handle: JobHandle) -> JobObservation:
        self.calls.append(("observe", handle.name))
        observation = self._observations.get((handle.namespace, handle.name))
        if observation is None:
            raise JobNotFoundError(f"job {handle.namespace}/{handle.name} not found")
        return observation.model_copy(deep=True)

    async def cancel(self, handle: JobHandle) -> None:
        self.calls.append(("cancel", handle.name))
        key = (handle.namespace, handle.name)
        observation = self._observations.get(key)
        if observation is None:
            raise JobNotFoundError(f"job {handle.namespace}/{handle.name} not found")
        if observation.phase not in (JobPhase.SUCCEEDED, JobPhase.FAILED):
            self._finish(key, JobPhase.FAILED, reason="Cancelled", message="job cancelled")

    async def watch(self) -> AsyncIterator[JobHandle]:
        while True:
            handle = await self._events.get()
            if handle is None:
                return
            yield handle

    def close(self) -> None:
        self._events.put_nowait(None)

    # ------------------------------------------------------------------ #
    # Test drivers
    # ------------------------------------------------------------------ #

    def fail_next_submit(self, error: Exception | None = None, times: int = 1) -> None:
        """Make the next *times* submissions raise *error*."""
        for _ in range(times):
            self._submit_failures.append(error or SubmissionError("quota exceeded"))

    def set_running(self, name: str, namespace: str | None = None) -> None:
        key = self._find(name, namespace)
        observation = self._observations[key]
        observation.phase = JobPhase.RUNNING
        observation.started_at = datetime.now(timezone.utc)
        self._events.put_nowait(JobHandle(name=key[1], namespace=key[0]))

    def succeed(
        self,
        name: str,
        *,
        results: dict[str, str] | None = None,
        namespace: str | None = None,
    ) -> None:
        key = self._find(name, namespace)
        steps = [StepResult(name="build-and-push", exit_code=0, results=results or {})]
        self._finish(key, JobPhase.SUCCEEDED, steps=steps)

    def fail(
        self,
        name: str,
        *,
        steps: list[StepResult] | None = None,
        reason: str | None = None,
        message: str = "",
        namespace: str | None = None,
    ) -> None:
        key = self._find(name, namespace)
        self._finish(key, JobPhase.FAILED, steps=steps, reason=reason, message=message)

    def assert_submitted(self, name: str) -> None:
        names = [job.name for job in self.jobs.values()]
        assert name in names, f"Expected job '{name}' to be submitted, got: {names}"

    def call_count(self, method: str) -> int:
        return sum(1 for m, _ in self.calls if m == method)

    # ------------------------------------------------------------------ #

    def _find(self, name: str, namespace: str | None) -> tuple[str, str]:
        for key in self._observations:
            if key[1] == name and (namespace is None or key[0] == namespace):
                return key
        raise JobNotFoundError(f"job {name} not found")

    def _finish(
        self,
        key: tuple[str, str],
        phase: JobPhase,
        *,
        steps: list[StepResult] | None = None,
        reason: str | None = None,
        message: str = "",
    ) -> None:
        observation = self._observations[key]
        now = datetime.now(timezone.utc)
        observation.phase = phase
        observation.reason = reason
        observation.message = message
        if steps is not None:
            observation.steps = steps
        observation.started_at = observation.started_at or now
        observation.finished_at = now
        self._events.put_nowait(JobHandle(name=key[1], namespace=key[0]))
