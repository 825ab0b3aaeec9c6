"""Narrow submit/observe/cancel contract with the task-execution backend."""

from __future__ import annotations

from datetime import datetime
from typing import AsyncIterator, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from buildforge.core.constants import JobPhase
from buildforge.core.types import GitSource, ParamValue, SourceEntry, StrategyStep


class JobSpec(BaseModel):
    """Everything the backend needs to run one BuildRun."""

    name: str
    namespace: str
    labels: dict[str, str] = Field(default_factory=dict)
    service_account: str
    strategy_name: str
    strategy_kind: str
    steps: list[StrategyStep] = Field(default_factory=list)
    params: list[ParamValue] = Field(default_factory=list)
    source: GitSource
    sources: list[SourceEntry] = Field(default_factory=list)
    dockerfile: str | None = None
    output_image: str
    output_credentials: str | None = None
    timeout_seconds: int


class JobHandle(BaseModel):
    name: str
    namespace: str


class StepResult(BaseModel):
    """Outcome of one step as reported by the backend.

    Attributes:
        exit_code: Container exit code, ``None`` while the step has not
            terminated.
        reason: Named termination reason reported by the engine, if any.
        output: Tail of the step's log output.
        results: Named results the step wrote (``image-digest``,
            ``error-reason`` …).
    """

    name: str
    exit_code: int | None = None
    reason: str | None = None
    message: str = ""
    output: str = ""
    results: dict[str, str] = Field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return self.exit_code is not None and self.exit_code != 0


class JobObservation(BaseModel):
    name: str
    phase: JobPhase
    reason: str | None = None
    """Job-level (infrastructure) reason, e.g. ``PodEvicted``."""
    message: str = ""
    steps: list[StepResult] = Field(default_factory=list)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def results(self) -> dict[str, str]:
        """Results of every step merged in step order."""
        merged: dict[str, str] = {}
        for step in self.steps:
            merged.update(step.results)
        return merged


@runtime_checkable
class ExecutionBackend(Protocol):
    """Structural type for any execution backend.

    ``submit`` raises :class:`~buildforge.core.exceptions.JobAlreadyExistsError`
    for a name already in use and a
    :class:`~buildforge.core.exceptions.SubmissionError` (retryable when
    transient) for rejected jobs. ``observe`` and ``cancel`` raise
    :class:`~buildforge.core.exceptions.JobNotFoundError` for unknown jobs.
    """

    async def submit(self, job: JobSpec) -> JobHandle: ...

    async def observe(self, handle: JobHandle) -> JobObservation: ...

    async def cancel(self, handle: JobHandle) -> None: ...


@runtime_checkable
class JobWatcher(Protocol):
    """Optional capability: stream handles of jobs whose state changed."""

    def watch(self) -> AsyncIterator[JobHandle]: ...
