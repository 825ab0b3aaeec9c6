"""Execution backend contract and the in-memory mock backend."""

from buildforge.backend.base import (
    ExecutionBackend,
    JobHandle,
    JobObservation,
    JobSpec,
    JobWatcher,
    StepResult,
)
from buildforge.backend.mock import MockExecutionBackend

__all__ = [
    "ExecutionBackend",
    "JobHandle",
    "JobObservation",
    "JobSpec",
    "JobWatcher",
    "MockExecutionBackend",
    "StepResult",
]
