"""Tests for resilience/retry.py: RetryPolicy."""

from __future__ import annotations

import pytest

from buildforge.core.exceptions import (
    ConflictError,
    SubmissionError,
    TransientSubmissionError,
)
from buildforge.resilience.retry import RetryPolicy


class _CustomRetryableError(Exception):
    """A non-buildforge exception opted in through retryable_exceptions."""


# ---------------------------------------------------------------------------
# is_retryable / compute_delay
# ---------------------------------------------------------------------------


def test_retryable_errors_declare_themselves() -> None:
    policy = RetryPolicy()
    assert policy.is_retryable(ConflictError("stale"))
    assert policy.is_retryable(TransientSubmissionError("busy"))
    assert not policy.is_retryable(SubmissionError("quota exceeded"))
    assert not policy.is_retryable(ValueError("boom"))


def test_retryable_exceptions_opt_in() -> None:
    policy = RetryPolicy(retryable_exceptions=(_CustomRetryableError,))
    assert policy.is_retryable(_CustomRetryableError())


def test_compute_delay_exponential_and_capped() -> None:
    policy = RetryPolicy(backoff_base=1.0, backoff_max=5.0, jitter=False)
    assert policy.compute_delay(0) == 1.0
    assert policy.compute_delay(1) == 2.0
    assert policy.compute_delay(2) == 4.0
    assert policy.compute_delay(3) == 5.0


def test_compute_delay_jitter_within_bounds() -> None:
    policy = RetryPolicy(backoff_base=1.0, backoff_max=10.0, jitter=True)
    for _ in range(20):
        assert 0.0 <= policy.compute_delay(2) <= 4.0


# ---------------------------------------------------------------------------
# execute
# ---------------------------------------------------------------------------


async def test_execute_retries_until_success() -> None:
    call_count = 0

    async def flaky() -> str:
        nonlocal call_count
        call_count += 1
        if call_count < 3:
            raise TransientSubmissionError("backend busy")
        return "submitted"

    policy = RetryPolicy(max_retries=3, backoff_base=0.0, jitter=False)
    assert await policy.execute(flaky) == "submitted"
    assert call_count == 3


async def test_execute_non_retryable_raises_immediately() -> None:
    call_count = 0

    async def rejected() -> None:
        nonlocal call_count
        call_count += 1
        raise SubmissionError("quota exceeded")

    policy = RetryPolicy(max_retries=5, backoff_base=0.0)
    with pytest.raises(SubmissionError, match="quota exceeded"):
        await policy.execute(rejected)
    assert call_count == 1


async def test_execute_exhausts_retries() -> None:
    call_count = 0

    async def always_conflicts() -> None:
        nonlocal call_count
        call_count += 1
        raise ConflictError("stale resource version")

    policy = RetryPolicy(max_retries=2, backoff_base=0.0, jitter=False)
    with pytest.raises(ConflictError):
        await policy.execute(always_conflicts)
    # 1 initial + 2 retries
    assert call_count == 3


async def test_execute_passes_arguments() -> None:
    async def add(a: int, b: int = 0) -> int:
        return a + b

    assert await RetryPolicy().execute(add, 2, b=3) == 5


async def test_as_decorator_preserves_name_and_retries() -> None:
    attempts = 0
    policy = RetryPolicy(max_retries=1, backoff_base=0.0, jitter=False)

    @policy.as_decorator()
    async def fetch() -> str:
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise ConflictError("stale")
        return "ok"

    assert fetch.__name__ == "fetch"
    assert await fetch() == "ok"
    assert attempts == 2
