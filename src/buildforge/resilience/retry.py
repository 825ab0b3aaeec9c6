"""Retry policy with exponential backoff and jitter for collaborator calls."""

from __future__ import annotations

import asyncio
import functools
import random
from typing import Any, Awaitable, Callable, TypeVar

import structlog
from pydantic import BaseModel, Field

from buildforge.core.exceptions import BuildForgeError

logger = structlog.get_logger(__name__)

_T = TypeVar("_T")


class RetryPolicy(BaseModel):
    """Configurable retry policy with exponential backoff.

    Attributes:
        max_retries: Maximum number of retry attempts (0 = no retries).
        backoff_base: Base delay in seconds for exponential backoff.
        backoff_max: Maximum delay in seconds (caps the exponential growth).
        jitter: If ``True``, add random jitter to the backoff delay.
        retryable_exceptions: Exception types retried even when they do not
            declare ``is_retryable``.
    """

    max_retries: int = Field(default=3, ge=0, le=50)
    backoff_base: float = Field(default=0.5, ge=0.0)
    backoff_max: float = Field(default=30.0, ge=0.0)
    jitter: bool = True
    retryable_exceptions: tuple[type[Exception], ...] = ()

    model_config = {"arbitrary_types_allowed": True}

    def is_retryable(self, exc: Exception) -> bool:
        """Determine whether an exception should be retried.

        A :class:`BuildForgeError` decides for itself through
        ``is_retryable``; any other exception is retried only when it is an
        instance of one of the configured ``retryable_exceptions``.
        """
        if isinstance(exc, BuildForgeError) and exc.is_retryable:
            return True
        return isinstance(exc, self.retryable_exceptions)

    def compute_delay(self, attempt: int) -> float:
        """Compute the backoff delay for the given attempt (0-indexed).

        Uses exponential backoff: ``backoff_base * 2^attempt``, capped at
        ``backoff_max``.  When ``jitter`` is enabled, the delay is uniformly
        distributed between 0 and the computed value.
        """
        delay: float = min(self.backoff_base * (2 ** attempt), self.backoff_max)
        if self.jitter:
            delay = random.uniform(0, delay)  # noqa: S311
        return delay

    async def execute(
        self,
        fn: Callable[..., Awaitable[_T]],
        *args: Any,
        **kwargs: Any,
    ) -> _T:
        """Execute *fn* with retry logic.

        Calls ``await fn(*args, **kwargs)`` and retries on retryable
        exceptions up to ``max_retries`` times with exponential backoff.

        Raises:
            Exception: The last exception raised by *fn* if all retries are
                exhausted, or immediately if the exception is not retryable.
        """
        attempt = 0
        while True:
            try:
                return await fn(*args, **kwargs)
            except Exception as exc:
                if not self.is_retryable(exc):
                    raise
                if attempt >= self.max_retries:
                    logger.warning(
                        "retry_exhausted",
                        attempts=attempt + 1,
                        error=str(exc),
                    )
                    raise
                delay = self.compute_delay(attempt)
                logger.info(
                    "retry_attempt",
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    delay=round(delay, 3),
                    error=str(exc),
                )
                await asyncio.sleep(delay)
                attempt += 1

    def as_decorator(
        self,
    ) -> Callable[[Callable[..., Awaitable[_T]]], Callable[..., Awaitable[_T]]]:
        """Return a decorator that wraps async functions with this retry policy.

        Usage::

            policy = RetryPolicy(max_retries=5)

            @policy.as_decorator()
            async def fragile_call():
                ...
        """

        def decorator(
            fn: Callable[..., Awaitable[_T]],
        ) -> Callable[..., Awaitable[_T]]:
            @functools.wraps(fn)
            async def wrapper(*args: Any, **kwargs: Any) -> _T:
                return await self.execute(fn, *args, **kwargs)

            return wrapper

        return decorator
