from __future__ import annotations

import os
from typing import Any, Literal

from pydantic import BaseModel, Field

from buildforge.core.exceptions import ConfigurationError
from buildforge.resilience.retry import RetryPolicy


class ControllerConfig(BaseModel):
    workers: int = Field(default=4, ge=1, le=256)
    """Concurrent reconcile workers per controller."""
    default_timeout_seconds: int = Field(default=600, ge=1)
    """Deadline after submission when neither the Build nor BuildRun sets one."""
    poll_interval_seconds: float = Field(default=5.0, gt=0)
    default_service_account: str = "pipeline"
    submission_retry: RetryPolicy = Field(
        default_factory=lambda: RetryPolicy(max_retries=3, backoff_base=0.5, backoff_max=5.0)
    )
    strategy_lookup_retries: int = Field(default=5, ge=0, le=50)
    """Requeues tolerated for a strategy that is not (yet) found."""
    strategy_lookup_backoff_seconds: float = Field(default=1.0, ge=0.0)
    registry_timeout_seconds: float = Field(default=10.0, gt=0)
    registry_retry: RetryPolicy = Field(
        default_factory=lambda: RetryPolicy(max_retries=2, backoff_base=0.2, backoff_max=2.0)
    )
    registry_insecure: bool = False
    """Talk plain HTTP to registries (local development registries only)."""
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @classmethod
    def from_env(cls) -> ControllerConfig:
        """Create a :class:`ControllerConfig` from ``BUILDFORGE_*`` environment variables.

        Reads the following env vars (all optional):

        * ``BUILDFORGE_WORKERS`` → ``workers``
        * ``BUILDFORGE_DEFAULT_TIMEOUT`` → ``default_timeout_seconds``
        * ``BUILDFORGE_POLL_INTERVAL`` → ``poll_interval_seconds``
        * ``BUILDFORGE_SERVICE_ACCOUNT`` → ``default_service_account``
        * ``BUILDFORGE_STRATEGY_LOOKUP_RETRIES`` → ``strategy_lookup_retries``
        * ``BUILDFORGE_REGISTRY_INSECURE`` → ``registry_insecure`` (``true``/``false``)
        * ``BUILDFORGE_LOG_LEVEL`` → ``log_level``

        Any variable that is not set or is empty is left at its default value.

        Raises:
            ConfigurationError: If a numeric variable cannot be parsed.
        """
        kwargs: dict[str, Any] = {}

        int_vars = {
            "BUILDFORGE_WORKERS": "workers",
            "BUILDFORGE_DEFAULT_TIMEOUT": "default_timeout_seconds",
            "BUILDFORGE_STRATEGY_LOOKUP_RETRIES": "strategy_lookup_retries",
        }
        for env_name, field in int_vars.items():
            raw = os.environ.get(env_name)
            if raw:
                try:
                    kwargs[field] = int(raw)
                except ValueError as exc:
                    raise ConfigurationError(f"{env_name} must be an integer, got {raw!r}") from exc

        poll = os.environ.get("BUILDFORGE_POLL_INTERVAL")
        if poll:
            try:
                kwargs["poll_interval_seconds"] = float(poll)
            except ValueError as exc:
                raise ConfigurationError(
                    f"BUILDFORGE_POLL_INTERVAL must be a number, got {poll!r}"
                ) from exc

        service_account = os.environ.get("BUILDFORGE_SERVICE_ACCOUNT")
        if service_account:
            kwargs["default_service_account"] = service_account

        insecure = os.environ.get("BUILDFORGE_REGISTRY_INSECURE")
        if insecure:
            kwargs["registry_insecure"] = insecure.strip().lower() in ("1", "true", "yes")

        log_level = os.environ.get("BUILDFORGE_LOG_LEVEL")
        if log_level:
            kwargs["log_level"] = log_level.upper()

        return cls(**kwargs)
