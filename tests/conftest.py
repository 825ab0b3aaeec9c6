"""Shared test fixtures."""
from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone

import pytest

from buildforge.backend.mock import MockExecutionBackend
from buildforge.core.config import ControllerConfig
from buildforge.core.types import (
    BuildStrategy,
    BuildStrategySpec,
    ClusterBuildStrategy,
    ObjectMeta,
    Secret,
    StrategyParameter,
    StrategyStep,
)
from buildforge.resilience.retry import RetryPolicy
from buildforge.store.memory import InMemoryObjectStore

NAMESPACE = "builds"


class FakeClock:
    """Manually advanced clock for timeout and retention tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def strategy_spec() -> BuildStrategySpec:
    return BuildStrategySpec(
        steps=[
            StrategyStep(
                name="build-and-push",
                image="quay.io/buildah/stable:latest",
                command=["buildah", "bud"],
            )
        ],
        parameters=[StrategyParameter(name="storage-driver", default="vfs")],
    )


@pytest.fixture
async def store() -> AsyncGenerator[InMemoryObjectStore, None]:
    s = InMemoryObjectStore()
    yield s
    s.close()


@pytest.fixture
async def seeded_store(store: InMemoryObjectStore) -> InMemoryObjectStore:
    """Store holding a namespaced ``buildah`` strategy, a cluster ``kaniko``
    strategy and a ``registry-creds`` secret."""
    await store.create(
        BuildStrategy(metadata=ObjectMeta(name="buildah", namespace=NAMESPACE), spec=strategy_spec())
    )
    await store.create(ClusterBuildStrategy(metadata=ObjectMeta(name="kaniko"), spec=strategy_spec()))
    await store.create(
        Secret(
            metadata=ObjectMeta(name="registry-creds", namespace=NAMESPACE),
            type="kubernetes.io/dockerconfigjson",
        )
    )
    return store


@pytest.fixture
def backend() -> MockExecutionBackend:
    return MockExecutionBackend()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> ControllerConfig:
    """Config without sleeps: zero backoff everywhere."""
    return ControllerConfig(
        workers=2,
        default_timeout_seconds=600,
        poll_interval_seconds=0.01,
        submission_retry=RetryPolicy(max_retries=2, backoff_base=0.0, jitter=False),
        strategy_lookup_retries=2,
        strategy_lookup_backoff_seconds=0.0,
    )
