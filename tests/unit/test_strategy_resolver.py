"""Tests for strategy.py: StrategyResolver."""
from __future__ import annotations

import pytest
from conftest import NAMESPACE, strategy_spec

from buildforge.core.constants import BuildReason, Kind, StrategyScope
from buildforge.core.exceptions import ReferencedStrategyNotFoundError, UnknownStrategyKindError
from buildforge.core.types import BuildStrategy, ClusterBuildStrategy, ObjectMeta
from buildforge.store.memory import InMemoryObjectStore
from buildforge.strategy import StrategyResolver


async def _both_scopes(store: InMemoryObjectStore, name: str = "shared") -> None:
    await store.create(
        BuildStrategy(metadata=ObjectMeta(name=name, namespace=NAMESPACE), spec=strategy_spec())
    )
    await store.create(ClusterBuildStrategy(metadata=ObjectMeta(name=name), spec=strategy_spec()))


async def test_namespaced_wins_over_cluster(store: InMemoryObjectStore) -> None:
    await _both_scopes(store)
    resolved = await StrategyResolver(store).resolve(NAMESPACE, "shared")
    assert resolved.scope == StrategyScope.NAMESPACE
    assert resolved.kind == Kind.BUILD_STRATEGY


async def test_falls_back_to_cluster(seeded_store: InMemoryObjectStore) -> None:
    resolved = await StrategyResolver(seeded_store).resolve(NAMESPACE, "kaniko")
    assert resolved.scope == StrategyScope.CLUSTER
    assert resolved.kind == Kind.CLUSTER_BUILD_STRATEGY


async def test_namespaced_strategy_not_visible_elsewhere(seeded_store: InMemoryObjectStore) -> None:
    with pytest.raises(ReferencedStrategyNotFoundError):
        await StrategyResolver(seeded_store).resolve("other", "buildah")


async def test_explicit_cluster_kind_skips_namespace(store: InMemoryObjectStore) -> None:
    await _both_scopes(store)
    resolved = await StrategyResolver(store).resolve(NAMESPACE, "shared", "ClusterBuildStrategy")
    assert resolved.scope == StrategyScope.CLUSTER


async def test_not_found_lists_searched_scopes(store: InMemoryObjectStore) -> None:
    with pytest.raises(ReferencedStrategyNotFoundError) as exc_info:
        await StrategyResolver(store).resolve(NAMESPACE, "ghost")
    err = exc_info.value
    assert err.reason == BuildReason.REFERENCED_STRATEGY_NOT_FOUND
    assert err.name == "ghost"
    assert len(err.scopes) == 2
    assert NAMESPACE in err.message


@pytest.mark.parametrize(
    ("kind", "reason"),
    [
        ("BuildStrategy", BuildReason.BUILD_STRATEGY_NOT_FOUND),
        ("ClusterBuildStrategy", BuildReason.CLUSTER_BUILD_STRATEGY_NOT_FOUND),
    ],
)
async def test_not_found_with_kind(store: InMemoryObjectStore, kind: str, reason: BuildReason) -> None:
    with pytest.raises(ReferencedStrategyNotFoundError) as exc_info:
        await StrategyResolver(store).resolve(NAMESPACE, "ghost", kind)
    assert exc_info.value.reason == reason


async def test_unknown_kind(store: InMemoryObjectStore) -> None:
    with pytest.raises(UnknownStrategyKindError):
        await StrategyResolver(store).resolve(NAMESPACE, "buildah", "Pipeline")


async def test_resolution_reflects_store_changes(seeded_store: InMemoryObjectStore) -> None:
    resolver = StrategyResolver(seeded_store)
    assert (await resolver.resolve(NAMESPACE, "kaniko")).scope == StrategyScope.CLUSTER
    await seeded_store.create(
        BuildStrategy(metadata=ObjectMeta(name="kaniko", namespace=NAMESPACE), spec=strategy_spec())
    )
    assert (await resolver.resolve(NAMESPACE, "kaniko")).scope == StrategyScope.NAMESPACE
