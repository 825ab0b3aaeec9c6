"""Tests for controller/build.py: BuildReconciler."""
from __future__ import annotations

from conftest import NAMESPACE, strategy_spec

from buildforge.controller.build import BuildReconciler
from buildforge.controller.runtime import ReconcileRequest
from buildforge.core.constants import BuildReason, ConditionStatus
from buildforge.core.types import (
    Build,
    BuildSpec,
    BuildStrategy,
    GitSource,
    ImageSpec,
    ObjectMeta,
    Secret,
    StrategyRef,
)
from buildforge.store.memory import InMemoryObjectStore

REQUEST = ReconcileRequest(namespace=NAMESPACE, name="app")


def _build(
    *, strategy: str = "buildah", image: str = "registry.example.com/acme/app", secret: str | None = None
) -> Build:
    return Build(
        metadata=ObjectMeta(name="app", namespace=NAMESPACE),
        spec=BuildSpec(
            source=GitSource(url="https://github.com/acme/app"),
            strategy=StrategyRef(name=strategy),
            output=ImageSpec(image=image, credentials=secret),
        ),
    )


async def test_valid_build_is_registered(seeded_store: InMemoryObjectStore) -> None:
    await seeded_store.create(_build())
    result = await BuildReconciler(seeded_store).reconcile(REQUEST)

    build = await seeded_store.get(Build, NAMESPACE, "app")
    assert build.status.registered == ConditionStatus.TRUE
    assert build.status.reason == BuildReason.SUCCEEDED
    assert build.status.observed_generation == 1
    assert result.requeue is False


async def test_invalid_build_records_reason(seeded_store: InMemoryObjectStore) -> None:
    await seeded_store.create(_build(secret="push"))
    result = await BuildReconciler(seeded_store).reconcile(REQUEST)

    build = await seeded_store.get(Build, NAMESPACE, "app")
    assert build.status.registered == ConditionStatus.FALSE
    assert build.status.reason == BuildReason.SPEC_OUTPUT_SECRET_NOT_FOUND
    assert "push" in (build.status.message or "")
    assert result.requeue is True


async def test_invalid_output_image(seeded_store: InMemoryObjectStore) -> None:
    await seeded_store.create(_build(image="Registry/UPPER"))
    await BuildReconciler(seeded_store).reconcile(REQUEST)

    build = await seeded_store.get(Build, NAMESPACE, "app")
    assert build.status.registered == ConditionStatus.FALSE
    assert build.status.reason == BuildReason.INVALID_IMAGE_REFERENCE


async def test_registers_once_dependency_appears(seeded_store: InMemoryObjectStore) -> None:
    await seeded_store.create(_build(strategy="later", secret="registry-creds"))
    reconciler = BuildReconciler(seeded_store)
    await reconciler.reconcile(REQUEST)
    assert (await seeded_store.get(Build, NAMESPACE, "app")).status.registered == ConditionStatus.FALSE

    await seeded_store.create(
        BuildStrategy(metadata=ObjectMeta(name="later", namespace=NAMESPACE), spec=strategy_spec())
    )
    await reconciler.reconcile(REQUEST)
    assert (await seeded_store.get(Build, NAMESPACE, "app")).status.registered == ConditionStatus.TRUE


async def test_unchanged_status_is_not_rewritten(seeded_store: InMemoryObjectStore) -> None:
    await seeded_store.create(_build())
    reconciler = BuildReconciler(seeded_store)
    await reconciler.reconcile(REQUEST)
    version = (await seeded_store.get(Build, NAMESPACE, "app")).metadata.resource_version

    await reconciler.reconcile(REQUEST)
    assert (await seeded_store.get(Build, NAMESPACE, "app")).metadata.resource_version == version


async def test_spec_edit_updates_observed_generation(seeded_store: InMemoryObjectStore) -> None:
    await seeded_store.create(_build(secret="missing"))
    reconciler = BuildReconciler(seeded_store)
    await reconciler.reconcile(REQUEST)

    build = await seeded_store.get(Build, NAMESPACE, "app")
    build.spec.output.credentials = "registry-creds"
    await seeded_store.update(build)
    await reconciler.reconcile(REQUEST)

    build = await seeded_store.get(Build, NAMESPACE, "app")
    assert build.status.registered == ConditionStatus.TRUE
    assert build.status.observed_generation == 2


async def test_missing_build_is_a_noop(store: InMemoryObjectStore) -> None:
    result = await BuildReconciler(store).reconcile(REQUEST)
    assert result.requeue is False


async def test_secret_lookup_is_namespaced(seeded_store: InMemoryObjectStore) -> None:
    await seeded_store.create(Secret(metadata=ObjectMeta(name="push", namespace="elsewhere")))
    await seeded_store.create(_build(secret="push"))
    await BuildReconciler(seeded_store).reconcile(REQUEST)
    assert (await seeded_store.get(Build, NAMESPACE, "app")).status.registered == ConditionStatus.FALSE
