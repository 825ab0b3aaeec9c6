"""Tests for validate/builtin.py and validate/ownerrefs.py."""
from __future__ import annotations

import pytest
from conftest import NAMESPACE

from buildforge.core.constants import BuildReason, ValidationType
from buildforge.core.exceptions import (
    OwnerReferenceError,
    ReferencedSecretNotFoundError,
    UnknownStrategyKindError,
    ValidationError,
)
from buildforge.core.scheme import default_scheme
from buildforge.core.types import (
    Build,
    BuildReference,
    BuildRun,
    BuildRunSpec,
    BuildSpec,
    BuildVolume,
    GitSource,
    ImageSpec,
    ObjectMeta,
    OwnerReference,
    RuntimeSpec,
    SourceEntry,
    StrategyRef,
)
from buildforge.store.memory import InMemoryObjectStore
from buildforge.validate.builtin import (
    RuntimeValidator,
    SecretsValidator,
    SourcesValidator,
    SourceURLValidator,
    StrategyValidator,
    check_url,
)
from buildforge.validate.ownerrefs import OwnerReferencesValidator


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _build(**spec: object) -> Build:
    fields: dict[str, object] = {
        "source": GitSource(url="https://github.com/acme/app"),
        "strategy": StrategyRef(name="buildah", kind="BuildStrategy"),
        "output": ImageSpec(image="registry.example.com/acme/app:latest"),
    }
    fields.update(spec)
    return Build(
        metadata=ObjectMeta(name="app", namespace=NAMESPACE),
        spec=BuildSpec(**fields),  # type: ignore[arg-type]
    )


# ---------------------------------------------------------------------------
# SecretsValidator
# ---------------------------------------------------------------------------


async def test_secrets_pass_when_present(seeded_store: InMemoryObjectStore) -> None:
    build = _build(
        source=GitSource(url="https://github.com/acme/app", credentials="registry-creds"),
        output=ImageSpec(image="registry.example.com/acme/app", credentials="registry-creds"),
    )
    await SecretsValidator(build, seeded_store).validate()


async def test_missing_source_secret_is_named(seeded_store: InMemoryObjectStore) -> None:
    build = _build(source=GitSource(url="https://github.com/acme/app", credentials="git-creds"))
    with pytest.raises(ReferencedSecretNotFoundError) as exc_info:
        await SecretsValidator(build, seeded_store).validate()
    err = exc_info.value
    assert err.reason == BuildReason.SPEC_SOURCE_SECRET_NOT_FOUND
    assert err.secret == "git-creds"
    assert "git-creds" in err.message
    assert "spec.source.credentials" in err.message
    assert err.validation_type == ValidationType.SECRETS


async def test_missing_output_secret(seeded_store: InMemoryObjectStore) -> None:
    build = _build(output=ImageSpec(image="registry.example.com/acme/app", credentials="push"))
    with pytest.raises(ReferencedSecretNotFoundError) as exc_info:
        await SecretsValidator(build, seeded_store).validate()
    assert exc_info.value.reason == BuildReason.SPEC_OUTPUT_SECRET_NOT_FOUND


async def test_missing_volume_secret(seeded_store: InMemoryObjectStore) -> None:
    build = _build(volumes=[BuildVolume(name="cache", secret="cache-secret")])
    with pytest.raises(ReferencedSecretNotFoundError) as exc_info:
        await SecretsValidator(build, seeded_store).validate()
    assert exc_info.value.reason == BuildReason.VOLUME_SECRET_NOT_FOUND
    assert exc_info.value.field_path == "spec.volumes[0].secret"


async def test_secrets_fail_fast_on_first_missing(seeded_store: InMemoryObjectStore) -> None:
    build = _build(
        source=GitSource(url="https://github.com/acme/app", credentials="first"),
        output=ImageSpec(image="registry.example.com/acme/app", credentials="second"),
    )
    with pytest.raises(ReferencedSecretNotFoundError) as exc_info:
        await SecretsValidator(build, seeded_store).validate()
    assert exc_info.value.secret == "first"


# ---------------------------------------------------------------------------
# StrategyValidator
# ---------------------------------------------------------------------------


async def test_strategy_found(seeded_store: InMemoryObjectStore) -> None:
    await StrategyValidator(_build(), seeded_store).validate()


async def test_strategy_missing_with_kind(seeded_store: InMemoryObjectStore) -> None:
    build = _build(strategy=StrategyRef(name="nope", kind="BuildStrategy"))
    with pytest.raises(ValidationError) as exc_info:
        await StrategyValidator(build, seeded_store).validate()
    assert exc_info.value.reason == BuildReason.BUILD_STRATEGY_NOT_FOUND


async def test_strategy_unknown_kind(seeded_store: InMemoryObjectStore) -> None:
    build = _build(strategy=StrategyRef(name="buildah", kind="PipelineStrategy"))
    with pytest.raises(UnknownStrategyKindError) as exc_info:
        await StrategyValidator(build, seeded_store).validate()
    assert exc_info.value.reason == BuildReason.UNKNOWN_STRATEGY_KIND


# ---------------------------------------------------------------------------
# SourceURLValidator / check_url
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "url",
    [
        "https://github.com/acme/app",
        "http://git.example.com:8080/acme/app.git",
        "ssh://git@github.com/acme/app.git",
        "git@github.com:acme/app.git",
        "file:///srv/repos/app",
    ],
)
def test_check_url_accepts(url: str) -> None:
    assert check_url(url) is None


@pytest.mark.parametrize(
    ("url", "problem"),
    [
        ("", "empty"),
        ("github.com/acme/app", "no scheme"),
        ("ftp://example.com/app", "unsupported scheme"),
        ("https:///acme/app", "no host"),
        ("https://github.com/acme app", "whitespace"),
        ("https://github.com:99999/acme", "invalid port"),
    ],
)
def test_check_url_rejects(url: str, problem: str) -> None:
    reason = check_url(url)
    assert reason is not None
    assert problem in reason


async def test_source_url_validator_rejects(store: InMemoryObjectStore) -> None:
    build = _build(source=GitSource(url="not a url"))
    with pytest.raises(ValidationError) as exc_info:
        await SourceURLValidator(build, store).validate()
    assert exc_info.value.reason == BuildReason.INVALID_SOURCE_URL
    assert "spec.source.url" in exc_info.value.message


# ---------------------------------------------------------------------------
# RuntimeValidator
# ---------------------------------------------------------------------------


async def test_runtime_absent_passes(store: InMemoryObjectStore) -> None:
    await RuntimeValidator(_build(), store).validate()


async def test_runtime_valid(store: InMemoryObjectStore) -> None:
    runtime = RuntimeSpec(base=ImageSpec(image="docker.io/library/alpine:3"), paths=["/app"])
    await RuntimeValidator(_build(runtime=runtime), store).validate()


async def test_runtime_invalid_image(store: InMemoryObjectStore) -> None:
    runtime = RuntimeSpec(base=ImageSpec(image="Not/An:Image!"), paths=["/app"])
    with pytest.raises(ValidationError) as exc_info:
        await RuntimeValidator(_build(runtime=runtime), store).validate()
    assert exc_info.value.reason == BuildReason.INVALID_RUNTIME_IMAGE


async def test_runtime_paths_required(store: InMemoryObjectStore) -> None:
    runtime = RuntimeSpec(base=ImageSpec(image="alpine"), paths=[])
    with pytest.raises(ValidationError) as exc_info:
        await RuntimeValidator(_build(runtime=runtime), store).validate()
    assert exc_info.value.reason == BuildReason.RUNTIME_PATHS_EMPTY


# ---------------------------------------------------------------------------
# SourcesValidator
# ---------------------------------------------------------------------------


async def test_sources_valid(store: InMemoryObjectStore) -> None:
    sources = [
        SourceEntry(name="repo", url="https://example.com/a.tar.gz"),
        SourceEntry(name="assets", url="https://example.com/b.tar.gz"),
    ]
    await SourcesValidator(_build(sources=sources), store).validate()


async def test_sources_duplicate_name(store: InMemoryObjectStore) -> None:
    sources = [
        SourceEntry(name="repo", url="https://example.com/a.tar.gz"),
        SourceEntry(name="repo", url="https://example.com/b.tar.gz"),
    ]
    with pytest.raises(ValidationError) as exc_info:
        await SourcesValidator(_build(sources=sources), store).validate()
    assert exc_info.value.reason == BuildReason.DUPLICATE_SOURCE_NAME
    assert "repo" in exc_info.value.message


async def test_sources_empty_name(store: InMemoryObjectStore) -> None:
    sources = [SourceEntry(name="", url="https://example.com/a.tar.gz")]
    with pytest.raises(ValidationError) as exc_info:
        await SourcesValidator(_build(sources=sources), store).validate()
    assert exc_info.value.reason == BuildReason.SOURCE_NAME_EMPTY


async def test_sources_bad_url(store: InMemoryObjectStore) -> None:
    sources = [SourceEntry(name="repo", url="nowhere")]
    with pytest.raises(ValidationError) as exc_info:
        await SourcesValidator(_build(sources=sources), store).validate()
    assert exc_info.value.reason == BuildReason.INVALID_SOURCE_URL


# ---------------------------------------------------------------------------
# OwnerReferencesValidator
# ---------------------------------------------------------------------------


async def _owned_run(
    store: InMemoryObjectStore, name: str, owner: OwnerReference
) -> BuildRun:
    return await store.create(
        BuildRun(
            metadata=ObjectMeta(name=name, namespace=NAMESPACE, owner_references=[owner]),
            spec=BuildRunSpec(build=BuildReference(name="app")),
        )
    )


async def test_owner_references_consistent(store: InMemoryObjectStore) -> None:
    build = await store.create(_build())
    await _owned_run(store, "run-1", default_scheme().owner_reference(build))
    await OwnerReferencesValidator(build, store).validate()


async def test_owner_reference_uid_mismatch_is_advisory(store: InMemoryObjectStore) -> None:
    build = await store.create(_build())
    stale = default_scheme().owner_reference(build).model_copy(update={"uid": "old-uid"})
    await _owned_run(store, "run-1", stale)

    with pytest.raises(OwnerReferenceError) as exc_info:
        await OwnerReferencesValidator(build, store).validate()
    err = exc_info.value
    assert err.fatal is False
    assert err.reason == BuildReason.OWNER_REFERENCE_MISMATCH
    assert err.details["buildruns"] == ["run-1"]
    assert "old-uid" in err.message


async def test_dependents_by_name_and_owner(store: InMemoryObjectStore) -> None:
    build = await store.create(_build())
    await _owned_run(store, "run-1", default_scheme().owner_reference(build))
    await store.create(
        BuildRun(
            metadata=ObjectMeta(name="run-2", namespace=NAMESPACE),
            spec=BuildRunSpec(build=BuildReference(name="app")),
        )
    )
    names = sorted(r.metadata.name for r in await OwnerReferencesValidator(build, store).dependents())
    assert names == ["run-1", "run-2"]
