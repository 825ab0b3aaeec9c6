"""Built-in validators for the Build spec."""

from __future__ import annotations

import re
from typing import ClassVar
from urllib.parse import urlparse

from buildforge.core.constants import BuildReason, ValidationType
from buildforge.core.exceptions import (
    InvalidImageReferenceError,
    InvalidRuntimeError,
    InvalidSourcesError,
    InvalidSourceURLError,
    NotFoundError,
    ReferencedSecretNotFoundError,
)
from buildforge.core.reference import parse_image_reference
from buildforge.core.types import Secret
from buildforge.strategy import StrategyResolver
from buildforge.validate.base import Validator

_URL_SCHEMES = frozenset({"http", "https", "git", "ssh", "file"})

# scp-like git syntax: git@github.com:org/repo.git
_SCP_URL = re.compile(r"^[A-Za-z0-9._-]+@[A-Za-z0-9.-]+:[^\s:][^\s]*$")


def check_url(url: str) -> str | None:
    """Return why *url* is not a usable source URL, or ``None`` if it is.

    Purely structural: nothing is fetched.
    """
    if not url:
        return "URL must not be empty"
    if any(ch.isspace() for ch in url):
        return "URL must not contain whitespace"
    if _SCP_URL.match(url):
        return None
    parsed = urlparse(url)
    if not parsed.scheme:
        return "URL has no scheme"
    if parsed.scheme not in _URL_SCHEMES:
        return f"unsupported scheme {parsed.scheme!r}"
    if parsed.scheme != "file" and not parsed.hostname:
        return "URL has no host"
    if parsed.scheme == "file" and not parsed.path:
        return "file URL has no path"
    try:
        parsed.port
    except ValueError:
        return "URL has an invalid port"
    return None


class SecretsValidator(Validator):
    """Every secret the Build references must exist in its namespace.

    Fails on the first missing secret, naming it and the field that
    references it.
    """

    validation_type: ClassVar[ValidationType] = ValidationType.SECRETS

    def _references(self) -> list[tuple[str, str, BuildReason]]:
        spec = self.build.spec
        refs: list[tuple[str, str, BuildReason]] = []
        if spec.source.credentials:
            refs.append(
                (spec.source.credentials, "spec.source.credentials", BuildReason.SPEC_SOURCE_SECRET_NOT_FOUND)
            )
        if spec.output.credentials:
            refs.append(
                (spec.output.credentials, "spec.output.credentials", BuildReason.SPEC_OUTPUT_SECRET_NOT_FOUND)
            )
        if spec.builder is not None and spec.builder.credentials:
            refs.append(
                (spec.builder.credentials, "spec.builder.credentials", BuildReason.SPEC_BUILDER_SECRET_NOT_FOUND)
            )
        if spec.runtime is not None and spec.runtime.base.credentials:
            refs.append(
                (
                    spec.runtime.base.credentials,
                    "spec.runtime.base.credentials",
                    BuildReason.SPEC_RUNTIME_SECRET_NOT_FOUND,
                )
            )
        for index, volume in enumerate(spec.volumes):
            if volume.secret:
                refs.append(
                    (volume.secret, f"spec.volumes[{index}].secret", BuildReason.VOLUME_SECRET_NOT_FOUND)
                )
        return refs

    async def validate(self) -> None:
        for secret, field_path, reason in self._references():
            try:
                await self.client.get(Secret, self.namespace, secret)
            except NotFoundError:
                raise ReferencedSecretNotFoundError(reason, secret, field_path) from None


class StrategyValidator(Validator):
    validation_type: ClassVar[ValidationType] = ValidationType.STRATEGIES

    async def validate(self) -> None:
        ref = self.build.spec.strategy
        await StrategyResolver(self.client).resolve(self.namespace, ref.name, ref.kind)


class SourceURLValidator(Validator):
    validation_type: ClassVar[ValidationType] = ValidationType.SOURCE_URL

    async def validate(self) -> None:
        url = self.build.spec.source.url
        problem = check_url(url)
        if problem is not None:
            raise InvalidSourceURLError(url, problem)


class RuntimeValidator(Validator):
    validation_type: ClassVar[ValidationType] = ValidationType.RUNTIME

    async def validate(self) -> None:
        runtime = self.build.spec.runtime
        if runtime is None:
            return
        try:
            parse_image_reference(runtime.base.image)
        except InvalidImageReferenceError as exc:
            raise InvalidRuntimeError(
                BuildReason.INVALID_RUNTIME_IMAGE,
                f"spec.runtime.base.image: {exc}",
            ) from exc
        if not runtime.paths:
            raise InvalidRuntimeError(
                BuildReason.RUNTIME_PATHS_EMPTY,
                "spec.runtime.paths must list at least one path",
            )


class SourcesValidator(Validator):
    """Additional sources need unique, non-empty names and valid URLs."""

    validation_type: ClassVar[ValidationType] = ValidationType.SOURCES

    async def validate(self) -> None:
        seen: set[str] = set()
        for index, entry in enumerate(self.build.spec.sources):
            if not entry.name:
                raise InvalidSourcesError(
                    BuildReason.SOURCE_NAME_EMPTY,
                    f"spec.sources[{index}].name must not be empty",
                )
            if entry.name in seen:
                raise InvalidSourcesError(
                    BuildReason.DUPLICATE_SOURCE_NAME,
                    f"duplicated source name {entry.name!r} in spec.sources",
                )
            seen.add(entry.name)
            problem = check_url(entry.url)
            if problem is not None:
                raise InvalidSourcesError(
                    BuildReason.INVALID_SOURCE_URL,
                    f"spec.sources[{index}].url {entry.url!r}: {problem}",
                )
