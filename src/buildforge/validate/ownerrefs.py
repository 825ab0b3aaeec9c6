"""Advisory check that the BuildRuns of a Build carry a matching owner reference."""

from __future__ import annotations

from typing import ClassVar

import structlog

from buildforge.core.constants import ValidationType
from buildforge.core.exceptions import NotFoundError, OwnerReferenceError
from buildforge.core.scheme import Scheme, default_scheme
from buildforge.core.types import Build, BuildRun
from buildforge.store.base import ObjectStore
from buildforge.validate.base import Validator

logger = structlog.get_logger(__name__)


class OwnerReferencesValidator(Validator):
    """Owner references between a Build and its BuildRuns must agree.

    A BuildRun owner reference of the Build kind must name an existing
    Build with a matching UID.  Failures are advisory (see
    :attr:`OwnerReferenceError.fatal`): the GC manager and diagnostics
    consume them, execution carries on.
    """

    validation_type: ClassVar[ValidationType] = ValidationType.OWNER_REFERENCES

    def __init__(self, build: Build, client: ObjectStore, scheme: Scheme | None = None) -> None:
        super().__init__(build, client)
        self.scheme = scheme or default_scheme()

    async def dependents(self) -> list[BuildRun]:
        """BuildRuns referencing the Build by name or by owner UID."""
        by_key: dict[str, BuildRun] = {}
        for buildrun in await self.client.list(BuildRun, self.namespace):
            if buildrun.spec.build.name == self.build.metadata.name:
                by_key[buildrun.key] = buildrun
        for buildrun in await self.client.list(
            BuildRun, self.namespace, owner_uid=self.build.metadata.uid
        ):
            by_key[buildrun.key] = buildrun
        return list(by_key.values())

    async def validate(self) -> None:
        gvk = self.scheme.object_kind(self.build)
        problems: list[str] = []
        offenders: list[str] = []

        for buildrun in await self.dependents():
            for ref in buildrun.metadata.owner_references:
                if ref.kind != gvk.kind or ref.api_version != gvk.api_version:
                    continue
                problem = await self._check(ref.name, ref.uid)
                if problem is not None:
                    problems.append(f"BuildRun {buildrun.metadata.name}: {problem}")
                    offenders.append(buildrun.metadata.name)

        if problems:
            logger.info(
                "owner_references_inconsistent",
                build=self.build.metadata.name,
                namespace=self.namespace,
                buildruns=offenders,
            )
            raise OwnerReferenceError("; ".join(problems), buildruns=offenders)

    async def _check(self, owner_name: str, owner_uid: str) -> str | None:
        if owner_name == self.build.metadata.name:
            if owner_uid != self.build.metadata.uid:
                return (
                    f"owner reference to Build {owner_name} has UID {owner_uid}, "
                    f"expected {self.build.metadata.uid}"
                )
            return None
        try:
            owner = await self.client.get(Build, self.namespace, owner_name)
        except NotFoundError:
            return f"owner reference to Build {owner_name} is dangling"
        if owner.metadata.uid != owner_uid:
            return (
                f"owner reference to Build {owner_name} has UID {owner_uid}, "
                f"expected {owner.metadata.uid}"
            )
        return None
