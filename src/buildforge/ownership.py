"""Ownership and garbage collection of BuildRuns.

Every BuildRun gets an owner reference to its Build, so the platform's
owner-reference garbage collector removes it with the Build.  Builds
annotated with ``build.buildforge.io/build-run-deletion: "true"``
additionally have their BuildRuns deleted explicitly when the Build goes
away, and a Build's retention settings expire or prune completed runs.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable

import structlog

from buildforge.core.constants import BuildRunPhase, Kind
from buildforge.core.exceptions import NotFoundError, OwnerReferenceError
from buildforge.core.scheme import Scheme, default_scheme
from buildforge.core.types import Build, BuildRun
from buildforge.store.base import ObjectStore
from buildforge.validate.ownerrefs import OwnerReferencesValidator

logger = structlog.get_logger(__name__)


class OwnershipManager:
    """Sets owner references and deletes dependent BuildRuns.

    Args:
        client: Object store.
        scheme: Scheme used to stamp owner references; defaults to
            :func:`~buildforge.core.scheme.default_scheme`.
        clock: Returns the current time; injectable for retention tests.
    """

    def __init__(
        self,
        client: ObjectStore,
        scheme: Scheme | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._client = client
        self._scheme = scheme or default_scheme()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def ensure_owner_reference(self, buildrun: BuildRun, build: Build) -> BuildRun:
        """Point *buildrun* at *build* as its controlling owner.

        A stale Build owner reference (same name, old UID) is replaced.
        Returns the stored BuildRun, unchanged when the reference was
        already correct.
        """
        refs = buildrun.metadata.owner_references
        if any(ref.kind == Kind.BUILD and ref.uid == build.metadata.uid for ref in refs):
            return buildrun
        buildrun.metadata.owner_references = [
            ref for ref in refs if not (ref.kind == Kind.BUILD and ref.name == build.metadata.name)
        ] + [self._scheme.owner_reference(build)]
        updated = await self._client.update(buildrun)
        logger.info(
            "owner_reference_set",
            namespace=buildrun.metadata.namespace,
            buildrun=buildrun.metadata.name,
            build=build.metadata.name,
        )
        return updated

    async def check_owner_references(self, build: Build) -> OwnerReferenceError | None:
        """Run the advisory owner-reference check for *build*."""
        try:
            await OwnerReferencesValidator(build, self._client, self._scheme).validate()
        except OwnerReferenceError as exc:
            return exc
        return None

    async def on_build_deleted(self, build: Build) -> list[str]:
        """Delete the BuildRuns of a deleted Build that opted in to cascade delete.

        A BuildRun that is already gone (for example removed by the
        platform's garbage collector first) counts as deleted.

        Returns:
            Names of the BuildRuns that are now absent.
        """
        if not build.cascade_delete:
            return []

        removed: list[str] = []
        for buildrun in await self._dependents(build):
            try:
                await self._client.delete(BuildRun, buildrun.metadata.namespace, buildrun.metadata.name)
                logger.info(
                    "buildrun_deleted_with_build",
                    namespace=buildrun.metadata.namespace,
                    buildrun=buildrun.metadata.name,
                    build=build.metadata.name,
                )
            except NotFoundError:
                logger.debug(
                    "buildrun_already_deleted",
                    namespace=buildrun.metadata.namespace,
                    buildrun=buildrun.metadata.name,
                )
            removed.append(buildrun.metadata.name)
        return removed

    async def apply_retention(self, buildrun: BuildRun, build: Build | None) -> float | None:
        """Expire a completed BuildRun past its Build's time-to-live.

        Returns:
            Seconds until the BuildRun expires, or ``None`` when no TTL
            applies or the BuildRun was deleted.
        """
        if build is None or build.spec.retention is None or not buildrun.is_done:
            return None
        retention = build.spec.retention
        if buildrun.status.phase == BuildRunPhase.SUCCEEDED:
            ttl = retention.ttl_after_succeeded_seconds
        else:
            ttl = retention.ttl_after_failed_seconds
        completed = buildrun.status.completion_time
        if ttl is None or completed is None:
            return None

        remaining = (completed + timedelta(seconds=ttl) - self._clock()).total_seconds()
        if remaining > 0:
            return remaining
        try:
            await self._client.delete(BuildRun, buildrun.metadata.namespace, buildrun.metadata.name)
            logger.info(
                "buildrun_expired",
                namespace=buildrun.metadata.namespace,
                buildrun=buildrun.metadata.name,
                ttl=ttl,
            )
        except NotFoundError:
            pass
        return None

    async def prune_history(self, build: Build) -> list[str]:
        """Keep at most the Build's succeeded/failed limits of completed runs.

        The oldest completed BuildRuns beyond each limit are deleted.
        """
        retention = build.spec.retention
        if retention is None or (retention.succeeded_limit is None and retention.failed_limit is None):
            return []

        runs = [
            buildrun
            for buildrun in await self._client.list(BuildRun, build.metadata.namespace)
            if buildrun.spec.build.name == build.metadata.name and buildrun.is_done
        ]
        pruned: list[str] = []
        for phase, limit in (
            (BuildRunPhase.SUCCEEDED, retention.succeeded_limit),
            (BuildRunPhase.FAILED, retention.failed_limit),
        ):
            if limit is None:
                continue
            same_phase = sorted(
                (run for run in runs if _outcome(run) == phase),
                key=lambda run: run.status.completion_time or datetime.min.replace(tzinfo=timezone.utc),
            )
            for run in same_phase[: max(0, len(same_phase) - limit)]:
                try:
                    await self._client.delete(BuildRun, run.metadata.namespace, run.metadata.name)
                except NotFoundError:
                    continue
                pruned.append(run.metadata.name)
        if pruned:
            logger.info("buildrun_history_pruned", build=build.metadata.name, buildruns=pruned)
        return pruned

    async def _dependents(self, build: Build) -> list[BuildRun]:
        namespace = build.metadata.namespace
        by_name: dict[str, BuildRun] = {
            run.metadata.name: run
            for run in await self._client.list(BuildRun, namespace, owner_uid=build.metadata.uid)
        }
        for run in await self._client.list(BuildRun, namespace):
            if run.spec.build.name != build.metadata.name or run.metadata.name in by_name:
                continue
            owned_elsewhere = any(
                ref.kind == Kind.BUILD and ref.uid != build.metadata.uid
                for ref in run.metadata.owner_references
            )
            if not owned_elsewhere:
                by_name[run.metadata.name] = run
        return list(by_name.values())


def _outcome(buildrun: BuildRun) -> BuildRunPhase:
    # Canceled runs count against the failed limit.
    if buildrun.status.phase == BuildRunPhase.SUCCEEDED:
        return BuildRunPhase.SUCCEEDED
    return BuildRunPhase.FAILED
