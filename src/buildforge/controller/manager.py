"""Runs the Build and BuildRun controllers against their event sources."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Callable

import structlog

from buildforge.backend.base import ExecutionBackend, JobHandle, JobWatcher
from buildforge.controller.build import BuildReconciler
from buildforge.controller.buildrun import BuildRunReconciler, buildrun_name_for_job
from buildforge.controller.runtime import Controller
from buildforge.core.config import ControllerConfig
from buildforge.core.exceptions import BuildForgeError, JobNotFoundError
from buildforge.core.scheme import Scheme
from buildforge.core.types import Build, BuildRun
from buildforge.ownership import OwnershipManager
from buildforge.registry.client import HttpRegistryClient, RegistryClient
from buildforge.store.base import ObjectStore, WatchEventType
from buildforge.utils.logging import configure_logging

logger = structlog.get_logger(__name__)


class ControllerManager:
    """Owns both controllers and feeds them from store and backend events.

    * Build added/modified -> Build controller.
    * Build deleted -> cascade deletion of its BuildRuns (when annotated).
    * BuildRun added/modified -> BuildRun controller.
    * BuildRun deleted -> best-effort cancel of its unfinished job.
    * Job changed (backends that support :class:`JobWatcher`) -> BuildRun
      controller; other backends are polled through ``requeue_after``.

    Usage::

        async with ControllerManager(store, backend) as manager:
            await store.create(build)
            await store.create(buildrun)
            ...
    """

    def __init__(
        self,
        store: ObjectStore,
        backend: ExecutionBackend,
        *,
        registry: RegistryClient | None = None,
        config: ControllerConfig | None = None,
        scheme: Scheme | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config or ControllerConfig()
        self.store = store
        self.backend = backend
        self.ownership = OwnershipManager(store, scheme, clock)
        self.builds = Controller(
            "build", BuildReconciler(store, scheme=scheme), workers=self.config.workers
        )
        self.buildruns = Controller(
            "buildrun",
            BuildRunReconciler(
                store,
                backend,
                registry=registry,
                config=self.config,
                ownership=self.ownership,
                scheme=scheme,
                clock=clock,
            ),
            workers=self.config.workers,
        )
        self._tasks: list[asyncio.Task[None]] = []

    @classmethod
    def from_env(cls, store: ObjectStore, backend: ExecutionBackend) -> ControllerManager:
        """Build a manager from ``BUILDFORGE_*`` variables with an HTTP registry client."""
        config = ControllerConfig.from_env()
        configure_logging(config.log_level)
        registry = HttpRegistryClient(
            insecure=config.registry_insecure,
            timeout=config.registry_timeout_seconds,
            retry=config.registry_retry,
        )
        return cls(store, backend, registry=registry, config=config)

    def __repr__(self) -> str:
        return f"ControllerManager(running={self.running}, workers={self.config.workers})"

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._watch_builds()),
            asyncio.create_task(self._watch_buildruns()),
        ]
        if isinstance(self.backend, JobWatcher):
            self._tasks.append(asyncio.create_task(self._watch_jobs(self.backend)))
        # Let the watch streams subscribe before taking the initial listing.
        await asyncio.sleep(0)

        for build in await self.store.list(Build):
            self.builds.enqueue(build)
        for buildrun in await self.store.list(BuildRun):
            self.buildruns.enqueue(buildrun)

        self._tasks.append(asyncio.create_task(self.builds.run()))
        self._tasks.append(asyncio.create_task(self.buildruns.run()))
        logger.info("manager_started", workers=self.config.workers)

    async def stop(self) -> None:
        self.builds.stop()
        self.buildruns.stop()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("manager_stopped")

    async def __aenter__(self) -> ControllerManager:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    # ------------------------------------------------------------------ #
    # Event sources
    # ------------------------------------------------------------------ #

    async def _watch_builds(self) -> None:
        async for event in self.store.watch(Build):
            build = event.object
            if event.type != WatchEventType.DELETED:
                self.builds.enqueue(build)
                continue
            try:
                removed = await self.ownership.on_build_deleted(build)  # type: ignore[arg-type]
            except BuildForgeError as exc:
                logger.warning("build_cleanup_failed", build=build.key, error=str(exc))
                continue
            if removed:
                logger.info("build_deleted_with_buildruns", build=build.key, buildruns=removed)

    async def _watch_buildruns(self) -> None:
        async for event in self.store.watch(BuildRun):
            buildrun = event.object
            if event.type != WatchEventType.DELETED:
                self.buildruns.enqueue(buildrun)
                continue
            await self._cancel_orphaned_job(buildrun)  # type: ignore[arg-type]

    async def _watch_jobs(self, watcher: JobWatcher) -> None:
        async for handle in watcher.watch():
            self.buildruns.enqueue(f"{handle.namespace}/{buildrun_name_for_job(handle.name)}")

    async def _cancel_orphaned_job(self, buildrun: BuildRun) -> None:
        job_name = buildrun.status.job_name
        if job_name is None or buildrun.is_done:
            return
        try:
            await self.backend.cancel(
                JobHandle(name=job_name, namespace=buildrun.metadata.namespace or "")
            )
        except JobNotFoundError:
            return
        except BuildForgeError as exc:
            logger.warning("orphaned_job_cancel_failed", job=job_name, error=str(exc))
            return
        logger.info("orphaned_job_canceled", job=job_name, buildrun=buildrun.key)
