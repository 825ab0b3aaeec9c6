"""BuildRun reconciler: drives one BuildRun through its lifecycle.

::

    Pending -> Validating -> Resolving -> Submitted -> Running -> Succeeded | Failed
    any non-terminal phase -> Canceled

Every call reads the BuildRun fresh from the store and does the work of the
phase it finds, so reconciles can repeat at any time.  Validating and
Resolving are only persisted when the reconcile pauses in them (a strategy
that is not found yet, a transient submission failure); a run normally goes
from Pending straight to Submitted or Failed in a single write.  Pauses are
requeues, never sleeps inside a reconcile.

The job name is derived from the BuildRun (``<name>-<uid[:8]>``).  Before
submitting, the backend is asked for that name and an existing job is
adopted, so a crash between submission and the status write never produces
a second job.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable

import structlog

from buildforge.backend.base import ExecutionBackend, JobHandle, JobObservation, JobSpec
from buildforge.controller.runtime import ReconcileRequest, ReconcileResult
from buildforge.core.config import ControllerConfig
from buildforge.core.constants import (
    BUILD_VALIDATIONS,
    LABEL_BUILD_NAME,
    LABEL_BUILDRUN_NAME,
    LABEL_BUILDRUN_UID,
    RESULT_IMAGE_DIGEST,
    RESULT_IMAGE_PLATFORMS,
    RESULT_IMAGE_SIZE,
    RESULT_SOURCE_BRANCH,
    RESULT_SOURCE_COMMIT,
    BuildReason,
    BuildRunPhase,
    BuildRunReason,
    ConditionStatus,
    JobPhase,
    ValidationType,
)
from buildforge.core.exceptions import (
    InvalidImageReferenceError,
    JobAlreadyExistsError,
    JobNotFoundError,
    NotFoundError,
    ReferencedStrategyNotFoundError,
    RegistryError,
    SubmissionError,
    ValidationError,
)
from buildforge.core.reference import parse_image_reference
from buildforge.core.scheme import Scheme, default_scheme
from buildforge.core.types import (
    Build,
    BuildRun,
    BuildRunResults,
    BuildSpec,
    FailureDetails,
    FailureLocation,
    ObjectMeta,
    ParamValue,
    Platform,
)
from buildforge.failures import (
    canceled_details,
    classify_failure,
    submission_details,
    timeout_details,
    validation_details,
)
from buildforge.ownership import OwnershipManager
from buildforge.params import resolve_params
from buildforge.registry.client import RegistryClient
from buildforge.store.base import ObjectStore
from buildforge.strategy import ResolvedStrategy, StrategyResolver
from buildforge.utils.logging import bind_object
from buildforge.validate.dispatcher import validate_build

logger = structlog.get_logger(__name__)

_MAX_STRATEGY_BACKOFF = 60.0

_STRATEGY_NOT_FOUND_REASONS = frozenset(
    {
        BuildReason.REFERENCED_STRATEGY_NOT_FOUND,
        BuildReason.BUILD_STRATEGY_NOT_FOUND,
        BuildReason.CLUSTER_BUILD_STRATEGY_NOT_FOUND,
    }
)


def job_name_for(buildrun: BuildRun) -> str:
    """Deterministic name of the job executing *buildrun*."""
    return f"{buildrun.metadata.name}-{buildrun.metadata.uid[:8]}"


def buildrun_name_for_job(job_name: str) -> str:
    """Inverse of :func:`job_name_for`."""
    return job_name.rsplit("-", 1)[0]


class _Terminal(Exception):
    def __init__(self, details: FailureDetails) -> None:
        super().__init__(details.message)
        self.details = details


class BuildRunReconciler:
    """Reconciles BuildRuns against the store and the execution backend.

    Args:
        client: Object store holding Builds, BuildRuns, strategies and secrets.
        backend: Execution backend the jobs are submitted to.
        registry: Optional registry collaborator used to fill in image
            digest, size and platforms after a successful run.
        config: Controller settings (timeouts, polling, retries).
        ownership: Owner-reference and retention manager; one is created
            from *client* when omitted.
        scheme: Scheme used to stamp owner references.
        clock: Returns the current time; injectable for timeout tests.
    """

    def __init__(
        self,
        client: ObjectStore,
        backend: ExecutionBackend,
        *,
        registry: RegistryClient | None = None,
        config: ControllerConfig | None = None,
        ownership: OwnershipManager | None = None,
        scheme: Scheme | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._client = client
        self._backend = backend
        self._registry = registry
        self._config = config or ControllerConfig()
        self._scheme = scheme or default_scheme()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._ownership = ownership or OwnershipManager(client, self._scheme, self._clock)
        self._resolver = StrategyResolver(client)

    def __repr__(self) -> str:
        return f"BuildRunReconciler(backend={type(self._backend).__name__})"

    async def reconcile(self, request: ReconcileRequest) -> ReconcileResult:
        try:
            buildrun = await self._client.get(BuildRun, request.namespace, request.name)
        except NotFoundError:
            logger.debug("buildrun_gone", key=request.key)
            return ReconcileResult()

        if buildrun.is_done:
            return await self._after_completion(buildrun)
        if buildrun.cancel_requested:
            return await self._cancel(buildrun)
        if buildrun.status.job_name is not None:
            return await self._observe(buildrun)
        return await self._start(buildrun)

    # ------------------------------------------------------------------ #
    # Pending / Validating / Resolving
    # ------------------------------------------------------------------ #

    async def _start(self, buildrun: BuildRun) -> ReconcileResult:
        try:
            build, spec = await self._build_spec(buildrun)
        except _Terminal as exc:
            return await self._fail(buildrun, exc.details)

        if build is not None:
            buildrun = await self._ownership.ensure_owner_reference(buildrun, build)

        status = buildrun.status
        status.start_time = status.start_time or self._clock()
        status.phase = BuildRunPhase.VALIDATING
        try:
            await self._validate(buildrun, build, spec)
            status.phase = BuildRunPhase.RESOLVING
            resolved = await self._resolver.resolve(
                buildrun.metadata.namespace or "", spec.strategy.name, spec.strategy.kind
            )
            params = resolve_params(
                resolved.strategy.spec, spec.param_values, buildrun.spec.param_values
            )
        except ReferencedStrategyNotFoundError as exc:
            return await self._strategy_missing(buildrun, exc)
        except ValidationError as exc:
            return await self._fail(buildrun, validation_details(exc))

        return await self._submit(buildrun, build, spec, resolved, params)

    async def _build_spec(self, buildrun: BuildRun) -> tuple[Build | None, BuildSpec]:
        ref = buildrun.spec.build
        namespace = buildrun.metadata.namespace
        if ref.name and ref.spec is not None:
            raise _Terminal(
                FailureDetails(
                    reason=BuildRunReason.AMBIGUOUS_BUILD,
                    message="spec.build must reference a Build by name or embed a spec, not both",
                )
            )

        build: Build | None = None
        if ref.spec is not None:
            spec = ref.spec.model_copy(deep=True)
        elif ref.name:
            try:
                build = await self._client.get(Build, namespace, ref.name)
            except NotFoundError:
                raise _Terminal(
                    FailureDetails(
                        reason=BuildRunReason.BUILD_NOT_FOUND,
                        message=f"build {ref.name} not found in namespace {namespace}",
                    )
                ) from None
            # A Build rejected only for a missing strategy may be stale; the
            # full validation below re-checks it under the lookup retry budget.
            if (
                build.status.registered == ConditionStatus.FALSE
                and build.status.reason not in _STRATEGY_NOT_FOUND_REASONS
            ):
                raise _Terminal(
                    FailureDetails(
                        reason=BuildRunReason.BUILD_REGISTRATION_FAILED,
                        message=(
                            f"build {ref.name} is not registered: "
                            f"{build.status.reason}: {build.status.message}"
                        ),
                    )
                )
            spec = build.spec.model_copy(deep=True)
        else:
            raise _Terminal(
                FailureDetails(
                    reason=BuildRunReason.NO_REF_OR_SPEC,
                    message="spec.build must reference a Build by name or embed a spec",
                )
            )

        if buildrun.spec.output is not None:
            spec.output = buildrun.spec.output.model_copy(deep=True)
        return build, spec

    async def _validate(self, buildrun: BuildRun, build: Build | None, spec: BuildSpec) -> None:
        # A registered Build has passed every check except the strategy one,
        # which can change underneath it.
        if build is not None and build.status.registered == ConditionStatus.TRUE:
            validation_types: tuple[ValidationType, ...] = (ValidationType.STRATEGIES,)
        else:
            validation_types = BUILD_VALIDATIONS

        if build is None:
            target = Build(
                metadata=ObjectMeta(
                    name=buildrun.metadata.name, namespace=buildrun.metadata.namespace
                ),
                spec=spec,
            )
        else:
            target = build.model_copy(update={"spec": spec})
        await validate_build(target, self._client, validation_types, self._scheme)
        parse_image_reference(spec.output.image)

        if build is not None:
            advisory = await self._ownership.check_owner_references(build)
            if advisory is not None:
                bind_object(logger, buildrun).info(
                    "build_owner_references_advisory", message=advisory.message
                )

    async def _strategy_missing(
        self, buildrun: BuildRun, error: ReferencedStrategyNotFoundError
    ) -> ReconcileResult:
        status = buildrun.status
        attempts = status.strategy_lookup_attempts
        if attempts >= self._config.strategy_lookup_retries:
            return await self._fail(buildrun, validation_details(error))

        delay = min(
            self._config.strategy_lookup_backoff_seconds * (2**attempts), _MAX_STRATEGY_BACKOFF
        )
        status.strategy_lookup_attempts = attempts + 1
        status.phase = BuildRunPhase.VALIDATING
        status.set_condition(
            ConditionStatus.UNKNOWN, BuildRunReason.PENDING, error.message, now=self._clock()
        )
        await self._client.update_status(buildrun)
        bind_object(logger, buildrun).info(
            "strategy_not_found_retrying",
            strategy=error.name,
            attempt=attempts + 1,
            delay=round(delay, 3),
        )
        return ReconcileResult(requeue_after=delay)

    # ------------------------------------------------------------------ #
    # Submitted
    # ------------------------------------------------------------------ #

    async def _submit(
        self,
        buildrun: BuildRun,
        build: Build | None,
        spec: BuildSpec,
        resolved: ResolvedStrategy,
        params: list[ParamValue],
    ) -> ReconcileResult:
        log = bind_object(logger, buildrun)
        name = job_name_for(buildrun)
        namespace = buildrun.metadata.namespace or ""
        timeout = self._timeout(buildrun, spec)

        labels = {
            LABEL_BUILDRUN_NAME: buildrun.metadata.name,
            LABEL_BUILDRUN_UID: buildrun.metadata.uid,
        }
        if build is not None:
            labels[LABEL_BUILD_NAME] = build.metadata.name
        job = JobSpec(
            name=name,
            namespace=namespace,
            labels=labels,
            service_account=buildrun.spec.service_account or self._config.default_service_account,
            strategy_name=resolved.strategy.metadata.name,
            strategy_kind=str(resolved.kind),
            steps=resolved.strategy.spec.steps,
            params=params,
            source=spec.source,
            sources=spec.sources,
            dockerfile=spec.dockerfile,
            output_image=spec.output.image,
            output_credentials=spec.output.credentials,
            timeout_seconds=timeout,
        )

        if await self._job_exists(JobHandle(name=name, namespace=namespace)):
            log.info("job_adopted", job=name)
        else:
            try:
                await self._backend.submit(job)
            except JobAlreadyExistsError:
                log.info("job_adopted", job=name)
            except SubmissionError as exc:
                return await self._submission_failed(buildrun, exc, name)
            else:
                log.info(
                    "job_submitted",
                    job=name,
                    strategy=resolved.strategy.metadata.name,
                    scope=str(resolved.scope),
                )

        now = self._clock()
        status = buildrun.status
        status.job_name = name
        status.build_spec = spec
        status.strategy_kind = str(resolved.kind)
        status.submitted_time = status.submitted_time or now
        status.phase = BuildRunPhase.SUBMITTED
        status.set_condition(
            ConditionStatus.UNKNOWN, BuildRunReason.PENDING, f"job {name} submitted", now=now
        )
        buildrun = await self._client.update_status(buildrun)
        return ReconcileResult(requeue_after=self._next_poll(buildrun, timeout))

    async def _submission_failed(
        self, buildrun: BuildRun, error: SubmissionError, job_name: str
    ) -> ReconcileResult:
        policy = self._config.submission_retry
        status = buildrun.status
        attempts = status.submission_attempts
        log = bind_object(logger, buildrun)
        if not policy.is_retryable(error) or attempts >= policy.max_retries:
            log.warning(
                "job_submission_failed", job=job_name, attempts=attempts + 1, error=str(error)
            )
            return await self._fail(buildrun, submission_details(error, job_name))

        delay = policy.compute_delay(attempts)
        status.submission_attempts = attempts + 1
        status.phase = BuildRunPhase.RESOLVING
        status.set_condition(
            ConditionStatus.UNKNOWN,
            BuildRunReason.PENDING,
            f"submission of job {job_name} failed, retrying: {error}",
            now=self._clock(),
        )
        await self._client.update_status(buildrun)
        log.info(
            "job_submission_retrying",
            job=job_name,
            attempt=attempts + 1,
            delay=round(delay, 3),
            error=str(error),
        )
        return ReconcileResult(requeue_after=delay)

    async def _job_exists(self, handle: JobHandle) -> bool:
        try:
            await self._backend.observe(handle)
        except JobNotFoundError:
            return False
        return True

    # ------------------------------------------------------------------ #
    # Running
    # ------------------------------------------------------------------ #

    async def _observe(self, buildrun: BuildRun) -> ReconcileResult:
        status = buildrun.status
        handle = JobHandle(name=status.job_name or "", namespace=buildrun.metadata.namespace or "")
        timeout = self._timeout(buildrun, status.build_spec)

        try:
            observation = await self._backend.observe(handle)
        except JobNotFoundError:
            return await self._fail(
                buildrun,
                FailureDetails(
                    reason=BuildRunReason.FAILED_TO_EXECUTE,
                    message=f"job {handle.name} no longer exists",
                    location=FailureLocation(job=handle.name),
                ),
            )

        if observation.phase == JobPhase.SUCCEEDED:
            return await self._succeed(buildrun, observation)
        if observation.phase == JobPhase.FAILED:
            return await self._fail(buildrun, classify_failure(observation))

        if self._remaining(buildrun, timeout) <= 0:
            try:
                await self._backend.cancel(handle)
            except JobNotFoundError:
                pass
            return await self._fail(buildrun, timeout_details(timeout, handle.name))

        if observation.phase == JobPhase.RUNNING and status.phase != BuildRunPhase.RUNNING:
            status.phase = BuildRunPhase.RUNNING
            status.set_condition(
                ConditionStatus.UNKNOWN,
                BuildRunReason.RUNNING,
                f"job {handle.name} is running",
                now=self._clock(),
            )
            buildrun = await self._client.update_status(buildrun)
            bind_object(logger, buildrun).info("buildrun_running", job=handle.name)
        return ReconcileResult(requeue_after=self._next_poll(buildrun, timeout))

    async def _succeed(self, buildrun: BuildRun, observation: JobObservation) -> ReconcileResult:
        results = await self._enrich(buildrun, _job_results(observation))
        if not results.image_digest:
            return await self._fail(
                buildrun,
                FailureDetails(
                    reason=BuildRunReason.MISSING_IMAGE_DIGEST,
                    message=(
                        f"job {observation.name} succeeded but no image digest was "
                        "reported or found in the registry"
                    ),
                    location=FailureLocation(job=observation.name),
                ),
            )

        now = self._clock()
        status = buildrun.status
        status.results = results
        status.phase = BuildRunPhase.SUCCEEDED
        status.completion_time = now
        status.set_condition(
            ConditionStatus.TRUE,
            BuildRunReason.SUCCEEDED,
            "All Steps have completed executing",
            now=now,
        )
        buildrun = await self._client.update_status(buildrun)
        bind_object(logger, buildrun).info(
            "buildrun_succeeded", digest=results.image_digest, platforms=len(results.platforms)
        )
        return await self._after_completion(buildrun)

    async def _enrich(self, buildrun: BuildRun, results: BuildRunResults) -> BuildRunResults:
        spec = buildrun.status.build_spec
        if self._registry is None or spec is None:
            return results
        image = spec.output.image
        try:
            ref = parse_image_reference(image)
            if results.image_digest:
                ref = ref.model_copy(update={"tag": None, "digest": results.image_digest})
            info = await self._registry.resolve(str(ref))
        except (RegistryError, InvalidImageReferenceError) as exc:
            bind_object(logger, buildrun).warning(
                "registry_lookup_failed", image=image, error=str(exc)
            )
            return results
        return results.model_copy(
            update={
                "image_digest": results.image_digest or info.digest,
                "image_size": results.image_size if results.image_size is not None else info.size,
                "platforms": info.platforms or results.platforms,
            }
        )

    # ------------------------------------------------------------------ #
    # Terminal transitions
    # ------------------------------------------------------------------ #

    async def _cancel(self, buildrun: BuildRun) -> ReconcileResult:
        name = buildrun.status.job_name or job_name_for(buildrun)
        try:
            await self._backend.cancel(JobHandle(name=name, namespace=buildrun.metadata.namespace or ""))
        except JobNotFoundError:
            logger.debug("cancel_job_not_found", job=name)
        return await self._fail(buildrun, canceled_details(), phase=BuildRunPhase.CANCELED)

    async def _fail(
        self,
        buildrun: BuildRun,
        details: FailureDetails,
        *,
        phase: BuildRunPhase = BuildRunPhase.FAILED,
    ) -> ReconcileResult:
        now = self._clock()
        status = buildrun.status
        status.failure_details = details
        status.phase = phase
        status.start_time = status.start_time or now
        status.completion_time = now
        status.set_condition(ConditionStatus.FALSE, details.reason, details.message, now=now)
        buildrun = await self._client.update_status(buildrun)
        bind_object(logger, buildrun).info(
            "buildrun_failed", phase=str(phase), reason=details.reason, message=details.message
        )
        return await self._after_completion(buildrun)

    async def _after_completion(self, buildrun: BuildRun) -> ReconcileResult:
        build = await self._owning_build(buildrun)
        if build is None:
            return ReconcileResult()
        pruned = await self._ownership.prune_history(build)
        if buildrun.metadata.name in pruned:
            return ReconcileResult()
        remaining = await self._ownership.apply_retention(buildrun, build)
        return ReconcileResult(requeue_after=remaining)

    async def _owning_build(self, buildrun: BuildRun) -> Build | None:
        name = buildrun.spec.build.name
        if not name:
            return None
        try:
            return await self._client.get(Build, buildrun.metadata.namespace, name)
        except NotFoundError:
            return None

    # ------------------------------------------------------------------ #
    # Timing
    # ------------------------------------------------------------------ #

    def _timeout(self, buildrun: BuildRun, spec: BuildSpec | None) -> int:
        return (
            buildrun.spec.timeout_seconds
            or (spec.timeout_seconds if spec is not None else None)
            or self._config.default_timeout_seconds
        )

    def _remaining(self, buildrun: BuildRun, timeout: int) -> float:
        started = buildrun.status.submitted_time or buildrun.status.start_time or self._clock()
        deadline = started + timedelta(seconds=timeout)
        return (deadline - self._clock()).total_seconds()

    def _next_poll(self, buildrun: BuildRun, timeout: int) -> float:
        return max(0.0, min(self._config.poll_interval_seconds, self._remaining(buildrun, timeout)))


def _job_results(observation: JobObservation) -> BuildRunResults:
    raw = observation.results
    size = raw.get(RESULT_IMAGE_SIZE, "")
    return BuildRunResults(
        image_digest=raw.get(RESULT_IMAGE_DIGEST) or None,
        image_size=int(size) if size.isdigit() else None,
        source_commit=raw.get(RESULT_SOURCE_COMMIT) or None,
        source_branch=raw.get(RESULT_SOURCE_BRANCH) or None,
        platforms=_parse_platforms(raw.get(RESULT_IMAGE_PLATFORMS, "")),
    )


def _parse_platforms(raw: str) -> list[Platform]:
    platforms: list[Platform] = []
    for entry in raw.split(","):
        parts = entry.strip().split("/")
        if not 2 <= len(parts) <= 3 or not all(parts):
            if entry.strip():
                logger.warning("image_platform_ignored", platform=entry.strip())
            continue
        platforms.append(
            Platform(
                os=parts[0],
                architecture=parts[1],
                variant=parts[2] if len(parts) > 2 else None,
            )
        )
    return platforms
