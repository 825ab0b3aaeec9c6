"""Build reconciler: validates a Build and records whether it is registered."""

from __future__ import annotations

import structlog

from buildforge.controller.runtime import ReconcileRequest, ReconcileResult
from buildforge.core.constants import BUILD_VALIDATIONS, BuildReason, ConditionStatus
from buildforge.core.exceptions import NotFoundError, ValidationError
from buildforge.core.reference import parse_image_reference
from buildforge.core.scheme import Scheme
from buildforge.core.types import Build, BuildStatus
from buildforge.store.base import ObjectStore
from buildforge.utils.logging import bind_object
from buildforge.validate.dispatcher import validate_build

logger = structlog.get_logger(__name__)


class BuildReconciler:
    """Runs the build validators and writes ``status.registered``.

    The status is only written when the outcome or the observed generation
    changes.  Unregistered Builds are requeued with backoff, so a secret or
    strategy created later registers the Build without an edit.
    """

    def __init__(self, client: ObjectStore, *, scheme: Scheme | None = None) -> None:
        self._client = client
        self._scheme = scheme

    async def reconcile(self, request: ReconcileRequest) -> ReconcileResult:
        try:
            build = await self._client.get(Build, request.namespace, request.name)
        except NotFoundError:
            return ReconcileResult()
        if build.metadata.deletion_timestamp is not None:
            return ReconcileResult()

        try:
            await validate_build(build, self._client, BUILD_VALIDATIONS, self._scheme)
            parse_image_reference(build.spec.output.image)
        except ValidationError as exc:
            status = BuildStatus(
                registered=ConditionStatus.FALSE,
                reason=str(exc.reason),
                message=exc.message,
                observed_generation=build.metadata.generation,
            )
        else:
            status = BuildStatus(
                registered=ConditionStatus.TRUE,
                reason=BuildReason.SUCCEEDED,
                message="all validations succeeded",
                observed_generation=build.metadata.generation,
            )

        if status != build.status:
            build.status = status
            await self._client.update_status(build)
            log = bind_object(logger, build)
            if status.registered == ConditionStatus.TRUE:
                log.info("build_registered")
            else:
                log.info("build_registration_failed", reason=status.reason, message=status.message)

        return ReconcileResult(requeue=status.registered != ConditionStatus.TRUE)
