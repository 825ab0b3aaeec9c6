"""FastAPI admission endpoints backed by the validator dispatcher.

Usage::

    from buildforge.integrations.fastapi import create_admission_router

    app = FastAPI()
    app.include_router(create_admission_router(store, prefix="/admission"))

Requires the ``fastapi`` extra::

    pip install buildforge[fastapi]
"""

from __future__ import annotations

from typing import Any

try:
    from fastapi import APIRouter
    from pydantic import BaseModel as _FaBaseModel
except ImportError as _err:  # pragma: no cover
    raise ImportError(
        "FastAPI is required for buildforge.integrations.fastapi. "
        "Install it with: pip install buildforge[fastapi]"
    ) from _err

from buildforge.core.constants import BuildRunReason
from buildforge.core.exceptions import ValidationError
from buildforge.core.reference import parse_image_reference
from buildforge.core.types import Build, BuildRun, ObjectMeta
from buildforge.store.base import ObjectStore
from buildforge.validate.dispatcher import collect_build_errors


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class _Violation(_FaBaseModel):
    reason: str
    message: str
    validation_type: str | None = None


class _AdmissionResponse(_FaBaseModel):
    allowed: bool
    violations: list[_Violation] = []


def _violation(error: ValidationError) -> _Violation:
    return _Violation(
        reason=str(error.reason),
        message=error.message,
        validation_type=str(error.validation_type) if error.validation_type else None,
    )


def _response(violations: list[_Violation]) -> _AdmissionResponse:
    return _AdmissionResponse(allowed=not violations, violations=violations)


# ---------------------------------------------------------------------------
# Router factory
# ---------------------------------------------------------------------------


def create_admission_router(store: ObjectStore, prefix: str = "") -> APIRouter:
    """Return an :class:`APIRouter` that validates objects before they are stored.

    Endpoints:
        - ``POST {prefix}/validate/build``    — run every build validator
        - ``POST {prefix}/validate/buildrun`` — check the build reference and
          an embedded build spec
        - ``GET  {prefix}/healthz``           — liveness probe

    Validation outcomes are reported in the body; only malformed objects get
    a 422.
    """
    router = APIRouter(prefix=prefix, tags=["admission"])

    async def _check_build(build: Build) -> list[_Violation]:
        violations = [_violation(exc) for exc in await collect_build_errors(build, store)]
        try:
            parse_image_reference(build.spec.output.image)
        except ValidationError as exc:
            violations.append(_violation(exc))
        return violations

    @router.post("/validate/build", response_model=_AdmissionResponse)
    async def validate_build(build: Build) -> _AdmissionResponse:
        return _response(await _check_build(build))

    @router.post("/validate/buildrun", response_model=_AdmissionResponse)
    async def validate_buildrun(buildrun: BuildRun) -> _AdmissionResponse:
        ref = buildrun.spec.build
        if ref.name and ref.spec is not None:
            return _response(
                [
                    _Violation(
                        reason=BuildRunReason.AMBIGUOUS_BUILD,
                        message="spec.build must reference a Build by name or embed a spec, not both",
                    )
                ]
            )
        if not ref.name and ref.spec is None:
            return _response(
                [
                    _Violation(
                        reason=BuildRunReason.NO_REF_OR_SPEC,
                        message="spec.build must reference a Build by name or embed a spec",
                    )
                ]
            )

        violations: list[_Violation] = []
        if ref.spec is not None:
            embedded = Build(
                metadata=ObjectMeta(
                    name=buildrun.metadata.name, namespace=buildrun.metadata.namespace
                ),
                spec=ref.spec,
            )
            violations.extend(await _check_build(embedded))
        if buildrun.spec.output is not None:
            try:
                parse_image_reference(buildrun.spec.output.image)
            except ValidationError as exc:
                violations.append(_violation(exc))
        return _response(violations)

    @router.get("/healthz")
    async def healthz() -> dict[str, Any]:
        return {"ok": True}

    return router
