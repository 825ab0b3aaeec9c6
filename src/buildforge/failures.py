"""Failure classifier: maps execution outcomes to ``FailureDetails``.

Classification is pure and total.  Signals are considered in priority order:

1. a git credential prompt in any step → ``AuthPrompted``;
2. a failed step that names its own reason (an ``error-reason`` result, a
   recognised git error, or an engine termination reason) → passed through;
3. an infrastructure reason on the job (eviction, timeout, OOM, lost node);
4. anything else → ``FailedToExecuteBuildRun``.
"""

from __future__ import annotations

from buildforge.backend.base import JobObservation, StepResult
from buildforge.core.constants import (
    RESULT_ERROR_MESSAGE,
    RESULT_ERROR_REASON,
    BuildRunReason,
)
from buildforge.core.exceptions import SubmissionError, ValidationError
from buildforge.core.types import FailureDetails, FailureLocation
from buildforge.sources.git import (
    AUTH_PROMPTED_MESSAGE,
    GitErrorClass,
    classify_git_output,
    is_auth_prompt,
    parse_error_class,
)

# Container termination reasons that carry no information of their own.
_GENERIC_STEP_REASONS = frozenset({"", "Error", "Completed", "Failed"})

_INFRA_REASONS: dict[str, BuildRunReason] = {
    "PodEvicted": BuildRunReason.POD_EVICTED,
    "Evicted": BuildRunReason.POD_EVICTED,
    "OOMKilled": BuildRunReason.STEP_OUT_OF_MEMORY,
    "StepOutOfMemory": BuildRunReason.STEP_OUT_OF_MEMORY,
    "NodeLost": BuildRunReason.NODE_LOST,
    "TaskRunTimeout": BuildRunReason.TIMEOUT,
    "DeadlineExceeded": BuildRunReason.TIMEOUT,
    "BuildRunTimeout": BuildRunReason.TIMEOUT,
}

_INFRA_MESSAGES: dict[BuildRunReason, str] = {
    BuildRunReason.POD_EVICTED: "The build was evicted from its node.",
    BuildRunReason.STEP_OUT_OF_MEMORY: "A build step ran out of memory.",
    BuildRunReason.NODE_LOST: "The node running the build was lost.",
    BuildRunReason.TIMEOUT: "The build exceeded its deadline.",
}


def classify_failure(observation: JobObservation) -> FailureDetails:
    """Return the ``FailureDetails`` explaining a failed job."""
    for step in observation.steps:
        if _auth_prompted(step):
            return FailureDetails(
                reason=BuildRunReason.AUTH_PROMPTED,
                message=AUTH_PROMPTED_MESSAGE,
                location=FailureLocation(job=observation.name, step=step.name),
            )

    failed = _first_failed_step(observation)

    if failed is not None:
        named = _named_step_failure(failed)
        if named is not None:
            reason, message = named
            return FailureDetails(
                reason=reason,
                message=message,
                location=FailureLocation(job=observation.name, step=failed.name),
            )

    infra = _infra_reason(observation, failed)
    if infra is not None:
        return FailureDetails(
            reason=infra,
            message=observation.message or _INFRA_MESSAGES[infra],
            location=FailureLocation(
                job=observation.name, step=failed.name if failed else None
            ),
        )

    if failed is not None:
        message = f"step {failed.name} failed with exit code {failed.exit_code}"
        if failed.message:
            message = f"{message}: {failed.message}"
    else:
        message = observation.message or "the build failed without reporting a reason"
    return FailureDetails(
        reason=BuildRunReason.FAILED_TO_EXECUTE,
        message=message,
        location=FailureLocation(
            job=observation.name, step=failed.name if failed else None
        ),
    )


def timeout_details(timeout_seconds: int, job_name: str | None = None) -> FailureDetails:
    return FailureDetails(
        reason=BuildRunReason.TIMEOUT,
        message=f"BuildRun failed to finish within {timeout_seconds}s",
        location=FailureLocation(job=job_name) if job_name else None,
    )


def canceled_details() -> FailureDetails:
    return FailureDetails(
        reason=BuildRunReason.CANCELED,
        message="The BuildRun and its job were canceled.",
    )


def validation_details(error: ValidationError) -> FailureDetails:
    return FailureDetails(reason=str(error.reason), message=error.message)


def submission_details(error: SubmissionError, job_name: str) -> FailureDetails:
    return FailureDetails(
        reason=BuildRunReason.FAILED_TO_CREATE_POD,
        message=f"failed to submit job {job_name}: {error}",
        location=FailureLocation(job=job_name),
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _auth_prompted(step: StepResult) -> bool:
    if parse_error_class(step.results.get(RESULT_ERROR_REASON)) is GitErrorClass.AUTH_PROMPTED:
        return True
    if step.reason == GitErrorClass.AUTH_PROMPTED:
        return True
    return is_auth_prompt(step.output)


def _first_failed_step(observation: JobObservation) -> StepResult | None:
    for step in observation.steps:
        if step.failed:
            return step
    return None


def _named_step_failure(step: StepResult) -> tuple[str, str] | None:
    reason = step.results.get(RESULT_ERROR_REASON)
    if reason:
        message = step.results.get(RESULT_ERROR_MESSAGE) or step.message
        error_class = parse_error_class(reason)
        if not message and error_class is not None:
            message = error_class.to_message()
        return reason, message or f"step {step.name} failed"

    if step.output:
        error_class = classify_git_output(step.output)
        if error_class is not GitErrorClass.UNKNOWN:
            return str(error_class), error_class.to_message()

    if step.reason and step.reason not in _GENERIC_STEP_REASONS and step.reason not in _INFRA_REASONS:
        return step.reason, step.message or f"step {step.name} failed"
    return None


def _infra_reason(
    observation: JobObservation, failed: StepResult | None
) -> BuildRunReason | None:
    if observation.reason and observation.reason in _INFRA_REASONS:
        return _INFRA_REASONS[observation.reason]
    if failed is not None and failed.reason in _INFRA_REASONS:
        return _INFRA_REASONS[failed.reason]
    return None
