"""Tests for failures.py and sources/git.py: the failure classifier."""
from __future__ import annotations

import pytest

from buildforge.backend.base import JobObservation, StepResult
from buildforge.core.constants import JobPhase
from buildforge.core.exceptions import InvalidSourcesError, SubmissionError
from buildforge.core.constants import BuildReason
from buildforge.failures import (
    canceled_details,
    classify_failure,
    submission_details,
    timeout_details,
    validation_details,
)
from buildforge.sources.git import (
    AUTH_PROMPTED_MESSAGE,
    GitErrorClass,
    classify_git_output,
    is_auth_prompt,
)

PROMPT_OUTPUT = (
    "Cloning into '/workspace/source'...\n"
    "fatal: could not read Username for 'https://github.com': terminal prompts disabled"
)


def _failed(*steps: StepResult, reason: str | None = None, message: str = "") -> JobObservation:
    return JobObservation(
        name="app-run-1-abcd1234",
        phase=JobPhase.FAILED,
        reason=reason,
        message=message,
        steps=list(steps),
    )


# ---------------------------------------------------------------------------
# Priority 1: credential prompt
# ---------------------------------------------------------------------------


def test_auth_prompt_in_output() -> None:
    details = classify_failure(
        _failed(StepResult(name="source-default", exit_code=128, output=PROMPT_OUTPUT))
    )
    assert details.reason == "AuthPrompted"
    assert details.message == AUTH_PROMPTED_MESSAGE
    assert details.location is not None
    assert details.location.step == "source-default"
    assert details.location.job == "app-run-1-abcd1234"


def test_auth_prompt_beats_named_reason_and_infra() -> None:
    details = classify_failure(
        _failed(
            StepResult(name="build", exit_code=1, results={"error-reason": "CompileFailed"}),
            StepResult(name="source-default", exit_code=0, results={"error-reason": "AuthPrompted"}),
            reason="PodEvicted",
        )
    )
    assert details.reason == "AuthPrompted"


def test_auth_prompt_from_step_reason() -> None:
    details = classify_failure(_failed(StepResult(name="source", exit_code=1, reason="AuthPrompted")))
    assert details.reason == "AuthPrompted"


# ---------------------------------------------------------------------------
# Priority 2: named step reason
# ---------------------------------------------------------------------------


def test_error_reason_result_passes_through() -> None:
    details = classify_failure(
        _failed(
            StepResult(
                name="build",
                exit_code=1,
                results={"error-reason": "DockerfileNotFound", "error-message": "no Dockerfile"},
            ),
            reason="PodEvicted",
        )
    )
    assert details.reason == "DockerfileNotFound"
    assert details.message == "no Dockerfile"


def test_git_error_class_result_uses_class_message() -> None:
    details = classify_failure(
        _failed(StepResult(name="source", exit_code=1, results={"error-reason": "RevisionNotFound"}))
    )
    assert details.reason == "RevisionNotFound"
    assert details.message == GitErrorClass.REVISION_NOT_FOUND.to_message()


def test_git_output_is_classified() -> None:
    details = classify_failure(
        _failed(
            StepResult(
                name="source",
                exit_code=128,
                output="remote: Repository not found.\nfatal: repository not found",
            )
        )
    )
    assert details.reason == "RepositoryNotFound"


def test_engine_step_reason_passes_through() -> None:
    details = classify_failure(
        _failed(StepResult(name="build", exit_code=1, reason="ImagePullBackOff", message="pull failed"))
    )
    assert details.reason == "ImagePullBackOff"
    assert details.message == "pull failed"


# ---------------------------------------------------------------------------
# Priority 3: infrastructure
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("job_reason", "expected"),
    [
        ("PodEvicted", "PodEvicted"),
        ("Evicted", "PodEvicted"),
        ("NodeLost", "NodeLost"),
        ("DeadlineExceeded", "BuildRunTimeout"),
    ],
)
def test_infra_reason_on_job(job_reason: str, expected: str) -> None:
    details = classify_failure(_failed(StepResult(name="build", exit_code=137), reason=job_reason))
    assert details.reason == expected
    assert details.message


def test_oom_step_reason() -> None:
    details = classify_failure(_failed(StepResult(name="build", exit_code=137, reason="OOMKilled")))
    assert details.reason == "StepOutOfMemory"
    assert details.location is not None
    assert details.location.step == "build"


def test_infra_message_prefers_observation_message() -> None:
    details = classify_failure(_failed(reason="PodEvicted", message="node under disk pressure"))
    assert details.message == "node under disk pressure"


# ---------------------------------------------------------------------------
# Priority 4: fallback
# ---------------------------------------------------------------------------


def test_fallback_names_step_and_exit_code() -> None:
    details = classify_failure(
        _failed(
            StepResult(name="source", exit_code=0),
            StepResult(name="build", exit_code=2, reason="Error"),
        )
    )
    assert details.reason == "FailedToExecuteBuildRun"
    assert details.message == "step build failed with exit code 2"


def test_fallback_without_steps() -> None:
    details = classify_failure(_failed())
    assert details.reason == "FailedToExecuteBuildRun"
    assert details.message


@pytest.mark.parametrize(
    "observation",
    [
        _failed(),
        _failed(reason="Weird"),
        _failed(StepResult(name="a")),
        _failed(StepResult(name="a", exit_code=1, output="random noise")),
        _failed(StepResult(name="a", exit_code=1, results={"error-reason": "X"})),
    ],
)
def test_classification_is_total(observation: JobObservation) -> None:
    details = classify_failure(observation)
    assert details.reason
    assert details.message


# ---------------------------------------------------------------------------
# Detail helpers
# ---------------------------------------------------------------------------


def test_detail_helpers() -> None:
    assert canceled_details().reason == "BuildRunCanceled"
    timeout = timeout_details(60, "job-1")
    assert timeout.reason == "BuildRunTimeout"
    assert "60s" in timeout.message
    submission = submission_details(SubmissionError("quota exceeded"), "job-1")
    assert submission.reason == "FailedToCreateBuildRunPod"
    assert "quota exceeded" in submission.message
    validation = validation_details(
        InvalidSourcesError(BuildReason.DUPLICATE_SOURCE_NAME, "duplicated source name 'repo'")
    )
    assert validation.reason == "DuplicateSourceName"


# ---------------------------------------------------------------------------
# Git output classification
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("output", "expected"),
    [
        (PROMPT_OUTPUT, GitErrorClass.AUTH_PROMPTED),
        ("fatal: Authentication failed for 'https://github.com/acme/app'", GitErrorClass.AUTH_INVALID_USER_OR_PASS),
        ("git@github.com: Permission denied (publickey).", GitErrorClass.AUTH_INVALID_KEY),
        ("fatal: couldn't find remote ref refs/heads/nope", GitErrorClass.REVISION_NOT_FOUND),
        ("something else entirely", GitErrorClass.UNKNOWN),
    ],
)
def test_classify_git_output(output: str, expected: GitErrorClass) -> None:
    assert classify_git_output(output) is expected


def test_is_auth_prompt_negative() -> None:
    assert not is_auth_prompt("fatal: repository not found")
