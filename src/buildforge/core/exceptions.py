from __future__ import annotations

from typing import Any

from buildforge.core.constants import BuildReason, ValidationType


class BuildForgeError(Exception):
    """Base exception for all buildforge errors.

    Attributes:
        code: Optional machine-readable error code.
        details: Arbitrary key/value context about the error.
        retry_after: Suggested delay in seconds before retrying the
            operation (``None`` when unknown or not applicable).
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        *,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.details = details or {}
        self.retry_after = retry_after

    @property
    def is_retryable(self) -> bool:
        """Whether the operation that raised this error can be retried."""
        return False


class ConfigurationError(BuildForgeError): ...


# ---------------------------------------------------------------------------
# Object store
# ---------------------------------------------------------------------------


class StoreError(BuildForgeError): ...


class NotFoundError(StoreError): ...


class AlreadyExistsError(StoreError): ...


class ConflictError(StoreError):
    """An optimistic-concurrency write lost against a newer resource version.

    Always retryable. The caller re-reads the object and tries again.
    """

    @property
    def is_retryable(self) -> bool:  # noqa: D102
        return True


class StoreUnavailableError(StoreError):
    """The object store could not be reached.

    Always retryable.
    """

    @property
    def is_retryable(self) -> bool:  # noqa: D102
        return True


# ---------------------------------------------------------------------------
# Execution backend
# ---------------------------------------------------------------------------


class BackendError(BuildForgeError): ...


class SubmissionError(BackendError):
    """The execution backend rejected a job (quota, malformed descriptor)."""


class TransientSubmissionError(SubmissionError):
    """Temporary backend unavailability during submission.

    Always retryable.
    """

    @property
    def is_retryable(self) -> bool:  # noqa: D102
        return True


class JobAlreadyExistsError(SubmissionError): ...


class JobNotFoundError(BackendError): ...


class RegistryError(BuildForgeError): ...


class RegistryUnavailableError(RegistryError):
    """The registry could not be reached or answered with a server error.

    Always retryable.
    """

    @property
    def is_retryable(self) -> bool:  # noqa: D102
        return True


# ---------------------------------------------------------------------------
# Build spec errors
# ---------------------------------------------------------------------------


class UnknownValidationTypeError(BuildForgeError):
    """A validation concern outside the closed set was requested.

    This signals a programming error in the caller, not a user mistake.
    """


class ValidationError(BuildForgeError):
    """A classified error in a Build spec.

    Validators raise these; the BuildRun reconciler is the only component
    that turns them into ``FailureDetails``.

    Attributes:
        reason: Closed-enum classification of the error.
        validation_type: The concern that produced the error, when known.
    """

    fatal: bool = True

    def __init__(
        self,
        reason: BuildReason,
        message: str,
        *,
        validation_type: ValidationType | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code=str(reason), details=details)
        self.reason = reason
        self.message = message
        self.validation_type = validation_type


class ReferencedSecretNotFoundError(ValidationError):
    def __init__(self, reason: BuildReason, secret: str, field_path: str) -> None:
        super().__init__(
            reason,
            f"referenced secret {secret} not found (field {field_path})",
            validation_type=ValidationType.SECRETS,
            details={"secret": secret, "field": field_path},
        )
        self.secret = secret
        self.field_path = field_path


class ReferencedStrategyNotFoundError(ValidationError):
    def __init__(
        self, reason: BuildReason, name: str, scopes: list[str]
    ) -> None:
        super().__init__(
            reason,
            f"strategy {name} not found (searched scope: {', '.join(scopes)})",
            validation_type=ValidationType.STRATEGIES,
            details={"strategy": name, "scopes": scopes},
        )
        self.name = name
        self.scopes = scopes


class UnknownStrategyKindError(ValidationError):
    def __init__(self, kind: str) -> None:
        super().__init__(
            BuildReason.UNKNOWN_STRATEGY_KIND,
            f"unknown strategy kind {kind!r}",
            validation_type=ValidationType.STRATEGIES,
            details={"kind": kind},
        )


class InvalidSourceURLError(ValidationError):
    def __init__(self, url: str, message: str, *, field_path: str = "spec.source.url") -> None:
        super().__init__(
            BuildReason.INVALID_SOURCE_URL,
            f"invalid source URL {url!r} at {field_path}: {message}",
            validation_type=ValidationType.SOURCE_URL,
            details={"url": url, "field": field_path},
        )


class InvalidRuntimeError(ValidationError):
    def __init__(self, reason: BuildReason, message: str) -> None:
        super().__init__(reason, message, validation_type=ValidationType.RUNTIME)


class InvalidSourcesError(ValidationError):
    def __init__(self, reason: BuildReason, message: str) -> None:
        super().__init__(reason, message, validation_type=ValidationType.SOURCES)


class OwnerReferenceError(ValidationError):
    """Owner references between a Build and its BuildRuns disagree.

    Advisory: callers log it and carry on.
    """

    fatal = False

    def __init__(self, message: str, *, buildruns: list[str] | None = None) -> None:
        super().__init__(
            BuildReason.OWNER_REFERENCE_MISMATCH,
            message,
            validation_type=ValidationType.OWNER_REFERENCES,
            details={"buildruns": buildruns or []},
        )


class InvalidImageReferenceError(ValidationError):
    def __init__(self, reference: str, message: str) -> None:
        super().__init__(
            BuildReason.INVALID_IMAGE_REFERENCE,
            f"invalid image reference {reference!r}: {message}",
            details={"reference": reference},
        )
        self.reference = reference


class ParameterError(ValidationError): ...
