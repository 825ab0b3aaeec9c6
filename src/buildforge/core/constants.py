from __future__ import annotations

from enum import StrEnum

API_GROUP = "buildforge.io"
API_VERSION = f"{API_GROUP}/v1beta1"

# Build annotation that opts in to explicit deletion of dependent BuildRuns.
ANNOTATION_BUILD_RUN_DELETION = "build.buildforge.io/build-run-deletion"

LABEL_BUILD_NAME = "build.buildforge.io/name"
LABEL_BUILDRUN_NAME = "buildrun.buildforge.io/name"
LABEL_BUILDRUN_UID = "buildrun.buildforge.io/uid"

# Result names written by the build steps.
RESULT_IMAGE_DIGEST = "image-digest"
RESULT_IMAGE_SIZE = "image-size"
# Comma-separated os/architecture[/variant] entries, e.g. "linux/amd64,linux/arm/v7".
RESULT_IMAGE_PLATFORMS = "image-platforms"
RESULT_SOURCE_COMMIT = "source-commit-sha"
RESULT_SOURCE_BRANCH = "source-branch"
RESULT_ERROR_REASON = "error-reason"
RESULT_ERROR_MESSAGE = "error-message"


class Kind(StrEnum):
    BUILD = "Build"
    BUILD_RUN = "BuildRun"
    BUILD_STRATEGY = "BuildStrategy"
    CLUSTER_BUILD_STRATEGY = "ClusterBuildStrategy"
    SECRET = "Secret"


class StrategyScope(StrEnum):
    NAMESPACE = "Namespace"
    CLUSTER = "Cluster"


class ConditionStatus(StrEnum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class ConditionType(StrEnum):
    SUCCEEDED = "Succeeded"


class BuildRunPhase(StrEnum):
    """States of the BuildRun lifecycle state machine."""

    PENDING = "Pending"
    VALIDATING = "Validating"
    RESOLVING = "Resolving"
    SUBMITTED = "Submitted"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    CANCELED = "Canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            BuildRunPhase.SUCCEEDED,
            BuildRunPhase.FAILED,
            BuildRunPhase.CANCELED,
        )


class JobPhase(StrEnum):
    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


class BuildRunSpecState(StrEnum):
    CANCELED = "BuildRunCanceled"


class ValidationType(StrEnum):
    """Closed set of validation concerns understood by the dispatcher."""

    SECRETS = "secrets"
    STRATEGIES = "strategy"
    SOURCE_URL = "sourceurl"
    RUNTIME = "runtime"
    SOURCES = "sources"
    OWNER_REFERENCES = "ownerreferences"

    @property
    def is_fatal(self) -> bool:
        """Whether a failure of this concern blocks the calling workflow.

        Owner-reference consistency is advisory: it is reported to the
        GC manager and to diagnostics but never fails a build.
        """
        return self is not ValidationType.OWNER_REFERENCES


# Validations applied to a Build before it is marked Registered.
BUILD_VALIDATIONS: tuple[ValidationType, ...] = (
    ValidationType.STRATEGIES,
    ValidationType.SOURCES,
    ValidationType.SOURCE_URL,
    ValidationType.RUNTIME,
    ValidationType.SECRETS,
)


class BuildReason(StrEnum):
    """Classified reasons for Build spec (validation) errors."""

    SUCCEEDED = "Succeeded"
    SPEC_SOURCE_SECRET_NOT_FOUND = "SpecSourceSecretRefNotFound"
    SPEC_OUTPUT_SECRET_NOT_FOUND = "SpecOutputSecretRefNotFound"
    SPEC_BUILDER_SECRET_NOT_FOUND = "SpecBuilderSecretRefNotFound"
    SPEC_RUNTIME_SECRET_NOT_FOUND = "SpecRuntimeSecretRefNotFound"
    VOLUME_SECRET_NOT_FOUND = "VolumeSecretRefNotFound"
    BUILD_STRATEGY_NOT_FOUND = "BuildStrategyNotFound"
    CLUSTER_BUILD_STRATEGY_NOT_FOUND = "ClusterBuildStrategyNotFound"
    REFERENCED_STRATEGY_NOT_FOUND = "ReferencedStrategyNotFound"
    UNKNOWN_STRATEGY_KIND = "UnknownBuildStrategyKind"
    INVALID_SOURCE_URL = "InvalidSourceURL"
    INVALID_RUNTIME_IMAGE = "InvalidRuntimeImage"
    RUNTIME_PATHS_EMPTY = "RuntimePathsCanNotBeEmpty"
    SOURCE_NAME_EMPTY = "SourceNameEmpty"
    DUPLICATE_SOURCE_NAME = "DuplicateSourceName"
    OWNER_REFERENCE_MISMATCH = "OwnerReferenceMismatch"
    INVALID_IMAGE_REFERENCE = "InvalidImageReference"
    UNDEFINED_PARAMETER = "UndefinedParameter"
    MISSING_PARAMETER_VALUES = "MissingParameterValues"


class BuildRunReason(StrEnum):
    """Reasons the BuildRun controller itself writes to status."""

    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    BUILD_NOT_FOUND = "BuildNotFound"
    BUILD_REGISTRATION_FAILED = "BuildRegistrationFailed"
    NO_REF_OR_SPEC = "BuildRunNoRefOrSpec"
    AMBIGUOUS_BUILD = "BuildRunAmbiguousBuild"
    AUTH_PROMPTED = "AuthPrompted"
    POD_EVICTED = "PodEvicted"
    STEP_OUT_OF_MEMORY = "StepOutOfMemory"
    NODE_LOST = "NodeLost"
    TIMEOUT = "BuildRunTimeout"
    CANCELED = "BuildRunCanceled"
    FAILED_TO_CREATE_POD = "FailedToCreateBuildRunPod"
    FAILED_TO_EXECUTE = "FailedToExecuteBuildRun"
    MISSING_IMAGE_DIGEST = "MissingImageDigest"
