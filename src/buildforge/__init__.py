"""buildforge: declarative container-image builds driven by reconcilers."""

from buildforge.__version__ import __version__
from buildforge.backend.base import ExecutionBackend, JobHandle, JobObservation, JobSpec, StepResult
from buildforge.backend.mock import MockExecutionBackend
from buildforge.controller.build import BuildReconciler
from buildforge.controller.buildrun import BuildRunReconciler
from buildforge.controller.manager import ControllerManager
from buildforge.controller.runtime import Controller, ReconcileRequest, ReconcileResult
from buildforge.core.config import ControllerConfig
from buildforge.core.constants import (
    ANNOTATION_BUILD_RUN_DELETION,
    BuildReason,
    BuildRunPhase,
    BuildRunReason,
    ConditionStatus,
    Kind,
    ValidationType,
)
from buildforge.core.exceptions import (
    BuildForgeError,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    OwnerReferenceError,
    UnknownValidationTypeError,
    ValidationError,
)
from buildforge.core.scheme import Scheme, default_scheme
from buildforge.core.types import (
    Build,
    BuildRun,
    BuildRunSpec,
    BuildSpec,
    BuildStrategy,
    ClusterBuildStrategy,
    FailureDetails,
    ObjectMeta,
    Secret,
)
from buildforge.failures import classify_failure
from buildforge.ownership import OwnershipManager
from buildforge.registry.client import HttpRegistryClient, RegistryClient
from buildforge.store.base import ObjectStore
from buildforge.store.memory import InMemoryObjectStore
from buildforge.strategy import StrategyResolver
from buildforge.utils.logging import configure_logging
from buildforge.validate.dispatcher import collect_build_errors, new_validation, validate_build

__all__ = [
    "__version__",
    # Objects
    "Build",
    "BuildRun",
    "BuildRunSpec",
    "BuildSpec",
    "BuildStrategy",
    "ClusterBuildStrategy",
    "FailureDetails",
    "ObjectMeta",
    "Secret",
    # Constants
    "ANNOTATION_BUILD_RUN_DELETION",
    "BuildReason",
    "BuildRunPhase",
    "BuildRunReason",
    "ConditionStatus",
    "Kind",
    "ValidationType",
    # Errors
    "BuildForgeError",
    "ConfigurationError",
    "ConflictError",
    "NotFoundError",
    "OwnerReferenceError",
    "UnknownValidationTypeError",
    "ValidationError",
    # Collaborators
    "ExecutionBackend",
    "HttpRegistryClient",
    "InMemoryObjectStore",
    "JobHandle",
    "JobObservation",
    "JobSpec",
    "MockExecutionBackend",
    "ObjectStore",
    "RegistryClient",
    "StepResult",
    # Engine
    "BuildReconciler",
    "BuildRunReconciler",
    "Controller",
    "ControllerConfig",
    "ControllerManager",
    "OwnershipManager",
    "ReconcileRequest",
    "ReconcileResult",
    "Scheme",
    "StrategyResolver",
    "classify_failure",
    "collect_build_errors",
    "configure_logging",
    "default_scheme",
    "new_validation",
    "validate_build",
]
