"""Declarative object model: Builds, BuildRuns, strategies and secrets.

Fields are snake_case in Python and camelCase on the wire
(``model_dump(by_alias=True)``), mirroring the cluster object schema.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from buildforge.core.constants import (
    ANNOTATION_BUILD_RUN_DELETION,
    API_VERSION,
    BuildRunPhase,
    BuildRunSpecState,
    ConditionStatus,
    ConditionType,
    Kind,
)


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Object metadata
# ---------------------------------------------------------------------------


class OwnerReference(_Model):
    api_version: str = API_VERSION
    kind: str
    name: str
    uid: str
    controller: bool = False
    block_owner_deletion: bool = False


class ObjectMeta(_Model):
    name: str
    namespace: str | None = None
    uid: str = ""
    resource_version: str = ""
    generation: int = 0
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    owner_references: list[OwnerReference] = Field(default_factory=list)
    creation_timestamp: datetime | None = None
    deletion_timestamp: datetime | None = None


class Resource(_Model):
    """Common envelope of every stored object."""

    KIND: ClassVar[Kind]
    NAMESPACED: ClassVar[bool] = True

    api_version: str = API_VERSION
    metadata: ObjectMeta

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str | None:
        return self.metadata.namespace

    @property
    def key(self) -> str:
        """``namespace/name`` (or just ``name`` for cluster-scoped objects)."""
        if self.metadata.namespace:
            return f"{self.metadata.namespace}/{self.metadata.name}"
        return self.metadata.name


class Secret(Resource):
    KIND: ClassVar[Kind] = Kind.SECRET

    type: str = "Opaque"
    data: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class StrategyStep(_Model):
    name: str
    image: str
    command: list[str] = Field(default_factory=list)
    args: list[str] = Field(default_factory=list)


class StrategyParameter(_Model):
    name: str
    description: str = ""
    default: str | None = None


class BuildStrategySpec(_Model):
    steps: list[StrategyStep] = Field(default_factory=list)
    parameters: list[StrategyParameter] = Field(default_factory=list)


class BuildStrategy(Resource):
    KIND: ClassVar[Kind] = Kind.BUILD_STRATEGY

    spec: BuildStrategySpec = Field(default_factory=BuildStrategySpec)


class ClusterBuildStrategy(Resource):
    KIND: ClassVar[Kind] = Kind.CLUSTER_BUILD_STRATEGY
    NAMESPACED: ClassVar[bool] = False

    spec: BuildStrategySpec = Field(default_factory=BuildStrategySpec)


# ---------------------------------------------------------------------------
# Build
# ---------------------------------------------------------------------------


class GitSource(_Model):
    url: str = ""
    revision: str | None = None
    context_dir: str | None = None
    credentials: str | None = None
    """Name of the secret used to clone the repository."""


class StrategyRef(_Model):
    name: str
    kind: str | None = None
    """``BuildStrategy``, ``ClusterBuildStrategy`` or ``None`` to search both."""


class ImageSpec(_Model):
    image: str
    credentials: str | None = None


class RuntimeSpec(_Model):
    base: ImageSpec
    paths: list[str] = Field(default_factory=list)
    entrypoint: list[str] = Field(default_factory=list)


class SourceEntry(_Model):
    name: str = ""
    url: str = ""
    type: str = "HTTP"


class ParamValue(_Model):
    name: str
    value: str


class BuildVolume(_Model):
    name: str
    secret: str | None = None
    config_map: str | None = None


class Retention(_Model):
    ttl_after_succeeded_seconds: int | None = Field(default=None, ge=0)
    ttl_after_failed_seconds: int | None = Field(default=None, ge=0)
    succeeded_limit: int | None = Field(default=None, ge=1)
    failed_limit: int | None = Field(default=None, ge=1)


class BuildSpec(_Model):
    source: GitSource = Field(default_factory=GitSource)
    strategy: StrategyRef
    output: ImageSpec
    dockerfile: str | None = None
    builder: ImageSpec | None = None
    runtime: RuntimeSpec | None = None
    sources: list[SourceEntry] = Field(default_factory=list)
    param_values: list[ParamValue] = Field(default_factory=list)
    volumes: list[BuildVolume] = Field(default_factory=list)
    timeout_seconds: int | None = Field(default=None, ge=1)
    retention: Retention | None = None


class BuildStatus(_Model):
    registered: ConditionStatus = ConditionStatus.UNKNOWN
    reason: str | None = None
    message: str | None = None
    observed_generation: int = 0


class Build(Resource):
    KIND: ClassVar[Kind] = Kind.BUILD

    spec: BuildSpec
    status: BuildStatus = Field(default_factory=BuildStatus)

    @property
    def cascade_delete(self) -> bool:
        """Whether dependent BuildRuns are explicitly deleted with this Build."""
        value = self.metadata.annotations.get(ANNOTATION_BUILD_RUN_DELETION, "")
        return value.lower() == "true"


# ---------------------------------------------------------------------------
# BuildRun
# ---------------------------------------------------------------------------


class BuildReference(_Model):
    name: str | None = None
    spec: BuildSpec | None = None


class BuildRunSpec(_Model):
    build: BuildReference
    param_values: list[ParamValue] = Field(default_factory=list)
    service_account: str | None = None
    timeout_seconds: int | None = Field(default=None, ge=1)
    output: ImageSpec | None = None
    state: BuildRunSpecState | None = None


class Condition(_Model):
    type: ConditionType = ConditionType.SUCCEEDED
    status: ConditionStatus = ConditionStatus.UNKNOWN
    reason: str = ""
    message: str = ""
    last_transition_time: datetime | None = None


class FailureLocation(_Model):
    job: str | None = None
    step: str | None = None


class FailureDetails(_Model):
    reason: str
    message: str
    location: FailureLocation | None = None


class Platform(_Model):
    os: str
    architecture: str
    variant: str | None = None


class BuildRunResults(_Model):
    image_digest: str | None = None
    image_size: int | None = None
    platforms: list[Platform] = Field(default_factory=list)
    source_commit: str | None = None
    source_branch: str | None = None


class BuildRunStatus(_Model):
    phase: BuildRunPhase = BuildRunPhase.PENDING
    conditions: list[Condition] = Field(default_factory=list)
    failure_details: FailureDetails | None = None
    results: BuildRunResults | None = None
    job_name: str | None = None
    build_spec: BuildSpec | None = None
    strategy_kind: str | None = None
    start_time: datetime | None = None
    submitted_time: datetime | None = None
    completion_time: datetime | None = None
    strategy_lookup_attempts: int = 0
    submission_attempts: int = 0

    def get_condition(
        self, condition_type: ConditionType = ConditionType.SUCCEEDED
    ) -> Condition | None:
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None

    def set_condition(
        self,
        status: ConditionStatus,
        reason: str,
        message: str = "",
        *,
        condition_type: ConditionType = ConditionType.SUCCEEDED,
        now: datetime | None = None,
    ) -> None:
        """Upsert a condition; the transition time moves only on status change."""
        now = now or datetime.now(timezone.utc)
        existing = self.get_condition(condition_type)
        if existing is None:
            self.conditions.append(
                Condition(
                    type=condition_type,
                    status=status,
                    reason=reason,
                    message=message,
                    last_transition_time=now,
                )
            )
            return
        if existing.status != status:
            existing.last_transition_time = now
        existing.status = status
        existing.reason = reason
        existing.message = message

    @property
    def succeeded(self) -> ConditionStatus:
        condition = self.get_condition()
        return condition.status if condition else ConditionStatus.UNKNOWN


class BuildRun(Resource):
    KIND: ClassVar[Kind] = Kind.BUILD_RUN

    spec: BuildRunSpec
    status: BuildRunStatus = Field(default_factory=BuildRunStatus)

    @property
    def cancel_requested(self) -> bool:
        return self.spec.state == BuildRunSpecState.CANCELED

    @property
    def is_done(self) -> bool:
        return self.status.phase.is_terminal
