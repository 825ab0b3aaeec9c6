"""Registry of object types and their group/version/kind."""

from __future__ import annotations

from pydantic import BaseModel

from buildforge.core.constants import API_VERSION
from buildforge.core.exceptions import ConfigurationError
from buildforge.core.types import (
    Build,
    BuildRun,
    BuildStrategy,
    ClusterBuildStrategy,
    OwnerReference,
    Resource,
    Secret,
)


class GroupVersionKind(BaseModel):
    group: str
    version: str
    kind: str

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version


class Scheme:
    """Maps resource classes to their group/version/kind.

    Used to stamp owner references with the owner's API version and kind
    without hard-coding them at every call site.
    """

    def __init__(self) -> None:
        self._kinds: dict[type[Resource], GroupVersionKind] = {}

    def register(self, resource_type: type[Resource], api_version: str) -> None:
        group, _, version = api_version.rpartition("/")
        self._kinds[resource_type] = GroupVersionKind(
            group=group, version=version, kind=str(resource_type.KIND)
        )

    def object_kind(self, obj: Resource) -> GroupVersionKind:
        """Return the GVK of *obj*.

        Raises:
            ConfigurationError: If the object's type was never registered.
        """
        try:
            return self._kinds[type(obj)]
        except KeyError:
            raise ConfigurationError(
                f"type {type(obj).__name__} is not registered in the scheme"
            ) from None

    def owner_reference(self, owner: Resource, *, controller: bool = True) -> OwnerReference:
        gvk = self.object_kind(owner)
        return OwnerReference(
            api_version=gvk.api_version,
            kind=gvk.kind,
            name=owner.metadata.name,
            uid=owner.metadata.uid,
            controller=controller,
            block_owner_deletion=controller,
        )


def default_scheme() -> Scheme:
    scheme = Scheme()
    for resource_type in (Build, BuildRun, BuildStrategy, ClusterBuildStrategy):
        scheme.register(resource_type, API_VERSION)
    scheme.register(Secret, "v1")
    return scheme
