from __future__ import annotations

from enum import StrEnum
from typing import AsyncIterator, Protocol, TypeVar, runtime_checkable

from pydantic import BaseModel, ConfigDict

from buildforge.core.types import Resource

R = TypeVar("R", bound=Resource)


class WatchEventType(StrEnum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


class WatchEvent(BaseModel):
    """A change notification delivered by :meth:`ObjectStore.watch`."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    type: WatchEventType
    object: Resource


@runtime_checkable
class ObjectStore(Protocol):
    """Structural type for the declarative object store.

    Controllers, validators and the GC manager accept this Protocol so they
    work against any backing store (the in-memory store in tests, a cluster
    API client in production).

    Writes are optimistic: ``update`` and ``update_status`` must carry the
    ``resource_version`` they read and raise
    :class:`~buildforge.core.exceptions.ConflictError` when it is stale.
    """

    async def get(self, kind: type[R], namespace: str | None, name: str) -> R: ...

    async def list(
        self,
        kind: type[R],
        namespace: str | None = None,
        *,
        labels: dict[str, str] | None = None,
        owner_uid: str | None = None,
    ) -> list[R]: ...

    async def create(self, obj: R) -> R: ...

    async def update(self, obj: R) -> R: ...

    async def update_status(self, obj: R) -> R: ...

    async def delete(
        self, kind: type[Resource], namespace: str | None, name: str
    ) -> None: ...

    def watch(self, kind: type[Resource]) -> AsyncIterator[WatchEvent]: ...
