"""In-memory object store with resource versions, watches and owner-reference GC."""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone
from typing import AsyncIterator

import structlog

from buildforge.core.exceptions import AlreadyExistsError, ConflictError, NotFoundError
from buildforge.core.types import Resource
from buildforge.store.base import R, WatchEvent, WatchEventType

logger = structlog.get_logger(__name__)

_Key = tuple[str, str, str]


class InMemoryObjectStore:
    """In-memory object store for tests and local runs.

    Usage::

        store = InMemoryObjectStore()
        build = await store.create(Build(metadata=ObjectMeta(name="b", namespace="ns"), spec=...))
        fetched = await store.get(Build, "ns", "b")

    Objects are copied on the way in and out, so callers never share state
    with the store.  Every write bumps a global resource version; ``update``
    and ``update_status`` reject stale versions with :class:`ConflictError`.

    Args:
        garbage_collect: When ``True`` (default), deleting an object also
            deletes every object whose owner references point at it, the
            way the cluster's garbage collector would.
    """

    def __init__(self, *, garbage_collect: bool = True) -> None:
        self._objects: dict[_Key, Resource] = {}
        self._version = 0
        self._garbage_collect = garbage_collect
        self._watchers: list[tuple[str, asyncio.Queue[WatchEvent | None]]] = []

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    async def get(self, kind: type[R], namespace: str | None, name: str) -> R:
        obj = self._objects.get(self._key(kind, namespace, name))
        if obj is None:
            raise NotFoundError(
                f"{kind.KIND} {self._describe(namespace, name)} not found",
                details={"kind": str(kind.KIND), "namespace": namespace, "name": name},
            )
        return obj.model_copy(deep=True)  # type: ignore[return-value]

    async def list(
        self,
        kind: type[R],
        namespace: str | None = None,
        *,
        labels: dict[str, str] | None = None,
        owner_uid: str | None = None,
    ) -> list[R]:
        result: list[R] = []
        for (kind_name, ns, _), obj in sorted(self._objects.items()):
            if kind_name != kind.KIND:
                continue
            if namespace is not None and ns != namespace:
                continue
            if labels and any(obj.metadata.labels.get(k) != v for k, v in labels.items()):
                continue
            if owner_uid is not None and not any(
                ref.uid == owner_uid for ref in obj.metadata.owner_references
            ):
                continue
            result.append(obj.model_copy(deep=True))  # type: ignore[arg-type]
        return result

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    async def create(self, obj: R) -> R:
        key = self._key(type(obj), obj.metadata.namespace, obj.metadata.name)
        if key in self._objects:
            raise AlreadyExistsError(
                f"{obj.KIND} {self._describe(obj.metadata.namespace, obj.metadata.name)} already exists"
            )
        stored = obj.model_copy(deep=True)
        stored.metadata.uid = stored.metadata.uid or str(uuid.uuid4())
        stored.metadata.generation = 1
        stored.metadata.creation_timestamp = datetime.now(timezone.utc)
        stored.metadata.resource_version = self._next_version()
        self._objects[key] = stored
        self._emit(WatchEventType.ADDED, stored)
        return stored.model_copy(deep=True)

    async def update(self, obj: R) -> R:
        """Replace metadata and spec; status is left untouched."""
        current = self._current_for_write(obj)
        stored = obj.model_copy(deep=True)
        stored.metadata.uid = current.metadata.uid
        stored.metadata.creation_timestamp = current.metadata.creation_timestamp
        stored.metadata.generation = current.metadata.generation
        if _spec_of(stored) != _spec_of(current):
            stored.metadata.generation += 1
        if hasattr(current, "status"):
            stored.status = current.status.model_copy(deep=True)  # type: ignore[attr-defined]
        stored.metadata.resource_version = self._next_version()
        self._objects[self._key(type(obj), obj.metadata.namespace, obj.metadata.name)] = stored
        self._emit(WatchEventType.MODIFIED, stored)
        return stored.model_copy(deep=True)

    async def update_status(self, obj: R) -> R:
        """Replace only the status sub-resource."""
        current = self._current_for_write(obj)
        stored = current.model_copy(deep=True)
        stored.status = obj.status.model_copy(deep=True)  # type: ignore[attr-defined]
        stored.metadata.resource_version = self._next_version()
        self._objects[self._key(type(obj), obj.metadata.namespace, obj.metadata.name)] = stored
        self._emit(WatchEventType.MODIFIED, stored)
        return stored.model_copy(deep=True)

    async def delete(self, kind: type[Resource], namespace: str | None, name: str) -> None:
        key = self._key(kind, namespace, name)
        obj = self._objects.pop(key, None)
        if obj is None:
            raise NotFoundError(f"{kind.KIND} {self._describe(namespace, name)} not found")
        obj.metadata.deletion_timestamp = datetime.now(timezone.utc)
        self._emit(WatchEventType.DELETED, obj)
        if self._garbage_collect:
            self._collect_dependents(obj.metadata.uid)

    # ------------------------------------------------------------------ #
    # Watches
    # ------------------------------------------------------------------ #

    async def watch(self, kind: type[Resource]) -> AsyncIterator[WatchEvent]:
        queue: asyncio.Queue[WatchEvent | None] = asyncio.Queue()
        entry = (str(kind.KIND), queue)
        self._watchers.append(entry)
        try:
            while True:
                event = await queue.get()
                if event is None:
                    return
                yield event
        finally:
            self._watchers.remove(entry)

    def close(self) -> None:
        """End every open watch stream."""
        for _, queue in self._watchers:
            queue.put_nowait(None)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _current_for_write(self, obj: Resource) -> Resource:
        key = self._key(type(obj), obj.metadata.namespace, obj.metadata.name)
        current = self._objects.get(key)
        if current is None:
            raise NotFoundError(
                f"{obj.KIND} {self._describe(obj.metadata.namespace, obj.metadata.name)} not found"
            )
        if obj.metadata.resource_version != current.metadata.resource_version:
            raise ConflictError(
                f"{obj.KIND} {self._describe(obj.metadata.namespace, obj.metadata.name)} "
                f"was modified (have {obj.metadata.resource_version!r}, "
                f"store has {current.metadata.resource_version!r})"
            )
        return current

    def _collect_dependents(self, owner_uid: str) -> None:
        dependents = [
            key
            for key, obj in self._objects.items()
            if any(ref.uid == owner_uid for ref in obj.metadata.owner_references)
        ]
        for key in dependents:
            obj = self._objects.pop(key, None)
            if obj is None:
                continue
            logger.debug("store_garbage_collected", kind=key[0], namespace=key[1], name=key[2])
            obj.metadata.deletion_timestamp = datetime.now(timezone.utc)
            self._emit(WatchEventType.DELETED, obj)
            self._collect_dependents(obj.metadata.uid)

    def _emit(self, event_type: WatchEventType, obj: Resource) -> None:
        for kind_name, queue in self._watchers:
            if kind_name == obj.KIND:
                queue.put_nowait(WatchEvent(type=event_type, object=obj.model_copy(deep=True)))

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    @staticmethod
    def _key(kind: type[Resource], namespace: str | None, name: str) -> _Key:
        return (str(kind.KIND), (namespace or "") if kind.NAMESPACED else "", name)

    @staticmethod
    def _describe(namespace: str | None, name: str) -> str:
        return f"{namespace}/{name}" if namespace else name


def _spec_of(obj: Resource) -> object:
    spec = getattr(obj, "spec", None)
    return spec.model_dump() if spec is not None else None
