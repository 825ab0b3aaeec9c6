"""Object store contract and the in-memory implementation."""

from buildforge.store.base import ObjectStore, WatchEvent, WatchEventType
from buildforge.store.memory import InMemoryObjectStore

__all__ = ["InMemoryObjectStore", "ObjectStore", "WatchEvent", "WatchEventType"]
