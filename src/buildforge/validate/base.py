"""Base class for Build validators."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import ClassVar

from buildforge.core.constants import ValidationType
from buildforge.core.types import Build
from buildforge.store.base import ObjectStore


class Validator(ABC):
    """One validation concern bound to one Build.

    Validators are stateless apart from their bindings and only read from
    the store, so a fresh instance per check is cheap and they can run
    concurrently from the reconciler and the admission path.
    """

    validation_type: ClassVar[ValidationType]

    def __init__(self, build: Build, client: ObjectStore) -> None:
        self.build = build
        self.client = client

    @property
    def name(self) -> str:
        """Return the validator name (defaults to the class name)."""
        return type(self).__name__

    @property
    def namespace(self) -> str:
        return self.build.metadata.namespace or "default"

    @abstractmethod
    async def validate(self) -> None:
        """Check the bound Build.

        Raises:
            ValidationError: A classified Build spec error describing
                the first problem found.
        """
        ...
