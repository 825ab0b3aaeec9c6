"""Build strategy resolution: namespace scope first, then cluster scope."""

from __future__ import annotations

import structlog
from pydantic import BaseModel, ConfigDict

from buildforge.core.constants import BuildReason, Kind, StrategyScope
from buildforge.core.exceptions import (
    NotFoundError,
    ReferencedStrategyNotFoundError,
    UnknownStrategyKindError,
)
from buildforge.core.types import BuildStrategy, ClusterBuildStrategy
from buildforge.store.base import ObjectStore

logger = structlog.get_logger(__name__)


class ResolvedStrategy(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    strategy: BuildStrategy | ClusterBuildStrategy
    scope: StrategyScope

    @property
    def kind(self) -> Kind:
        return self.strategy.KIND


class StrategyResolver:
    """Looks up a named build strategy.

    With no explicit kind, a namespaced :class:`BuildStrategy` of the given
    name always wins over a :class:`ClusterBuildStrategy` of the same name.
    Nothing is cached between calls; the store is the source of truth.
    """

    def __init__(self, client: ObjectStore) -> None:
        self._client = client

    async def resolve(
        self, namespace: str, name: str, kind: str | None = None
    ) -> ResolvedStrategy:
        """Resolve strategy *name* as seen from *namespace*.

        Args:
            namespace: Namespace of the Build referencing the strategy.
            name: Strategy name.
            kind: ``BuildStrategy`` or ``ClusterBuildStrategy`` to restrict
                the lookup to one scope; ``None`` searches both.

        Raises:
            ReferencedStrategyNotFoundError: No matching strategy exists in
                the searched scope(s).
            UnknownStrategyKindError: *kind* is not a strategy kind.
        """
        if kind is None:
            found = await self._namespaced(namespace, name) or await self._cluster(name)
            if found is None:
                raise ReferencedStrategyNotFoundError(
                    BuildReason.REFERENCED_STRATEGY_NOT_FOUND,
                    name,
                    [f"{StrategyScope.NAMESPACE}({namespace})", str(StrategyScope.CLUSTER)],
                )
            return found

        if kind == Kind.BUILD_STRATEGY:
            found = await self._namespaced(namespace, name)
            if found is None:
                raise ReferencedStrategyNotFoundError(
                    BuildReason.BUILD_STRATEGY_NOT_FOUND,
                    name,
                    [f"{StrategyScope.NAMESPACE}({namespace})"],
                )
            return found

        if kind == Kind.CLUSTER_BUILD_STRATEGY:
            found = await self._cluster(name)
            if found is None:
                raise ReferencedStrategyNotFoundError(
                    BuildReason.CLUSTER_BUILD_STRATEGY_NOT_FOUND,
                    name,
                    [str(StrategyScope.CLUSTER)],
                )
            return found

        raise UnknownStrategyKindError(kind)

    async def _namespaced(self, namespace: str, name: str) -> ResolvedStrategy | None:
        try:
            strategy = await self._client.get(BuildStrategy, namespace, name)
        except NotFoundError:
            return None
        logger.debug("strategy_resolved", name=name, scope="namespace", namespace=namespace)
        return ResolvedStrategy(strategy=strategy, scope=StrategyScope.NAMESPACE)

    async def _cluster(self, name: str) -> ResolvedStrategy | None:
        try:
            strategy = await self._client.get(ClusterBuildStrategy, None, name)
        except NotFoundError:
            return None
        logger.debug("strategy_resolved", name=name, scope="cluster")
        return ResolvedStrategy(strategy=strategy, scope=StrategyScope.CLUSTER)
