"""Model discovery with a short-lived per-provider cache."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Callable

from model_relay.types import ModelInfo, Provider

if TYPE_CHECKING:
    from .router import ProviderRegistry

_logger = logging.getLogger(__name__)


class ModelCatalog:
    """Caches each provider's ``list_models()`` result for *ttl* seconds.

    Empty listings are not cached: an unreachable provider should be
    asked again on the next lookup.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        ttl: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._registry = registry
        self.ttl = ttl
        self._clock = clock
        self._cache: dict[Provider, tuple[float, list[ModelInfo]]] = {}

    async def models(self, provider: Provider, force: bool = False) -> list[ModelInfo]:
        if not force:
            entry = self._cache.get(provider)
            if entry is not None and self._clock() - entry[0] < self.ttl:
                return list(entry[1])

        adapter = self._registry.get(provider)
        if adapter is None:
            return []
        models = await adapter.list_models()
        _logger.debug("Discovered %d model(s) on %s", len(models), provider.value)
        if models:
            self._cache[provider] = (self._clock(), list(models))
        else:
            self._cache.pop(provider, None)
        return list(models)

    async def find(self, provider: Provider, name: str) -> ModelInfo | None:
        """Exact id/alias match for *name* among *provider*'s models."""
        for info in await self.models(provider):
            if info.matches(name):
                return info
        return None

    def invalidate(self, provider: Provider | None = None) -> None:
        if provider is None:
            self._cache.clear()
        else:
            self._cache.pop(provider, None)
