"""Provider registry and backend selection with fallback.

Selection is the only place that may answer a request with a provider other
than the one the caller asked for, and it never substitutes a different
model: a fallback candidate must serve the requested name exactly (by id or
alias).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Mapping

import httpx

from model_relay.config import RelayConfig
from model_relay.errors import NoProviderAvailable, ProviderConnectionError
from model_relay.specifier import ModelSpecifier
from model_relay.types import Provider

from .base import ProviderAdapter
from .compatible import CompatibleAdapter
from .discovery import ModelCatalog
from .health import HealthMonitor
from .hosted import HostedAdapter

_logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class ProviderRegistry:
    """Explicitly constructed map of provider -> adapter.

    Usage::

        registry = ProviderRegistry.from_config(config)
        adapter = registry.get(Provider.OLLAMA)
    """

    def __init__(self, adapters: Iterable[ProviderAdapter] = ()) -> None:
        self._adapters: dict[Provider, ProviderAdapter] = {}
        for adapter in adapters:
            self.register(adapter)

    @classmethod
    def from_config(
        cls,
        config: RelayConfig,
        transports: Mapping[Provider, httpx.AsyncBaseTransport] | None = None,
    ) -> "ProviderRegistry":
        """One adapter per enabled provider in *config*."""
        transports = transports or {}
        registry = cls()
        for provider in Provider:
            pcfg = config.provider_config(provider)
            if pcfg is None:
                continue
            transport = transports.get(provider)
            if provider is Provider.GEMINI:
                registry.register(HostedAdapter(pcfg, transport=transport))
            else:
                registry.register(CompatibleAdapter(pcfg, transport=transport))
        return registry

    def register(self, adapter: ProviderAdapter) -> None:
        if adapter.provider in self._adapters:
            _logger.debug("Replacing adapter for %s", adapter.provider.value)
        self._adapters[adapter.provider] = adapter

    def get(self, provider: Provider) -> ProviderAdapter | None:
        return self._adapters.get(provider)

    def __contains__(self, provider: object) -> bool:
        return provider in self._adapters

    def __iter__(self) -> Iterator[Provider]:
        return iter(self._adapters)

    @property
    def providers(self) -> list[Provider]:
        return list(self._adapters)

    def adapters(self) -> list[ProviderAdapter]:
        return list(self._adapters.values())

    async def aclose(self) -> None:
        for adapter in self._adapters.values():
            await adapter.aclose()


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------

@dataclass
class Selection:
    """Outcome of :meth:`BackendSelector.select`."""

    provider: Provider
    model: str
    fallback_used: bool = False
    reason: str = ""
    attempted: list[Provider] = field(default_factory=list)

    @property
    def specifier(self) -> ModelSpecifier:
        return ModelSpecifier(self.provider, self.model)


class BackendSelector:
    """Choose a live provider for a :class:`ModelSpecifier`.

    Parameters
    ----------
    registry:
        Configured adapters.
    monitor:
        Health cache consulted for every candidate.
    catalog:
        Model discovery used to match the requested name on fallbacks.
    fallback_order:
        Providers to try, in order, when the requested one is unhealthy.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        monitor: HealthMonitor,
        catalog: ModelCatalog,
        fallback_order: Iterable[Provider] = (Provider.OLLAMA, Provider.LMSTUDIO, Provider.GEMINI),
    ) -> None:
        self._registry = registry
        self._monitor = monitor
        self._catalog = catalog
        self.fallback_order = list(fallback_order)

    async def select(
        self,
        spec: ModelSpecifier,
        exclude: Iterable[Provider] = (),
    ) -> Selection:
        """Return the requested provider if healthy, else the first fallback
        that serves the same model.

        Raises
        ------
        NoProviderAvailable
            Nothing healthy serves the requested model.
        """
        excluded = set(exclude)
        requested = spec.provider
        attempts: dict[str, str] = {}
        attempted: list[Provider] = []

        if requested in excluded:
            attempts[requested.value] = "excluded after connection failure"
        elif requested not in self._registry:
            attempts[requested.value] = "provider not configured"
        else:
            attempted.append(requested)
            record = await self._monitor.check(requested)
            if record.is_healthy:
                _logger.debug("Selected %s::%s", requested.value, spec.model)
                return Selection(requested, spec.model, attempted=attempted)
            attempts[requested.value] = record.error or "unhealthy"

        for candidate in self.fallback_order:
            if candidate is requested or candidate in excluded or candidate not in self._registry:
                continue
            attempted.append(candidate)
            try:
                record = await self._monitor.check(candidate)
                if not record.is_healthy:
                    attempts[candidate.value] = record.error or "unhealthy"
                    continue
                info = await self._catalog.find(candidate, spec.model)
            except ProviderConnectionError as e:
                self._monitor.invalidate(candidate)
                attempts[candidate.value] = str(e)
                continue
            if info is None:
                attempts[candidate.value] = f"model '{spec.model}' not available"
                continue

            reason = (
                f"{requested.value} unavailable ({attempts[requested.value]}); "
                f"using {candidate.value}::{info.id}"
            )
            _logger.info("Fallback: %s", reason)
            return Selection(
                candidate, info.id,
                fallback_used=True, reason=reason, attempted=attempted,
            )

        _logger.warning("No provider available for %s: %s", spec, attempts)
        raise NoProviderAvailable(str(spec), attempts)
