"""Health monitor: TTL-cached reachability records per provider."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from typing import TYPE_CHECKING, Awaitable, Callable

from model_relay.types import HealthRecord, Provider

if TYPE_CHECKING:
    from .router import ProviderRegistry

_logger = logging.getLogger(__name__)


class HealthMonitor:
    """Caches one :class:`HealthRecord` per provider for *ttl* seconds.

    Records are replaced whole; concurrent checks of the same provider are
    last-writer-wins.  The monitor also registers itself as each adapter's
    failure hook, so a connection failure on a live call drops the cached
    record.

    Parameters
    ----------
    registry:
        Adapters to probe.
    ttl:
        Seconds a record stays fresh.
    timeout:
        Upper bound on one probe; exceeding it yields an unhealthy record.
    clock:
        Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        ttl: float = 30.0,
        timeout: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._registry = registry
        self.ttl = ttl
        self.timeout = timeout
        self._clock = clock
        self._records: dict[Provider, HealthRecord] = {}
        for adapter in registry.adapters():
            adapter.on_failure = self.invalidate

    def cached(self, provider: Provider) -> HealthRecord | None:
        """Fresh cached record, or ``None`` if absent or expired."""
        record = self._records.get(provider)
        if record is None:
            return None
        if self._clock() - record.checked_at >= self.ttl:
            return None
        return record

    async def check(self, provider: Provider, force: bool = False) -> HealthRecord:
        """Return the cached record or probe the provider's adapter."""
        if not force:
            record = self.cached(provider)
            if record is not None:
                return record

        adapter = self._registry.get(provider)
        if adapter is None:
            record = HealthRecord(provider=provider, is_healthy=False, error="No adapter configured")
        else:
            record = await self._probe(provider, adapter.check_health)

        record = dataclasses.replace(record, checked_at=self._clock())
        self._records[provider] = record
        return record

    async def _probe(
        self, provider: Provider, probe: Callable[[], Awaitable[HealthRecord]],
    ) -> HealthRecord:
        try:
            return await asyncio.wait_for(probe(), timeout=self.timeout)
        except asyncio.TimeoutError:
            _logger.warning("Health check for %s timed out after %.1fs", provider.value, self.timeout)
            return HealthRecord(
                provider=provider,
                is_healthy=False,
                error=f"Health check timed out after {self.timeout}s",
            )
        except Exception as e:
            _logger.warning("Health check for %s raised: %s", provider.value, e)
            return HealthRecord(provider=provider, is_healthy=False, error=str(e) or type(e).__name__)

    def invalidate(self, provider: Provider | None = None) -> None:
        """Drop the record for *provider*, or every record when ``None``."""
        if provider is None:
            self._records.clear()
            return
        if self._records.pop(provider, None) is not None:
            _logger.debug("Invalidated health record for %s", provider.value)

    async def check_all(self, force: bool = False) -> dict[Provider, HealthRecord]:
        providers = self._registry.providers
        records = await asyncio.gather(*(self.check(p, force=force) for p in providers))
        return dict(zip(providers, records))

    async def healthy_providers(self) -> list[Provider]:
        records = await self.check_all()
        return [p for p, r in records.items() if r.is_healthy]
