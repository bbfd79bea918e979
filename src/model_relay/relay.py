"""Relay: the entry point tying selection, sessions and the tool loop together.

Usage::

    relay = Relay(load_config())
    conv = await relay.conversation("ollama::gpt-oss:20b", executor, system_prompt=prompt)
    async for event in conv.send("hello"):
        ...
    await relay.aclose()
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from model_relay.config import RelayConfig
from model_relay.core.conversation import Conversation
from model_relay.errors import ProviderConnectionError, RelayError
from model_relay.llm.base import Session
from model_relay.llm.discovery import ModelCatalog
from model_relay.llm.health import HealthMonitor
from model_relay.llm.router import BackendSelector, ProviderRegistry, Selection
from model_relay.specifier import ModelSpecifier, parse_specifier
from model_relay.tools.runner import ToolExecutor, ToolRunner
from model_relay.tools.schema import ToolDefinition, build_tool_set
from model_relay.types import Provider

_logger = logging.getLogger(__name__)

ToolSpec = ToolDefinition | dict[str, Any]


class Relay:
    """Owns the provider registry, health monitor and discovery cache.

    Parameters
    ----------
    config:
        Relay settings; built-in defaults when omitted.
    registry, monitor, catalog:
        Pre-built collaborators (mainly for tests).  Built from *config*
        when omitted.
    """

    def __init__(
        self,
        config: RelayConfig | None = None,
        registry: ProviderRegistry | None = None,
        monitor: HealthMonitor | None = None,
        catalog: ModelCatalog | None = None,
    ) -> None:
        self.config = config or RelayConfig()
        self.registry = registry or ProviderRegistry.from_config(self.config)
        self.monitor = monitor or HealthMonitor(
            self.registry,
            ttl=self.config.health_ttl,
            timeout=self.config.health_timeout,
        )
        self.catalog = catalog or ModelCatalog(self.registry, ttl=self.config.discovery_ttl)
        self.selector = BackendSelector(
            self.registry, self.monitor, self.catalog,
            fallback_order=self.config.fallback_providers,
        )

    @staticmethod
    def _spec(specifier: str | ModelSpecifier) -> ModelSpecifier:
        if isinstance(specifier, ModelSpecifier):
            return specifier
        return parse_specifier(specifier)

    async def select(
        self,
        specifier: str | ModelSpecifier,
        exclude: Iterable[Provider] = (),
    ) -> Selection:
        return await self.selector.select(self._spec(specifier), exclude=exclude)

    async def open_session(
        self,
        specifier: str | ModelSpecifier,
        system_prompt: str = "",
        tools: Iterable[ToolSpec] = (),
        allowed_tools: Iterable[str] | None = None,
    ) -> Session:
        """Select a backend and open a session on it.

        A connection failure while opening is absorbed once: the provider's
        health record is dropped and selection runs again without it.
        """
        spec = self._spec(specifier)
        tool_set = build_tool_set(tools, allowed_tools)

        selection = await self.selector.select(spec)
        try:
            return await self._open(selection, system_prompt, tool_set)
        except ProviderConnectionError as e:
            _logger.warning("Opening %s failed, re-selecting: %s", selection.specifier, e)
            self.monitor.invalidate(selection.provider)
            retry = await self.selector.select(spec, exclude=[selection.provider])
            return await self._open(retry, system_prompt, tool_set)

    async def _open(
        self,
        selection: Selection,
        system_prompt: str,
        tools: tuple[ToolDefinition, ...],
    ) -> Session:
        adapter = self.registry.get(selection.provider)
        if adapter is None:
            raise RelayError(f"No adapter registered for {selection.provider.value}")
        session = await adapter.open_session(selection.model, system_prompt, tools)
        session.selection = selection
        _logger.info(
            "Opened session on %s::%s%s",
            session.provider.value, session.model,
            " (fallback)" if selection.fallback_used else "",
        )
        return session

    async def conversation(
        self,
        specifier: str | ModelSpecifier,
        executor: ToolExecutor,
        system_prompt: str = "",
        tools: Iterable[ToolSpec] = (),
        allowed_tools: Iterable[str] | None = None,
    ) -> Conversation:
        """Open a session and wrap it with a tool-running conversation."""
        allowed = list(allowed_tools) if allowed_tools is not None else None
        session = await self.open_session(specifier, system_prompt, tools, allowed)
        runner = ToolRunner(executor, allowed=allowed if allowed is not None else [t.name for t in session.tools])
        return Conversation(session, runner, max_tool_rounds=self.config.max_tool_rounds)

    async def aclose(self) -> None:
        await self.registry.aclose()
