"""Adapter for OpenAI-compatible local servers (Ollama, LM Studio)."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from model_relay.config import ProviderConfig
from model_relay.errors import ProviderConnectionError
from model_relay.events import ToolCallRequest, ToolCallResult
from model_relay.tools.bridge import compatible_assistant_message, compatible_tool_message
from model_relay.tools.schema import ToolDefinition, compatible_tools
from model_relay.types import HealthRecord, ModelInfo

from .base import FailureHook, ProviderAdapter, Session
from .normalizer import CompatibleStreamNormalizer, StreamNormalizer
from .strategy import CompatibleStrategy, strategy_for
from .thinking import ThinkingExtractor, ThinkingMode

_logger = logging.getLogger(__name__)


class CompatibleSession(Session):
    """Chat-completions session; history is a list of OpenAI messages."""

    def __init__(
        self,
        strategy: CompatibleStrategy,
        model: str,
        client: httpx.AsyncClient,
        system_prompt: str = "",
        tools: tuple[ToolDefinition, ...] = (),
        extra_params: dict[str, Any] | None = None,
        on_failure: FailureHook | None = None,
    ) -> None:
        super().__init__(
            strategy.provider, model, client,
            system_prompt=system_prompt, tools=tools, on_failure=on_failure,
        )
        self.strategy = strategy
        self.extra_params = dict(extra_params or {})

    def _new_normalizer(self) -> StreamNormalizer:
        mode = ThinkingMode.SEPARATED if self.strategy.supports_thinking else ThinkingMode.INLINE
        return CompatibleStreamNormalizer(ThinkingExtractor(mode))

    def _user_message(self, text: str) -> dict[str, Any]:
        return {"role": "user", "content": text}

    def _assistant_message(
        self, content: str, requests: list[ToolCallRequest],
    ) -> dict[str, Any]:
        return compatible_assistant_message(content, requests)

    def _tool_messages(self, results: list[ToolCallResult]) -> list[dict[str, Any]]:
        return [compatible_tool_message(r) for r in results]

    def _request(self) -> tuple[str, dict[str, Any], dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.extend(self.history)
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "stream": True,
        }
        if self.tools and self.strategy.supports_tools:
            payload["tools"] = compatible_tools(self.tools)
        if self.extra_params:
            payload.update(self.extra_params)
        return "/chat/completions", {}, payload


class CompatibleAdapter(ProviderAdapter):
    """One OpenAI-compatible backend, described by a :class:`CompatibleStrategy`.

    Parameters
    ----------
    config:
        Provider settings (url, credential, timeouts, aliases).
    strategy:
        Backend facts.  Built from *config* when omitted.
    transport:
        Optional httpx transport, e.g. ``httpx.MockTransport`` in tests.
    """

    def __init__(
        self,
        config: ProviderConfig,
        strategy: CompatibleStrategy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(config, transport=transport)
        self.strategy = strategy or strategy_for(config)
        self.provider = self.strategy.provider

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = self._make_client(
                self.strategy.base_url,
                {
                    "Authorization": f"Bearer {self.strategy.api_key}",
                    "Content-Type": "application/json",
                },
            )
        return self._client

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def open_session(
        self,
        model: str,
        system_prompt: str = "",
        tools: tuple[ToolDefinition, ...] = (),
    ) -> CompatibleSession:
        record = await self.check_health()
        if not record.is_healthy:
            raise ProviderConnectionError(self.provider.value, record.error or "unreachable")
        if tools and not self.strategy.supports_tools:
            _logger.info(
                "%s does not support tools; %d tool(s) will not be sent",
                self.provider.value, len(tools),
            )
        return CompatibleSession(
            self.strategy,
            self.resolve_model(model),
            self.client,
            system_prompt=system_prompt,
            tools=tools,
            extra_params=self.config.extra_params,
            on_failure=self.on_failure,
        )

    # ------------------------------------------------------------------
    # Discovery / health
    # ------------------------------------------------------------------

    async def check_health(self) -> HealthRecord:
        record = await self._probe(self.strategy.health_url)
        if not record.is_healthy:
            _logger.warning("%s health check failed: %s", self.provider.value, record.error)
        return record

    async def list_models(self) -> list[ModelInfo]:
        ids: list[str] | None = None
        if self.strategy.native_api == "ollama":
            ids = await self._list_native()
        if ids is None:
            ids = await self._list_openai()
        if ids is None:
            return []
        return [
            ModelInfo(
                id=model_id,
                display_name=model_id,
                provider=self.provider,
                aliases=self.aliases_for(model_id),
                tool_capable=self.strategy.supports_tools,
                reasoning_capable=self.strategy.supports_thinking,
            )
            for model_id in ids
        ]

    async def _list_native(self) -> list[str] | None:
        """Ollama ``/api/tags``; ``None`` means fall back to ``/models``."""
        try:
            resp = await self.client.get(self.strategy.root_url + "/api/tags")
            resp.raise_for_status()
            models = resp.json().get("models") or []
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            _logger.debug("Native model listing failed on %s: %s", self.provider.value, e)
            return None
        return [m["name"] for m in models if isinstance(m, dict) and m.get("name")]

    async def _list_openai(self) -> list[str] | None:
        try:
            resp = await self.client.get("/models")
            resp.raise_for_status()
            data = resp.json().get("data") or []
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            _logger.warning("Model listing failed on %s: %s", self.provider.value, e)
            return None
        return [m["id"] for m in data if isinstance(m, dict) and m.get("id")]
