"""Adapter for the hosted Gemini REST API.

Streaming uses ``:streamGenerateContent?alt=sse``; each SSE ``data:`` line
is one ``GenerateContentResponse`` object.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from model_relay.config import ProviderConfig
from model_relay.errors import ProviderConnectionError
from model_relay.events import ToolCallRequest, ToolCallResult
from model_relay.specifier import HOSTED_ALIASES, resolve_hosted_alias
from model_relay.tools.bridge import hosted_model_content, hosted_tool_content
from model_relay.tools.schema import ToolDefinition, hosted_tools
from model_relay.types import HealthRecord, ModelInfo, Provider

from .base import FailureHook, ProviderAdapter, Session
from .normalizer import HostedStreamNormalizer, StreamNormalizer

_logger = logging.getLogger(__name__)

API_VERSION = "v1beta"
_MODEL_PREFIX = "models/"
# Upper bound on pages fetched when listing models
_MAX_LIST_PAGES = 10


class HostedSession(Session):
    """Gemini session; history is a list of ``contents`` entries."""

    def __init__(
        self,
        model: str,
        client: httpx.AsyncClient,
        system_prompt: str = "",
        tools: tuple[ToolDefinition, ...] = (),
        extra_params: dict[str, Any] | None = None,
        include_thoughts: bool = False,
        on_failure: FailureHook | None = None,
    ) -> None:
        super().__init__(
            Provider.GEMINI, model, client,
            system_prompt=system_prompt, tools=tools, on_failure=on_failure,
        )
        self.extra_params = dict(extra_params or {})
        self.include_thoughts = include_thoughts

    def _new_normalizer(self) -> StreamNormalizer:
        return HostedStreamNormalizer()

    def _user_message(self, text: str) -> dict[str, Any]:
        return {"role": "user", "parts": [{"text": text}]}

    def _assistant_message(
        self, content: str, requests: list[ToolCallRequest],
    ) -> dict[str, Any]:
        return hosted_model_content(content, requests)

    def _tool_messages(self, results: list[ToolCallResult]) -> list[dict[str, Any]]:
        if not results:
            return []
        return [hosted_tool_content(results)]

    def _request(self) -> tuple[str, dict[str, Any], dict[str, Any]]:
        payload: dict[str, Any] = {"contents": list(self.history)}
        if self.system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": self.system_prompt}]}
        declarations = hosted_tools(self.tools)
        if declarations:
            payload["tools"] = declarations
        if self.include_thoughts:
            gen = payload.setdefault("generationConfig", {})
            gen["thinkingConfig"] = {"includeThoughts": True}
        for key, value in self.extra_params.items():
            if isinstance(value, dict) and isinstance(payload.get(key), dict):
                payload[key] = {**payload[key], **value}
            else:
                payload[key] = value
        url = f"/{API_VERSION}/models/{self.model}:streamGenerateContent"
        return url, {"alt": "sse"}, payload


class HostedAdapter(ProviderAdapter):
    """Google Gemini over its public REST API."""

    provider = Provider.GEMINI

    def __init__(
        self,
        config: ProviderConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(config, transport=transport)

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = self._make_client(
                self.config.url.rstrip("/"),
                {
                    "x-goog-api-key": self.config.api_key,
                    "Content-Type": "application/json",
                },
            )
        return self._client

    def resolve_model(self, name: str) -> str:
        return resolve_hosted_alias(super().resolve_model(name))

    def aliases_for(self, model_id: str) -> frozenset[str]:
        static = {alias for alias, target in HOSTED_ALIASES.items() if target == model_id}
        return super().aliases_for(model_id) | static

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def open_session(
        self,
        model: str,
        system_prompt: str = "",
        tools: tuple[ToolDefinition, ...] = (),
    ) -> HostedSession:
        record = await self.check_health()
        if not record.is_healthy:
            raise ProviderConnectionError(self.provider.value, record.error or "unreachable")
        return HostedSession(
            self.resolve_model(model),
            self.client,
            system_prompt=system_prompt,
            tools=tools,
            extra_params=self.config.extra_params,
            include_thoughts=bool(self.config.supports_thinking),
            on_failure=self.on_failure,
        )

    # ------------------------------------------------------------------
    # Discovery / health
    # ------------------------------------------------------------------

    async def check_health(self) -> HealthRecord:
        if not self.config.api_key:
            return HealthRecord(provider=self.provider, is_healthy=False, error="No API key configured")
        record = await self._probe(f"/{API_VERSION}/models", params={"pageSize": 1})
        if not record.is_healthy:
            _logger.warning("gemini health check failed: %s", record.error)
        return record

    async def list_models(self) -> list[ModelInfo]:
        if not self.config.api_key:
            return []
        models: list[ModelInfo] = []
        page_token = ""
        for _ in range(_MAX_LIST_PAGES):
            params: dict[str, Any] = {"pageSize": 100}
            if page_token:
                params["pageToken"] = page_token
            try:
                resp = await self.client.get(f"/{API_VERSION}/models", params=params)
                resp.raise_for_status()
                data = resp.json()
                listed = data.get("models") or []
                page_token = data.get("nextPageToken") or ""
            except (httpx.HTTPError, ValueError, AttributeError) as e:
                _logger.warning("Model listing failed on gemini: %s", e)
                return models
            if not isinstance(listed, list) or not isinstance(page_token, str):
                _logger.warning("Unexpected model listing shape from gemini")
                return models
            for raw in listed:
                info = self._model_info(raw) if isinstance(raw, dict) else None
                if info is not None:
                    models.append(info)
            if not page_token:
                break
        return models

    def _model_info(self, raw: dict[str, Any]) -> ModelInfo | None:
        methods = raw.get("supportedGenerationMethods") or []
        name = raw.get("name")
        if not isinstance(methods, list) or "generateContent" not in methods:
            return None
        if not isinstance(name, str):
            return None
        model_id = name.removeprefix(_MODEL_PREFIX)
        if not model_id:
            return None
        display_name = raw.get("displayName")
        return ModelInfo(
            id=model_id,
            display_name=display_name if isinstance(display_name, str) and display_name else model_id,
            provider=self.provider,
            aliases=self.aliases_for(model_id),
            tool_capable=True,
            reasoning_capable=bool(raw.get("thinking")),
        )
