"""Per-backend facts for the OpenAI-compatible adapter.

Ollama and LM Studio speak the same chat-completions dialect but differ in
where they report health, how they list models and what they can do.  Those
differences live here as data so the adapter has no per-provider branches.
"""

from __future__ import annotations

from dataclasses import dataclass

from model_relay.config import ProviderConfig
from model_relay.types import Provider


@dataclass(frozen=True)
class CompatibleStrategy:
    provider: Provider
    base_url: str
    api_key: str = "no-key"
    supports_tools: bool = True
    supports_thinking: bool = False
    # Path probed for reachability, relative to ``root_url``
    health_path: str = "/v1/models"
    # "openai" lists ``/models``; "ollama" lists native ``/api/tags`` first
    native_api: str = "openai"

    @property
    def root_url(self) -> str:
        """Server root with any trailing ``/v1`` removed."""
        return self.base_url.rstrip("/").removesuffix("/v1")

    @property
    def health_url(self) -> str:
        return self.root_url + self.health_path

    @classmethod
    def for_ollama(cls, base_url: str = "http://localhost:11434/v1", api_key: str = "ollama") -> "CompatibleStrategy":
        return cls(
            provider=Provider.OLLAMA,
            base_url=base_url,
            api_key=api_key,
            supports_tools=True,
            supports_thinking=True,
            health_path="/api/tags",
            native_api="ollama",
        )

    @classmethod
    def for_lmstudio(cls, base_url: str = "http://localhost:1234/v1", api_key: str = "lm-studio") -> "CompatibleStrategy":
        return cls(
            provider=Provider.LMSTUDIO,
            base_url=base_url,
            api_key=api_key,
            supports_tools=True,
            supports_thinking=False,
            health_path="/v1/models",
            native_api="openai",
        )


_PRESETS = {
    Provider.OLLAMA: CompatibleStrategy.for_ollama,
    Provider.LMSTUDIO: CompatibleStrategy.for_lmstudio,
}


def strategy_for(config: ProviderConfig) -> CompatibleStrategy:
    """Build the strategy for *config*, applying its capability overrides."""
    provider = config.provider_id
    preset = _PRESETS.get(provider)
    if preset is None:
        raise ValueError(f"{provider.value} is not an OpenAI-compatible provider")
    strategy = preset(config.url, config.api_key)
    tools = strategy.supports_tools if config.supports_tools is None else config.supports_tools
    thinking = strategy.supports_thinking if config.supports_thinking is None else config.supports_thinking
    return CompatibleStrategy(
        provider=strategy.provider,
        base_url=strategy.base_url,
        api_key=strategy.api_key,
        supports_tools=tools,
        supports_thinking=thinking,
        health_path=strategy.health_path,
        native_api=strategy.native_api,
    )
