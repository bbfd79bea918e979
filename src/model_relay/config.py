"""Provider configuration for Model Relay.

Config discovery (first match wins):
  1. explicit ``path`` argument
  2. ``./model_relay.yaml``
  3. ``~/.config/model-relay/config.yaml``
  4. Built-in defaults
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from model_relay.types import Provider

_logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Config data structures
# ---------------------------------------------------------------------------

@dataclass
class ProviderConfig:
    """Connection facts for one backend.

    ``aliases`` maps short names to model ids served by this provider.
    ``supports_tools`` / ``supports_thinking`` override the built-in
    strategy flags when not ``None``.
    """

    provider: str = "ollama"
    url: str = "http://localhost:11434/v1"
    api_key: str = "no-key"
    default_model: str = ""
    timeout: float = 120
    connect_timeout: float = 10
    idle_timeout: float = 60
    aliases: dict[str, str] = field(default_factory=dict)
    supports_tools: bool | None = None
    supports_thinking: bool | None = None
    extra_params: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True

    @property
    def provider_id(self) -> Provider:
        return Provider(self.provider)


def _default_providers() -> dict[str, ProviderConfig]:
    return {
        "gemini": ProviderConfig(
            provider="gemini",
            url="https://generativelanguage.googleapis.com",
            api_key="",
            default_model="gemini-2.5-flash",
        ),
        "ollama": ProviderConfig(
            provider="ollama",
            url="http://localhost:11434/v1",
            api_key="ollama",
            default_model="gpt-oss:20b",
            aliases={
                "small": "hopephoto/Qwen3-4B-Instruct-2507_q8:latest",
                "medium": "gpt-oss:20b",
                "large": "qwen3-coder:latest",
            },
        ),
        "lmstudio": ProviderConfig(
            provider="lmstudio",
            url="http://localhost:1234/v1",
            api_key="lm-studio",
            default_model="qwen3-4b-instruct-2507@q8_0",
        ),
    }


@dataclass
class RelayConfig:
    """Top-level config for Model Relay."""

    providers: dict[str, ProviderConfig] = field(default_factory=_default_providers)

    # Local backends first to bound latency and cost
    fallback_order: list[str] = field(
        default_factory=lambda: ["ollama", "lmstudio", "gemini"]
    )

    # Health monitor
    health_ttl: float = 30.0
    health_timeout: float = 5.0

    # Model discovery cache
    discovery_ttl: float = 30.0

    # Conversation loop
    max_tool_rounds: int = 16

    def provider_config(self, provider: Provider | str) -> ProviderConfig | None:
        key = provider.value if isinstance(provider, Provider) else provider
        cfg = self.providers.get(key)
        if cfg is None or not cfg.enabled:
            return None
        return cfg

    @property
    def fallback_providers(self) -> list[Provider]:
        order: list[Provider] = []
        for name in self.fallback_order:
            try:
                order.append(Provider(name))
            except ValueError:
                _logger.warning("Ignoring unknown provider in fallback_order: %s", name)
        return order


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

_SEARCH_PATHS = [
    Path("./model_relay.yaml"),
    Path.home() / ".config" / "model-relay" / "config.yaml",
]


def _parse_provider(name: str, raw: dict[str, Any]) -> ProviderConfig:
    base = _default_providers().get(name, ProviderConfig(provider=name))
    values: dict[str, Any] = {"provider": name}
    for k, v in raw.items():
        if v is not None and k in ProviderConfig.__dataclass_fields__:
            values[k] = v
    merged = {
        k: getattr(base, k) for k in ProviderConfig.__dataclass_fields__
    }
    merged.update(values)
    return ProviderConfig(**merged)


def load_config(path: str | Path | None = None) -> RelayConfig:
    """Load configuration from YAML.

    Parameters
    ----------
    path:
        Explicit config path.  If *None*, search default locations.

    Returns
    -------
    RelayConfig
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            _logger.warning("Config file not found: %s, using defaults", path)
            return RelayConfig()
    else:
        for candidate in _SEARCH_PATHS:
            if candidate.exists():
                config_path = candidate
                break

    if config_path is None:
        _logger.info("No config file found, using defaults")
        return RelayConfig()

    _logger.info("Loading config from %s", config_path)
    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    providers = _default_providers()
    for name, praw in (raw.get("providers") or {}).items():
        try:
            Provider(name)
        except ValueError:
            _logger.warning("Ignoring unknown provider in config: %s", name)
            continue
        providers[name] = _parse_provider(name, praw or {})

    defaults = RelayConfig()
    return RelayConfig(
        providers=providers,
        fallback_order=raw.get("fallback_order", defaults.fallback_order),
        health_ttl=raw.get("health_ttl", defaults.health_ttl),
        health_timeout=raw.get("health_timeout", defaults.health_timeout),
        discovery_ttl=raw.get("discovery_ttl", defaults.discovery_ttl),
        max_tool_rounds=raw.get("max_tool_rounds", defaults.max_tool_rounds),
    )
