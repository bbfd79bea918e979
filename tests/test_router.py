"""Tests for the provider registry and backend selection."""

import httpx
import pytest

from model_relay.config import RelayConfig
from model_relay.errors import NoProviderAvailable, ProviderConnectionError
from model_relay.llm.compatible import CompatibleAdapter
from model_relay.llm.discovery import ModelCatalog
from model_relay.llm.health import HealthMonitor
from model_relay.llm.hosted import HostedAdapter
from model_relay.llm.router import BackendSelector, ProviderRegistry
from model_relay.specifier import parse_specifier
from model_relay.types import HealthRecord, ModelInfo, Provider


class FakeAdapter:
    def __init__(self, provider, healthy=True, models=(), list_error=None):
        self.provider = provider
        self.healthy = healthy
        self.models = [
            ModelInfo(id=m, display_name=m, provider=provider) if isinstance(m, str) else m
            for m in models
        ]
        self.list_error = list_error
        self.on_failure = None

    async def check_health(self):
        return HealthRecord(
            provider=self.provider,
            is_healthy=self.healthy,
            error=None if self.healthy else f"{self.provider.value} down",
        )

    async def list_models(self):
        if self.list_error is not None:
            raise self.list_error
        return list(self.models)

    async def aclose(self):
        pass


def _selector(*adapters, order=(Provider.OLLAMA, Provider.LMSTUDIO, Provider.GEMINI)):
    registry = ProviderRegistry(adapters)
    monitor = HealthMonitor(registry)
    return BackendSelector(registry, monitor, ModelCatalog(registry), fallback_order=order), monitor


class TestRegistry:
    def test_from_config_builds_enabled_adapters(self):
        config = RelayConfig()
        config.providers["lmstudio"].enabled = False
        registry = ProviderRegistry.from_config(config)
        assert registry.providers == [Provider.GEMINI, Provider.OLLAMA]
        assert isinstance(registry.get(Provider.GEMINI), HostedAdapter)
        assert isinstance(registry.get(Provider.OLLAMA), CompatibleAdapter)
        assert Provider.LMSTUDIO not in registry

    def test_from_config_with_transports(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200))
        registry = ProviderRegistry.from_config(RelayConfig(), transports={Provider.OLLAMA: transport})
        assert registry.get(Provider.OLLAMA)._transport is transport

    async def test_aclose(self):
        registry = ProviderRegistry.from_config(RelayConfig())
        await registry.aclose()


class TestSelect:
    async def test_requested_provider_healthy(self):
        selector, _ = _selector(FakeAdapter(Provider.OLLAMA), FakeAdapter(Provider.GEMINI))
        sel = await selector.select(parse_specifier("ollama::qwen3:8b"))
        assert (sel.provider, sel.model, sel.fallback_used) == (Provider.OLLAMA, "qwen3:8b", False)
        assert sel.attempted == [Provider.OLLAMA]

    async def test_fallback_to_provider_serving_same_model(self):
        selector, _ = _selector(
            FakeAdapter(Provider.OLLAMA, healthy=False),
            FakeAdapter(Provider.LMSTUDIO, models=["other-model"]),
            FakeAdapter(Provider.GEMINI, models=["qwen3:8b"]),
        )
        sel = await selector.select(parse_specifier("ollama::qwen3:8b"))
        assert sel.provider is Provider.GEMINI
        assert sel.model == "qwen3:8b"
        assert sel.fallback_used
        assert "ollama down" in sel.reason
        assert sel.attempted == [Provider.OLLAMA, Provider.LMSTUDIO, Provider.GEMINI]

    async def test_fallback_matches_alias(self):
        selector, _ = _selector(
            FakeAdapter(Provider.GEMINI, healthy=False),
            FakeAdapter(Provider.OLLAMA, models=[
                ModelInfo(id="gpt-oss:20b", display_name="gpt-oss", provider=Provider.OLLAMA,
                          aliases=frozenset({"gemini-2.5-flash"})),
            ]),
        )
        sel = await selector.select(parse_specifier("flash"))
        assert sel.provider is Provider.OLLAMA
        assert sel.model == "gpt-oss:20b"

    async def test_local_preferred_by_default(self):
        selector, _ = _selector(
            FakeAdapter(Provider.LMSTUDIO, healthy=False),
            FakeAdapter(Provider.GEMINI, models=["m"]),
            FakeAdapter(Provider.OLLAMA, models=["m"]),
        )
        sel = await selector.select(parse_specifier("lmstudio::m"))
        assert sel.provider is Provider.OLLAMA

    async def test_order_is_configurable(self):
        selector, _ = _selector(
            FakeAdapter(Provider.LMSTUDIO, healthy=False),
            FakeAdapter(Provider.GEMINI, models=["m"]),
            FakeAdapter(Provider.OLLAMA, models=["m"]),
            order=[Provider.GEMINI, Provider.OLLAMA],
        )
        sel = await selector.select(parse_specifier("lmstudio::m"))
        assert sel.provider is Provider.GEMINI

    async def test_never_substitutes_unrelated_model(self):
        selector, _ = _selector(
            FakeAdapter(Provider.OLLAMA, healthy=False),
            FakeAdapter(Provider.LMSTUDIO, models=["qwen3:8b-instruct", "qwen3"]),
        )
        with pytest.raises(NoProviderAvailable) as exc:
            await selector.select(parse_specifier("ollama::qwen3:8b"))
        assert set(exc.value.attempts) == {"ollama", "lmstudio"}
        assert "not available" in exc.value.attempts["lmstudio"]

    async def test_no_provider_lists_every_error(self):
        selector, _ = _selector(
            FakeAdapter(Provider.OLLAMA, healthy=False),
            FakeAdapter(Provider.LMSTUDIO, healthy=False),
            FakeAdapter(Provider.GEMINI, healthy=False),
        )
        with pytest.raises(NoProviderAvailable) as exc:
            await selector.select(parse_specifier("ollama::m"))
        assert exc.value.attempts == {
            "ollama": "ollama down",
            "lmstudio": "lmstudio down",
            "gemini": "gemini down",
        }
        assert exc.value.requested == "ollama::m"

    async def test_unconfigured_requested_provider_falls_back(self):
        selector, _ = _selector(FakeAdapter(Provider.OLLAMA, models=["m"]))
        sel = await selector.select(parse_specifier("lmstudio::m"))
        assert sel.provider is Provider.OLLAMA
        assert "not configured" in sel.reason

    async def test_excluded_provider_skipped(self):
        selector, _ = _selector(
            FakeAdapter(Provider.OLLAMA, models=["m"]),
            FakeAdapter(Provider.GEMINI, models=["m"]),
        )
        sel = await selector.select(parse_specifier("ollama::m"), exclude=[Provider.OLLAMA])
        assert sel.provider is Provider.GEMINI
        assert sel.fallback_used

    async def test_connection_error_on_candidate_absorbed(self):
        flaky = FakeAdapter(Provider.LMSTUDIO, list_error=ProviderConnectionError("lmstudio", "reset"))
        selector, monitor = _selector(
            FakeAdapter(Provider.OLLAMA, healthy=False),
            flaky,
            FakeAdapter(Provider.GEMINI, models=["m"]),
        )
        sel = await selector.select(parse_specifier("ollama::m"))
        assert sel.provider is Provider.GEMINI
        assert monitor.cached(Provider.LMSTUDIO) is None

    async def test_selection_specifier(self):
        selector, _ = _selector(FakeAdapter(Provider.OLLAMA))
        sel = await selector.select(parse_specifier("ollama::x"))
        assert str(sel.specifier) == "ollama::x"
