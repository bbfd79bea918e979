"""Tests for configuration loading."""

from pathlib import Path

import pytest
import yaml

from model_relay.config import ProviderConfig, RelayConfig, load_config
from model_relay.types import Provider


def _write(tmp_path: Path, data: dict) -> Path:
    path = tmp_path / "model_relay.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


class TestDefaults:
    def test_builtin_providers(self):
        config = RelayConfig()
        assert set(config.providers) == {"gemini", "ollama", "lmstudio"}
        assert config.providers["gemini"].url == "https://generativelanguage.googleapis.com"
        assert config.providers["ollama"].url == "http://localhost:11434/v1"
        assert config.providers["lmstudio"].url == "http://localhost:1234/v1"
        assert set(config.providers["ollama"].aliases) == {"small", "medium", "large"}

    def test_fallback_and_limits(self):
        config = RelayConfig()
        assert config.fallback_providers == [Provider.OLLAMA, Provider.LMSTUDIO, Provider.GEMINI]
        assert config.health_ttl == 30.0
        assert config.health_timeout == 5.0
        assert config.max_tool_rounds == 16

    def test_disabled_provider_hidden(self):
        config = RelayConfig()
        config.providers["gemini"].enabled = False
        assert config.provider_config(Provider.GEMINI) is None
        assert config.provider_config("ollama") is not None

    def test_unknown_fallback_entry_ignored(self):
        config = RelayConfig(fallback_order=["gemini", "openai", "ollama"])
        assert config.fallback_providers == [Provider.GEMINI, Provider.OLLAMA]

    def test_provider_id(self):
        assert ProviderConfig(provider="lmstudio").provider_id is Provider.LMSTUDIO


class TestLoad:
    def test_missing_explicit_path_uses_defaults(self, tmp_path):
        config = load_config(tmp_path / "nope.yaml")
        assert config.fallback_order == RelayConfig().fallback_order

    def test_no_file_found(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr("model_relay.config._SEARCH_PATHS", [tmp_path / "absent.yaml"])
        assert load_config().providers["gemini"].default_model == "gemini-2.5-flash"

    def test_search_path_found(self, tmp_path, monkeypatch):
        path = _write(tmp_path, {"max_tool_rounds": 4})
        monkeypatch.setattr("model_relay.config._SEARCH_PATHS", [path])
        assert load_config().max_tool_rounds == 4

    def test_provider_override_merges_with_defaults(self, tmp_path):
        path = _write(tmp_path, {
            "providers": {
                "ollama": {"url": "http://gpu-box:11434/v1", "supports_thinking": False},
                "gemini": {"api_key": "secret", "aliases": {"demo": "gemini-2.5-pro"}},
            },
            "fallback_order": ["gemini", "ollama"],
            "health_ttl": 10,
        })
        config = load_config(path)
        ollama = config.providers["ollama"]
        assert ollama.url == "http://gpu-box:11434/v1"
        assert ollama.supports_thinking is False
        assert ollama.api_key == "ollama"
        assert "medium" in ollama.aliases
        assert config.providers["gemini"].api_key == "secret"
        assert config.providers["gemini"].aliases == {"demo": "gemini-2.5-pro"}
        assert config.providers["lmstudio"].url == "http://localhost:1234/v1"
        assert config.fallback_providers == [Provider.GEMINI, Provider.OLLAMA]
        assert config.health_ttl == 10

    def test_unknown_keys_and_providers_ignored(self, tmp_path):
        path = _write(tmp_path, {
            "providers": {
                "openai": {"url": "https://api.openai.com/v1"},
                "lmstudio": {"colour": "blue", "timeout": 30},
            },
        })
        config = load_config(path)
        assert "openai" not in config.providers
        assert config.providers["lmstudio"].timeout == 30

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        config = load_config(path)
        assert config.max_tool_rounds == 16

    @pytest.mark.parametrize("enabled", [True, False])
    def test_enabled_flag(self, tmp_path, enabled):
        path = _write(tmp_path, {"providers": {"lmstudio": {"enabled": enabled}}})
        config = load_config(path)
        assert (config.provider_config(Provider.LMSTUDIO) is not None) is enabled
