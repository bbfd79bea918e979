"""Provider adapters, stream normalization and backend selection."""

from model_relay.llm.base import ProviderAdapter, Session, Turn
from model_relay.llm.compatible import CompatibleAdapter, CompatibleSession
from model_relay.llm.discovery import ModelCatalog
from model_relay.llm.health import HealthMonitor
from model_relay.llm.hosted import HostedAdapter, HostedSession
from model_relay.llm.normalizer import (
    CompatibleStreamNormalizer,
    HostedStreamNormalizer,
    NormalizerState,
    StreamNormalizer,
)
from model_relay.llm.router import BackendSelector, ProviderRegistry, Selection
from model_relay.llm.strategy import CompatibleStrategy, strategy_for
from model_relay.llm.thinking import ThinkingExtractor, ThinkingMode

__all__ = [
    "BackendSelector",
    "CompatibleAdapter",
    "CompatibleSession",
    "CompatibleStrategy",
    "CompatibleStreamNormalizer",
    "HealthMonitor",
    "HostedAdapter",
    "HostedSession",
    "HostedStreamNormalizer",
    "ModelCatalog",
    "NormalizerState",
    "ProviderAdapter",
    "ProviderRegistry",
    "Selection",
    "Session",
    "StreamNormalizer",
    "ThinkingExtractor",
    "ThinkingMode",
    "Turn",
    "strategy_for",
]
