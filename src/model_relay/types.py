"""Shared data types for Model Relay."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Any


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------

class Provider(str, enum.Enum):
    """Backends known to the relay.

    ``gemini`` is the hosted API; the others speak the OpenAI-compatible
    dialect and run locally.
    """

    GEMINI = "gemini"
    OLLAMA = "ollama"
    LMSTUDIO = "lmstudio"

    @property
    def is_local(self) -> bool:
        return self is not Provider.GEMINI

    @classmethod
    def names(cls) -> list[str]:
        return [p.value for p in cls]


# ---------------------------------------------------------------------------
# Discovery / health
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ModelInfo:
    """A model exposed by one provider."""

    id: str
    display_name: str
    provider: Provider
    aliases: frozenset[str] = frozenset()
    tool_capable: bool = True
    reasoning_capable: bool = False

    def matches(self, name: str) -> bool:
        """Case-insensitive exact match on the id or any alias."""
        wanted = name.lower()
        if self.id.lower() == wanted:
            return True
        return any(alias.lower() == wanted for alias in self.aliases)


@dataclass(frozen=True)
class HealthRecord:
    """Outcome of one reachability probe."""

    provider: Provider
    is_healthy: bool
    checked_at: float = field(default_factory=time.monotonic)
    latency_ms: float | None = None
    error: str | None = None


# ---------------------------------------------------------------------------
# Tool executor results
# ---------------------------------------------------------------------------

@dataclass
class ToolResult:
    """Optional structured return value of a tool executor."""

    success: bool
    output: Any = ""
    error: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Any:
        if self.success:
            return self.output
        if self.output:
            return {"error": self.error, "output": self.output}
        return {"error": self.error}
