"""Normalized stream events.

Every backend reply, whatever its wire shape, is turned into a strictly
ordered sequence of these events.  ``Completed`` or ``Error`` is always the
last event of a turn.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, ClassVar, Union


class FinishReason(str, enum.Enum):
    """Why a turn completed normally."""

    STOP = "stop"
    MAX_TOKENS = "max_tokens"
    SAFETY = "safety"
    OTHER = "other"


class ErrorKind(str, enum.Enum):
    """Terminal failure categories carried by ``Error`` events."""

    CONNECTION = "connection"
    API = "api"
    MALFORMED_STREAM = "malformed_stream"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    TOOL_ROUNDS_EXCEEDED = "tool_rounds_exceeded"


@dataclass(frozen=True)
class Content:
    text: str
    event_type: ClassVar[str] = "content"


@dataclass(frozen=True)
class Thought:
    text: str
    event_type: ClassVar[str] = "thought"


@dataclass(frozen=True)
class ToolCallRequest:
    """A complete tool call requested by the model.

    ``error`` is set instead of ``arguments`` when the accumulated argument
    text was not a JSON object.
    """

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    event_type: ClassVar[str] = "tool_call_request"


@dataclass(frozen=True)
class ToolCallResult:
    id: str
    name: str
    payload: Any = None
    error: str | None = None
    event_type: ClassVar[str] = "tool_call_result"

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class Completed:
    reason: FinishReason = FinishReason.STOP
    event_type: ClassVar[str] = "completed"


@dataclass(frozen=True)
class Error:
    kind: ErrorKind
    message: str = ""
    event_type: ClassVar[str] = "error"


StreamEvent = Union[Content, Thought, ToolCallRequest, ToolCallResult, Completed, Error]


def is_terminal(event: StreamEvent) -> bool:
    """Return True for the events that end a turn."""
    return isinstance(event, (Completed, Error))
