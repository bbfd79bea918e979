"""Turn backend-native stream chunks into ``StreamEvent`` sequences.

States::

    IDLE -> STREAMING -> DONE                    (Completed / Error)
                      -> AWAITING_TOOL_RESULTS   (tool calls flushed)
    AWAITING_TOOL_RESULTS -> STREAMING           (resume() with results)

One normalizer serves exactly one turn, including the follow-up passes that
carry tool results back to the model.  The normalizer never performs I/O and
never retries; sessions drive it chunk by chunk.
"""

from __future__ import annotations

import enum
import json
import logging
from typing import Any

from model_relay.errors import MalformedStream
from model_relay.events import (
    Completed,
    Error,
    ErrorKind,
    FinishReason,
    StreamEvent,
    ToolCallRequest,
)
from model_relay.tools.bridge import ToolCallAccumulator, new_call_id

from .thinking import ThinkingExtractor, ThinkingMode

_logger = logging.getLogger(__name__)


def _expect(value: Any, kind: type | tuple[type, ...], what: str) -> Any:
    if not isinstance(value, kind):
        raise MalformedStream(f"Unexpected {what} in chunk: {type(value).__name__}")
    return value


def _text_field(value: Any, what: str) -> str | None:
    return None if value is None else _expect(value, str, what)


class NormalizerState(enum.Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    AWAITING_TOOL_RESULTS = "awaiting_tool_results"
    DONE = "done"


_COMPATIBLE_REASONS = {
    "stop": FinishReason.STOP,
    "length": FinishReason.MAX_TOKENS,
    "content_filter": FinishReason.SAFETY,
}

_HOSTED_REASONS = {
    "STOP": FinishReason.STOP,
    "MAX_TOKENS": FinishReason.MAX_TOKENS,
    "SAFETY": FinishReason.SAFETY,
    "RECITATION": FinishReason.SAFETY,
    "BLOCKLIST": FinishReason.SAFETY,
    "PROHIBITED_CONTENT": FinishReason.SAFETY,
    "SPII": FinishReason.SAFETY,
}


class StreamNormalizer:
    """Backend-agnostic part of the state machine.

    Subclasses implement :meth:`_classify` for one wire dialect.
    """

    def __init__(self, thinking: ThinkingExtractor | None = None) -> None:
        self.thinking = thinking or ThinkingExtractor()
        self.tool_calls = ToolCallAccumulator()
        self.state = NormalizerState.IDLE
        # Per-pass record used by sessions to extend history
        self.pass_text: list[str] = []
        self.pass_requests: list[ToolCallRequest] = []
        self.error: Error | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def begin(self) -> None:
        """Start the first pass, or resume after tool results were supplied."""
        if self.state is NormalizerState.DONE:
            raise RuntimeError("Normalizer already finished this turn")
        if self.state is NormalizerState.STREAMING:
            raise RuntimeError("Normalizer is already streaming")
        self.state = NormalizerState.STREAMING
        self.pass_text = []
        self.pass_requests = []
        self.error = None

    resume = begin

    @property
    def pass_finished(self) -> bool:
        return self.state in (NormalizerState.DONE, NormalizerState.AWAITING_TOOL_RESULTS)

    @property
    def content(self) -> str:
        return "".join(self.pass_text)

    def _require_streaming(self) -> None:
        if self.state is not NormalizerState.STREAMING:
            raise RuntimeError(f"Cannot feed chunks in state {self.state.value}")

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def feed(self, chunk: dict[str, Any]) -> list[StreamEvent]:
        """Classify one decoded chunk and return its events in order."""
        self._require_streaming()
        return self._classify(chunk)

    def _classify(self, chunk: dict[str, Any]) -> list[StreamEvent]:
        raise NotImplementedError

    def _text(self, text: str | None, reasoning: str | None = None) -> list[StreamEvent]:
        events = self.thinking.feed(text, reasoning)
        self._record(events)
        return events

    def _record(self, events: list[StreamEvent]) -> None:
        for event in events:
            if event.event_type == "content":
                self.pass_text.append(event.text)
            elif event.event_type == "tool_call_request":
                self.pass_requests.append(event)

    def _terminal(self, reason: FinishReason, tool_use: bool) -> list[StreamEvent]:
        events = self.thinking.finish()
        if tool_use or self.tool_calls.has_calls():
            events.extend(self.tool_calls.complete_all())
        self._record(events)
        if self.pass_requests:
            self.state = NormalizerState.AWAITING_TOOL_RESULTS
            return events
        self.state = NormalizerState.DONE
        events.append(Completed(reason))
        return events

    # ------------------------------------------------------------------
    # Stream end and faults
    # ------------------------------------------------------------------

    def end_of_stream(self, sentinel: bool = False) -> list[StreamEvent]:
        """The transport stopped delivering chunks.

        With an explicit end-of-stream *sentinel* (``[DONE]``) and no
        finish reason seen, the pass ends as ``stop``.  Otherwise the
        connection closed early, which is a malformed stream.
        """
        if self.pass_finished:
            return []
        self._require_streaming()
        if sentinel:
            return self._terminal(FinishReason.STOP, tool_use=False)
        return self.fail(ErrorKind.MALFORMED_STREAM, "Stream closed before completion signal")

    def fail(self, kind: ErrorKind, message: str) -> list[StreamEvent]:
        """End the turn with one ``Error``; pending tool calls are dropped."""
        if self.state is NormalizerState.DONE:
            return []
        dropped = self.tool_calls.pending_ids
        if dropped:
            _logger.debug("Discarding %d pending tool calls: %s", len(dropped), dropped)
        self.tool_calls.discard()
        self.thinking.reset()
        self.state = NormalizerState.DONE
        self.error = Error(kind, message)
        return [self.error]

    def cancel(self, message: str = "Turn cancelled") -> list[StreamEvent]:
        return self.fail(ErrorKind.CANCELLED, message)


class CompatibleStreamNormalizer(StreamNormalizer):
    """OpenAI-compatible ``choices[].delta`` chunks."""

    def _classify(self, chunk: dict[str, Any]) -> list[StreamEvent]:
        if "error" in chunk and not chunk.get("choices"):
            err = chunk["error"]
            message = err.get("message", str(err)) if isinstance(err, dict) else str(err)
            return self.fail(ErrorKind.API, message)

        choices = _expect(chunk.get("choices") or [], list, "choices")
        if not choices:
            # Usage-only or keep-alive chunk
            return []
        choice = _expect(choices[0], dict, "choice")
        delta = _expect(choice.get("delta") or {}, dict, "delta")

        content = _text_field(delta.get("content"), "content")
        reasoning = _text_field(
            delta.get("reasoning_content") or delta.get("reasoning"), "reasoning",
        )
        finish = _text_field(choice.get("finish_reason"), "finish_reason")
        events = self._text(content, reasoning)

        if delta.get("tool_calls"):
            self.tool_calls.feed_delta(delta)

        if finish:
            tool_use = finish in ("tool_calls", "function_call")
            reason = _COMPATIBLE_REASONS.get(finish, FinishReason.OTHER)
            events.extend(self._terminal(reason, tool_use=tool_use))
        return events


class HostedStreamNormalizer(StreamNormalizer):
    """Gemini ``candidates[].content.parts[]`` chunks.

    Function calls arrive whole, one per part, so each is completed and
    surfaced as soon as it is seen.
    """

    def __init__(self, thinking: ThinkingExtractor | None = None) -> None:
        super().__init__(thinking or ThinkingExtractor(ThinkingMode.SEPARATED))

    def _classify(self, chunk: dict[str, Any]) -> list[StreamEvent]:
        if "error" in chunk and not chunk.get("candidates"):
            err = chunk["error"]
            message = err.get("message", str(err)) if isinstance(err, dict) else str(err)
            return self.fail(ErrorKind.API, message)

        candidates = _expect(chunk.get("candidates") or [], list, "candidates")
        if not candidates:
            feedback = _expect(chunk.get("promptFeedback") or {}, dict, "promptFeedback")
            if feedback.get("blockReason"):
                events = self.thinking.finish()
                self._record(events)
                self.state = NormalizerState.DONE
                events.append(Completed(FinishReason.SAFETY))
                return events
            return []

        candidate = _expect(candidates[0], dict, "candidate")
        content = _expect(candidate.get("content") or {}, dict, "content")
        parts = _expect(content.get("parts") or [], list, "parts")
        finish = _text_field(candidate.get("finishReason"), "finishReason")
        events: list[StreamEvent] = []
        for part in parts:
            _expect(part, dict, "part")
            if "functionCall" in part:
                call = _expect(part["functionCall"] or {}, dict, "functionCall")
                events.extend(self._function_call(call))
            elif part.get("text"):
                text = _expect(part["text"], str, "text")
                if part.get("thought"):
                    events.extend(self._text(None, text))
                else:
                    events.extend(self._text(text))

        if finish and finish != "FINISH_REASON_UNSPECIFIED":
            reason = _HOSTED_REASONS.get(finish, FinishReason.OTHER)
            events.extend(self._terminal(reason, tool_use=bool(self.pass_requests)))
        return events

    def _function_call(self, call: dict[str, Any]) -> list[StreamEvent]:
        call_id = _text_field(call.get("id"), "functionCall.id") or new_call_id()
        self.tool_calls.add_fragment(
            call_id,
            fragment=json.dumps(call.get("args") or {}),
            name=_text_field(call.get("name"), "functionCall.name") or "",
        )
        request = self.tool_calls.complete(call_id)
        events: list[StreamEvent] = [request] if request is not None else []
        self._record(events)
        return events
