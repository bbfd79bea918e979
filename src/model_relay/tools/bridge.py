"""Tool-call accumulation and tool-result serialization.

Streaming backends may split one call's argument text over many chunks.
:class:`ToolCallAccumulator` collects the fragments per call and only parses
them once the backend marks the call complete, so partial JSON in the middle
of a stream is never an error.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from model_relay.errors import MalformedStream
from model_relay.events import ToolCallRequest, ToolCallResult

_logger = logging.getLogger(__name__)


def new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


@dataclass
class PendingToolCall:
    """Argument fragments of one in-flight tool call, in arrival order."""

    id: str
    name: str = ""
    fragments: list[str] = field(default_factory=list)

    @property
    def raw_arguments(self) -> str:
        return "".join(self.fragments)

    def to_request(self) -> ToolCallRequest:
        """Concatenate the fragments and parse them as one JSON object."""
        raw = self.raw_arguments
        if not raw.strip():
            return ToolCallRequest(id=self.id, name=self.name, arguments={})
        try:
            args = json.loads(raw)
        except json.JSONDecodeError as e:
            _logger.warning("Invalid arguments for tool call %s (%s): %s", self.id, self.name, e)
            return ToolCallRequest(
                id=self.id,
                name=self.name,
                error=f"Invalid JSON arguments: {e}",
            )
        if not isinstance(args, dict):
            return ToolCallRequest(
                id=self.id,
                name=self.name,
                error=f"Arguments must be a JSON object, got {type(args).__name__}",
            )
        return ToolCallRequest(id=self.id, name=self.name, arguments=args)


class ToolCallAccumulator:
    """Accumulate streamed tool calls keyed by call id.

    OpenAI-compatible providers send tool calls as incremental chunks: each
    chunk has an ``index``, an ``id`` and ``function.name`` (first chunk
    only), and ``function.arguments`` fragments that must be concatenated.
    """

    def __init__(self) -> None:
        self._calls: dict[str, PendingToolCall] = {}
        self._index_to_id: dict[int, str] = {}

    # ------------------------------------------------------------------
    # Feeding
    # ------------------------------------------------------------------

    def add_fragment(self, call_id: str, fragment: str = "", name: str = "") -> PendingToolCall:
        """Append *fragment* to call *call_id*, creating it if needed."""
        call = self._calls.get(call_id)
        if call is None:
            call = PendingToolCall(id=call_id)
            self._calls[call_id] = call
        if name:
            call.name = name
        if fragment:
            call.fragments.append(fragment)
        return call

    def feed_delta(self, delta: dict[str, Any]) -> None:
        """Process ``delta.tool_calls`` from a single OpenAI-style chunk.

        Raises :class:`MalformedStream` when an entry does not have the
        OpenAI shape.  Arguments already sent as an object (some Ollama
        builds) are re-encoded as one fragment.
        """
        tool_calls = delta.get("tool_calls") or []
        if not isinstance(tool_calls, list):
            raise MalformedStream(f"tool_calls must be a list, got {type(tool_calls).__name__}")
        for tc in tool_calls:
            if not isinstance(tc, dict):
                raise MalformedStream(f"Tool call entry must be an object, got {type(tc).__name__}")
            idx = tc.get("index")
            call_id = tc.get("id") or ""
            func = tc.get("function") or {}
            if not isinstance(func, dict):
                raise MalformedStream(f"Tool call function must be an object, got {type(func).__name__}")
            arguments = func.get("arguments") or ""
            if isinstance(arguments, dict):
                arguments = json.dumps(arguments)
            name = func.get("name") or ""
            if not isinstance(arguments, str) or not isinstance(name, str) or not isinstance(call_id, str):
                raise MalformedStream(f"Tool call fields have unexpected types: {tc!r:.120}")
            if idx is not None and not isinstance(idx, int):
                raise MalformedStream(f"Tool call index must be an integer, got {idx!r}")

            if idx is not None:
                known = self._index_to_id.get(idx)
                if known is None:
                    known = call_id or new_call_id()
                    self._index_to_id[idx] = known
                call_id = known
            elif not call_id:
                # No index and no id: continuation of the most recent call
                call_id = next(reversed(self._calls), "") or new_call_id()
            self.add_fragment(call_id, fragment=arguments, name=name)

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def has_calls(self) -> bool:
        return bool(self._calls)

    @property
    def pending_ids(self) -> list[str]:
        return list(self._calls)

    def complete(self, call_id: str) -> ToolCallRequest | None:
        """Finish one call and return its request (``None`` if unknown)."""
        call = self._calls.pop(call_id, None)
        if call is None:
            return None
        for idx, cid in list(self._index_to_id.items()):
            if cid == call_id:
                del self._index_to_id[idx]
        return call.to_request()

    def complete_all(self) -> list[ToolCallRequest]:
        """Finish every pending call in first-seen order."""
        requests = [call.to_request() for call in self._calls.values()]
        self.discard()
        return requests

    def discard(self) -> None:
        self._calls.clear()
        self._index_to_id.clear()


# ---------------------------------------------------------------------------
# Tool result serialization
# ---------------------------------------------------------------------------

def _result_body(result: ToolCallResult) -> Any:
    if result.error is not None:
        return {"error": result.error}
    return result.payload


def compatible_tool_message(result: ToolCallResult) -> dict[str, Any]:
    """OpenAI ``role: tool`` message for one result."""
    body = _result_body(result)
    content = body if isinstance(body, str) else json.dumps(body, default=str)
    return {"role": "tool", "tool_call_id": result.id, "content": content}


def compatible_assistant_message(
    content: str, requests: list[ToolCallRequest],
) -> dict[str, Any]:
    """Assistant message echoing the model's own tool calls back into history."""
    message: dict[str, Any] = {"role": "assistant", "content": content or None}
    if requests:
        message["tool_calls"] = [
            {
                "id": req.id,
                "type": "function",
                "function": {"name": req.name, "arguments": json.dumps(req.arguments)},
            }
            for req in requests
        ]
    return message


def hosted_function_response(result: ToolCallResult) -> dict[str, Any]:
    """Gemini ``functionResponse`` part; the response must be an object."""
    body = _result_body(result)
    if not isinstance(body, dict):
        body = {"result": body}
    part: dict[str, Any] = {"name": result.name, "response": body}
    if result.id:
        part["id"] = result.id
    return {"functionResponse": part}


def hosted_tool_content(results: list[ToolCallResult]) -> dict[str, Any]:
    return {"role": "user", "parts": [hosted_function_response(r) for r in results]}


def hosted_model_content(content: str, requests: list[ToolCallRequest]) -> dict[str, Any]:
    parts: list[dict[str, Any]] = []
    if content:
        parts.append({"text": content})
    for req in requests:
        parts.append({"functionCall": {"id": req.id, "name": req.name, "args": req.arguments}})
    return {"role": "model", "parts": parts}
