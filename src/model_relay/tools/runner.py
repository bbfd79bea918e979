"""ToolRunner: runs the model's tool calls against an external executor.

Supports both sequential and concurrent execution.  Executor failures never
escape; they come back as ``ToolCallResult`` errors so the model can adapt.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Iterable, Protocol

from model_relay.errors import ToolExecutionError
from model_relay.events import ToolCallRequest, ToolCallResult
from model_relay.types import ToolResult

_logger = logging.getLogger(__name__)


class ToolExecutor(Protocol):
    """Anything that can run a named tool with a JSON argument object.

    ``execute`` may return a value or an awaitable.  Raising, returning an
    ``Exception`` or returning ``ToolResult(success=False)`` is a failure.
    """

    def execute(self, name: str, arguments: dict[str, Any]) -> Any: ...


class ToolRunner:
    """Usage::

        runner = ToolRunner(executor, allowed={"read_file"})
        results = await runner.run(requests)
    """

    def __init__(
        self,
        executor: ToolExecutor,
        allowed: Iterable[str] | None = None,
    ) -> None:
        self._executor = executor
        self._allowed = set(allowed) if allowed is not None else None

    async def run(
        self,
        requests: list[ToolCallRequest],
        concurrent: bool = False,
    ) -> list[ToolCallResult]:
        """Run *requests* and return one result per request, in order."""
        if concurrent and len(requests) > 1:
            return list(await asyncio.gather(*(self.run_one(r) for r in requests)))
        return [await self.run_one(r) for r in requests]

    async def run_one(self, request: ToolCallRequest) -> ToolCallResult:
        if request.error is not None:
            return self._failed(request, request.error)
        if self._allowed is not None and request.name not in self._allowed:
            return self._failed(request, f"Tool '{request.name}' is not allowed")

        try:
            payload = await self._invoke(request)
        except ToolExecutionError as e:
            return self._failed(request, str(e))
        return ToolCallResult(id=request.id, name=request.name, payload=payload)

    async def _invoke(self, request: ToolCallRequest) -> Any:
        _logger.debug("Executing tool %s(%s)", request.name, request.arguments)
        try:
            value = self._executor.execute(request.name, dict(request.arguments))
            if inspect.isawaitable(value):
                value = await value
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise ToolExecutionError(request.name, f"{type(e).__name__}: {e}") from e

        if isinstance(value, Exception):
            raise ToolExecutionError(request.name, str(value) or type(value).__name__)
        if isinstance(value, ToolResult):
            if not value.success:
                raise ToolExecutionError(request.name, value.error or "tool reported failure")
            return value.to_payload()
        return value

    def _failed(self, request: ToolCallRequest, message: str) -> ToolCallResult:
        _logger.warning("Tool call %s (%s) failed: %s", request.id, request.name, message)
        return ToolCallResult(id=request.id, name=request.name, error=message)
