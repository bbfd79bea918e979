"""Conversation: drives a session's tool-call pause/resume loop.

Flow per :meth:`Conversation.send`:
  1. start a turn with the user's text and stream the first pass
  2. while the model is waiting for tool results, run them through the
     :class:`ToolRunner`, yield the results and resume the turn
  3. stop on ``Completed`` / ``Error``, or after ``max_tool_rounds``
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

from model_relay.events import ErrorKind, StreamEvent, ToolCallRequest, ToolCallResult
from model_relay.llm.base import Session
from model_relay.tools.runner import ToolRunner

_logger = logging.getLogger(__name__)


class Conversation:
    """Usage::

        conv = Conversation(session, ToolRunner(executor))
        async for event in conv.send("what is in README.md?"):
            ...
    """

    def __init__(
        self,
        session: Session,
        runner: ToolRunner,
        max_tool_rounds: int = 16,
        concurrent_tools: bool = False,
    ) -> None:
        self.session = session
        self.runner = runner
        self.max_tool_rounds = max_tool_rounds
        self.concurrent_tools = concurrent_tools

    async def send(
        self,
        text: str,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Yield every event of one user turn, tool results included.

        Exactly one ``Completed`` or ``Error`` ends the sequence.  Once
        *cancel* is set no further ``ToolCallResult`` is yielded.
        """
        turn = self.session.start_turn(text)
        rounds = 0
        while True:
            async for event in turn.stream(cancel):
                yield event
            if not turn.awaiting_tool_results:
                return

            if rounds >= self.max_tool_rounds:
                _logger.warning(
                    "Tool round limit (%d) reached on %s::%s",
                    self.max_tool_rounds, self.session.provider.value, self.session.model,
                )
                for event in turn.abort(
                    ErrorKind.TOOL_ROUNDS_EXCEEDED,
                    f"Exceeded {self.max_tool_rounds} tool rounds",
                ):
                    yield event
                return
            rounds += 1

            results = await self._run_tools(turn.pending_requests, cancel)
            if results is None or (cancel is not None and cancel.is_set()):
                for event in turn.cancel():
                    yield event
                return

            for result in results:
                yield result
            turn.submit_tool_results(results)

    async def _run_tools(
        self,
        requests: list[ToolCallRequest],
        cancel: asyncio.Event | None,
    ) -> list[ToolCallResult] | None:
        """Run the pass's tool calls; ``None`` if *cancel* fired first."""
        if cancel is None:
            return await self.runner.run(requests, concurrent=self.concurrent_tools)
        if cancel.is_set():
            return None

        work = asyncio.ensure_future(self.runner.run(requests, concurrent=self.concurrent_tools))
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
        if work not in done:
            work.cancel()
            await asyncio.wait({work})
            return None
        return work.result()

