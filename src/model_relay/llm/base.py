"""Provider adapter and session interfaces shared by both backend families."""

from __future__ import annotations

import abc
import asyncio
import json
import logging
import time
from contextlib import aclosing
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable, Iterable

import httpx

from model_relay.config import ProviderConfig
from model_relay.errors import MalformedStream
from model_relay.events import (
    ErrorKind,
    StreamEvent,
    ToolCallRequest,
    ToolCallResult,
)
from model_relay.tools.schema import ToolDefinition
from model_relay.types import HealthRecord, ModelInfo, Provider

from .normalizer import NormalizerState, StreamNormalizer

if TYPE_CHECKING:
    from .router import Selection

_logger = logging.getLogger(__name__)

# Called with the provider when a live call fails at the transport level
FailureHook = Callable[[Provider], None]

DONE_SENTINEL = "[DONE]"


class _Cancelled(Exception):
    """Internal: the caller's cancel signal fired mid-stream."""


# ---------------------------------------------------------------------------
# Chunk decoding
# ---------------------------------------------------------------------------

async def iter_sse_chunks(resp: httpx.Response) -> AsyncIterator[dict[str, Any] | None]:
    """Yield decoded JSON objects from ``data:`` lines of an SSE response.

    Yields ``None`` once for the ``[DONE]`` sentinel and stops.  Comment and
    ``event:`` lines are skipped.  Raises :class:`MalformedStream` on a data
    line that is not a JSON object.
    """
    async for raw_line in resp.aiter_lines():
        if not raw_line.startswith("data:"):
            continue
        data_str = raw_line[5:].strip()
        if not data_str:
            continue
        if data_str == DONE_SENTINEL:
            yield None
            return
        try:
            data = json.loads(data_str)
        except json.JSONDecodeError as e:
            raise MalformedStream(f"Unparsable chunk: {data_str[:120]!r}") from e
        if not isinstance(data, dict):
            raise MalformedStream(f"Unexpected chunk type: {type(data).__name__}")
        yield data


async def _next_chunk(iterator: AsyncIterator[Any]) -> tuple[bool, Any]:
    try:
        return True, await iterator.__anext__()
    except StopAsyncIteration:
        return False, None


async def until_cancelled(
    chunks: AsyncIterator[Any],
    cancel: asyncio.Event | None,
) -> AsyncIterator[Any]:
    """Relay *chunks* until exhausted or until *cancel* is set.

    The wait for the next chunk races the cancel signal, so a stalled
    backend does not delay cancellation.
    """
    if cancel is None:
        async for chunk in chunks:
            yield chunk
        return

    if cancel.is_set():
        raise _Cancelled()
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        while True:
            nxt = asyncio.ensure_future(_next_chunk(chunks))
            done, _ = await asyncio.wait(
                {nxt, waiter}, return_when=asyncio.FIRST_COMPLETED,
            )
            if nxt not in done:
                nxt.cancel()
                await asyncio.wait({nxt})
                raise _Cancelled()
            more, chunk = nxt.result()
            if not more:
                return
            yield chunk
            if cancel.is_set():
                raise _Cancelled()
    finally:
        waiter.cancel()


# ---------------------------------------------------------------------------
# Session / Turn
# ---------------------------------------------------------------------------

class Turn:
    """One user request, possibly spanning several tool-call passes.

    Usage::

        turn = session.start_turn("list the files")
        async for event in turn.stream():
            ...
        while turn.awaiting_tool_results:
            turn.submit_tool_results(results)
            async for event in turn.stream():
                ...
    """

    def __init__(self, session: "Session", normalizer: StreamNormalizer) -> None:
        self._session = session
        self.normalizer = normalizer
        self._results_ready = True

    @property
    def awaiting_tool_results(self) -> bool:
        return self.normalizer.state is NormalizerState.AWAITING_TOOL_RESULTS

    @property
    def done(self) -> bool:
        return self.normalizer.state is NormalizerState.DONE

    @property
    def pending_requests(self) -> list[ToolCallRequest]:
        if not self.awaiting_tool_results:
            return []
        return list(self.normalizer.pass_requests)

    def submit_tool_results(self, results: Iterable[ToolCallResult]) -> None:
        """Append results to history so the next :meth:`stream` resumes."""
        if not self.awaiting_tool_results:
            raise RuntimeError("Turn is not waiting for tool results")
        self._session._append_tool_results(list(results))
        self._results_ready = True

    def abort(self, kind: ErrorKind, message: str) -> list[StreamEvent]:
        """End the turn between passes (e.g. while tools run).

        Outstanding tool calls get error results in history so the
        session can start another turn.
        """
        if self.awaiting_tool_results and not self._results_ready:
            self._session._append_tool_results([
                ToolCallResult(id=req.id, name=req.name, error=message)
                for req in self.normalizer.pass_requests
            ])
        return self.normalizer.fail(kind, message)

    def cancel(self, message: str = "Turn cancelled") -> list[StreamEvent]:
        return self.abort(ErrorKind.CANCELLED, message)

    async def stream(self, cancel: asyncio.Event | None = None) -> AsyncIterator[StreamEvent]:
        """Run one pass and yield its events."""
        if not self._results_ready:
            raise RuntimeError("Submit tool results before resuming the turn")
        self._results_ready = False
        self.normalizer.begin()
        async for event in self._session._run_pass(self.normalizer, cancel):
            yield event


class Session(abc.ABC):
    """A bound provider/model/system prompt/tool set with message history.

    A session belongs to one conversation and must not run turns
    concurrently.
    """

    def __init__(
        self,
        provider: Provider,
        model: str,
        client: httpx.AsyncClient,
        system_prompt: str = "",
        tools: tuple[ToolDefinition, ...] = (),
        on_failure: FailureHook | None = None,
    ) -> None:
        self.provider = provider
        self.model = model
        self.system_prompt = system_prompt
        self.tools = tools
        self.history: list[dict[str, Any]] = []
        self._client = client
        self._on_failure = on_failure
        self._active = False
        self._turn: Turn | None = None
        # Set by the relay when the session came out of backend selection
        self.selection: Selection | None = None

    # ------------------------------------------------------------------
    # Backend-specific hooks
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def _new_normalizer(self) -> StreamNormalizer: ...

    @abc.abstractmethod
    def _user_message(self, text: str) -> dict[str, Any]: ...

    @abc.abstractmethod
    def _assistant_message(
        self, content: str, requests: list[ToolCallRequest],
    ) -> dict[str, Any]: ...

    @abc.abstractmethod
    def _tool_messages(self, results: list[ToolCallResult]) -> list[dict[str, Any]]: ...

    @abc.abstractmethod
    def _request(self) -> tuple[str, dict[str, Any], dict[str, Any]]:
        """Return ``(url, query params, json payload)`` for one pass."""

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start_turn(self, text: str) -> Turn:
        """Append the user's message and return a turn ready to stream."""
        if self._active:
            raise RuntimeError("A turn is already in progress on this session")
        previous = self._turn
        if previous is not None and previous.awaiting_tool_results:
            # Unanswered tool calls would leave history invalid for the backend
            _logger.warning(
                "Abandoning turn with %d unanswered tool calls on %s",
                len(previous.pending_requests), self.provider.value,
            )
            previous.abort(ErrorKind.CANCELLED, "Superseded by a new turn")
        self.history.append(self._user_message(text))
        self._turn = Turn(self, self._new_normalizer())
        return self._turn

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _append_tool_results(self, results: list[ToolCallResult]) -> None:
        self.history.extend(self._tool_messages(results))

    async def _stream_chunks(self) -> AsyncIterator[dict[str, Any] | None]:
        """Open the streaming request and yield its decoded chunks.

        Sending the request and waiting for headers happen on the first
        ``__anext__``, so a cancel signal raced against it also covers a
        backend that has not started responding yet.
        """
        url, params, payload = self._request()
        _logger.debug("Streaming %s model=%s messages=%d", self.provider.value, self.model, len(self.history))
        async with self._client.stream("POST", url, params=params, json=payload) as resp:
            if resp.status_code >= 400:
                body = (await resp.aread()).decode(errors="replace")
                raise httpx.HTTPStatusError(
                    f"HTTP {resp.status_code}: {body[:300]}",
                    request=resp.request,
                    response=resp,
                )
            async for chunk in iter_sse_chunks(resp):
                yield chunk

    async def _run_pass(
        self,
        normalizer: StreamNormalizer,
        cancel: asyncio.Event | None,
    ) -> AsyncIterator[StreamEvent]:
        self._active = True
        start = time.monotonic()
        try:
            async for event in self._drive(normalizer, cancel):
                yield event
        finally:
            self._active = False
            self._record_pass(normalizer)
            _logger.debug(
                "Pass finished on %s in %.0fms (state=%s)",
                self.provider.value, (time.monotonic() - start) * 1000, normalizer.state.value,
            )

    def _record_pass(self, normalizer: StreamNormalizer) -> None:
        # Failed or abandoned passes leave no assistant message behind
        if normalizer.error is not None or not normalizer.pass_finished:
            return
        if normalizer.pass_text or normalizer.pass_requests:
            self.history.append(
                self._assistant_message(normalizer.content, list(normalizer.pass_requests))
            )

    async def _drive(
        self,
        normalizer: StreamNormalizer,
        cancel: asyncio.Event | None,
    ) -> AsyncIterator[StreamEvent]:
        try:
            async with (
                aclosing(self._stream_chunks()) as chunks,
                aclosing(until_cancelled(chunks, cancel)) as relayed,
            ):
                async for chunk in relayed:
                    if chunk is None:
                        for event in normalizer.end_of_stream(sentinel=True):
                            yield event
                        break
                    for event in normalizer.feed(chunk):
                        yield event
                    if normalizer.pass_finished:
                        break
            for event in normalizer.end_of_stream():
                yield event
        except _Cancelled:
            for event in normalizer.cancel():
                yield event
        except MalformedStream as e:
            _logger.warning("Malformed stream from %s: %s", self.provider.value, e)
            for event in normalizer.fail(ErrorKind.MALFORMED_STREAM, str(e)):
                yield event
        except httpx.TimeoutException as e:
            self._report_failure()
            for event in normalizer.fail(ErrorKind.TIMEOUT, f"{type(e).__name__}: {e}"):
                yield event
        except httpx.HTTPStatusError as e:
            if e.response.status_code >= 500:
                self._report_failure()
            for event in normalizer.fail(ErrorKind.API, str(e)):
                yield event
        except httpx.TransportError as e:
            self._report_failure()
            for event in normalizer.fail(ErrorKind.CONNECTION, f"{type(e).__name__}: {e}"):
                yield event

    def _report_failure(self) -> None:
        if self._on_failure is not None:
            self._on_failure(self.provider)


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------

class ProviderAdapter(abc.ABC):
    """Opens sessions against one backend and reports on its models/health."""

    provider: Provider

    def __init__(
        self,
        config: ProviderConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self.on_failure: FailureHook | None = None

    def _make_client(self, base_url: str, headers: dict[str, str]) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=httpx.Timeout(
                self.config.timeout,
                connect=self.config.connect_timeout,
                read=self.config.idle_timeout,
            ),
            transport=self._transport,
        )

    @property
    @abc.abstractmethod
    def client(self) -> httpx.AsyncClient: ...

    @abc.abstractmethod
    async def open_session(
        self,
        model: str,
        system_prompt: str = "",
        tools: tuple[ToolDefinition, ...] = (),
    ) -> Session:
        """Return a session after a fail-fast reachability check.

        Raises ``ProviderConnectionError`` when the backend is unreachable.
        """

    @abc.abstractmethod
    async def list_models(self) -> list[ModelInfo]:
        """Discover models; returns ``[]`` instead of raising."""

    @abc.abstractmethod
    async def check_health(self) -> HealthRecord:
        """Probe reachability; failures become unhealthy records."""

    def resolve_model(self, name: str) -> str:
        """Map a configured alias to its model id; unknown names pass through."""
        return self.config.aliases.get(name, name)

    def aliases_for(self, model_id: str) -> frozenset[str]:
        return frozenset(
            alias for alias, target in self.config.aliases.items()
            if target.lower() == model_id.lower()
        )

    async def _probe(self, url: str, params: dict[str, Any] | None = None) -> HealthRecord:
        start = time.monotonic()
        try:
            resp = await self.client.get(url, params=params)
        except httpx.HTTPError as e:
            return HealthRecord(
                provider=self.provider,
                is_healthy=False,
                latency_ms=(time.monotonic() - start) * 1000,
                error=f"{type(e).__name__}: {e}" if str(e) else type(e).__name__,
            )
        latency = (time.monotonic() - start) * 1000
        if resp.is_success:
            return HealthRecord(provider=self.provider, is_healthy=True, latency_ms=latency)
        return HealthRecord(
            provider=self.provider,
            is_healthy=False,
            latency_ms=latency,
            error=f"HTTP {resp.status_code}: {resp.reason_phrase}",
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
