"""Wire-level tests for the Gemini adapter (httpx.MockTransport)."""

from __future__ import annotations

import json

import httpx
import pytest

from model_relay.config import ProviderConfig
from model_relay.errors import ProviderConnectionError
from model_relay.events import (
    Completed,
    Content,
    ErrorKind,
    FinishReason,
    Thought,
    ToolCallRequest,
    ToolCallResult,
)
from model_relay.llm.hosted import HostedAdapter
from model_relay.tools.schema import ToolDefinition
from model_relay.types import Provider

BASE = "https://generativelanguage.googleapis.com"

MODELS_PAGE = {
    "models": [
        {
            "name": "models/gemini-2.5-flash",
            "displayName": "Gemini 2.5 Flash",
            "supportedGenerationMethods": ["generateContent", "countTokens"],
            "thinking": True,
        },
        {
            "name": "models/text-embedding-004",
            "displayName": "Text Embedding 004",
            "supportedGenerationMethods": ["embedContent"],
        },
    ],
}


def _sse(*chunks: dict) -> str:
    return "".join(f"data: {json.dumps(c)}\r\n\r\n" for c in chunks)


def _candidate(parts=None, finish=None) -> dict:
    cand = {"content": {"role": "model", "parts": parts or []}}
    if finish:
        cand["finishReason"] = finish
    return {"candidates": [cand]}


class FakeGemini:
    def __init__(self, replies: list[str] | None = None) -> None:
        self.replies = list(replies or [])
        self.requests: list[httpx.Request] = []
        self.payloads: list[dict] = []
        self.pages = [MODELS_PAGE]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.headers.get("x-goog-api-key") != "test-key":
            return httpx.Response(403, json={"error": {"message": "bad key"}})
        path = request.url.path
        if path == "/v1beta/models":
            token = request.url.params.get("pageToken")
            index = int(token) if token else 0
            page = dict(self.pages[index])
            if index + 1 < len(self.pages):
                page["nextPageToken"] = str(index + 1)
            return httpx.Response(200, json=page)
        if path.endswith(":streamGenerateContent"):
            self.payloads.append(json.loads(request.content))
            return httpx.Response(
                200, text=self.replies.pop(0), headers={"Content-Type": "text/event-stream"},
            )
        return httpx.Response(404)


def _adapter(server: FakeGemini, api_key: str = "test-key", **overrides) -> HostedAdapter:
    cfg = ProviderConfig(provider="gemini", url=BASE, api_key=api_key, **overrides)
    return HostedAdapter(cfg, transport=httpx.MockTransport(server.handler))


async def _collect(turn) -> list:
    return [event async for event in turn.stream()]


READ_TOOL = ToolDefinition.from_dict({
    "name": "read_file",
    "description": "Read a file",
    "parameters": {"type": "object", "properties": {"path": {"type": "string"}}, "required": ["path"]},
})


class TestSessions:
    async def test_alias_resolved_on_open(self):
        adapter = _adapter(FakeGemini())
        session = await adapter.open_session("flash")
        assert session.model == "gemini-2.5-flash"
        assert session.provider is Provider.GEMINI
        await adapter.aclose()

    async def test_missing_key_fails_fast(self):
        server = FakeGemini()
        adapter = _adapter(server, api_key="")
        with pytest.raises(ProviderConnectionError):
            await adapter.open_session("gemini-2.5-pro")
        assert server.requests == []
        await adapter.aclose()

    async def test_rejected_key_fails_fast(self):
        adapter = _adapter(FakeGemini(), api_key="wrong")
        with pytest.raises(ProviderConnectionError, match="403"):
            await adapter.open_session("gemini-2.5-pro")
        await adapter.aclose()

    async def test_request_shape(self):
        server = FakeGemini([_sse(_candidate([{"text": "Hi"}], finish="STOP"))])
        adapter = _adapter(server)
        session = await adapter.open_session("gemini-2.5-flash", system_prompt="Be terse.", tools=(READ_TOOL,))

        events = await _collect(session.start_turn("hello"))

        assert events == [Content("Hi"), Completed(FinishReason.STOP)]
        request = server.requests[-1]
        assert request.url.path == "/v1beta/models/gemini-2.5-flash:streamGenerateContent"
        assert request.url.params["alt"] == "sse"
        payload = server.payloads[0]
        assert payload["contents"] == [{"role": "user", "parts": [{"text": "hello"}]}]
        assert payload["systemInstruction"] == {"parts": [{"text": "Be terse."}]}
        decl = payload["tools"][0]["functionDeclarations"][0]
        assert decl["name"] == "read_file"
        assert decl["parameters"]["properties"]["path"]["type"] == "STRING"
        assert session.history[-1] == {"role": "model", "parts": [{"text": "Hi"}]}
        await adapter.aclose()

    async def test_thoughts_requested_when_enabled(self):
        server = FakeGemini([_sse(
            _candidate([{"text": "pondering", "thought": True}]),
            _candidate([{"text": "Done"}], finish="STOP"),
        )])
        adapter = _adapter(server, supports_thinking=True)
        session = await adapter.open_session("gemini-2.5-flash")
        events = await _collect(session.start_turn("q"))
        assert events == [Thought("pondering"), Content("Done"), Completed(FinishReason.STOP)]
        assert server.payloads[0]["generationConfig"]["thinkingConfig"] == {"includeThoughts": True}
        await adapter.aclose()

    async def test_no_tools_field_without_tools(self):
        server = FakeGemini([_sse(_candidate([{"text": "x"}], finish="STOP"))])
        adapter = _adapter(server)
        session = await adapter.open_session("gemini-2.5-flash")
        await _collect(session.start_turn("q"))
        assert "tools" not in server.payloads[0]
        assert "systemInstruction" not in server.payloads[0]
        await adapter.aclose()


class TestToolRoundTrip:
    async def test_function_call_and_response(self):
        server = FakeGemini([
            _sse(_candidate(
                [{"functionCall": {"id": "fc-1", "name": "read_file", "args": {"path": "README.md"}}}],
                finish="STOP",
            )),
            _sse(_candidate([{"text": "It is a readme."}], finish="STOP")),
        ])
        adapter = _adapter(server)
        session = await adapter.open_session("gemini-2.5-flash", tools=(READ_TOOL,))

        turn = session.start_turn("summarize README.md")
        first = await _collect(turn)
        assert first == [ToolCallRequest(id="fc-1", name="read_file", arguments={"path": "README.md"})]
        assert turn.awaiting_tool_results

        turn.submit_tool_results([ToolCallResult(id="fc-1", name="read_file", payload="# Title")])
        second = await _collect(turn)
        assert second == [Content("It is a readme."), Completed(FinishReason.STOP)]

        contents = server.payloads[1]["contents"]
        assert [c["role"] for c in contents] == ["user", "model", "user"]
        assert contents[1]["parts"][0]["functionCall"]["name"] == "read_file"
        assert contents[2]["parts"][0]["functionResponse"] == {
            "name": "read_file",
            "response": {"result": "# Title"},
            "id": "fc-1",
        }
        await adapter.aclose()

    async def test_api_error_status(self):
        def handler(request):
            if request.url.path == "/v1beta/models":
                return httpx.Response(200, json={"models": []})
            return httpx.Response(400, json={"error": {"message": "bad request"}})

        adapter = HostedAdapter(
            ProviderConfig(provider="gemini", url=BASE, api_key="k"),
            transport=httpx.MockTransport(handler),
        )
        failures = []
        adapter.on_failure = failures.append
        session = await adapter.open_session("gemini-2.5-flash")
        events = await _collect(session.start_turn("q"))
        assert [e.kind for e in events] == [ErrorKind.API]
        # Client errors do not mark the provider unhealthy
        assert failures == []
        await adapter.aclose()

    async def test_wrong_shape_chunk(self):
        server = FakeGemini([_sse(
            _candidate([{"text": "partial"}]),
            {"candidates": [{"content": {"parts": [{"functionCall": "read_file"}]}}]},
        )])
        adapter = _adapter(server)
        session = await adapter.open_session("gemini-2.5-flash")
        events = await _collect(session.start_turn("q"))
        assert events[0] == Content("partial")
        assert [e.kind for e in events[1:]] == [ErrorKind.MALFORMED_STREAM]
        assert [m["role"] for m in session.history] == ["user"]
        await adapter.aclose()


class TestDiscovery:
    async def test_lists_generate_content_models(self):
        adapter = _adapter(FakeGemini())
        models = await adapter.list_models()
        assert [m.id for m in models] == ["gemini-2.5-flash"]
        info = models[0]
        assert info.display_name == "Gemini 2.5 Flash"
        assert info.reasoning_capable
        assert "flash" in info.aliases
        assert info.matches("FLASH")
        await adapter.aclose()

    async def test_configured_aliases(self):
        adapter = _adapter(FakeGemini(), aliases={"quick": "gemini-2.5-flash"})
        (info,) = await adapter.list_models()
        assert {"quick", "flash"} <= info.aliases
        assert adapter.resolve_model("quick") == "gemini-2.5-flash"
        await adapter.aclose()

    async def test_follows_pages(self):
        server = FakeGemini()
        server.pages = [
            MODELS_PAGE,
            {"models": [{"name": "models/gemini-2.5-pro", "supportedGenerationMethods": ["generateContent"]}]},
        ]
        adapter = _adapter(server)
        models = await adapter.list_models()
        assert [m.id for m in models] == ["gemini-2.5-flash", "gemini-2.5-pro"]
        assert models[1].display_name == "gemini-2.5-pro"
        await adapter.aclose()

    async def test_listing_without_key_is_empty(self):
        server = FakeGemini()
        adapter = _adapter(server, api_key="")
        assert await adapter.list_models() == []
        assert server.requests == []
        await adapter.aclose()

    async def test_health(self):
        adapter = _adapter(FakeGemini())
        record = await adapter.check_health()
        assert record.is_healthy
        assert record.provider is Provider.GEMINI
        await adapter.aclose()

    @pytest.mark.parametrize("page", [
        [MODELS_PAGE],
        {"models": "gemini-2.5-flash"},
        {"models": ["models/gemini-2.5-flash", 3]},
        {"models": [{"name": 5, "supportedGenerationMethods": ["generateContent"]}]},
        {"models": [{"name": "models/x", "supportedGenerationMethods": "generateContent"}]},
    ])
    async def test_listing_wrong_shape_is_empty(self, page):
        def handler(request):
            return httpx.Response(200, json=page)

        cfg = ProviderConfig(provider="gemini", url=BASE, api_key="test-key")
        adapter = HostedAdapter(cfg, transport=httpx.MockTransport(handler))
        assert await adapter.list_models() == []
        await adapter.aclose()

    async def test_listing_skips_bad_entries(self):
        server = FakeGemini()
        server.pages = [{"models": ["junk", *MODELS_PAGE["models"]]}]
        adapter = _adapter(server)
        assert [m.id for m in await adapter.list_models()] == ["gemini-2.5-flash"]
        await adapter.aclose()
