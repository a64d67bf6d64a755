"""
TEST DOC: llama.cpp Client

WHAT: Tests for LlamaCppClient against a mocked llama.cpp server.
WHY: Discovery, completions and streaming are the whole contract with the server.
HOW: Use respx to mock the /v1/models and /v1/chat/completions endpoints.

CASES:
- Discovery with llama.cpp and OpenAI listing shapes
- Display name derived from the model path
- Request body: model, defaults, stream flag, tools
- Single-shot completion with text, tool calls and usage
- Streaming text, then one tool-call batch at the end

EDGE CASES:
- Empty listing, non-success listing, unreachable server
- Discovery runs once, even when called concurrently
- Completion before initialize()
- Non-success completion status and malformed success bodies
- Timeouts and connection failures
- Stream without [DONE], malformed chunks, early stop by the consumer
- Connection release after early stop and mid-stream timeout
- Cancellation while a tool call is open
"""

import asyncio
import json
import logging

import httpx
import pytest
import respx
from httpx import Response

from llama_cli.errors import (
    ConfigurationError,
    DiscoveryError,
    MalformedResponseError,
    RequestTimeoutError,
    ServerUnavailableError,
    UpstreamError,
)
from llama_cli.llm.assembler import TextDelta, ToolCallBatch
from llama_cli.llm.llamacpp import (
    DEFAULT_DISPLAY_NAME,
    ChatRequest,
    LlamaCppClient,
    extract_display_name,
)
from llama_cli.llm.wire import WireFunctionDefinition, WireMessage, WireTool

BASE_URL = "http://llama.test:8080"
MODEL_PATH = "/models/GGUF/google/gemma-3-27b-it/gemma-3-27b-it.Q8_0.gguf"
SSE_HEADERS = {"content-type": "text/event-stream"}


@pytest.fixture
def mock_server():
    """Set up respx mock for the llama.cpp server."""
    with respx.mock(base_url=BASE_URL, assert_all_called=False) as respx_mock:
        yield respx_mock


@pytest.fixture
def ready_client(mock_server, client, models_payload):
    """A client whose discovery has been mocked; call initialize() in the test."""
    mock_server.get("/v1/models").mock(return_value=Response(200, json=models_payload))
    return client


def hello_request() -> ChatRequest:
    return ChatRequest(messages=[WireMessage(role="user", content="Say hello")])


def completion_body(content="Hello!", tool_calls=None, finish_reason="stop") -> dict:
    message = {"role": "assistant", "content": content}
    if tool_calls is not None:
        message["tool_calls"] = tool_calls
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "model": MODEL_PATH,
        "choices": [{"index": 0, "message": message, "finish_reason": finish_reason}],
        "usage": {"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15},
    }


def event_stream(body: str) -> Response:
    return Response(200, content=body.encode(), headers=SSE_HEADERS)


async def collect(client: LlamaCppClient, request: ChatRequest) -> list:
    return [event async for event in client.completion_stream(request)]


class TestDisplayName:
    """Tests for extract_display_name."""

    @pytest.mark.parametrize(
        ("identifier", "expected"),
        [
            (MODEL_PATH, "gemma-3-27b-it.Q8_0"),
            ("qwen2.5-7b-instruct", "qwen2.5-7b-instruct"),
            ("C:\\models\\Llama-3.2-3B.GGUF", "Llama-3.2-3B"),
            ("models/phi-4.gguf/", "phi-4"),
            ("", ""),
        ],
    )
    def test_extract(self, identifier, expected):
        """Path components and the .gguf suffix are removed."""
        assert extract_display_name(identifier) == expected


class TestConstruction:
    """Tests for client construction."""

    def test_empty_base_url(self):
        """An empty base URL is a configuration error."""
        with pytest.raises(ConfigurationError):
            LlamaCppClient(base_url="  ")

    def test_trailing_slash_stripped(self):
        """The base URL is normalized."""
        assert LlamaCppClient(base_url="http://h:1/").base_url == "http://h:1"

    def test_not_initialized(self, client):
        """A fresh client has no model yet."""
        assert not client.is_initialized
        assert client.model == ""
        assert client.display_name == DEFAULT_DISPLAY_NAME


class TestDiscovery:
    """Tests for initialize()."""

    @pytest.mark.asyncio
    async def test_llamacpp_listing(self, ready_client):
        """The first llama.cpp model is used and shortened for display."""
        await ready_client.initialize()

        assert ready_client.is_initialized
        assert ready_client.model == MODEL_PATH
        assert ready_client.display_name == "gemma-3-27b-it.Q8_0"

    @pytest.mark.asyncio
    async def test_openai_listing(self, mock_server, client, openai_models_payload):
        """The OpenAI listing shape is accepted."""
        mock_server.get("/v1/models").mock(
            return_value=Response(200, json=openai_models_payload)
        )
        await client.initialize()

        assert client.model == "qwen2.5-7b-instruct"
        assert client.display_name == "qwen2.5-7b-instruct"

    @pytest.mark.asyncio
    async def test_runs_once(self, mock_server, client, models_payload):
        """Repeated and concurrent initialize() calls discover once."""
        route = mock_server.get("/v1/models").mock(
            return_value=Response(200, json=models_payload)
        )

        await asyncio.gather(client.initialize(), client.initialize(), client.initialize())
        await client.initialize()

        assert route.call_count == 1

    @pytest.mark.asyncio
    async def test_no_models(self, mock_server, client):
        """An empty listing fails discovery."""
        mock_server.get("/v1/models").mock(
            return_value=Response(200, json={"models": [], "data": []})
        )

        with pytest.raises(DiscoveryError, match="No models available"):
            await client.initialize()
        assert not client.is_initialized

    @pytest.mark.asyncio
    async def test_error_status(self, mock_server, client):
        """A non-success status fails discovery with the status in the message."""
        mock_server.get("/v1/models").mock(return_value=Response(503))

        with pytest.raises(DiscoveryError, match="503"):
            await client.initialize()

    @pytest.mark.asyncio
    async def test_unrecognized_listing(self, mock_server, client):
        """A body that is not a listing fails discovery."""
        mock_server.get("/v1/models").mock(return_value=Response(200, text="<html>"))

        with pytest.raises(DiscoveryError):
            await client.initialize()

    @pytest.mark.asyncio
    async def test_unreachable(self, mock_server, client):
        """A connection failure is a discovery error."""
        mock_server.get("/v1/models").mock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(DiscoveryError, match="Cannot reach"):
            await client.initialize()

    @pytest.mark.asyncio
    async def test_timeout(self, mock_server, client):
        """A timed-out listing raises RequestTimeoutError."""
        mock_server.get("/v1/models").mock(side_effect=httpx.ConnectTimeout("slow"))

        with pytest.raises(RequestTimeoutError) as exc_info:
            await client.initialize()
        assert isinstance(exc_info.value, TimeoutError)

    @pytest.mark.asyncio
    async def test_retry_after_failure(self, mock_server, client, models_payload):
        """A failed discovery can be retried."""
        mock_server.get("/v1/models").mock(
            side_effect=[Response(500), Response(200, json=models_payload)]
        )

        with pytest.raises(DiscoveryError):
            await client.initialize()
        await client.initialize()

        assert client.model == MODEL_PATH


class TestBuildRequest:
    """Tests for request construction."""

    @pytest.mark.asyncio
    async def test_defaults(self, ready_client):
        """The discovered model and default temperature are filled in."""
        await ready_client.initialize()
        payload = ready_client.build_request(hello_request(), stream=False).to_payload()

        assert payload == {
            "model": MODEL_PATH,
            "messages": [{"role": "user", "content": "Say hello"}],
            "temperature": 0.0,
            "stream": False,
        }

    @pytest.mark.asyncio
    async def test_overrides_and_tools(self, ready_client):
        """Explicit values and tools are sent."""
        await ready_client.initialize()
        request = ChatRequest(
            messages=[WireMessage(role="user", content="hi")],
            temperature=0.7,
            max_tokens=64,
            tools=[WireTool(function=WireFunctionDefinition(name="ping"))],
        )
        payload = ready_client.build_request(request, stream=True).to_payload()

        assert payload["temperature"] == 0.7
        assert payload["max_tokens"] == 64
        assert payload["stream"] is True
        assert payload["tools"] == [{"type": "function", "function": {"name": "ping"}}]

    @pytest.mark.asyncio
    async def test_client_default_max_tokens(self, mock_server, models_payload):
        """Client-level defaults apply when the request sets none."""
        mock_server.get("/v1/models").mock(return_value=Response(200, json=models_payload))
        client = LlamaCppClient(BASE_URL, default_temperature=0.2, default_max_tokens=128)
        await client.initialize()

        payload = client.build_request(hello_request(), stream=False).to_payload()

        assert payload["temperature"] == 0.2
        assert payload["max_tokens"] == 128


class TestCompletion:
    """Tests for single-shot completions."""

    @pytest.mark.asyncio
    async def test_requires_initialize(self, client):
        """Completions before discovery are a programming error."""
        with pytest.raises(RuntimeError):
            await client.completion(hello_request())

    @pytest.mark.asyncio
    async def test_text(self, mock_server, ready_client):
        """A text completion returns content, usage and finish reason."""
        route = mock_server.post("/v1/chat/completions").mock(
            return_value=Response(200, json=completion_body())
        )
        await ready_client.initialize()

        result = await ready_client.completion(hello_request())

        assert result.content == "Hello!"
        assert result.model == "gemma-3-27b-it.Q8_0"
        assert result.tool_calls is None
        assert result.usage.prompt_tokens == 12
        assert result.finish_reason == "stop"

        sent = json.loads(route.calls.last.request.content)
        assert sent["model"] == MODEL_PATH
        assert sent["stream"] is False

    @pytest.mark.asyncio
    async def test_tool_calls(self, mock_server, ready_client):
        """Tool calls in the message are returned."""
        tool_calls = [
            {
                "id": "call_1",
                "type": "function",
                "function": {"name": "get_weather", "arguments": '{"city":"Oslo"}'},
            }
        ]
        mock_server.post("/v1/chat/completions").mock(
            return_value=Response(
                200, json=completion_body(None, tool_calls, finish_reason="tool_calls")
            )
        )
        await ready_client.initialize()

        result = await ready_client.completion(hello_request())

        assert result.content == ""
        assert result.tool_calls[0].id == "call_1"
        assert result.tool_calls[0].function.name == "get_weather"

    @pytest.mark.asyncio
    async def test_error_status_with_message(self, mock_server, ready_client):
        """The server's error message is surfaced with the status."""
        mock_server.post("/v1/chat/completions").mock(
            return_value=Response(
                400, json={"error": {"code": 400, "message": "context too long"}}
            )
        )
        await ready_client.initialize()

        with pytest.raises(UpstreamError) as exc_info:
            await ready_client.completion(hello_request())

        assert exc_info.value.status_code == 400
        assert "context too long" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_error_status_plain(self, mock_server, ready_client):
        """A non-JSON error body falls back to the reason phrase."""
        mock_server.post("/v1/chat/completions").mock(return_value=Response(500, text="oops"))
        await ready_client.initialize()

        with pytest.raises(UpstreamError, match="500 Internal Server Error"):
            await ready_client.completion(hello_request())

    @pytest.mark.asyncio
    async def test_no_choices(self, mock_server, ready_client):
        """A success body without a message is malformed."""
        mock_server.post("/v1/chat/completions").mock(
            return_value=Response(200, json={"id": "x", "choices": []})
        )
        await ready_client.initialize()

        with pytest.raises(MalformedResponseError, match="No message"):
            await ready_client.completion(hello_request())

    @pytest.mark.asyncio
    async def test_not_a_completion(self, mock_server, ready_client):
        """A success body that is not JSON is malformed."""
        mock_server.post("/v1/chat/completions").mock(return_value=Response(200, text="hi"))
        await ready_client.initialize()

        with pytest.raises(MalformedResponseError):
            await ready_client.completion(hello_request())

    @pytest.mark.asyncio
    async def test_timeout(self, mock_server, ready_client):
        """A read timeout raises RequestTimeoutError."""
        mock_server.post("/v1/chat/completions").mock(side_effect=httpx.ReadTimeout("slow"))
        await ready_client.initialize()

        with pytest.raises(RequestTimeoutError, match="timed out after 5s"):
            await ready_client.completion(hello_request())

    @pytest.mark.asyncio
    async def test_connection_failure(self, mock_server, ready_client):
        """A dropped connection raises ServerUnavailableError."""
        mock_server.post("/v1/chat/completions").mock(
            side_effect=httpx.RemoteProtocolError("peer closed")
        )
        await ready_client.initialize()

        with pytest.raises(ServerUnavailableError):
            await ready_client.completion(hello_request())


class TestCompletionStream:
    """Tests for streaming completions."""

    @pytest.mark.asyncio
    async def test_requires_initialize(self, client):
        """Streaming before discovery is a programming error."""
        with pytest.raises(RuntimeError):
            await collect(client, hello_request())

    @pytest.mark.asyncio
    async def test_text(self, mock_server, ready_client, sse_body, chunk):
        """Text deltas arrive in order and the request asks for a stream."""
        route = mock_server.post("/v1/chat/completions").mock(
            return_value=event_stream(sse_body(chunk("Hel"), chunk("lo"), chunk("!")))
        )
        await ready_client.initialize()

        events = await collect(ready_client, hello_request())

        assert events == [TextDelta("Hel"), TextDelta("lo"), TextDelta("!")]
        assert json.loads(route.calls.last.request.content)["stream"] is True

    @pytest.mark.asyncio
    async def test_tool_calls_batched_last(
        self, mock_server, ready_client, sse_body, chunk, fragment
    ):
        """Fragmented tool calls come out as one batch after all text."""
        body = sse_body(
            chunk("Checking. "),
            chunk(None, fragment(0, "call_1", "get_weather")),
            chunk(None, fragment(0, arguments='{"city":')),
            chunk(None, fragment(0, arguments='"Oslo"}')),
            chunk(None, fragment(0, "call_2", "get_time", "{}")),
        )
        mock_server.post("/v1/chat/completions").mock(return_value=event_stream(body))
        await ready_client.initialize()

        events = await collect(ready_client, hello_request())

        assert events[0] == TextDelta("Checking. ")
        assert isinstance(events[-1], ToolCallBatch)
        assert len(events) == 2
        calls = events[-1].tool_calls
        assert [c.id for c in calls] == ["call_1", "call_2"]
        assert calls[0].function.arguments == '{"city":"Oslo"}'
        assert calls[1].function.name == "get_time"

    @pytest.mark.asyncio
    async def test_missing_done(self, mock_server, ready_client, sse_body, chunk, fragment):
        """End of transport without [DONE] still delivers the batch."""
        body = sse_body(chunk(None, fragment(0, "call_1", "ping", "{}")), done=False)
        mock_server.post("/v1/chat/completions").mock(return_value=event_stream(body))
        await ready_client.initialize()

        events = await collect(ready_client, hello_request())

        assert len(events) == 1
        assert events[0].tool_calls[0].function.name == "ping"

    @pytest.mark.asyncio
    async def test_data_after_done_ignored(self, mock_server, ready_client, sse_body, chunk):
        """Nothing after [DONE] is read."""
        body = sse_body(chunk("a")) + "data: " + json.dumps(chunk("late")) + "\n\n"
        mock_server.post("/v1/chat/completions").mock(return_value=event_stream(body))
        await ready_client.initialize()

        assert await collect(ready_client, hello_request()) == [TextDelta("a")]

    @pytest.mark.asyncio
    async def test_malformed_chunk_skipped(
        self, mock_server, ready_client, sse_body, chunk, caplog
    ):
        """Undecodable chunks are logged and skipped."""
        body = sse_body(chunk("a"), "{not json", chunk("b"))
        body = ": keep-alive\n\n" + body
        mock_server.post("/v1/chat/completions").mock(return_value=event_stream(body))
        await ready_client.initialize()

        with caplog.at_level(logging.WARNING, logger="llama_cli.llm.llamacpp"):
            events = await collect(ready_client, hello_request())

        assert events == [TextDelta("a"), TextDelta("b")]
        assert "Failed to parse streaming chunk" in caplog.text

    @pytest.mark.asyncio
    async def test_error_status(self, mock_server, ready_client):
        """A non-success stream status raises UpstreamError with the server message."""
        mock_server.post("/v1/chat/completions").mock(
            return_value=Response(500, json={"error": {"message": "model crashed"}})
        )
        await ready_client.initialize()

        with pytest.raises(UpstreamError, match="model crashed"):
            await collect(ready_client, hello_request())

    @pytest.mark.asyncio
    async def test_timeout(self, mock_server, ready_client):
        """A timed-out stream raises RequestTimeoutError."""
        mock_server.post("/v1/chat/completions").mock(side_effect=httpx.ReadTimeout("slow"))
        await ready_client.initialize()

        with pytest.raises(RequestTimeoutError):
            await collect(ready_client, hello_request())

    @pytest.mark.asyncio
    async def test_connection_failure(self, mock_server, ready_client):
        """A refused stream raises ServerUnavailableError."""
        mock_server.post("/v1/chat/completions").mock(side_effect=httpx.ConnectError("refused"))
        await ready_client.initialize()

        with pytest.raises(ServerUnavailableError):
            await collect(ready_client, hello_request())

    @pytest.mark.asyncio
    async def test_early_stop_releases_connection(
        self, mock_server, ready_client, tracked_stream, chunk, fragment
    ):
        """A consumer that stops early gets no batch and the body is closed."""
        body = tracked_stream(chunk("first"), chunk(None, fragment(0, "call_1", "f", "{}")))
        mock_server.post("/v1/chat/completions").mock(
            return_value=Response(200, stream=body, headers=SSE_HEADERS)
        )
        await ready_client.initialize()

        stream = ready_client.completion_stream(hello_request())
        events = []
        async for event in stream:
            events.append(event)
            break
        await stream.aclose()

        assert events == [TextDelta("first")]
        assert body.closed

    @pytest.mark.asyncio
    async def test_timeout_mid_stream_releases_connection(
        self, mock_server, ready_client, tracked_stream, chunk
    ):
        """A read timeout after some text raises and still closes the body."""
        body = tracked_stream(chunk("partial"), done=False, error=httpx.ReadTimeout("stalled"))
        mock_server.post("/v1/chat/completions").mock(
            return_value=Response(200, stream=body, headers=SSE_HEADERS)
        )
        await ready_client.initialize()

        events = []
        with pytest.raises(RequestTimeoutError):
            async for event in ready_client.completion_stream(hello_request()):
                events.append(event)

        assert events == [TextDelta("partial")]
        assert body.closed

    @pytest.mark.asyncio
    async def test_cancel_with_open_tool_call(
        self, mock_server, ready_client, tracked_stream, chunk, fragment
    ):
        """Cancelling mid-call propagates and never delivers the partial tool call."""
        body = tracked_stream(
            chunk("Checking. "),
            chunk(None, fragment(0, "call_1", "get_weather", '{"city":')),
            done=False,
            pause_after=1,
        )
        mock_server.post("/v1/chat/completions").mock(
            return_value=Response(200, stream=body, headers=SSE_HEADERS)
        )
        await ready_client.initialize()

        events = []

        async def consume():
            async for event in ready_client.completion_stream(hello_request()):
                events.append(event)

        task = asyncio.create_task(consume())
        await asyncio.wait_for(body.paused.wait(), timeout=2.0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert events == [TextDelta("Checking. ")]
        assert not any(isinstance(event, ToolCallBatch) for event in events)
        assert body.closed
