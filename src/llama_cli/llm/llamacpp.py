"""
llamacpp.py

PURPOSE: Client for a llama.cpp server speaking the OpenAI-compatible HTTP API.
DEPENDENCIES: httpx, pydantic

ARCHITECTURE NOTES:
The client owns the server base URL and the identity of the model the server is
serving. It supports:
- Model discovery (GET /v1/models), done once per client
- Single-shot chat completions
- Streaming chat completions with tool-call reassembly (see assembler.py)
- OpenTelemetry tracing and request metrics (when enabled)

Every call makes exactly one attempt. Each is bounded by a timeout and maps
httpx failures onto the errors in llama_cli.errors. Streaming responses are
read inside `async with` blocks so the connection is released however the
consumer stops: normal end, early break followed by aclose(), error or
cancellation.
"""

import asyncio
import json
import logging
import re
import time
from collections.abc import AsyncIterator, Awaitable, Sequence
from dataclasses import dataclass
from typing import TypeVar

import httpx
from pydantic import ValidationError

from llama_cli.errors import (
    ConfigurationError,
    DiscoveryError,
    MalformedResponseError,
    RequestTimeoutError,
    ServerUnavailableError,
    UpstreamError,
)
from llama_cli.llm.assembler import StreamEvent, ToolCallAssembler
from llama_cli.llm.wire import (
    ChatCompletionChunk,
    ChatCompletionRequest,
    ChatCompletionResponse,
    ModelsResponse,
    Usage,
    WireMessage,
    WireTool,
    WireToolCall,
)
from llama_cli.observability import get_tracer, record_api_request, record_token_usage
from llama_cli.observability.constants import (
    EVENT_API_ERROR,
    EVENT_API_RESPONSE,
    SPAN_API_REQUEST,
    SPAN_API_STREAM,
    SPAN_DISCOVERY,
)

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

T = TypeVar("T")

MODELS_PATH = "/v1/models"
CHAT_COMPLETIONS_PATH = "/v1/chat/completions"
DONE_MARKER = "[DONE]"
DEFAULT_DISPLAY_NAME = "llama.cpp"

_HEADERS = {"Content-Type": "application/json"}
_PATH_SEPARATORS = re.compile(r"[/\\]+")
_MODEL_SUFFIX = ".gguf"


@dataclass
class ChatRequest:
    """A chat completion request in wire terms, minus the model and stream flag."""

    messages: Sequence[WireMessage]
    temperature: float | None = None
    max_tokens: int | None = None
    tools: Sequence[WireTool] | None = None


@dataclass
class CompletionResult:
    """Result of a single-shot completion."""

    content: str
    model: str
    tool_calls: list[WireToolCall] | None = None
    usage: Usage | None = None
    finish_reason: str | None = None


def extract_display_name(identifier: str) -> str:
    """
    Derive a short display name from a model identifier.

    "/models/GGUF/google/gemma-3-27b-it/gemma-3-27b-it.Q8_0.gguf"
    becomes "gemma-3-27b-it.Q8_0".
    """
    parts = [p for p in _PATH_SEPARATORS.split(identifier) if p]
    filename = parts[-1] if parts else ""
    if filename.lower().endswith(_MODEL_SUFFIX):
        filename = filename[: -len(_MODEL_SUFFIX)]
    return filename


def parse_server_error(response: httpx.Response) -> str:
    """Extract a readable error message from an error response."""
    try:
        data = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        data = None

    # llama.cpp returns {"error": {"message": "..."}} or {"error": "..."}
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error

    return response.reason_phrase or response.text[:200]


def _sse_data(line: str) -> str | None:
    """Return the payload of a `data:` line, or None for any other line."""
    line = line.strip()
    if not line.startswith("data:"):
        return None
    return line[len("data:") :].strip()


class LlamaCppClient:
    """
    Client for a single llama.cpp server.

    Call initialize() once before any completion; it discovers which model
    the server is serving and caches it for the life of the client.
    """

    def __init__(
        self,
        base_url: str,
        discovery_timeout: float = 10.0,
        request_timeout: float = 300.0,
        default_temperature: float = 0.0,
        default_max_tokens: int | None = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Server base URL, e.g. "http://localhost:8080".
            discovery_timeout: Timeout in seconds for model discovery.
            request_timeout: Timeout in seconds for completion calls.
            default_temperature: Temperature used when a request sets none.
            default_max_tokens: max_tokens used when a request sets none.
        """
        base_url = base_url.strip().rstrip("/")
        if not base_url:
            raise ConfigurationError("llama.cpp server base URL is empty")

        self._base_url = base_url
        self._discovery_timeout = discovery_timeout
        self._request_timeout = request_timeout
        self._default_temperature = default_temperature
        self._default_max_tokens = default_max_tokens
        self._model = ""
        self._display_name = DEFAULT_DISPLAY_NAME
        self._init_lock = asyncio.Lock()

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def model(self) -> str:
        """Raw identifier of the discovered model ("" before initialize())."""
        return self._model

    @property
    def display_name(self) -> str:
        return self._display_name

    @property
    def is_initialized(self) -> bool:
        return bool(self._model)

    # ------------------------------------------------------------------------
    # Transport helpers
    # ------------------------------------------------------------------------

    async def _send(self, method: str, path: str, timeout: float, **kwargs: object) -> httpx.Response:
        async with httpx.AsyncClient(timeout=timeout) as http:
            return await http.request(
                method,
                f"{self._base_url}{path}",
                headers=_HEADERS,
                **kwargs,  # type: ignore[arg-type]
            )

    async def _bounded(self, call: Awaitable[T], operation: str, timeout: float) -> T:
        """Await `call`, cancelling it and raising RequestTimeoutError past `timeout`."""
        try:
            return await asyncio.wait_for(call, timeout)
        except (httpx.TimeoutException, TimeoutError) as e:
            raise RequestTimeoutError(operation, timeout) from e

    def _require_model(self) -> None:
        if not self._model:
            raise RuntimeError("LlamaCppClient.initialize() must be called before completions")

    # ------------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------------

    async def initialize(self) -> None:
        """
        Discover the served model and cache its identifier and display name.

        Concurrent callers wait for the first discovery; later calls return
        immediately.

        Raises:
            DiscoveryError: Server unreachable, non-success status, unreadable
                listing, or no models listed.
            RequestTimeoutError: Discovery exceeded discovery_timeout.
        """
        async with self._init_lock:
            if self._model:
                return

            with tracer.start_as_current_span(SPAN_DISCOVERY) as span:
                span.set_attribute("llm.base_url", self._base_url)
                url = f"{self._base_url}{MODELS_PATH}"
                logger.debug(f"Discovering models at {url}")

                try:
                    response = await self._bounded(
                        self._send("GET", MODELS_PATH, self._discovery_timeout),
                        "Model discovery",
                        self._discovery_timeout,
                    )
                except httpx.HTTPError as e:
                    span.record_exception(e)
                    raise DiscoveryError(f"Cannot reach llama.cpp server at {url}: {e}") from e

                if not response.is_success:
                    raise DiscoveryError(
                        f"Failed to fetch models: {response.status_code} {response.reason_phrase}"
                    )

                try:
                    listing = ModelsResponse.model_validate_json(response.content)
                except ValidationError as e:
                    raise DiscoveryError(f"Unrecognized model listing from {url}") from e

                identifier = listing.first_identifier()
                if not identifier:
                    raise DiscoveryError("No models available from llama.cpp server")

                self._model = identifier
                self._display_name = extract_display_name(identifier) or DEFAULT_DISPLAY_NAME
                span.set_attribute("llm.model", self._model)
                logger.info(f"Discovered model {self._display_name} ({self._model})")

    # ------------------------------------------------------------------------
    # Completions
    # ------------------------------------------------------------------------

    def build_request(self, request: ChatRequest, stream: bool) -> ChatCompletionRequest:
        """Fill in model, defaults and the stream flag."""
        temperature = request.temperature
        if temperature is None:
            temperature = self._default_temperature
        max_tokens = request.max_tokens
        if max_tokens is None:
            max_tokens = self._default_max_tokens

        return ChatCompletionRequest(
            model=self._model,
            messages=list(request.messages),
            temperature=temperature,
            max_tokens=max_tokens,
            stream=stream,
            tools=list(request.tools) if request.tools else None,
        )

    async def completion(self, request: ChatRequest) -> CompletionResult:
        """
        Run a single-shot (non-streaming) chat completion.

        Args:
            request: Messages, sampling parameters and tool declarations.

        Returns:
            CompletionResult with text ("" if none), tool calls and usage.

        Raises:
            UpstreamError: Non-success HTTP status.
            MalformedResponseError: Body is not a completion or has no message.
            RequestTimeoutError: The call exceeded request_timeout.
            ServerUnavailableError: The connection failed.
        """
        self._require_model()
        body = self.build_request(request, stream=False)

        with tracer.start_as_current_span(SPAN_API_REQUEST) as span:
            span.set_attribute("llm.model", self._model)
            span.set_attribute("llm.message_count", len(body.messages))
            span.set_attribute("llm.tool_count", len(body.tools or []))
            if body.temperature is not None:
                span.set_attribute("llm.temperature", body.temperature)

            start_time = time.perf_counter()
            logger.debug(f"Sending request to {self._display_name}")

            try:
                response = await self._bounded(
                    self._send(
                        "POST",
                        CHAT_COMPLETIONS_PATH,
                        self._request_timeout,
                        json=body.to_payload(),
                    ),
                    "Chat completion",
                    self._request_timeout,
                )
            except RequestTimeoutError as e:
                span.record_exception(e)
                record_api_request(self._model, _elapsed_ms(start_time), "timeout")
                raise
            except httpx.HTTPError as e:
                span.record_exception(e)
                record_api_request(self._model, _elapsed_ms(start_time), "connection_error")
                raise ServerUnavailableError(f"Request to llama.cpp server failed: {e}") from e

            elapsed_ms = _elapsed_ms(start_time)
            record_api_request(self._model, elapsed_ms, response.status_code)
            span.set_attribute("llm.latency_ms", elapsed_ms)
            span.set_attribute("http.status_code", response.status_code)

            if not response.is_success:
                error = UpstreamError(response.status_code, parse_server_error(response))
                span.add_event(EVENT_API_ERROR, {"status_code": response.status_code})
                raise error

            try:
                parsed = ChatCompletionResponse.model_validate_json(response.content)
            except ValidationError as e:
                raise MalformedResponseError("Response is not a chat completion") from e

            choice = parsed.choices[0] if parsed.choices else None
            if choice is None or choice.message is None:
                raise MalformedResponseError("No message in response")

            message = choice.message
            if parsed.usage is not None:
                span.set_attribute("llm.input_tokens", parsed.usage.prompt_tokens)
                span.set_attribute("llm.output_tokens", parsed.usage.completion_tokens)
                record_token_usage(
                    self._model, parsed.usage.prompt_tokens, parsed.usage.completion_tokens
                )
            span.add_event(EVENT_API_RESPONSE, {"tool_calls": len(message.tool_calls or [])})
            logger.debug(
                f"Response: {len(message.content or '')} chars, "
                f"{len(message.tool_calls or [])} tool call(s)"
            )

            return CompletionResult(
                content=message.content or "",
                model=self._display_name,
                tool_calls=message.tool_calls or None,
                usage=parsed.usage,
                finish_reason=choice.finish_reason,
            )

    async def completion_stream(self, request: ChatRequest) -> AsyncIterator[StreamEvent]:
        """
        Run a streaming chat completion.

        Text arrives as TextDelta events in decode order. Tool calls are
        reassembled and delivered as one ToolCallBatch, always the final event.
        A missing [DONE] marker is treated like a normal end of stream.

        Args:
            request: Messages, sampling parameters and tool declarations.

        Yields:
            TextDelta and, at most once, ToolCallBatch.

        Raises:
            UpstreamError: Non-success HTTP status.
            RequestTimeoutError: Connecting or a read exceeded request_timeout.
            ServerUnavailableError: The connection failed.
        """
        self._require_model()
        body = self.build_request(request, stream=True)
        assembler = ToolCallAssembler()
        usage: Usage | None = None
        status: int | str = "error"
        start_time = time.perf_counter()

        with tracer.start_span(SPAN_API_STREAM) as span:
            span.set_attribute("llm.model", self._model)
            span.set_attribute("llm.message_count", len(body.messages))
            span.set_attribute("llm.tool_count", len(body.tools or []))
            logger.debug(f"Streaming request to {self._display_name}")

            try:
                async with httpx.AsyncClient(timeout=self._request_timeout) as http:
                    async with http.stream(
                        "POST",
                        f"{self._base_url}{CHAT_COMPLETIONS_PATH}",
                        json=body.to_payload(),
                        headers=_HEADERS,
                    ) as response:
                        status = response.status_code
                        if not response.is_success:
                            await response.aread()
                            raise UpstreamError(response.status_code, parse_server_error(response))

                        async for line in response.aiter_lines():
                            data = _sse_data(line)
                            if data is None:
                                continue
                            if data == DONE_MARKER:
                                break

                            try:
                                chunk = ChatCompletionChunk.model_validate_json(data)
                            except ValidationError as e:
                                logger.warning(f"Failed to parse streaming chunk: {e}")
                                continue

                            if chunk.usage is not None:
                                usage = chunk.usage
                            delta = chunk.first_delta()
                            if delta is None:
                                continue
                            for event in assembler.feed(delta):
                                yield event

                batch = assembler.finish()
                if batch is not None:
                    span.add_event(EVENT_API_RESPONSE, {"tool_calls": len(batch.tool_calls)})
                    yield batch
            except httpx.TimeoutException as e:
                status = "timeout"
                span.record_exception(e)
                raise RequestTimeoutError("Streaming chat completion", self._request_timeout) from e
            except httpx.HTTPError as e:
                status = "connection_error"
                span.record_exception(e)
                raise ServerUnavailableError(f"Stream from llama.cpp server failed: {e}") from e
            finally:
                assembler.discard()
                elapsed_ms = _elapsed_ms(start_time)
                span.set_attribute("llm.latency_ms", elapsed_ms)
                record_api_request(self._model, elapsed_ms, status)
                if usage is not None:
                    record_token_usage(self._model, usage.prompt_tokens, usage.completion_tokens)


def _elapsed_ms(start_time: float) -> float:
    return (time.perf_counter() - start_time) * 1000
