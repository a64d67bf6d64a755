"""
conftest.py

Shared pytest fixtures for llama_cli tests.
"""

import asyncio
import json
from collections.abc import Callable

import httpx
import pytest

from llama_cli.llm.generator import reset_client_cache
from llama_cli.llm.llamacpp import LlamaCppClient

BASE_URL = "http://llama.test:8080"
MODEL_PATH = "/models/GGUF/google/gemma-3-27b-it/gemma-3-27b-it.Q8_0.gguf"


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Keep tests independent of the caller's environment, .env and cached clients."""
    for name in (
        "LLAMACPP_BASE_URL",
        "LLAMACPP_DISCOVERY_TIMEOUT",
        "LLAMACPP_REQUEST_TIMEOUT",
        "LLAMACPP_TEMPERATURE",
        "LLAMACPP_MAX_TOKENS",
        "LLAMA_CLI_AUTH_TYPE",
        "LLAMA_CLI_LOG_LEVEL",
        "LLAMA_CLI_DEBUG",
        "LLAMA_CLI_SYSTEM_PROMPT",
        "LLAMA_CLI_OTEL_ENABLED",
        "LLAMA_CLI_OTEL_ENDPOINT",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    reset_client_cache()
    yield
    reset_client_cache()


@pytest.fixture
def base_url() -> str:
    return BASE_URL


@pytest.fixture
def models_payload() -> dict:
    """A llama.cpp-style model listing."""
    return {"models": [{"name": MODEL_PATH, "model": MODEL_PATH}]}


@pytest.fixture
def openai_models_payload() -> dict:
    """An OpenAI-style model listing."""
    return {"object": "list", "data": [{"id": "qwen2.5-7b-instruct", "object": "model"}]}


@pytest.fixture
def sse_body() -> Callable[..., str]:
    """Build a server-sent-events body from chunk dicts, ending with [DONE] by default."""

    def build(*chunks: dict | str, done: bool = True) -> str:
        lines = []
        for item in chunks:
            data = item if isinstance(item, str) else json.dumps(item)
            lines.append(f"data: {data}\n\n")
        if done:
            lines.append("data: [DONE]\n\n")
        return "".join(lines)

    return build


@pytest.fixture
def chunk() -> Callable[..., dict]:
    """Build a streaming chunk from text and/or tool-call fragments."""

    def build(content: str | None = None, *fragments: dict, usage: dict | None = None) -> dict:
        delta: dict = {}
        if content is not None:
            delta["content"] = content
        if fragments:
            delta["tool_calls"] = list(fragments)
        payload: dict = {"choices": [{"index": 0, "delta": delta}]}
        if usage is not None:
            payload["usage"] = usage
        return payload

    return build


@pytest.fixture
def fragment() -> Callable[..., dict]:
    """Build one tool-call fragment as it appears inside a delta."""

    def build(
        index: int | None = 0,
        call_id: str | None = None,
        name: str | None = None,
        arguments: str | None = None,
    ) -> dict:
        data: dict = {}
        if index is not None:
            data["index"] = index
        if call_id is not None:
            data["id"] = call_id
            data["type"] = "function"
        function: dict = {}
        if name is not None:
            function["name"] = name
        if arguments is not None:
            function["arguments"] = arguments
        if function:
            data["function"] = function
        return data

    return build


@pytest.fixture
def client(base_url) -> LlamaCppClient:
    """An uninitialized client pointed at the mocked server."""
    return LlamaCppClient(base_url=base_url, discovery_timeout=2.0, request_timeout=5.0)


class TrackedStream(httpx.AsyncByteStream):
    """
    Streaming response body that records whether it was closed.

    It can pause forever after a given chunk (to cancel a consumer mid-stream)
    or raise an error once its chunks run out.
    """

    def __init__(
        self,
        chunks: list[str],
        pause_after: int | None = None,
        error: Exception | None = None,
    ) -> None:
        self._chunks = [c.encode() for c in chunks]
        self._pause_after = pause_after
        self._error = error
        self.paused = asyncio.Event()
        self.closed = False

    async def __aiter__(self):
        for position, data in enumerate(self._chunks):
            yield data
            if position == self._pause_after:
                self.paused.set()
                await asyncio.sleep(3600)
        if self._error is not None:
            raise self._error

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def tracked_stream() -> Callable[..., TrackedStream]:
    """Build a TrackedStream whose chunks are SSE events for the given payloads."""

    def build(
        *chunks: dict | str,
        done: bool = True,
        pause_after: int | None = None,
        error: Exception | None = None,
    ) -> TrackedStream:
        events = [
            f"data: {item if isinstance(item, str) else json.dumps(item)}\n\n" for item in chunks
        ]
        if done:
            events.append("data: [DONE]\n\n")
        return TrackedStream(events, pause_after=pause_after, error=error)

    return build
