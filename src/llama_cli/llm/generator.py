"""
generator.py

PURPOSE: ContentGenerator backed by a llama.cpp server.
DEPENDENCIES: httpx (via LlamaCppClient)

ARCHITECTURE NOTES:
This is the seam between the canonical conversation model and the wire client:
requests are translated on the way in, responses and stream events on the way
out. It holds no state besides the client.

Clients are cached per base URL for the life of the process, so discovery runs
once no matter how many generators are created.
"""

from __future__ import annotations

import contextlib
import json
import logging
import math
from collections.abc import AsyncIterator, Sequence
from typing import TYPE_CHECKING

from llama_cli.auth import resolve_server_settings
from llama_cli.errors import UnsupportedOperationError
from llama_cli.llm.assembler import TextDelta
from llama_cli.llm.llamacpp import ChatRequest, LlamaCppClient
from llama_cli.llm.messages import ContentGenerator, GenerateRequest, GenerateResponse
from llama_cli.llm.translate import (
    invocations_from_wire,
    messages_to_wire,
    response_from_wire,
    tool_declarations_to_wire,
)

if TYPE_CHECKING:
    from llama_cli.config import ServerSettings, Settings

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4

_clients: dict[str, LlamaCppClient] = {}


def estimate_tokens(request: GenerateRequest) -> int:
    """
    Cheap token estimate: one token per four characters of content.

    Counts message text, tool call names and arguments, and the JSON
    rendering of tool results.
    """
    total = 0
    for message in request.messages:
        total += len(message.text)
        for invocation in message.tool_invocations:
            total += len(invocation.name) + len(invocation.arguments)
        if message.tool_result is not None:
            total += len(json.dumps(message.tool_result.content))
    return math.ceil(total / CHARS_PER_TOKEN)


class LlamaCppContentGenerator(ContentGenerator):
    """ContentGenerator that talks to an initialized LlamaCppClient."""

    def __init__(self, client: LlamaCppClient):
        self._client = client

    @property
    def client(self) -> LlamaCppClient:
        return self._client

    @property
    def model_name(self) -> str:
        return self._client.display_name

    def _chat_request(self, request: GenerateRequest) -> ChatRequest:
        return ChatRequest(
            messages=messages_to_wire(request.messages),
            temperature=request.temperature,
            max_tokens=request.max_output_tokens,
            tools=tool_declarations_to_wire(request.tools) or None,
        )

    async def generate(self, request: GenerateRequest) -> GenerateResponse:
        result = await self._client.completion(self._chat_request(request))
        return response_from_wire(
            content=result.content,
            tool_calls=result.tool_calls,
            usage=result.usage,
            finish_reason=result.finish_reason,
            model=result.model,
        )

    async def generate_stream(self, request: GenerateRequest) -> AsyncIterator[GenerateResponse]:
        model = self.model_name
        stream = self._client.completion_stream(self._chat_request(request))
        async with contextlib.aclosing(stream):
            async for event in stream:
                if isinstance(event, TextDelta):
                    yield GenerateResponse(text=event.text, model=model)
                else:
                    yield GenerateResponse(
                        tool_invocations=invocations_from_wire(event.tool_calls),
                        finish_reason="tool_calls",
                        model=model,
                    )

    async def count_tokens(self, request: GenerateRequest) -> int:
        return estimate_tokens(request)

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        raise UnsupportedOperationError("Embedding is not supported by llama.cpp server")


def get_client(server: ServerSettings) -> LlamaCppClient:
    """Return the process-wide client for the server's base URL, creating it once."""
    key = server.base_url.strip().rstrip("/")
    client = _clients.get(key)
    if client is None:
        client = LlamaCppClient(
            base_url=server.base_url,
            discovery_timeout=server.discovery_timeout,
            request_timeout=server.request_timeout,
            default_temperature=server.temperature,
            default_max_tokens=server.max_tokens,
        )
        _clients[key] = client
    return client


def reset_client_cache() -> None:
    """Forget all cached clients (next use rediscovers the model)."""
    _clients.clear()


async def create_content_generator(settings: Settings) -> LlamaCppContentGenerator:
    """
    Build a ready-to-use content generator from settings.

    Args:
        settings: Application settings

    Returns:
        LlamaCppContentGenerator whose client has discovered the served model

    Raises:
        ConfigurationError: Unsupported auth method or missing base URL
        DiscoveryError: The server could not be queried for its model
        RequestTimeoutError: Discovery timed out
    """
    server = resolve_server_settings(settings)
    client = get_client(server)
    await client.initialize()
    logger.debug(f"Content generator ready: {client.display_name}")
    return LlamaCppContentGenerator(client)
