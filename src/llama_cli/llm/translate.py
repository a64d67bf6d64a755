"""
translate.py

PURPOSE: Convert between the canonical conversation model and the wire format.
DEPENDENCIES: pydantic (via wire models)

ARCHITECTURE NOTES:
Every function here is pure: same input, same output, no hidden state. The
only non-determinism is generate_tool_call_id(), which is used solely when the
server returns a tool call without an id.

Arguments are carried as JSON text on both sides. Whenever text crosses into
canonical form it is checked and replaced with "{}" if it does not decode.
"""

import json
import logging
import random
import string
import time
from collections.abc import Iterable, Sequence
from typing import Any

from llama_cli.llm.messages import (
    GenerateResponse,
    Message,
    Role,
    TokenUsage,
    ToolDeclaration,
    ToolInvocation,
    ToolResult,
)
from llama_cli.llm.wire import (
    Usage,
    WireFunctionCall,
    WireFunctionDefinition,
    WireMessage,
    WireTool,
    WireToolCall,
)

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_tool_call_id() -> str:
    """Generate a tool call id, unique within a conversation."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"call_{int(time.time() * 1000)}_{suffix}"


def normalize_arguments(raw: str | None) -> str:
    """
    Return `raw` if it is valid JSON text, otherwise "{}".

    Empty or missing arguments become "{}" as well.
    """
    if raw is None or not raw.strip():
        return "{}"
    try:
        json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Discarding undecodable tool arguments: {raw[:100]!r}")
        return "{}"
    return raw


# ============================================================================
# Tool declarations
# ============================================================================


def tool_declaration_to_wire(declaration: ToolDeclaration) -> WireTool:
    """Wrap a declaration in the `{"type": "function", ...}` envelope."""
    return WireTool(
        function=WireFunctionDefinition(
            name=declaration.name,
            description=declaration.description or None,
            parameters=declaration.parameters,
        )
    )


def tool_declarations_to_wire(declarations: Iterable[ToolDeclaration]) -> list[WireTool]:
    return [tool_declaration_to_wire(d) for d in declarations]


# ============================================================================
# Tool invocations
# ============================================================================


def invocation_to_wire(invocation: ToolInvocation) -> WireToolCall:
    return WireToolCall(
        id=invocation.id,
        function=WireFunctionCall(
            name=invocation.name,
            arguments=invocation.arguments,
        ),
    )


def invocation_from_wire(tool_call: WireToolCall) -> ToolInvocation:
    """Convert a wire tool call, generating an id if the server sent none."""
    return ToolInvocation(
        id=tool_call.id or generate_tool_call_id(),
        name=tool_call.function.name,
        arguments=normalize_arguments(tool_call.function.arguments),
    )


def invocations_from_wire(tool_calls: Iterable[WireToolCall] | None) -> tuple[ToolInvocation, ...]:
    if not tool_calls:
        return ()
    return tuple(invocation_from_wire(tc) for tc in tool_calls)


# ============================================================================
# Tool results
# ============================================================================


def result_to_wire(result: ToolResult) -> WireMessage:
    """Render a tool result as a `tool` message with JSON-encoded content."""
    return WireMessage(
        role="tool",
        content=json.dumps(result.content),
        tool_call_id=result.invocation_id,
        name=result.name,
    )


def result_from_wire(message: WireMessage) -> ToolResult:
    """
    Rebuild a ToolResult from a `tool` message.

    String content is decoded as JSON when possible and kept verbatim when not.
    """
    content: Any = message.content
    if isinstance(content, str):
        try:
            content = json.loads(content)
        except json.JSONDecodeError:
            pass  # Not JSON, keep the raw string
    return ToolResult(
        invocation_id=message.tool_call_id or "",
        name=message.name or "",
        content=content,
    )


# ============================================================================
# Messages
# ============================================================================


def message_to_wire(message: Message) -> list[WireMessage]:
    """
    Convert one canonical message to zero, one or two wire messages.

    - tool messages become exactly one `tool` message
    - a tool result riding on another role is emitted first, then the text
    - assistant messages with invocations are kept even with no text
    - anything else with blank text is dropped
    """
    if message.role == Role.TOOL:
        assert message.tool_result is not None
        return [result_to_wire(message.tool_result)]

    wire: list[WireMessage] = []
    if message.tool_result is not None:
        wire.append(result_to_wire(message.tool_result))

    text = message.text.strip()
    if message.tool_invocations:
        wire.append(
            WireMessage(
                role="assistant",
                content=text,
                tool_calls=[invocation_to_wire(inv) for inv in message.tool_invocations],
            )
        )
    elif text:
        wire.append(WireMessage(role=message.role.value, content=text))

    return wire


def messages_to_wire(messages: Sequence[Message]) -> list[WireMessage]:
    """Convert a conversation, preserving order."""
    wire: list[WireMessage] = []
    for message in messages:
        wire.extend(message_to_wire(message))
    return wire


# ============================================================================
# Responses
# ============================================================================


def usage_from_wire(usage: Usage | None) -> TokenUsage | None:
    if usage is None:
        return None
    return TokenUsage(
        prompt_tokens=usage.prompt_tokens,
        completion_tokens=usage.completion_tokens,
        total_tokens=usage.total_tokens,
    )


def response_from_wire(
    content: str,
    tool_calls: Iterable[WireToolCall] | None = None,
    usage: Usage | None = None,
    finish_reason: str | None = None,
    model: str = "",
) -> GenerateResponse:
    """Build a canonical response from the pieces of a wire completion."""
    invocations = invocations_from_wire(tool_calls)
    if finish_reason is None:
        finish_reason = "tool_calls" if invocations else "stop"
    return GenerateResponse(
        text=content,
        tool_invocations=invocations,
        usage=usage_from_wire(usage),
        finish_reason=finish_reason,
        model=model,
    )
