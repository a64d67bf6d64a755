"""
wire.py

PURPOSE: Pydantic models for the OpenAI-compatible chat-completions wire format.
DEPENDENCIES: pydantic

ARCHITECTURE NOTES:
These models are passive data definitions. Inbound JSON (model listings,
completions, streaming chunks) is validated into them at the HTTP boundary so
the rest of the package never touches loosely-shaped dicts.

Unknown fields are ignored. Optional fields that the server leaves out are None;
a field sent as an empty string stays "" so callers can tell the two apart.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

WireRole = Literal["system", "user", "assistant", "tool"]


# ============================================================================
# Tool calls and declarations
# ============================================================================


class WireFunctionCall(BaseModel):
    """The function half of a tool call: name plus JSON-encoded arguments."""

    model_config = ConfigDict(frozen=True)

    name: str = ""
    arguments: str = ""


class WireToolCall(BaseModel):
    """A complete tool call as it appears in an assistant message."""

    model_config = ConfigDict(frozen=True)

    id: str = ""
    type: Literal["function"] = "function"
    function: WireFunctionCall = Field(default_factory=WireFunctionCall)


class WireFunctionDefinition(BaseModel):
    """Declaration of a callable function offered to the model."""

    name: str
    description: str | None = None
    parameters: dict[str, Any] | None = None


class WireTool(BaseModel):
    """A tool entry in the request's `tools` array."""

    type: Literal["function"] = "function"
    function: WireFunctionDefinition


# ============================================================================
# Messages and requests
# ============================================================================


class WireMessage(BaseModel):
    """One entry of the `messages` array."""

    role: WireRole
    content: str | None = None
    tool_calls: list[WireToolCall] | None = None
    tool_call_id: str | None = None
    name: str | None = None


class ChatCompletionRequest(BaseModel):
    """Body of POST /v1/chat/completions."""

    model: str
    messages: list[WireMessage]
    temperature: float | None = None
    max_tokens: int | None = None
    stream: bool = False
    tools: list[WireTool] | None = None

    def to_payload(self) -> dict[str, Any]:
        """Render a JSON-ready dict, leaving out fields that were not set."""
        return self.model_dump(mode="json", exclude_none=True)


# ============================================================================
# Non-streaming responses
# ============================================================================


class Usage(BaseModel):
    """Token counters reported by the server."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class Choice(BaseModel):
    """One choice of a non-streaming completion."""

    index: int = 0
    message: WireMessage | None = None
    finish_reason: str | None = None


class ChatCompletionResponse(BaseModel):
    """Body of a non-streaming chat completion."""

    id: str | None = None
    model: str | None = None
    choices: list[Choice] = Field(default_factory=list)
    usage: Usage | None = None


# ============================================================================
# Streaming chunks
# ============================================================================


class FunctionDelta(BaseModel):
    """Partial function name / arguments carried by a tool-call delta."""

    name: str | None = None
    arguments: str | None = None


class ToolCallDelta(BaseModel):
    """One fragment of a tool call inside a streaming chunk."""

    index: int = 0  # Absent index means the first slot
    id: str | None = None
    type: str | None = None
    function: FunctionDelta | None = None


class ChunkDelta(BaseModel):
    """The `delta` object of a streaming choice."""

    role: str | None = None
    content: str | None = None
    tool_calls: list[ToolCallDelta] | None = None


class StreamChoice(BaseModel):
    """One choice of a streaming chunk."""

    index: int = 0
    delta: ChunkDelta = Field(default_factory=ChunkDelta)
    finish_reason: str | None = None


class ChatCompletionChunk(BaseModel):
    """A decoded `data:` payload of the event stream."""

    id: str | None = None
    model: str | None = None
    choices: list[StreamChoice] = Field(default_factory=list)
    usage: Usage | None = None

    def first_delta(self) -> ChunkDelta | None:
        """Return the delta of the first choice, if there is one."""
        if not self.choices:
            return None
        return self.choices[0].delta


# ============================================================================
# Model listing
# ============================================================================


class ServerModel(BaseModel):
    """llama.cpp-style model entry (`{"models": [{"name": ...}]}`)."""

    name: str
    model: str | None = None
    description: str | None = None


class OpenAIModel(BaseModel):
    """OpenAI-style model entry (`{"data": [{"id": ...}]}`)."""

    id: str
    object: str | None = None
    owned_by: str | None = None


class ModelsResponse(BaseModel):
    """Body of GET /v1/models in either of the two recognized shapes."""

    models: list[ServerModel] | None = None
    data: list[OpenAIModel] | None = None

    def first_identifier(self) -> str | None:
        """
        Return the identifier of the model to use.

        The llama.cpp `models` list wins when it has entries; otherwise the
        OpenAI `data` list is used. Returns None when both are empty.
        """
        if self.models:
            return self.models[0].name
        if self.data:
            return self.data[0].id
        return None
