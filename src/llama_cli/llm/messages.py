"""
messages.py

PURPOSE: Provider-agnostic conversation model and the content generator interface.
DEPENDENCIES: None (pure Python + typing)

ARCHITECTURE NOTES:
This is the canonical form the rest of the assistant speaks: the chat session,
the terminal UI, and anything that stores history. Backends translate to and
from their own wire format (see translate.py) and implement ContentGenerator.

All types are frozen dataclasses. A conversation is an ordered sequence of
Messages; the order is the model's only memory, so nothing here reorders it.
"""

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class Role(str, Enum):
    """Who authored a message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class ToolInvocation:
    """A request from the model to run a tool."""

    id: str
    name: str
    arguments: str = "{}"  # JSON-encoded object

    def parsed_arguments(self) -> dict[str, Any]:
        """Decode the arguments, returning {} if they are not a JSON object."""
        try:
            value = json.loads(self.arguments)
        except json.JSONDecodeError:
            logger.warning(f"Tool call {self.id} has undecodable arguments")
            return {}
        return value if isinstance(value, dict) else {}


@dataclass(frozen=True)
class ToolResult:
    """The outcome of running a tool, addressed to one invocation."""

    invocation_id: str
    name: str
    content: Any = None  # Any JSON-serializable value


@dataclass(frozen=True)
class Message:
    """A single conversation turn."""

    role: Role
    text: str = ""
    tool_invocations: tuple[ToolInvocation, ...] = ()
    tool_result: ToolResult | None = None

    def __post_init__(self) -> None:
        if self.role == Role.TOOL and self.tool_result is None:
            raise ValueError("A tool message must carry a tool result")
        if self.tool_invocations and self.role != Role.ASSISTANT:
            raise ValueError("Only assistant messages can carry tool invocations")

    @classmethod
    def system(cls, text: str) -> "Message":
        return cls(role=Role.SYSTEM, text=text)

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(role=Role.USER, text=text)

    @classmethod
    def assistant(
        cls, text: str = "", tool_invocations: Sequence[ToolInvocation] = ()
    ) -> "Message":
        return cls(role=Role.ASSISTANT, text=text, tool_invocations=tuple(tool_invocations))

    @classmethod
    def tool(cls, result: ToolResult) -> "Message":
        return cls(role=Role.TOOL, tool_result=result)


@dataclass(frozen=True)
class ToolDeclaration:
    """A tool the model may call; `parameters` is a JSON schema passed through as-is."""

    name: str
    description: str = ""
    parameters: dict[str, Any] | None = None


@dataclass(frozen=True)
class GenerateRequest:
    """Everything needed for one generation call."""

    messages: Sequence[Message] = ()
    temperature: float | None = None
    max_output_tokens: int | None = None
    tools: Sequence[ToolDeclaration] = ()


@dataclass(frozen=True)
class TokenUsage:
    """Token counters as reported by the backend."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class GenerateResponse:
    """A full response, or one streamed piece of it."""

    text: str = ""
    tool_invocations: tuple[ToolInvocation, ...] = field(default_factory=tuple)
    usage: TokenUsage | None = None
    finish_reason: str | None = None
    model: str = ""

    @property
    def has_tool_invocations(self) -> bool:
        return bool(self.tool_invocations)


class ContentGenerator(ABC):
    """Abstract base class for generation backends."""

    @abstractmethod
    async def generate(self, request: GenerateRequest) -> GenerateResponse:
        """
        Produce a complete response in one call.

        Args:
            request: The conversation and generation parameters

        Returns:
            GenerateResponse with text and/or tool invocations
        """
        ...

    @abstractmethod
    def generate_stream(self, request: GenerateRequest) -> AsyncIterator[GenerateResponse]:
        """
        Produce a response incrementally.

        Args:
            request: The conversation and generation parameters

        Yields:
            Text pieces in arrival order, then at most one final piece
            carrying the tool invocations.
        """
        ...

    @abstractmethod
    async def count_tokens(self, request: GenerateRequest) -> int:
        """Estimate the number of prompt tokens in a request."""
        ...

    @abstractmethod
    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed texts into vectors."""
        ...

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the name of the model being used."""
        ...
