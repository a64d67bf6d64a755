"""
chat.py

PURPOSE: A conversation with the model that survives failed turns.
DEPENDENCIES: ContentGenerator

ARCHITECTURE NOTES:
The session owns the conversation history. A turn builds the request from the
committed history plus the new user message, runs it, and only then commits
both the user message and the assistant reply. If the turn raises, the history
is exactly what it was before, so the user can retry.

Tool implementations live outside the session: invocations are returned to the
caller, who runs them and hands the results back via add_tool_results().
Includes OpenTelemetry tracing for observability.
"""

import contextlib
import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field

from llama_cli.llm.messages import (
    ContentGenerator,
    GenerateRequest,
    Message,
    ToolDeclaration,
    ToolInvocation,
    ToolResult,
)
from llama_cli.observability import get_tracer
from llama_cli.observability.constants import EVENT_TOOL_CALL, SPAN_USER_PROMPT

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)


@dataclass
class TurnResult:
    """Outcome of one successful turn."""

    text: str = ""
    tool_invocations: tuple[ToolInvocation, ...] = field(default_factory=tuple)
    usage_estimate: int = 0  # Estimated prompt tokens for the turn


class ChatSession:
    """
    A running conversation with one content generator.

    Usage:
        session = ChatSession(generator, system_prompt="Be brief.")
        result = await session.send("Hello", on_text=print)
    """

    def __init__(
        self,
        generator: ContentGenerator,
        system_prompt: str | None = None,
        tools: Sequence[ToolDeclaration] = (),
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ):
        self._generator = generator
        self._system_prompt = system_prompt
        self._tools = tuple(tools)
        self._temperature = temperature
        self._max_output_tokens = max_output_tokens
        self._history: list[Message] = []

    @property
    def history(self) -> tuple[Message, ...]:
        """Committed messages, oldest first."""
        return tuple(self._history)

    @property
    def generator(self) -> ContentGenerator:
        return self._generator

    def _build_request(self, pending: Sequence[Message]) -> GenerateRequest:
        messages: list[Message] = []
        if self._system_prompt:
            messages.append(Message.system(self._system_prompt))
        messages.extend(self._history)
        messages.extend(pending)
        return GenerateRequest(
            messages=messages,
            temperature=self._temperature,
            max_output_tokens=self._max_output_tokens,
            tools=self._tools,
        )

    async def estimate_tokens(self) -> int:
        """Estimated prompt size of the conversation as it stands."""
        return await self._generator.count_tokens(self._build_request(()))

    async def send(
        self,
        text: str,
        on_text: Callable[[str], None] | None = None,
        stream: bool = True,
    ) -> TurnResult:
        """
        Run one user turn.

        Args:
            text: The user's message.
            on_text: Called with each piece of assistant text as it arrives.
            stream: Stream the reply (default) or fetch it in one call.

        Returns:
            TurnResult with the full reply text and any tool invocations.

        Raises:
            LlamaCliError: Whatever the generator raised; history is unchanged.
        """
        pending = [Message.user(text)]
        request = self._build_request(pending)

        with tracer.start_as_current_span(SPAN_USER_PROMPT) as span:
            span.set_attribute("chat.prompt_length", len(text))
            span.set_attribute("chat.history_length", len(self._history))

            usage_estimate = await self._generator.count_tokens(request)

            if stream:
                pieces: list[str] = []
                invocations: tuple[ToolInvocation, ...] = ()
                responses = self._generator.generate_stream(request)
                async with contextlib.aclosing(responses):
                    async for chunk in responses:
                        if chunk.text:
                            pieces.append(chunk.text)
                            if on_text is not None:
                                on_text(chunk.text)
                        if chunk.tool_invocations:
                            invocations = chunk.tool_invocations
                reply = "".join(pieces)
            else:
                response = await self._generator.generate(request)
                reply = response.text
                invocations = response.tool_invocations
                if on_text is not None and reply:
                    on_text(reply)

            for invocation in invocations:
                span.add_event(EVENT_TOOL_CALL, {"tool.name": invocation.name})

            span.set_attribute("chat.reply_length", len(reply))
            span.set_attribute("chat.usage_estimate", usage_estimate)

        # Commit only once the whole turn succeeded
        pending.append(Message.assistant(reply, invocations))
        self._history.extend(pending)
        logger.debug(
            f"Turn committed: {len(reply)} chars, {len(invocations)} tool call(s), "
            f"~{usage_estimate} prompt tokens"
        )

        return TurnResult(text=reply, tool_invocations=invocations, usage_estimate=usage_estimate)

    def add_tool_results(self, results: Iterable[ToolResult]) -> None:
        """Append the results of tools the caller ran for the last reply."""
        for result in results:
            self._history.append(Message.tool(result))

    def reset(self) -> None:
        """Forget the conversation."""
        self._history.clear()
