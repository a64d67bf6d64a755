"""
assembler.py

PURPOSE: Rebuild complete tool calls from the fragments of a streamed completion.
DEPENDENCIES: wire models

ARCHITECTURE NOTES:
The server streams tool calls in small pieces: an opening delta carrying the
call id and (part of) the function name, then argument fragments that must be
concatenated in arrival order. ToolCallAssembler is a small state machine with
a single open slot:

    IDLE --(delta with id)--> ACCUMULATING
    ACCUMULATING --(delta with id at index 0)--> ACCUMULATING (previous call closed)
    ACCUMULATING --(finish)--> IDLE

Text content never waits on the state machine; it is handed back from feed()
immediately so the caller can emit it in decode order.

One assembler serves one streaming call. Create it when the call starts and drop
it when the call ends, fails, or is cancelled.

Known limitation: a new call is only recognized at index 0 (a fragment without
an index counts as 0) or when nothing is open. Servers that interleave several
calls under distinct non-zero indices will have their fragments merged into the
open call.
"""

import logging
from dataclasses import dataclass
from enum import Enum, auto

from llama_cli.llm.translate import normalize_arguments
from llama_cli.llm.wire import ChunkDelta, ToolCallDelta, WireFunctionCall, WireToolCall

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextDelta:
    """A piece of assistant text, emitted as soon as it is decoded."""

    text: str


@dataclass(frozen=True)
class ToolCallBatch:
    """All tool calls of a streamed response. Always the last event."""

    tool_calls: tuple[WireToolCall, ...]


StreamEvent = TextDelta | ToolCallBatch


class AssemblerState(Enum):
    """Whether a tool call is currently open."""

    IDLE = auto()
    ACCUMULATING = auto()


@dataclass
class _OpenCall:
    """The tool call currently receiving fragments."""

    id: str
    name: str = ""
    arguments: str = ""

    def close(self) -> WireToolCall:
        return WireToolCall(
            id=self.id,
            function=WireFunctionCall(
                name=self.name,
                arguments=normalize_arguments(self.arguments),
            ),
        )


class ToolCallAssembler:
    """
    Accumulates tool-call fragments for a single streaming response.

    Usage:
        assembler = ToolCallAssembler()
        for delta in deltas:
            for event in assembler.feed(delta):
                emit(event)
        batch = assembler.finish()
        if batch:
            emit(batch)
    """

    def __init__(self) -> None:
        self._open: _OpenCall | None = None
        self._completed: list[WireToolCall] = []
        self._finished = False

    @property
    def state(self) -> AssemblerState:
        return AssemblerState.IDLE if self._open is None else AssemblerState.ACCUMULATING

    @property
    def completed(self) -> tuple[WireToolCall, ...]:
        """Tool calls closed so far (the open one is not included)."""
        return tuple(self._completed)

    def feed(self, delta: ChunkDelta) -> list[StreamEvent]:
        """
        Apply one decoded delta.

        Args:
            delta: The `choices[0].delta` of a streaming chunk

        Returns:
            Events to emit right away (text only; tool calls wait for finish()).
        """
        if self._finished:
            raise RuntimeError("Assembler already finished")

        events: list[StreamEvent] = []
        if delta.content:
            events.append(TextDelta(delta.content))

        for fragment in delta.tool_calls or []:
            self._apply(fragment)

        return events

    def _apply(self, fragment: ToolCallDelta) -> None:
        starts_new = bool(fragment.id) and (fragment.index == 0 or self._open is None)
        if starts_new:
            if self._open is not None:
                self._completed.append(self._open.close())
            self._open = _OpenCall(id=fragment.id or "")
            logger.debug(f"Tool call opened: {self._open.id}")

        if self._open is None:
            logger.debug(f"Dropping tool-call fragment with no open call: {fragment}")
            return

        function = fragment.function
        if function is None:
            return
        if function.name:
            self._open.name += function.name
        if function.arguments:
            self._open.arguments += function.arguments

    def finish(self) -> ToolCallBatch | None:
        """
        Close the open call and return every completed call as one batch.

        Returns None when the response contained no tool calls. Calling
        finish() again returns None.
        """
        if self._finished:
            return None
        self._finished = True

        if self._open is not None:
            self._completed.append(self._open.close())
            self._open = None

        if not self._completed:
            return None

        batch = ToolCallBatch(tuple(self._completed))
        self._completed = []
        logger.debug(f"Tool call batch complete: {len(batch.tool_calls)} call(s)")
        return batch

    def discard(self) -> None:
        """Drop all partial state; nothing will be emitted afterwards."""
        self._open = None
        self._completed = []
        self._finished = True
