"""Reconstruction of complete tool calls from incremental model output."""

import json
from dataclasses import dataclass, field
from typing import AsyncIterable, Dict, Iterable, List, Optional, Union

from .sse import SSEFrameReader, StreamEvent, StreamEventType, decode_payloads
from ..models import ToolCall, ToolCallDelta
from ..registry import ToolCatalog
from ...exceptions import ToolArgumentParseError
from ...logger import get_logger

logger = get_logger(__name__)

Chunk = Union[str, bytes]


@dataclass
class _Accumulator:
    id: Optional[str] = None
    name: str = ""
    fragments: List[str] = field(default_factory=list)


@dataclass
class AssembledTurn:
    """Everything a streamed model turn produced.

    Attributes:
        content: Concatenated text content.
        tool_calls: Finalized tool calls, ordered by index.
        parse_errors: Argument buffers that were not valid JSON objects.
        finish_reason: The last finish reason reported by the stream.
        error: Error reported in-band by the stream, if any.
    """

    content: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    parse_errors: List[ToolArgumentParseError] = field(default_factory=list)
    finish_reason: Optional[str] = None
    error: Optional[str] = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


class StreamingToolCallAssembler:
    """
    Accumulates tool-call deltas per index and turns them into ToolCalls.

    The assembler only builds requests. It never executes anything.
    """

    def __init__(self, catalog: Optional[ToolCatalog] = None) -> None:
        """
        Args:
            catalog: Used to resolve tool names to their owning server.
        """
        self.catalog = catalog
        self._accumulators: Dict[int, _Accumulator] = {}
        self._parse_errors: List[ToolArgumentParseError] = []

    @property
    def pending(self) -> int:
        return len(self._accumulators)

    @property
    def parse_errors(self) -> List[ToolArgumentParseError]:
        """Parse errors recorded by the most recent finalize."""
        return list(self._parse_errors)

    def feed(self, delta: ToolCallDelta) -> None:
        """Merge one fragment into the accumulator of its index."""
        acc = self._accumulators.setdefault(delta.index, _Accumulator())
        if delta.id:
            acc.id = delta.id
        if delta.name:
            acc.name = delta.name
        if delta.arguments:
            acc.fragments.append(delta.arguments)

    def finalize(self) -> List[ToolCall]:
        """Turn every accumulator into a ToolCall and reset.

        Argument buffers that do not decode to a JSON object become ``{}`` and
        are recorded in ``parse_errors``.

        Returns:
            The tool calls ordered by index.
        """
        self._parse_errors = []
        calls: List[ToolCall] = []

        for index in sorted(self._accumulators):
            acc = self._accumulators[index]
            call_id = acc.id or f"call_{index}"
            raw = "".join(acc.fragments)
            arguments, parse_error = self._parse_arguments(raw)
            if parse_error is not None:
                logger.warning("Arguments of tool call '%s' (%s) are invalid: %s", call_id, acc.name, parse_error)
                self._parse_errors.append(
                    ToolArgumentParseError(
                        f"Invalid arguments for tool call '{call_id}': {parse_error}",
                        tool_call_id=call_id,
                        raw_arguments=raw,
                    )
                )

            server_id = None
            remote_name = None
            descriptor = self.catalog.resolve(acc.name) if self.catalog is not None and acc.name else None
            if descriptor is not None:
                server_id = descriptor.server_id
                remote_name = descriptor.name
            elif acc.name:
                logger.warning("Tool '%s' of call '%s' is not offered by any server.", acc.name, call_id)

            calls.append(
                ToolCall(
                    id=call_id,
                    name=acc.name,
                    arguments=arguments,
                    server_id=server_id,
                    remote_name=remote_name,
                    parse_error=parse_error,
                )
            )

        self._accumulators = {}
        return calls

    def reset(self) -> None:
        self._accumulators = {}
        self._parse_errors = []

    @staticmethod
    def _parse_arguments(raw: str):
        if not raw.strip():
            return {}, None
        try:
            value = json.loads(raw)
        except json.JSONDecodeError as e:
            return {}, str(e)
        if not isinstance(value, dict):
            return {}, f"expected a JSON object, got {type(value).__name__}"
        return value, None

    def consume(self, chunks: Iterable[Chunk]) -> AssembledTurn:
        """Read a complete ``data: `` framed stream.

        Args:
            chunks: Pieces of stream text; lines may be split across pieces.

        Returns:
            The assembled turn.
        """
        reader = SSEFrameReader()
        turn = AssembledTurn()
        for chunk in chunks:
            if self._apply(decode_payloads(reader.feed(chunk)), turn):
                return turn
        self._apply(decode_payloads(reader.flush()), turn)
        self._close_turn(turn)
        return turn

    async def aconsume(self, chunks: AsyncIterable[Chunk]) -> AssembledTurn:
        """Async variant of consume."""
        reader = SSEFrameReader()
        turn = AssembledTurn()
        async for chunk in chunks:
            if self._apply(decode_payloads(reader.feed(chunk)), turn):
                return turn
        self._apply(decode_payloads(reader.flush()), turn)
        self._close_turn(turn)
        return turn

    def _apply(self, events: List[StreamEvent], turn: AssembledTurn) -> bool:
        for event in events:
            if event.type is StreamEventType.CONTENT and event.content:
                turn.content += event.content
            elif event.type is StreamEventType.TOOL_CALL_DELTA and event.delta is not None:
                self.feed(event.delta)
            elif event.type is StreamEventType.FINISH:
                turn.finish_reason = event.finish_reason
                if event.finish_reason == "tool_calls":
                    self._close_turn(turn)
            elif event.type is StreamEventType.ERROR:
                logger.error("Model stream reported an error: %s", event.error)
                turn.error = event.error
            elif event.type is StreamEventType.DONE:
                self._close_turn(turn)
                return True
        return False

    def _close_turn(self, turn: AssembledTurn) -> None:
        if not self._accumulators:
            return
        turn.tool_calls.extend(self.finalize())
        turn.parse_errors.extend(self._parse_errors)
