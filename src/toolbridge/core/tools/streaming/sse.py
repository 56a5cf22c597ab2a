"""
Reader for ``data: `` framed model streams.

Two payload shapes are understood: OpenAI chat-completion chunks
(``choices[0].delta``) and a flat shape carrying ``content`` or ``tool_calls``
at the top level. Both are turned into StreamEvents.
"""

import codecs
import json
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from openai.types.chat.chat_completion_chunk import ChoiceDeltaToolCall
from pydantic import BaseModel, ValidationError

from ..models import ToolCallDelta
from ...exceptions import ProtocolError
from ...logger import get_logger

logger = get_logger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


class StreamEventType(str, Enum):
    CONTENT = "content"
    TOOL_CALL_DELTA = "tool_call_delta"
    FINISH = "finish"
    DONE = "done"
    ERROR = "error"


class StreamEvent(BaseModel):
    """One typed event decoded from a stream payload."""

    type: StreamEventType
    content: Optional[str] = None
    delta: Optional[ToolCallDelta] = None
    finish_reason: Optional[str] = None
    error: Optional[str] = None


class SSEFrameReader:
    """Splits arbitrarily chunked stream text into ``data: `` payloads.

    Partial lines are buffered until their newline arrives. Bytes are decoded
    incrementally, so a character split across chunks survives intact.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, chunk: Union[str, bytes]) -> List[str]:
        """Add a chunk of stream text and return the payloads it completed."""
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk, final=False)
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split("\n")
        return [payload for payload in map(self._payload, lines) if payload is not None]

    def flush(self) -> List[str]:
        """Return the payload of a trailing line without newline, if any."""
        line, self._buffer = self._buffer + self._decoder.decode(b"", final=True), ""
        payload = self._payload(line)
        return [payload] if payload is not None else []

    @staticmethod
    def _payload(line: str) -> Optional[str]:
        line = line.rstrip("\r")
        if not line.startswith(DATA_PREFIX):
            return None
        payload = line[len(DATA_PREFIX) :].strip()
        return payload or None


def _to_delta(raw: Dict[str, Any], position: int) -> ToolCallDelta:
    # Flat complete calls carry name/arguments at the top level and arguments may be an object.
    function = raw.get("function")
    if not isinstance(function, dict):
        function = {"name": raw.get("name"), "arguments": raw.get("arguments")}
    arguments = function.get("arguments")
    if arguments is not None and not isinstance(arguments, str):
        arguments = json.dumps(arguments)

    tool_call = ChoiceDeltaToolCall.model_validate(
        {
            "index": raw.get("index", position),
            "id": raw.get("id"),
            "type": "function",
            "function": {"name": function.get("name"), "arguments": arguments},
        }
    )
    return ToolCallDelta(
        index=tool_call.index,
        id=tool_call.id or None,
        name=tool_call.function.name if tool_call.function else None,
        arguments=tool_call.function.arguments if tool_call.function else None,
    )


def _tool_call_events(raw_calls: Any) -> List[StreamEvent]:
    if not isinstance(raw_calls, list):
        raise ProtocolError("'tool_calls' must be a list.")
    events = []
    for position, raw in enumerate(raw_calls):
        if not isinstance(raw, dict):
            raise ProtocolError("Tool call delta must be an object.")
        try:
            delta = _to_delta(raw, position)
        except ValidationError as exc:
            raise ProtocolError(f"Malformed tool call delta: {exc}") from exc
        events.append(StreamEvent(type=StreamEventType.TOOL_CALL_DELTA, delta=delta))
    return events


def parse_payload(payload: str) -> List[StreamEvent]:
    """Decode one ``data: `` payload into stream events.

    Args:
        payload: The text after the ``data:`` prefix.

    Returns:
        The events in the payload, in order.

    Raises:
        ProtocolError: If the payload is not a recognizable stream object.
    """
    if payload.strip() == DONE_SENTINEL:
        return [StreamEvent(type=StreamEventType.DONE)]

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"Stream payload is not JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ProtocolError(f"Stream payload must be an object, got {type(data).__name__}.")

    events: List[StreamEvent] = []

    if "choices" in data:
        choices = data.get("choices") or []
        if not isinstance(choices, list):
            raise ProtocolError("'choices' must be a list.")
        for choice in choices:
            if not isinstance(choice, dict):
                raise ProtocolError("Chunk choice must be an object.")
            delta = choice.get("delta") or {}
            if not isinstance(delta, dict):
                raise ProtocolError("Chunk delta must be an object.")
            if delta.get("content"):
                events.append(StreamEvent(type=StreamEventType.CONTENT, content=delta["content"]))
            if delta.get("tool_calls"):
                events.extend(_tool_call_events(delta["tool_calls"]))
            if choice.get("finish_reason"):
                events.append(StreamEvent(type=StreamEventType.FINISH, finish_reason=choice["finish_reason"]))
        return events

    kind = data.get("type")
    if kind == "error":
        return [StreamEvent(type=StreamEventType.ERROR, error=str(data.get("error") or "stream error"))]

    if isinstance(data.get("content"), str) and data["content"]:
        events.append(StreamEvent(type=StreamEventType.CONTENT, content=data["content"]))
    raw_calls = data.get("tool_calls", data.get("toolCalls"))
    if raw_calls:
        events.extend(_tool_call_events(raw_calls))
    if data.get("finish_reason"):
        events.append(StreamEvent(type=StreamEventType.FINISH, finish_reason=data["finish_reason"]))
    if kind == "done":
        events.append(StreamEvent(type=StreamEventType.DONE))
    return events


def decode_payloads(payloads: List[str]) -> List[StreamEvent]:
    """Decode several payloads, logging and skipping malformed ones."""
    events: List[StreamEvent] = []
    for payload in payloads:
        try:
            events.extend(parse_payload(payload))
        except ProtocolError as e:
            logger.warning("Skipping malformed stream frame: %s", e)
    return events
