"""Streaming tool-call assembly."""

from .assembler import AssembledTurn, StreamingToolCallAssembler
from .sse import SSEFrameReader, StreamEvent, StreamEventType, parse_payload

__all__ = [
    "AssembledTurn",
    "StreamingToolCallAssembler",
    "SSEFrameReader",
    "StreamEvent",
    "StreamEventType",
    "parse_payload",
]
