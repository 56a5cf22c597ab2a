"""Tool-related data models."""

from .models import ToolDescriptor
from .tool_call import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATES,
    ExecutionState,
    ToolCall,
    ToolCallDelta,
    ToolCallResult,
)

__all__ = [
    "ToolDescriptor",
    "ExecutionState",
    "TERMINAL_STATES",
    "ALLOWED_TRANSITIONS",
    "ToolCall",
    "ToolCallDelta",
    "ToolCallResult",
]
