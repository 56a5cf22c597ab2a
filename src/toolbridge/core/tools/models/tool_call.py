"""Data models for tool calls, their execution states and results."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field


class ExecutionState(str, Enum):
    """Execution state of a single tool call."""

    PENDING = "pending"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES: FrozenSet[ExecutionState] = frozenset(
    {ExecutionState.SUCCEEDED, ExecutionState.FAILED, ExecutionState.SKIPPED, ExecutionState.CANCELLED}
)

# Forward-only: no state ever returns to an earlier non-terminal state.
ALLOWED_TRANSITIONS: Dict[ExecutionState, FrozenSet[ExecutionState]] = {
    ExecutionState.PENDING: frozenset({ExecutionState.EXECUTING, ExecutionState.SKIPPED, ExecutionState.CANCELLED}),
    ExecutionState.EXECUTING: frozenset({ExecutionState.SUCCEEDED, ExecutionState.FAILED, ExecutionState.CANCELLED}),
    ExecutionState.SUCCEEDED: frozenset(),
    ExecutionState.FAILED: frozenset(),
    ExecutionState.SKIPPED: frozenset(),
    ExecutionState.CANCELLED: frozenset(),
}


class ToolCallDelta(BaseModel):
    """One incremental fragment of a streamed tool call.

    Attributes:
        index: Position of the tool call within the model turn.
        id: Call id, usually present only on the first fragment.
        name: Tool name fragment.
        arguments: Fragment of the JSON argument string.
    """

    index: int = Field(ge=0)
    id: Optional[str] = None
    name: Optional[str] = None
    arguments: Optional[str] = None


class ToolCall(BaseModel):
    """A finalized request to execute one tool.

    Attributes:
        id: Call id, unique within its batch.
        name: Tool name as emitted by the model (possibly ``<server_id>.<tool>``).
        arguments: Decoded JSON arguments.
        server_id: Id of the server owning the tool, or None if it could not be resolved.
        remote_name: Name to send in ``tools/call``; defaults to ``name``.
        parse_error: Why the streamed arguments could not be decoded, if they could not.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    server_id: Optional[str] = None
    remote_name: Optional[str] = None
    parse_error: Optional[str] = None

    @property
    def tool_name(self) -> str:
        return self.remote_name or self.name


class ToolCallResult(BaseModel):
    """Outcome of a tool call that reached a terminal state."""

    model_config = ConfigDict(frozen=True)

    tool_call_id: str
    success: bool
    state: ExecutionState
    result: Any = None
    error: Optional[str] = None
