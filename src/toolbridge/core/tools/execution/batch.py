"""Batches of tool calls and their state machines."""

import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field

from ..models import ALLOWED_TRANSITIONS, ExecutionState, ToolCall, ToolCallResult
from ...exceptions import BatchError, InvalidTransitionError


class BatchStatus(str, Enum):
    """Lifecycle status of a batch."""

    COLLECTING = "collecting"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    EXECUTING = "executing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


BATCH_TRANSITIONS: Dict[BatchStatus, FrozenSet[BatchStatus]] = {
    BatchStatus.COLLECTING: frozenset({BatchStatus.AWAITING_CONFIRMATION, BatchStatus.CANCELLED}),
    # every call skipped: nothing ever executes
    BatchStatus.AWAITING_CONFIRMATION: frozenset(
        {BatchStatus.EXECUTING, BatchStatus.COMPLETED, BatchStatus.CANCELLED}
    ),
    BatchStatus.EXECUTING: frozenset({BatchStatus.COMPLETED, BatchStatus.CANCELLED}),
    BatchStatus.COMPLETED: frozenset(),
    BatchStatus.CANCELLED: frozenset(),
}


@dataclass
class ToolCallRecord:
    """A tool call together with its execution state and outcome."""

    call: ToolCall
    state: ExecutionState = ExecutionState.PENDING
    result: Optional[ToolCallResult] = None
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    @property
    def id(self) -> str:
        return self.call.id

    @property
    def duration(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.started_at

    def transition(self, target: ExecutionState) -> None:
        """Move the call to ``target``.

        Raises:
            InvalidTransitionError: If the current state cannot reach ``target``.
        """
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.call.id, self.state.value, target.value)
        self.state = target
        now = time.monotonic()
        if target is ExecutionState.EXECUTING:
            self.started_at = now
        elif target.is_terminal:
            self.finished_at = now


class BatchOutcome(BaseModel):
    """Final view of a batch, delivered with the completion or cancellation event."""

    batch_id: str
    status: BatchStatus
    calls: List[ToolCall] = Field(default_factory=list)
    results: List[ToolCallResult] = Field(default_factory=list)

    @property
    def succeeded(self) -> List[ToolCallResult]:
        return [r for r in self.results if r.state is ExecutionState.SUCCEEDED]


class ExecutionHistoryEntry(BaseModel):
    """One terminal tool call, kept for history and statistics."""

    tool_call_id: str
    tool_name: str
    server_id: Optional[str] = None
    batch_id: str
    state: ExecutionState
    success: bool
    error: Optional[str] = None
    timed_out: bool = False
    duration: Optional[float] = None
    finished_at: datetime = Field(default_factory=datetime.now)


class Batch:
    """
    The tool calls requested by one model turn.

    Calls are kept in the order they were added. The batch is completed once
    every call has reached a terminal state.
    """

    def __init__(self, batch_id: Optional[str] = None) -> None:
        self.id = batch_id or uuid.uuid4().hex
        self.status = BatchStatus.COLLECTING
        self._records: Dict[str, ToolCallRecord] = {}

    def add(self, call: ToolCall) -> ToolCallRecord:
        """Add a call while the batch is collecting.

        Raises:
            BatchError: If the batch is sealed or the call id is already present.
        """
        if self.status is not BatchStatus.COLLECTING:
            raise BatchError(f"Batch '{self.id}' no longer accepts calls (status: {self.status.value}).")
        if call.id in self._records:
            raise BatchError(f"Duplicate tool call id '{call.id}' in batch '{self.id}'.")
        record = ToolCallRecord(call=call)
        self._records[call.id] = record
        return record

    def seal(self) -> None:
        self.set_status(BatchStatus.AWAITING_CONFIRMATION)

    def set_status(self, target: BatchStatus) -> None:
        """Move the batch to ``target``.

        Raises:
            InvalidTransitionError: If the current status cannot reach ``target``.
        """
        if target not in BATCH_TRANSITIONS[self.status]:
            raise InvalidTransitionError(self.id, self.status.value, target.value)
        self.status = target

    def record(self, call_id: str) -> ToolCallRecord:
        try:
            return self._records[call_id]
        except KeyError:
            raise BatchError(f"Tool call '{call_id}' is not part of batch '{self.id}'.") from None

    @property
    def records(self) -> List[ToolCallRecord]:
        return list(self._records.values())

    @property
    def calls(self) -> List[ToolCall]:
        return [r.call for r in self._records.values()]

    def pending(self) -> List[ToolCallRecord]:
        return [r for r in self._records.values() if r.state is ExecutionState.PENDING]

    @property
    def all_terminal(self) -> bool:
        return all(r.state.is_terminal for r in self._records.values())

    @property
    def is_closed(self) -> bool:
        return self.status in (BatchStatus.COMPLETED, BatchStatus.CANCELLED)

    def outcome(self) -> BatchOutcome:
        return BatchOutcome(
            batch_id=self.id,
            status=self.status,
            calls=self.calls,
            results=[r.result for r in self._records.values() if r.result is not None],
        )

    def __len__(self) -> int:
        return len(self._records)
