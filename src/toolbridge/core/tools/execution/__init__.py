"""Tool call batches, their execution and the hand-back to the model."""

from .adapter import HandbackAdapter, MessageHandbackAdapter, result_text
from .batch import Batch, BatchOutcome, BatchStatus, ExecutionHistoryEntry, ToolCallRecord
from .orchestrator import RECOVERABLE_ERRORS, ToolExecutionOrchestrator

__all__ = [
    "HandbackAdapter",
    "MessageHandbackAdapter",
    "result_text",
    "Batch",
    "BatchOutcome",
    "BatchStatus",
    "ExecutionHistoryEntry",
    "ToolCallRecord",
    "RECOVERABLE_ERRORS",
    "ToolExecutionOrchestrator",
]
