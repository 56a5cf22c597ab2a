from .models import ToolDescriptor, ToolCall, ToolCallDelta, ToolCallResult, ExecutionState
from .schema import SchemaValidator
from .registry import ToolCatalog
from .streaming import AssembledTurn, StreamingToolCallAssembler
from .execution import (
    Batch,
    BatchOutcome,
    BatchStatus,
    HandbackAdapter,
    MessageHandbackAdapter,
    ToolExecutionOrchestrator,
)

__all__ = [
    "ToolDescriptor",
    "ToolCall",
    "ToolCallDelta",
    "ToolCallResult",
    "ExecutionState",
    "SchemaValidator",
    "ToolCatalog",
    "AssembledTurn",
    "StreamingToolCallAssembler",
    "Batch",
    "BatchOutcome",
    "BatchStatus",
    "HandbackAdapter",
    "MessageHandbackAdapter",
    "ToolExecutionOrchestrator",
]
