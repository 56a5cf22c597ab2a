"""Public exports for configuration, errors, logging and the tool-call core."""

from .logger import get_logger, setup_logging
from .exceptions import (
    ToolBridgeError,
    MCPConnectionError,
    MCPTimeoutError,
    ProtocolError,
    ToolExecutionError,
    ToolArgumentParseError,
    ToolRegistrationError,
    ToolNotFoundError,
    ToolValidationError,
    ConfigurationError,
    BatchError,
    InvalidTransitionError,
)
from .config import (
    ServerConfig,
    ProtocolTimeouts,
    PoolSettings,
    OrchestratorSettings,
    Settings,
    load_server_configs,
    parse_server_configs,
    enabled_servers,
)
from .messages import BaseMessage, AssistantMessage, ToolMessage
from .tools import (
    ToolDescriptor,
    ToolCall,
    ToolCallDelta,
    ToolCallResult,
    ExecutionState,
    SchemaValidator,
    ToolCatalog,
    AssembledTurn,
    StreamingToolCallAssembler,
    Batch,
    BatchOutcome,
    BatchStatus,
    HandbackAdapter,
    MessageHandbackAdapter,
    ToolExecutionOrchestrator,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "ToolBridgeError",
    "MCPConnectionError",
    "MCPTimeoutError",
    "ProtocolError",
    "ToolExecutionError",
    "ToolArgumentParseError",
    "ToolRegistrationError",
    "ToolNotFoundError",
    "ToolValidationError",
    "ConfigurationError",
    "BatchError",
    "InvalidTransitionError",
    "ServerConfig",
    "ProtocolTimeouts",
    "PoolSettings",
    "OrchestratorSettings",
    "Settings",
    "load_server_configs",
    "parse_server_configs",
    "enabled_servers",
    "BaseMessage",
    "AssistantMessage",
    "ToolMessage",
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
