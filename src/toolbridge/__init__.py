"""toolbridge - connect language models to external tool servers over stdio JSON-RPC."""

from .core import (
    ServerConfig,
    Settings,
    ToolCall,
    ToolCallResult,
    ToolCatalog,
    ToolDescriptor,
    ExecutionState,
    StreamingToolCallAssembler,
    ToolExecutionOrchestrator,
    MessageHandbackAdapter,
    ToolBridgeError,
    load_server_configs,
    get_logger,
    setup_logging,
)
from .protocol import ProtocolClient, ClientState
from .pool import Connection, ConnectionPool
from .llm_impl import OpenAIHandbackAdapter

__version__ = "0.1.0"

__all__ = [
    "ServerConfig",
    "Settings",
    "ToolCall",
    "ToolCallResult",
    "ToolCatalog",
    "ToolDescriptor",
    "ExecutionState",
    "StreamingToolCallAssembler",
    "ToolExecutionOrchestrator",
    "MessageHandbackAdapter",
    "ToolBridgeError",
    "load_server_configs",
    "get_logger",
    "setup_logging",
    "ProtocolClient",
    "ClientState",
    "Connection",
    "ConnectionPool",
    "OpenAIHandbackAdapter",
    "__version__",
]
