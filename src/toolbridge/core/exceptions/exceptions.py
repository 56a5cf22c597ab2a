"""
Custom exception classes for toolbridge.

This module defines the hierarchy of exceptions raised while talking to tool
servers, pooling their connections, assembling streamed tool calls and driving
their execution.
"""

from typing import Any, Optional


class ToolBridgeError(Exception):
    """Base exception for all toolbridge errors."""

    pass


class MCPConnectionError(ToolBridgeError, ConnectionError):
    """Raised when a tool server process cannot be spawned or the handshake fails."""

    pass


class MCPTimeoutError(ToolBridgeError, TimeoutError):
    """Raised when a handshake, listing or invocation exceeds its time budget."""

    def __init__(self, message: str, method: Optional[str] = None, timeout: Optional[float] = None) -> None:
        super().__init__(message)
        self.method = method
        self.timeout = timeout


class ProtocolError(ToolBridgeError):
    """Raised when a JSON-RPC payload is malformed or unexpected."""

    pass


class ToolExecutionError(ToolBridgeError):
    """Raised when a tool server reports an error for a tool invocation."""

    def __init__(self, message: str, upstream_message: Optional[str] = None, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.upstream_message = upstream_message if upstream_message is not None else message
        self.code = code


class ToolArgumentParseError(ToolBridgeError):
    """Recorded when a streamed argument buffer is not valid JSON at finalize time."""

    def __init__(self, message: str, tool_call_id: str, raw_arguments: str) -> None:
        super().__init__(message)
        self.tool_call_id = tool_call_id
        self.raw_arguments = raw_arguments


class ToolRegistrationError(ToolBridgeError):
    """Raised when there is an error registering a tool descriptor."""

    pass


class ToolNotFoundError(ToolBridgeError):
    """Raised when a requested tool is not found in the catalog."""

    pass


class ToolValidationError(ToolBridgeError):
    """Raised when a tool input schema is invalid."""

    pass


class ConfigurationError(ToolBridgeError):
    """Raised when a server configuration document is invalid."""

    pass


class BatchError(ToolBridgeError):
    """Raised when a batch is used in a way its current status does not allow."""

    pass


class InvalidTransitionError(BatchError):
    """Raised when a tool call is moved to a state its current state cannot reach."""

    def __init__(self, tool_call_id: str, current: Any, target: Any) -> None:
        super().__init__(f"Tool call '{tool_call_id}' cannot move from '{current}' to '{target}'.")
        self.tool_call_id = tool_call_id
        self.current = current
        self.target = target
