"""Export the exception hierarchy used across protocol, pooling and execution paths."""

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

__all__ = [
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
]
