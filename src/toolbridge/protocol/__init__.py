"""Stdio JSON-RPC client for external tool servers."""

from .client import ClientState, ProtocolClient
from .content import render_call_result
from .jsonrpc import (
    JsonRpcError,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    decode_message,
    encode_message,
)
from .transport import ProcessTransport

__all__ = [
    "ClientState",
    "ProtocolClient",
    "ProcessTransport",
    "render_call_result",
    "JsonRpcError",
    "JsonRpcNotification",
    "JsonRpcRequest",
    "JsonRpcResponse",
    "decode_message",
    "encode_message",
]
