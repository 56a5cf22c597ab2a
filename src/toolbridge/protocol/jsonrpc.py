"""JSON-RPC 2.0 message models and newline-delimited framing."""

import json
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ValidationError

from ..core.exceptions import ProtocolError

JSONRPC_VERSION = "2.0"

METHOD_NOT_FOUND = -32601
INVALID_REQUEST = -32600


class JsonRpcError(BaseModel):
    """Error object of a JSON-RPC response."""

    code: int
    message: str
    data: Any = None


class JsonRpcRequest(BaseModel):
    """A request expecting a response with the same id."""

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: Union[int, str]
    method: str
    params: Optional[Dict[str, Any]] = None


class JsonRpcNotification(BaseModel):
    """A one-way message without id."""

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    method: str
    params: Optional[Dict[str, Any]] = None


class JsonRpcResponse(BaseModel):
    """The answer to a request, carrying either ``result`` or ``error``."""

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: Union[int, str, None]
    result: Any = None
    error: Optional[JsonRpcError] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None


JsonRpcMessage = Union[JsonRpcRequest, JsonRpcNotification, JsonRpcResponse]


def encode_message(message: JsonRpcMessage) -> bytes:
    """Serialize a message as one line of JSON."""
    if isinstance(message, JsonRpcResponse):
        payload = message.model_dump(exclude={"error"} if message.error is None else {"result"})
        if message.error is not None:
            payload["error"] = message.error.model_dump(exclude_none=True)
    else:
        payload = message.model_dump(exclude_none=True)
    return (json.dumps(payload, separators=(",", ":")) + "\n").encode("utf-8")


def decode_message(line: Union[bytes, str]) -> JsonRpcMessage:
    """Parse one line received from a tool server.

    Args:
        line: The raw line, with or without trailing newline.

    Returns:
        The request, notification or response it contains.

    Raises:
        ProtocolError: If the line is not a JSON-RPC 2.0 message.
    """
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")

    try:
        data = json.loads(line)
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"Invalid JSON on protocol stream: {exc}") from exc

    if not isinstance(data, dict):
        raise ProtocolError(f"Expected a JSON-RPC object, got {type(data).__name__}.")

    try:
        if "method" in data:
            if "id" in data:
                return JsonRpcRequest.model_validate(data)
            return JsonRpcNotification.model_validate(data)
        if "id" in data and ("result" in data or "error" in data):
            return JsonRpcResponse.model_validate(data)
    except ValidationError as exc:
        raise ProtocolError(f"Malformed JSON-RPC message: {exc}") from exc

    raise ProtocolError("Message is neither a request, a notification nor a response.")
