"""
JSON-RPC client for one tool server process.

The client owns a ProcessTransport, runs a reader task that dispatches every
incoming line, and correlates responses with requests through a map of pending
entries. Each pending entry carries its own timer, so a slow call never blocks
the others and a late response for an expired request is simply dropped.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from mcp.types import (
    LATEST_PROTOCOL_VERSION,
    ClientCapabilities,
    Implementation,
    InitializeResult,
    ListToolsResult,
)
from pydantic import ValidationError

from .content import error_text
from .jsonrpc import (
    METHOD_NOT_FOUND,
    JsonRpcError,
    JsonRpcMessage,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    decode_message,
    encode_message,
)
from .transport import ProcessTransport
from ..core.config import ProtocolTimeouts, ServerConfig
from ..core.exceptions import (
    MCPConnectionError,
    MCPTimeoutError,
    ProtocolError,
    ToolBridgeError,
    ToolExecutionError,
    ToolValidationError,
)
from ..core.logger import get_logger
from ..core.tools.models import ToolDescriptor
from ..core.tools.schema import SchemaValidator

logger = get_logger(__name__)

CLIENT_NAME = "toolbridge"
CLIENT_VERSION = "0.1.0"

NotificationHandler = Callable[[Dict[str, Any]], None]
TransportFactory = Callable[[ServerConfig], ProcessTransport]

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "notice": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
    "alert": logging.CRITICAL,
    "emergency": logging.CRITICAL,
}


class ClientState(str, Enum):
    """Lifecycle state of a ProtocolClient."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERRORED = "errored"


@dataclass
class _PendingRequest:
    method: str
    future: "asyncio.Future[JsonRpcResponse]"
    timer: Optional[asyncio.TimerHandle] = None


def _default_transport(server: ServerConfig) -> ProcessTransport:
    return ProcessTransport(server.command, server.args, server.env)


class ProtocolClient:
    """Speaks the tool protocol (handshake, discovery, invocation) to one server."""

    def __init__(
        self,
        server: ServerConfig,
        timeouts: Optional[ProtocolTimeouts] = None,
        transport_factory: Optional[TransportFactory] = None,
    ) -> None:
        """
        Args:
            server: Launch configuration of the tool server.
            timeouts: Time budgets of the protocol operations.
            transport_factory: Builds the transport for ``server``; defaults to a ProcessTransport.
        """
        self.server = server
        self.timeouts = timeouts or ProtocolTimeouts()
        self._transport_factory = transport_factory or _default_transport
        self._transport: Optional[ProcessTransport] = None
        self._reader_task: Optional[asyncio.Task[None]] = None
        self._pending: Dict[int, _PendingRequest] = {}
        self._next_id = 0
        self._state = ClientState.DISCONNECTED

        self.server_info: Optional[InitializeResult] = None
        self.tools: List[ToolDescriptor] = []
        self.tools_stale = False
        self._notification_handlers: Dict[str, NotificationHandler] = {
            "notifications/tools/list_changed": self._on_tools_changed,
            "notifications/message": self._on_log_message,
        }

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ClientState.CONNECTED

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def add_notification_handler(self, method: str, handler: NotificationHandler) -> None:
        """Register a handler for server notifications with the given method name."""
        self._notification_handlers[method] = handler

    async def connect(self) -> None:
        """Start the server process and perform the initialize handshake.

        Raises:
            MCPConnectionError: If the process cannot be spawned, rejects the handshake,
                answers with a malformed payload or exits during the handshake.
            MCPTimeoutError: If no initialize response arrives in time.
        """
        if self._state is ClientState.CONNECTED:
            return
        if self._state is ClientState.CONNECTING:
            raise MCPConnectionError(f"Client for '{self.server.id}' is already connecting.")
        if self._transport is not None or self._reader_task is not None:
            # an errored client still owns its dead process and reader
            await self._teardown(MCPConnectionError(f"Client for '{self.server.id}' is reconnecting."))

        self._state = ClientState.CONNECTING
        transport = self._transport_factory(self.server)
        try:
            await transport.start()
        except MCPConnectionError:
            self._state = ClientState.ERRORED
            raise

        self._transport = transport
        self._reader_task = asyncio.create_task(self._read_loop(transport), name=f"toolbridge-reader-{self.server.id}")

        try:
            await self._handshake()
        except BaseException:
            await self._teardown(MCPConnectionError(f"Handshake with '{self.server.id}' aborted."))
            self._state = ClientState.ERRORED
            raise

        self._state = ClientState.CONNECTED
        logger.info("Connected to tool server '%s'.", self.server.display_name)

    async def _handshake(self) -> None:
        params = {
            "protocolVersion": LATEST_PROTOCOL_VERSION,
            "capabilities": ClientCapabilities().model_dump(by_alias=True, exclude_none=True),
            "clientInfo": Implementation(name=CLIENT_NAME, version=CLIENT_VERSION).model_dump(exclude_none=True),
        }
        response = await self._request("initialize", params, self.timeouts.initialize)
        if response.error is not None:
            raise MCPConnectionError(f"Tool server '{self.server.id}' rejected initialize: {response.error.message}")

        try:
            self.server_info = InitializeResult.model_validate(response.result)
        except ValidationError as exc:
            raise MCPConnectionError(f"Malformed initialize response from '{self.server.id}'.") from exc

        logger.debug(
            "Server '%s' speaks protocol %s (%s %s).",
            self.server.id,
            self.server_info.protocolVersion,
            self.server_info.serverInfo.name,
            self.server_info.serverInfo.version,
        )
        await self._notify("notifications/initialized")

        if self.timeouts.settle:
            await asyncio.sleep(self.timeouts.settle)
        if self._state is not ClientState.CONNECTING:
            raise MCPConnectionError(f"Tool server '{self.server.id}' exited during the handshake.")

    async def list_tools(self) -> List[ToolDescriptor]:
        """Discover the tools offered by the server, following pagination.

        Returns:
            Descriptors with normalized input schemas, owned by this server.

        Raises:
            MCPConnectionError: If the client is not connected.
            MCPTimeoutError: If a listing page does not arrive in time.
            ProtocolError: If the server answers with an error or a malformed payload.
        """
        self._require_connected()

        descriptors: List[ToolDescriptor] = []
        cursor: Optional[str] = None
        while True:
            params = {"cursor": cursor} if cursor else None
            response = await self._request("tools/list", params, self.timeouts.list_tools)
            if response.error is not None:
                raise ProtocolError(f"tools/list failed on '{self.server.id}': {response.error.message}")
            try:
                page = ListToolsResult.model_validate(response.result)
            except ValidationError as exc:
                raise ProtocolError(f"Malformed tools/list response from '{self.server.id}'.") from exc

            for tool in page.tools:
                try:
                    input_schema = SchemaValidator.prepare_input_schema(tool.inputSchema, tool.name)
                except ToolValidationError as e:
                    logger.warning("Skipping tool '%s' of server '%s': %s", tool.name, self.server.id, e)
                    continue
                descriptors.append(
                    ToolDescriptor(
                        name=tool.name,
                        description=tool.description or "",
                        input_schema=input_schema,
                        server_id=self.server.id,
                    )
                )
            cursor = page.nextCursor
            if not cursor:
                break

        self.tools = descriptors
        self.tools_stale = False
        logger.info("Found %d tools on server '%s'.", len(descriptors), self.server.id)
        return list(descriptors)

    async def call_tool(
        self, name: str, arguments: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None
    ) -> Any:
        """Invoke a tool on the server.

        Args:
            name: Tool name as known by the server.
            arguments: JSON object of arguments.
            timeout: Overrides the default invocation budget.

        Returns:
            The raw result payload.

        Raises:
            MCPConnectionError: If the client is not connected or the process dies mid-call.
            MCPTimeoutError: If no response arrives in time.
            ToolExecutionError: If the server reports an error for the invocation.
        """
        self._require_connected()
        budget = timeout if timeout is not None else self.timeouts.call_tool

        logger.debug("Calling tool '%s' on '%s' with %s", name, self.server.id, arguments)
        response = await self._request("tools/call", {"name": name, "arguments": arguments or {}}, budget)

        if response.error is not None:
            raise ToolExecutionError(
                f"Tool '{name}' failed on '{self.server.id}': {response.error.message}",
                upstream_message=response.error.message,
                code=response.error.code,
            )

        result = response.result
        if isinstance(result, dict) and result.get("isError") is True:
            message = error_text(result)
            raise ToolExecutionError(f"Tool '{name}' failed on '{self.server.id}': {message}", upstream_message=message)
        return result

    async def disconnect(self) -> None:
        """Stop the server process and fail every in-flight request. Idempotent."""
        if self._transport is None and self._reader_task is None:
            self._state = ClientState.DISCONNECTED
            return
        await self._teardown(MCPConnectionError(f"Client for '{self.server.id}' disconnected."))
        self._state = ClientState.DISCONNECTED
        logger.info("Disconnected from tool server '%s'.", self.server.display_name)

    def _require_connected(self) -> None:
        if self._state is not ClientState.CONNECTED:
            raise MCPConnectionError(f"Client for '{self.server.id}' is not connected (state: {self._state.value}).")

    async def _request(self, method: str, params: Optional[Dict[str, Any]], timeout: float) -> JsonRpcResponse:
        transport = self._transport
        if transport is None:
            raise MCPConnectionError(f"Client for '{self.server.id}' has no transport.")

        loop = asyncio.get_running_loop()
        self._next_id += 1
        request_id = self._next_id
        entry = _PendingRequest(method=method, future=loop.create_future())
        entry.timer = loop.call_later(timeout, self._expire, request_id, timeout)
        self._pending[request_id] = entry

        try:
            await transport.write_line(encode_message(JsonRpcRequest(id=request_id, method=method, params=params)))
            return await entry.future
        finally:
            leftover = self._pending.pop(request_id, None)
            if leftover is not None and leftover.timer is not None:
                leftover.timer.cancel()

    async def _notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        if self._transport is None:
            raise MCPConnectionError(f"Client for '{self.server.id}' has no transport.")
        await self._transport.write_line(encode_message(JsonRpcNotification(method=method, params=params)))

    def _expire(self, request_id: int, timeout: float) -> None:
        entry = self._pending.pop(request_id, None)
        if entry is None or entry.future.done():
            return
        logger.warning("'%s' request %d to '%s' timed out after %ss.", entry.method, request_id, self.server.id, timeout)
        entry.future.set_exception(
            MCPTimeoutError(
                f"'{entry.method}' on '{self.server.id}' timed out after {timeout}s.",
                method=entry.method,
                timeout=timeout,
            )
        )

    def _fail_pending(self, exc: BaseException) -> None:
        pending, self._pending = self._pending, {}
        for entry in pending.values():
            if entry.timer is not None:
                entry.timer.cancel()
            if not entry.future.done():
                entry.future.set_exception(exc)

    async def _read_loop(self, transport: ProcessTransport) -> None:
        try:
            while True:
                line = await transport.read_line()
                if not line:
                    break
                line = line.strip()
                if not line:
                    continue
                try:
                    message = decode_message(line)
                except ProtocolError as e:
                    logger.warning("Ignoring malformed line from '%s': %s", self.server.id, e)
                    continue
                await self._handle_message(message)
        except ToolBridgeError as e:
            logger.error("Reader for '%s' stopped: %s", self.server.id, e)
        finally:
            if self._transport is transport:
                self._fail_pending(MCPConnectionError(f"Tool server '{self.server.id}' closed its output stream."))
                if self._state in (ClientState.CONNECTED, ClientState.CONNECTING):
                    logger.warning(
                        "Tool server '%s' exited unexpectedly (code=%s).", self.server.id, transport.returncode
                    )
                    self._state = ClientState.ERRORED

    async def _handle_message(self, message: JsonRpcMessage) -> None:
        if isinstance(message, JsonRpcResponse):
            self._resolve(message)
        elif isinstance(message, JsonRpcRequest):
            await self._answer_server_request(message)
        else:
            handler = self._notification_handlers.get(message.method)
            if handler is None:
                logger.debug("Unhandled notification '%s' from '%s'.", message.method, self.server.id)
                return
            handler(message.params or {})

    def _resolve(self, response: JsonRpcResponse) -> None:
        entry = self._pending.pop(response.id, None) if isinstance(response.id, int) else None
        if entry is None:
            logger.debug("Dropping response with unknown id %r from '%s'.", response.id, self.server.id)
            return
        if entry.timer is not None:
            entry.timer.cancel()
        if not entry.future.done():
            entry.future.set_result(response)

    async def _answer_server_request(self, request: JsonRpcRequest) -> None:
        if request.method == "ping":
            reply = JsonRpcResponse(id=request.id, result={})
        else:
            reply = JsonRpcResponse(
                id=request.id,
                error=JsonRpcError(code=METHOD_NOT_FOUND, message=f"Method not found: {request.method}"),
            )
        if self._transport is None:
            return
        try:
            await self._transport.write_line(encode_message(reply))
        except MCPConnectionError as e:
            logger.warning("Could not answer '%s' from '%s': %s", request.method, self.server.id, e)

    def _on_tools_changed(self, params: Dict[str, Any]) -> None:
        self.tools_stale = True
        logger.info("Tool list of '%s' changed.", self.server.id)

    def _on_log_message(self, params: Dict[str, Any]) -> None:
        level = _LOG_LEVELS.get(str(params.get("level", "info")), logging.INFO)
        logger.log(level, "[%s] %s", params.get("logger") or self.server.id, params.get("data"))

    async def _teardown(self, exc: BaseException) -> None:
        transport, self._transport = self._transport, None
        reader, self._reader_task = self._reader_task, None
        self._state = ClientState.DISCONNECTED
        self._fail_pending(exc)

        if transport is not None:
            await transport.terminate(self.timeouts.shutdown_grace)
        if reader is not None:
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)
