"""A pooled, live link to one tool server."""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..core.config import ServerConfig
from ..core.exceptions import MCPConnectionError, ToolBridgeError
from ..core.tools.models import ToolDescriptor
from ..protocol import ClientState, ProtocolClient


@dataclass
class Connection:
    """
    One ProtocolClient together with its usage and health bookkeeping.

    Connections are created and owned by the ConnectionPool. Callers borrow them
    for the duration of a call and must not disconnect them directly.

    Attributes:
        server: Configuration the connection was built from.
        client: The protocol client talking to the server process.
        last_used: Monotonic timestamp of the last access, used for LRU eviction.
        tools: Tools discovered when the connection was established.
        error_count: Consecutive failures; the attempt count if the connection never came up.
        last_error: Message of the most recent failure.
        last_exception: The most recent failure itself, e.g. an MCPTimeoutError or MCPConnectionError.
    """

    server: ServerConfig
    client: ProtocolClient
    last_used: float = field(default_factory=time.monotonic)
    tools: List[ToolDescriptor] = field(default_factory=list)
    error_count: int = 0
    last_error: Optional[str] = None
    last_exception: Optional[Exception] = None

    @property
    def id(self) -> str:
        return self.server.fingerprint

    @property
    def state(self) -> ClientState:
        return self.client.state

    @property
    def is_connected(self) -> bool:
        return self.client.is_connected

    def touch(self) -> None:
        self.last_used = time.monotonic()

    async def call_tool(
        self, name: str, arguments: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None
    ) -> Any:
        """Invoke a tool through this connection.

        Args:
            name: Tool name as known by the server.
            arguments: JSON object of arguments.
            timeout: Overrides the server's configured invocation budget.

        Returns:
            The raw result payload.

        Raises:
            MCPConnectionError: If the connection is not live.
            ToolBridgeError: Any failure reported by the protocol client.
        """
        self.touch()
        try:
            if not self.is_connected:
                raise MCPConnectionError(
                    f"Server '{self.server.id}' is not connected: {self.last_error or self.state.value}"
                ) from self.last_exception
            result = await self.client.call_tool(
                name, arguments, timeout if timeout is not None else self.server.timeout
            )
        except ToolBridgeError as e:
            self.error_count += 1
            self.last_error = str(e)
            self.last_exception = e
            raise
        self.error_count = 0
        return result

    async def refresh_tools(self) -> List[ToolDescriptor]:
        self.tools = await self.client.list_tools()
        return self.tools

    async def close(self) -> None:
        await self.client.disconnect()
