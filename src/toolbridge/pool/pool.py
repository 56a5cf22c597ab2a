"""
Connection pool for tool servers.

The pool keys connections by the fingerprint of their ServerConfig, so the same
launch description always maps to the same live process. Building a connection
is retried with exponential backoff; a server that stays unreachable is kept as
a disconnected entry carrying its last error instead of raising.
"""

import asyncio
from contextlib import asynccontextmanager
from types import TracebackType
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Type

from .connection import Connection
from ..core.config import PoolSettings, ProtocolTimeouts, ServerConfig
from ..core.exceptions import ToolBridgeError
from ..core.logger import get_logger
from ..core.tools.models import ToolDescriptor
from ..protocol import ProtocolClient

logger = get_logger(__name__)

ClientFactory = Callable[[ServerConfig], ProtocolClient]


class ConnectionPool:
    """Creates, reuses, retries and evicts connections to tool servers."""

    def __init__(
        self,
        settings: Optional[PoolSettings] = None,
        timeouts: Optional[ProtocolTimeouts] = None,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        """Initialize the pool.

        Args:
            settings: Capacity and retry policy.
            timeouts: Protocol time budgets handed to every client.
            client_factory: Builds the client for a server; defaults to ProtocolClient.
        """
        self.settings = settings or PoolSettings()
        self.timeouts = timeouts or ProtocolTimeouts()
        self._client_factory = client_factory or self._default_client
        self._connections: Dict[str, Connection] = {}
        self._key_locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._reserved = 0
        self._capacity = asyncio.Condition()

    def _default_client(self, server: ServerConfig) -> ProtocolClient:
        return ProtocolClient(server, self.timeouts)

    async def __aenter__(self) -> "ConnectionPool":
        return self

    async def __aexit__(
        self, exc_type: Optional[Type[BaseException]], exc_val: Optional[BaseException], exc_tb: Optional[TracebackType]
    ) -> None:
        await self.cleanup()

    @property
    def connections(self) -> List[Connection]:
        return list(self._connections.values())

    def __len__(self) -> int:
        return len(self._connections)

    async def get_connection(self, server: ServerConfig) -> Connection:
        """Return the live connection for a server, building it if needed.

        A cached connected entry is reused. Otherwise a new connection is built
        with retries; when every attempt fails the returned connection is not
        connected and carries ``last_error``.

        Args:
            server: The server to connect to.

        Returns:
            The pooled connection.
        """
        key = server.fingerprint

        async with self._key_lock(key):
            existing = self._connections.get(key)
            if existing is not None and existing.is_connected:
                existing.touch()
                if existing.client.tools_stale:
                    await self._refresh(existing)
                    # waiters skipped this key as a victim while it was locked
                    async with self._capacity:
                        self._capacity.notify_all()
                return existing

            if existing is not None:
                logger.info("Replacing stale connection to '%s'.", server.id)
                await self._discard(key)

            await self._reserve_slot()
            try:
                connection = await self._build(server)
            except BaseException:
                async with self._capacity:
                    self._reserved -= 1
                    self._capacity.notify_all()
                raise

            async with self._capacity:
                self._reserved -= 1
                self._connections[key] = connection
                self._capacity.notify_all()
            return connection

    async def disconnect_server(self, server_id: str) -> bool:
        """Disconnect and remove every connection belonging to a server id.

        Returns:
            True if at least one connection was removed.
        """
        keys = [key for key, conn in self._connections.items() if conn.server.id == server_id]
        for key in keys:
            async with self._key_lock(key):
                await self._discard(key)
        if keys:
            logger.info("Disconnected server '%s'.", server_id)
        return bool(keys)

    async def evict_oldest_connection(self) -> Optional[str]:
        """Evict the least valuable connection: errored ones first, then the least recently used.

        Returns:
            The id of the evicted server, or None if nothing could be evicted.
        """
        async with self._capacity:
            victim = self._pick_victim()
            if victim is None:
                return None
            self._connections.pop(victim.id, None)
            self._capacity.notify_all()
        await self._close(victim, "evicted")
        return victim.server.id

    async def cleanup(self) -> None:
        """Disconnect every pooled connection."""
        async with self._capacity:
            connections = list(self._connections.values())
            self._connections.clear()
            self._capacity.notify_all()

        results = await asyncio.gather(*(conn.close() for conn in connections), return_exceptions=True)
        for conn, outcome in zip(connections, results):
            if isinstance(outcome, Exception):
                logger.warning("Error while closing '%s': %s", conn.server.id, outcome)
        if connections:
            logger.info("Closed %d pooled connection(s).", len(connections))

    def get_connection_status(self, server_id: str) -> Dict[str, Any]:
        for conn in self._connections.values():
            if conn.server.id == server_id:
                return {
                    "connected": conn.is_connected,
                    "tools": list(conn.tools),
                    "error_count": conn.error_count,
                    "last_error": conn.last_error,
                }
        return {"connected": False, "tools": [], "error_count": 0, "last_error": None}

    def get_stats(self) -> Dict[str, int]:
        return {
            "total_connections": len(self._connections),
            "connected": sum(1 for conn in self._connections.values() if conn.is_connected),
            "max_connections": self.settings.max_connections,
        }

    def all_tools(self) -> List[ToolDescriptor]:
        """Tools of every connected server, in pool order."""
        tools: List[ToolDescriptor] = []
        for conn in self._connections.values():
            if conn.is_connected:
                tools.extend(conn.tools)
        return tools

    async def _build(self, server: ServerConfig) -> Connection:
        attempts = self.settings.max_attempts
        last_error = "unknown error"
        last_exception: Optional[Exception] = None
        client = self._client_factory(server)

        for attempt in range(1, attempts + 1):
            if attempt > 1:
                client = self._client_factory(server)
            try:
                await client.connect()
                tools = await client.list_tools()
            except Exception as e:
                if not isinstance(e, ToolBridgeError):
                    logger.error("Unexpected error connecting to '%s': %s", server.id, e, exc_info=True)
                last_exception = e
                last_error = str(e) or type(e).__name__
                logger.warning("Attempt %d/%d to connect to '%s' failed: %s", attempt, attempts, server.id, last_error)
                await self._disconnect_quietly(client, server)
                if attempt < attempts:
                    await asyncio.sleep(self.settings.backoff_for(attempt))
                continue

            logger.info("Connection to '%s' established with %d tool(s).", server.display_name, len(tools))
            return Connection(server=server, client=client, tools=tools)

        logger.error("Giving up on '%s' after %d attempts: %s", server.id, attempts, last_error)
        return Connection(
            server=server,
            client=client,
            error_count=attempts,
            last_error=last_error,
            last_exception=last_exception,
        )

    async def _disconnect_quietly(self, client: ProtocolClient, server: ServerConfig) -> None:
        try:
            await client.disconnect()
        except Exception as e:
            logger.warning("Error while disconnecting from '%s': %s", server.id, e)

    @asynccontextmanager
    async def _key_lock(self, key: str) -> AsyncIterator[None]:
        """Serialize work on one fingerprint; the lock is dropped once nobody holds or awaits it."""
        lock = self._key_locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                self._key_locks.pop(key, None)

    async def _reserve_slot(self) -> None:
        while True:
            async with self._capacity:
                if len(self._connections) + self._reserved < self.settings.max_connections:
                    self._reserved += 1
                    return
                victim = self._pick_victim()
                if victim is None:
                    await self._capacity.wait()
                    continue
                self._connections.pop(victim.id, None)
            await self._close(victim, "evicted to make room")

    def _pick_victim(self) -> Optional[Connection]:
        candidates = [
            conn
            for key, conn in self._connections.items()
            if not (key in self._key_locks and self._key_locks[key].locked())
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda conn: (self._is_healthy(conn), conn.last_used))

    def _is_healthy(self, conn: Connection) -> bool:
        return conn.is_connected and conn.error_count < self.settings.error_threshold

    async def _discard(self, key: str) -> None:
        async with self._capacity:
            conn = self._connections.pop(key, None)
            self._capacity.notify_all()
        if conn is not None:
            await self._close(conn, "removed")

    async def _close(self, conn: Connection, reason: str) -> None:
        logger.info("Connection to '%s' %s.", conn.server.id, reason)
        try:
            await conn.close()
        except ToolBridgeError as e:
            logger.warning("Error while closing '%s': %s", conn.server.id, e)

    async def _refresh(self, conn: Connection) -> None:
        try:
            await conn.refresh_tools()
        except ToolBridgeError as e:
            logger.warning("Could not refresh tools of '%s': %s", conn.server.id, e)
