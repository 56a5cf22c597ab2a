"""
Process transport for tool servers.

The tool server runs as a child process. JSON-RPC messages are written to its
stdin and read from its stdout, one line per message. stderr is diagnostic
output only; it is drained into the debug log and never parsed.
"""

import asyncio
import os
from typing import Mapping, Optional, Sequence

from ..core.exceptions import MCPConnectionError, ProtocolError
from ..core.logger import get_logger

logger = get_logger(__name__)

# asyncio's default of 64 KiB per line is too small for large tool results
DEFAULT_LINE_LIMIT = 8 * 1024 * 1024


class ProcessTransport:
    """Line-delimited bidirectional byte streams to one tool server process."""

    def __init__(
        self,
        command: str,
        args: Sequence[str] = (),
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[str] = None,
        line_limit: int = DEFAULT_LINE_LIMIT,
    ) -> None:
        """
        Args:
            command: Executable to launch.
            args: Arguments passed to the executable.
            env: Environment overrides merged over the parent environment.
            cwd: Optional working directory of the process.
            line_limit: Maximum size in bytes of one protocol line.
        """
        self.command = command
        self.args = list(args)
        self.env = dict(env or {})
        self.cwd = cwd
        self.line_limit = line_limit
        self._process: Optional[asyncio.subprocess.Process] = None
        self._stderr_task: Optional[asyncio.Task[None]] = None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode if self._process else None

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def start(self) -> None:
        """Launch the tool server process.

        Raises:
            MCPConnectionError: If the executable cannot be spawned.
        """
        if self.is_running:
            return

        logger.info("Starting tool server: %s %s", self.command, " ".join(self.args))
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.command,
                *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, **self.env},
                cwd=self.cwd,
                limit=self.line_limit,
            )
        except OSError as exc:
            msg = f"Failed to spawn tool server '{self.command}': {exc}"
            logger.error(msg)
            raise MCPConnectionError(msg) from exc

        logger.debug("Tool server '%s' started (pid=%s).", self.command, self._process.pid)
        self._stderr_task = asyncio.create_task(self._drain_stderr(self._process))

    async def write_line(self, data: bytes) -> None:
        """Write one protocol line to the process.

        Raises:
            MCPConnectionError: If the process is not running or its stdin is closed.
        """
        process = self._process
        if process is None or process.stdin is None or process.returncode is not None:
            raise MCPConnectionError(f"Tool server '{self.command}' is not running.")

        if not data.endswith(b"\n"):
            data += b"\n"
        try:
            process.stdin.write(data)
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise MCPConnectionError(f"Tool server '{self.command}' closed its input: {exc}") from exc

    async def read_line(self) -> bytes:
        """Read one line from the process' stdout; an empty result means end of stream.

        Raises:
            ProtocolError: If a line exceeds the configured limit.
        """
        process = self._process
        if process is None or process.stdout is None:
            return b""
        try:
            return await process.stdout.readline()
        except ValueError as exc:
            raise ProtocolError(f"Protocol line from '{self.command}' exceeds {self.line_limit} bytes.") from exc

    async def terminate(self, grace: float = 2.0) -> None:
        """Ask the process to exit and kill it if it is still alive after ``grace`` seconds.

        Safe to call on a transport that was never started or is already stopped.
        """
        process, self._process = self._process, None
        stderr_task, self._stderr_task = self._stderr_task, None

        if process is not None:
            if process.stdin is not None and not process.stdin.is_closing():
                process.stdin.close()

            if process.returncode is None:
                try:
                    process.terminate()
                except ProcessLookupError:
                    pass
                try:
                    await asyncio.wait_for(process.wait(), timeout=grace)
                except asyncio.TimeoutError:
                    logger.warning("Tool server '%s' ignored SIGTERM, killing it.", self.command)
                    try:
                        process.kill()
                    except ProcessLookupError:
                        pass
                    await process.wait()
            logger.info("Tool server '%s' stopped (code=%s).", self.command, process.returncode)

        if stderr_task is not None:
            stderr_task.cancel()
            await asyncio.gather(stderr_task, return_exceptions=True)

    async def _drain_stderr(self, process: asyncio.subprocess.Process) -> None:
        if process.stderr is None:
            return
        while True:
            try:
                line = await process.stderr.readline()
            except ValueError:
                continue
            if not line:
                return
            logger.debug("[%s stderr] %s", self.command, line.decode("utf-8", errors="replace").rstrip())
