"""
Confirmation and execution workflow for batches of tool calls.

The orchestrator owns at most one open batch. The presentation layer confirms,
skips or cancels individual calls; once every call is terminal the batch is
completed (automatically after a settle delay, or explicitly) and the results
are handed back to the model.
"""

from __future__ import annotations

import asyncio
import inspect
from collections import deque
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Deque, Dict, Iterable, List, Optional, Union

from .adapter import HandbackAdapter
from .batch import Batch, BatchOutcome, BatchStatus, ExecutionHistoryEntry, ToolCallRecord
from ..models import ExecutionState, ToolCall, ToolCallResult
from ..registry import ToolCatalog
from ...config import OrchestratorSettings, ServerConfig
from ...exceptions import BatchError, MCPTimeoutError, ToolBridgeError, ToolNotFoundError
from ...logger import get_logger

if TYPE_CHECKING:
    from ....pool import ConnectionPool

logger = get_logger(__name__)

RECOVERABLE_ERRORS = (ToolBridgeError, OSError, asyncio.TimeoutError)

INTERNAL_ERROR_TEXT = "An internal error occurred during tool execution."

Callback = Callable[[Any], Union[None, Awaitable[None]]]


class ToolExecutionOrchestrator:
    """Drives tool calls from request to hand-back."""

    def __init__(
        self,
        pool: "ConnectionPool",
        servers: Iterable[ServerConfig],
        settings: Optional[OrchestratorSettings] = None,
        adapter: Optional[HandbackAdapter] = None,
        catalog: Optional[ToolCatalog] = None,
        on_complete: Optional[Callback] = None,
        on_cancel: Optional[Callback] = None,
        on_update: Optional[Callback] = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            pool: Pool used to obtain server connections.
            servers: The configured tool servers, looked up by id.
            settings: Auto-completion, settle delay, history size and per-tool timeouts.
            adapter: Hands results back to the model on completion.
            catalog: Resolves calls whose server was not resolved during assembly.
            on_complete: Called with the BatchOutcome once per completed batch.
            on_cancel: Called with the BatchOutcome of a cancelled batch.
            on_update: Called with the ToolCallRecord after every state change.
        """
        self.pool = pool
        self.servers: Dict[str, ServerConfig] = {server.id: server for server in servers}
        self.settings = settings or OrchestratorSettings()
        self.adapter = adapter
        self.catalog = catalog
        self.on_complete = on_complete
        self.on_cancel = on_cancel
        self.on_update = on_update

        self._auto_complete = self.settings.auto_complete
        self._batch: Optional[Batch] = None
        self._settle_task: Optional[asyncio.Task[None]] = None
        self._history: Deque[ExecutionHistoryEntry] = deque(maxlen=self.settings.history_limit)

        self.last_outcome: Optional[BatchOutcome] = None
        self.last_handback: Any = None
        self.last_handback_error: Optional[BaseException] = None

    @property
    def current_batch(self) -> Optional[Batch]:
        return self._batch

    @property
    def auto_complete(self) -> bool:
        return self._auto_complete

    @auto_complete.setter
    def auto_complete(self, enabled: bool) -> None:
        self._auto_complete = enabled
        if not enabled:
            self._cancel_settle()
        elif self._batch is not None:
            self._check_completion(self._batch)

    async def submit(self, tool_calls: Iterable[ToolCall]) -> Batch:
        """Open a batch for the tool calls of one model turn.

        Args:
            tool_calls: The finalized calls, in the order the model emitted them.

        Returns:
            The sealed batch, awaiting confirmation.

        Raises:
            BatchError: If a batch is still open, no calls are given or call ids repeat.
        """
        if self._batch is not None and not self._batch.is_closed:
            raise BatchError(f"Batch '{self._batch.id}' is still open.")

        batch = Batch()
        for call in tool_calls:
            batch.add(call)
        if not len(batch):
            raise BatchError("Cannot submit an empty batch.")
        batch.seal()

        self._batch = batch
        logger.info("Batch '%s' awaits confirmation of %d tool call(s).", batch.id, len(batch))
        return batch

    async def confirm_and_run(self, call_id: str) -> ToolCallResult:
        """Execute one pending call.

        Failures are recorded on the call and never retried.

        Args:
            call_id: Id of the call to run.

        Returns:
            The outcome of the call.

        Raises:
            BatchError: If there is no open batch or the call is unknown.
            InvalidTransitionError: If the call is not pending.
        """
        batch = self._require_batch()
        record = batch.record(call_id)
        record.transition(ExecutionState.EXECUTING)
        if batch.status is BatchStatus.AWAITING_CONFIRMATION:
            batch.set_status(BatchStatus.EXECUTING)
        await self._emit(self.on_update, record)
        return await self._execute(batch, record)

    async def skip(self, call_id: str) -> ToolCallResult:
        """Decline a pending call; it becomes terminal without running."""
        batch = self._require_batch()
        record = batch.record(call_id)
        return await self._finish(batch, record, ExecutionState.SKIPPED, error="Skipped by user.")

    async def cancel(self, call_id: str) -> ToolCallResult:
        """Cancel one non-terminal call. A result arriving later for it is ignored."""
        batch = self._require_batch()
        record = batch.record(call_id)
        return await self._finish(batch, record, ExecutionState.CANCELLED, error="Cancelled by user.")

    async def run_pending(self) -> List[ToolCallResult]:
        """Run every pending call one after another."""
        batch = self._require_batch()
        results = []
        for record in batch.records:
            if batch.is_closed:
                break
            if record.state is ExecutionState.PENDING:
                results.append(await self.confirm_and_run(record.id))
        return results

    async def run_all(self) -> List[ToolCallResult]:
        """Run every pending call concurrently and wait for all of them."""
        batch = self._require_batch()
        pending = [record.id for record in batch.pending()]
        logger.info("Running %d tool call(s) of batch '%s' concurrently.", len(pending), batch.id)
        return list(await asyncio.gather(*(self.confirm_and_run(call_id) for call_id in pending)))

    async def cancel_batch(self) -> Optional[BatchOutcome]:
        """Cancel the open batch.

        Pending calls become cancelled and no hand-back takes place. Calls already
        executing keep running; their outcome is still recorded.

        Returns:
            The outcome of the cancelled batch, or None if no batch was open.
        """
        batch = self._batch
        if batch is None or batch.is_closed:
            return None

        self._cancel_settle()
        for record in batch.pending():
            self._apply_terminal(batch, record, ExecutionState.CANCELLED, error="Batch cancelled.")
        batch.set_status(BatchStatus.CANCELLED)
        self._batch = None

        outcome = batch.outcome()
        self.last_outcome = outcome
        logger.info("Batch '%s' cancelled.", batch.id)
        await self._emit(self.on_cancel, outcome)
        return outcome

    async def complete_batch(self) -> BatchOutcome:
        """Complete the open batch and hand its results back.

        Raises:
            BatchError: If there is no open batch or a call is not terminal yet.
        """
        batch = self._require_batch()
        if not batch.all_terminal:
            raise BatchError(f"Batch '{batch.id}' still has unfinished tool calls.")
        self._cancel_settle()
        return await self._complete(batch)

    async def wait_for_completion(self, timeout: Optional[float] = None) -> Optional[BatchOutcome]:
        """Wait for a scheduled automatic completion, if any."""
        task = self._settle_task
        if task is not None:
            await asyncio.wait({task}, timeout=timeout)
        return self.last_outcome

    def get_execution_history(self, limit: Optional[int] = None) -> List[ExecutionHistoryEntry]:
        """History entries, newest first."""
        entries = list(reversed(self._history))
        return entries[:limit] if limit is not None else entries

    def get_execution_stats(self) -> Dict[str, Any]:
        """Aggregate counters over the execution history."""
        counts = {state: 0 for state in ExecutionState if state.is_terminal}
        per_tool: Dict[str, Dict[str, int]] = {}
        durations = []
        timed_out = 0

        for entry in self._history:
            counts[entry.state] += 1
            if entry.timed_out:
                timed_out += 1
            if entry.duration is not None:
                durations.append(entry.duration)
            tool = per_tool.setdefault(entry.tool_name, {"total": 0, "succeeded": 0, "failed": 0})
            tool["total"] += 1
            if entry.state is ExecutionState.SUCCEEDED:
                tool["succeeded"] += 1
            elif entry.state is ExecutionState.FAILED:
                tool["failed"] += 1

        return {
            "total": len(self._history),
            "succeeded": counts[ExecutionState.SUCCEEDED],
            "failed": counts[ExecutionState.FAILED],
            "skipped": counts[ExecutionState.SKIPPED],
            "cancelled": counts[ExecutionState.CANCELLED],
            "timed_out": timed_out,
            "average_duration": sum(durations) / len(durations) if durations else 0.0,
            "tools": per_tool,
        }

    def clear_history(self) -> None:
        self._history.clear()

    def _require_batch(self) -> Batch:
        if self._batch is None or self._batch.is_closed:
            raise BatchError("No open batch.")
        return self._batch

    def _resolve_server(self, call: ToolCall) -> ServerConfig:
        server_id = call.server_id
        if server_id is None and self.catalog is not None:
            descriptor = self.catalog.resolve(call.name)
            if descriptor is not None:
                server_id = descriptor.server_id
        if server_id is None:
            raise ToolNotFoundError(f"Tool '{call.name}' is not offered by any configured server.")

        server = self.servers.get(server_id)
        if server is None:
            raise ToolNotFoundError(f"Server '{server_id}' for tool '{call.name}' is not configured.")
        if not server.enabled:
            raise ToolNotFoundError(f"Server '{server_id}' for tool '{call.name}' is disabled.")
        return server

    def _remote_name(self, call: ToolCall) -> str:
        if call.remote_name is None and self.catalog is not None:
            descriptor = self.catalog.resolve(call.name)
            if descriptor is not None:
                return descriptor.name
        return call.tool_name

    async def _execute(self, batch: Batch, record: ToolCallRecord) -> ToolCallResult:
        call = record.call
        timeout = self.settings.tool_timeouts.get(call.name, self.settings.tool_timeouts.get(call.tool_name))
        try:
            server = self._resolve_server(call)
            connection = await self.pool.get_connection(server)
            logger.info("Executing tool '%s' on '%s'.", call.name, server.id)
            raw = await connection.call_tool(self._remote_name(call), call.arguments, timeout=timeout)
        except RECOVERABLE_ERRORS as e:
            message = getattr(e, "upstream_message", None) or str(e) or type(e).__name__
            logger.warning("Tool call '%s' (%s) failed: %s", call.id, call.name, message)
            return await self._finish(
                batch, record, ExecutionState.FAILED, error=message, timed_out=isinstance(e, MCPTimeoutError)
            )
        except Exception as e:
            logger.error("Unexpected error executing tool '%s': %s", call.name, e, exc_info=True)
            return await self._finish(batch, record, ExecutionState.FAILED, error=INTERNAL_ERROR_TEXT)

        return await self._finish(batch, record, ExecutionState.SUCCEEDED, result=raw)

    async def _finish(
        self,
        batch: Batch,
        record: ToolCallRecord,
        state: ExecutionState,
        result: Any = None,
        error: Optional[str] = None,
        timed_out: bool = False,
    ) -> ToolCallResult:
        late = state in (ExecutionState.SUCCEEDED, ExecutionState.FAILED)
        if late and record.state is ExecutionState.CANCELLED and record.result is not None:
            logger.info("Ignoring late result of cancelled tool call '%s'.", record.id)
            return record.result

        outcome = self._apply_terminal(batch, record, state, result=result, error=error, timed_out=timed_out)
        await self._emit(self.on_update, record)
        self._check_completion(batch)
        return outcome

    def _apply_terminal(
        self,
        batch: Batch,
        record: ToolCallRecord,
        state: ExecutionState,
        result: Any = None,
        error: Optional[str] = None,
        timed_out: bool = False,
    ) -> ToolCallResult:
        record.transition(state)
        succeeded = state is ExecutionState.SUCCEEDED
        record.result = ToolCallResult(
            tool_call_id=record.id,
            success=succeeded,
            state=state,
            result=result if succeeded else None,
            error=None if succeeded else error,
        )
        self._history.append(
            ExecutionHistoryEntry(
                tool_call_id=record.id,
                tool_name=record.call.name,
                server_id=record.call.server_id,
                batch_id=batch.id,
                state=state,
                success=succeeded,
                error=record.result.error,
                timed_out=timed_out,
                duration=record.duration,
            )
        )
        return record.result

    def _check_completion(self, batch: Batch) -> None:
        if batch is not self._batch or batch.is_closed or not batch.all_terminal:
            return
        if not self._auto_complete:
            logger.debug("Batch '%s' is ready; waiting for explicit completion.", batch.id)
            return
        if self._settle_task is not None and not self._settle_task.done():
            return
        self._settle_task = asyncio.create_task(self._settle_then_complete(batch))

    async def _settle_then_complete(self, batch: Batch) -> None:
        await asyncio.sleep(self.settings.settle_delay)
        if batch is self._batch and not batch.is_closed and batch.all_terminal and self._auto_complete:
            await self._complete(batch)

    def _cancel_settle(self) -> None:
        task, self._settle_task = self._settle_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _complete(self, batch: Batch) -> BatchOutcome:
        batch.set_status(BatchStatus.COMPLETED)
        self._batch = None
        outcome = batch.outcome()
        self.last_outcome = outcome
        logger.info("Batch '%s' completed with %d result(s).", batch.id, len(outcome.results))

        await self._emit(self.on_complete, outcome)
        if self.adapter is not None:
            await self._hand_back(outcome)
        return outcome

    async def _hand_back(self, outcome: BatchOutcome) -> None:
        self.last_handback_error = None
        try:
            self.last_handback = await self.adapter.hand_back(outcome)  # type: ignore[union-attr]
        except Exception as e:
            logger.error("Handing back batch '%s' failed: %s", outcome.batch_id, e, exc_info=True)
            self.last_handback_error = e

    async def _emit(self, callback: Optional[Callback], payload: Any) -> None:
        if callback is None:
            return
        try:
            response = callback(payload)
            if inspect.isawaitable(response):
                await response
        except Exception as e:
            logger.error("Event callback %r failed: %s", callback, e, exc_info=True)
