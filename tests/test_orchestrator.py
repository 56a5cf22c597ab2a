import asyncio
import time
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock, MagicMock

import pytest

from toolbridge import ServerConfig, ToolCall, ToolCatalog, ToolExecutionOrchestrator
from toolbridge.core.config import OrchestratorSettings
from toolbridge.core.exceptions import (
    BatchError,
    InvalidTransitionError,
    MCPConnectionError,
    MCPTimeoutError,
    ToolExecutionError,
)
from toolbridge.core.tools.execution import BatchOutcome, BatchStatus, MessageHandbackAdapter
from toolbridge.core.tools.models import ExecutionState

SERVERS = [ServerConfig(id="alpha", command="alpha-server"), ServerConfig(id="beta", command="beta-server")]


def text(value: str) -> Dict[str, Any]:
    return {"content": [{"type": "text", "text": value}]}


async def echo_handler(name: str, arguments: Dict[str, Any], timeout: Optional[float] = None) -> Dict[str, Any]:
    return text(f"{name}:{arguments.get('text', '')}")


def make_pool(handler: Any = echo_handler) -> Tuple[MagicMock, MagicMock]:
    connection = MagicMock()
    connection.call_tool = AsyncMock(side_effect=handler)
    pool = MagicMock()
    pool.get_connection = AsyncMock(return_value=connection)
    return pool, connection


def tool_call(call_id: str, name: str = "echo", server_id: Optional[str] = "alpha", **arguments: Any) -> ToolCall:
    return ToolCall(id=call_id, name=name, arguments=arguments, server_id=server_id, remote_name=name)


def make_orchestrator(
    pool: Any, settle_delay: float = 0.05, **kwargs: Any
) -> Tuple[ToolExecutionOrchestrator, List[BatchOutcome], List[BatchOutcome]]:
    completed: List[BatchOutcome] = []
    cancelled: List[BatchOutcome] = []
    settings = kwargs.pop("settings", None) or OrchestratorSettings(settle_delay=settle_delay)
    orchestrator = ToolExecutionOrchestrator(
        pool,
        SERVERS,
        settings=settings,
        on_complete=completed.append,
        on_cancel=cancelled.append,
        **kwargs,
    )
    return orchestrator, completed, cancelled


@pytest.mark.asyncio
async def test_batch_completes_once_after_settle_delay() -> None:
    """Two confirmed calls and one skipped call complete the batch exactly once."""
    pool, _ = make_pool()
    sent: List[Any] = []
    orchestrator, completed, _ = make_orchestrator(pool, adapter=MessageHandbackAdapter(sent.append))

    await orchestrator.submit([tool_call("c1", text="a"), tool_call("c2", text="b"), tool_call("c3", text="c")])
    await orchestrator.confirm_and_run("c1")
    await orchestrator.confirm_and_run("c2")
    await orchestrator.skip("c3")

    assert completed == []
    outcome = await orchestrator.wait_for_completion(timeout=1.0)
    await asyncio.sleep(0.1)

    assert len(completed) == 1
    assert outcome is completed[0]
    assert outcome.status is BatchStatus.COMPLETED
    assert [r.state for r in outcome.results] == [
        ExecutionState.SUCCEEDED,
        ExecutionState.SUCCEEDED,
        ExecutionState.SKIPPED,
    ]
    assert outcome.results[0].result == text("echo:a")
    assert orchestrator.current_batch is None

    assert len(sent) == 1
    messages = sent[0]
    assert [m.tool_call_id for m in messages] == ["c1", "c2", "c3"]
    assert messages[0].content == "echo:a"
    assert "not to run" in messages[2].content


@pytest.mark.asyncio
async def test_cancel_batch_emits_cancellation_without_handback() -> None:
    pool, connection = make_pool()
    sent: List[Any] = []
    orchestrator, completed, cancelled = make_orchestrator(pool, adapter=MessageHandbackAdapter(sent.append))

    batch = await orchestrator.submit([tool_call("c1"), tool_call("c2")])
    await orchestrator.confirm_and_run("c1")
    outcome = await orchestrator.cancel_batch()
    await asyncio.sleep(0.1)

    assert outcome is not None
    assert cancelled == [outcome]
    assert outcome.status is BatchStatus.CANCELLED
    assert [r.state for r in outcome.results] == [ExecutionState.SUCCEEDED, ExecutionState.CANCELLED]
    assert completed == []
    assert sent == []
    assert batch.status is BatchStatus.CANCELLED
    assert connection.call_tool.await_count == 1
    assert await orchestrator.cancel_batch() is None


@pytest.mark.asyncio
async def test_failures_are_isolated_per_call() -> None:
    async def handler(name: str, arguments: Dict[str, Any], timeout: Optional[float] = None) -> Any:
        if name == "flaky":
            raise ToolExecutionError("Tool 'flaky' failed: disk full", upstream_message="disk full")
        if name == "slow":
            raise MCPTimeoutError("'tools/call' timed out after 30s.", "tools/call", 30.0)
        return text("fine")

    pool, _ = make_pool(handler)
    orchestrator, completed, _ = make_orchestrator(pool)

    await orchestrator.submit([tool_call("c1", "flaky"), tool_call("c2", "echo"), tool_call("c3", "slow")])
    results = await orchestrator.run_pending()

    assert [r.success for r in results] == [False, True, False]
    assert results[0].state is ExecutionState.FAILED
    assert results[0].error == "disk full"
    assert "timed out" in (results[2].error or "")

    await orchestrator.wait_for_completion(timeout=1.0)
    assert len(completed) == 1
    assert orchestrator.get_execution_stats()["timed_out"] == 1


@pytest.mark.asyncio
async def test_disconnected_server_fails_the_call() -> None:
    pool, connection = make_pool()
    connection.call_tool.side_effect = MCPConnectionError("Server 'alpha' is not connected: timed out")
    orchestrator, _, _ = make_orchestrator(pool)

    await orchestrator.submit([tool_call("c1")])
    result = await orchestrator.confirm_and_run("c1")

    assert result.state is ExecutionState.FAILED
    assert "not connected" in (result.error or "")
    # failures are never retried automatically
    assert connection.call_tool.await_count == 1


@pytest.mark.asyncio
async def test_unresolved_tool_fails_without_touching_the_pool() -> None:
    pool, _ = make_pool()
    orchestrator, _, _ = make_orchestrator(pool)

    await orchestrator.submit([tool_call("c1", "teleport", server_id=None), tool_call("c2", server_id="gamma")])
    first = await orchestrator.confirm_and_run("c1")
    second = await orchestrator.confirm_and_run("c2")

    assert "not offered" in (first.error or "")
    assert "not configured" in (second.error or "")
    pool.get_connection.assert_not_awaited()


@pytest.mark.asyncio
async def test_catalog_resolves_unassigned_calls(catalog: ToolCatalog) -> None:
    pool, connection = make_pool()
    orchestrator, _, _ = make_orchestrator(pool, catalog=catalog)

    await orchestrator.submit([ToolCall(id="c1", name="beta.search", arguments={"q": "x"})])
    result = await orchestrator.confirm_and_run("c1")

    assert result.success
    pool.get_connection.assert_awaited_once_with(SERVERS[1])
    assert connection.call_tool.await_args.args[:2] == ("search", {"q": "x"})


@pytest.mark.asyncio
async def test_run_all_executes_concurrently() -> None:
    async def handler(name: str, arguments: Dict[str, Any], timeout: Optional[float] = None) -> Any:
        await asyncio.sleep(0.2)
        return text(name)

    pool, _ = make_pool(handler)
    orchestrator, completed, _ = make_orchestrator(pool)
    await orchestrator.submit([tool_call(f"c{i}") for i in range(3)])

    started = time.monotonic()
    results = await orchestrator.run_all()
    elapsed = time.monotonic() - started

    assert [r.success for r in results] == [True, True, True]
    assert elapsed < 0.5
    await orchestrator.wait_for_completion(timeout=1.0)
    assert len(completed) == 1


@pytest.mark.asyncio
async def test_run_pending_is_sequential() -> None:
    active = 0
    peak = 0

    async def handler(name: str, arguments: Dict[str, Any], timeout: Optional[float] = None) -> Any:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.02)
        active -= 1
        return text(name)

    pool, connection = make_pool(handler)
    orchestrator, _, _ = make_orchestrator(pool)
    await orchestrator.submit([tool_call("c1", "first"), tool_call("c2", "second"), tool_call("c3", "third")])
    await orchestrator.skip("c2")

    results = await orchestrator.run_pending()

    assert peak == 1
    assert [r.tool_call_id for r in results] == ["c1", "c3"]
    assert [c.args[0] for c in connection.call_tool.await_args_list] == ["first", "third"]


@pytest.mark.asyncio
async def test_auto_complete_toggle() -> None:
    pool, _ = make_pool()
    orchestrator, completed, _ = make_orchestrator(pool)
    orchestrator.auto_complete = False

    await orchestrator.submit([tool_call("c1")])
    await orchestrator.confirm_and_run("c1")
    await asyncio.sleep(0.15)
    assert completed == []

    outcome = await orchestrator.complete_batch()
    assert completed == [outcome]

    await orchestrator.submit([tool_call("c2")])
    await orchestrator.skip("c2")
    await asyncio.sleep(0.1)
    assert len(completed) == 1

    orchestrator.auto_complete = True
    await orchestrator.wait_for_completion(timeout=1.0)
    assert len(completed) == 2


@pytest.mark.asyncio
async def test_complete_batch_requires_terminal_calls() -> None:
    pool, _ = make_pool()
    orchestrator, _, _ = make_orchestrator(pool)
    await orchestrator.submit([tool_call("c1")])

    with pytest.raises(BatchError, match="unfinished"):
        await orchestrator.complete_batch()


@pytest.mark.asyncio
async def test_illegal_transitions_and_batch_misuse() -> None:
    pool, _ = make_pool()
    orchestrator, _, _ = make_orchestrator(pool, settings=OrchestratorSettings(auto_complete=False))

    with pytest.raises(BatchError):
        await orchestrator.confirm_and_run("c1")
    with pytest.raises(BatchError, match="Duplicate"):
        await orchestrator.submit([tool_call("c1"), tool_call("c1")])
    with pytest.raises(BatchError, match="empty"):
        await orchestrator.submit([])

    await orchestrator.submit([tool_call("c1"), tool_call("c2")])
    with pytest.raises(BatchError, match="still open"):
        await orchestrator.submit([tool_call("c9")])

    await orchestrator.confirm_and_run("c1")
    with pytest.raises(InvalidTransitionError):
        await orchestrator.confirm_and_run("c1")
    with pytest.raises(InvalidTransitionError):
        await orchestrator.skip("c1")
    with pytest.raises(BatchError, match="not part of batch"):
        await orchestrator.skip("c7")


@pytest.mark.asyncio
async def test_late_result_of_cancelled_call_is_ignored() -> None:
    release = asyncio.Event()

    async def handler(name: str, arguments: Dict[str, Any], timeout: Optional[float] = None) -> Any:
        await release.wait()
        return text("too late")

    pool, _ = make_pool(handler)
    orchestrator, completed, _ = make_orchestrator(pool)
    batch = await orchestrator.submit([tool_call("c1")])

    running = asyncio.create_task(orchestrator.confirm_and_run("c1"))
    await asyncio.sleep(0.02)
    assert batch.record("c1").state is ExecutionState.EXECUTING

    cancelled = await orchestrator.cancel("c1")
    release.set()
    result = await running

    assert cancelled.state is ExecutionState.CANCELLED
    assert result.state is ExecutionState.CANCELLED
    assert batch.record("c1").state is ExecutionState.CANCELLED
    await orchestrator.wait_for_completion(timeout=1.0)
    assert len(completed) == 1


@pytest.mark.asyncio
async def test_cancel_batch_keeps_recording_in_flight_call() -> None:
    release = asyncio.Event()

    async def handler(name: str, arguments: Dict[str, Any], timeout: Optional[float] = None) -> Any:
        await release.wait()
        return text("done anyway")

    pool, _ = make_pool(handler)
    orchestrator, completed, cancelled = make_orchestrator(pool)
    batch = await orchestrator.submit([tool_call("c1"), tool_call("c2")])

    running = asyncio.create_task(orchestrator.confirm_and_run("c1"))
    await asyncio.sleep(0.02)
    await orchestrator.cancel_batch()
    release.set()
    result = await running
    await asyncio.sleep(0.1)

    assert result.state is ExecutionState.SUCCEEDED
    assert batch.record("c1").state is ExecutionState.SUCCEEDED
    assert batch.record("c2").state is ExecutionState.CANCELLED
    assert len(cancelled) == 1
    assert completed == []


@pytest.mark.asyncio
async def test_per_tool_timeout_override() -> None:
    pool, connection = make_pool()
    settings = OrchestratorSettings(settle_delay=0.01, tool_timeouts={"echo": 2.5})
    orchestrator, _, _ = make_orchestrator(pool, settings=settings)

    await orchestrator.submit([tool_call("c1"), tool_call("c2", "other")])
    await orchestrator.run_pending()

    assert connection.call_tool.await_args_list[0].kwargs["timeout"] == 2.5
    assert connection.call_tool.await_args_list[1].kwargs["timeout"] is None


@pytest.mark.asyncio
async def test_async_update_callback_sees_every_transition() -> None:
    pool, _ = make_pool()
    seen: List[Tuple[str, ExecutionState]] = []

    async def on_update(record: Any) -> None:
        seen.append((record.id, record.state))

    orchestrator, _, _ = make_orchestrator(pool, on_update=on_update)
    await orchestrator.submit([tool_call("c1"), tool_call("c2")])
    await orchestrator.confirm_and_run("c1")
    await orchestrator.skip("c2")

    assert seen == [
        ("c1", ExecutionState.EXECUTING),
        ("c1", ExecutionState.SUCCEEDED),
        ("c2", ExecutionState.SKIPPED),
    ]
    await orchestrator.wait_for_completion(timeout=1.0)


@pytest.mark.asyncio
async def test_history_and_stats() -> None:
    async def handler(name: str, arguments: Dict[str, Any], timeout: Optional[float] = None) -> Any:
        if name == "broken":
            raise ToolExecutionError("nope")
        return text("ok")

    pool, _ = make_pool(handler)
    settings = OrchestratorSettings(settle_delay=0.01, history_limit=3)
    orchestrator, _, _ = make_orchestrator(pool, settings=settings)

    await orchestrator.submit([tool_call("c1"), tool_call("c2", "broken"), tool_call("c3"), tool_call("c4")])
    await orchestrator.confirm_and_run("c1")
    await orchestrator.confirm_and_run("c2")
    await orchestrator.skip("c3")
    await orchestrator.cancel_batch()

    history = orchestrator.get_execution_history()
    # bounded: c1 dropped out
    assert [entry.tool_call_id for entry in history] == ["c4", "c3", "c2"]
    assert [entry.tool_call_id for entry in orchestrator.get_execution_history(limit=1)] == ["c4"]
    assert history[2].error == "nope"
    assert history[2].duration is not None

    stats = orchestrator.get_execution_stats()
    assert stats["total"] == 3
    assert (stats["succeeded"], stats["failed"], stats["skipped"], stats["cancelled"]) == (0, 1, 1, 1)
    assert stats["tools"]["broken"] == {"total": 1, "succeeded": 0, "failed": 1}
    assert stats["average_duration"] >= 0.0

    orchestrator.clear_history()
    assert orchestrator.get_execution_history() == []
    assert orchestrator.get_execution_stats()["total"] == 0


@pytest.mark.asyncio
async def test_failing_handback_is_recorded() -> None:
    pool, _ = make_pool()

    def explode(messages: Any) -> None:
        raise RuntimeError("model unavailable")

    orchestrator, completed, _ = make_orchestrator(pool, adapter=MessageHandbackAdapter(explode))
    await orchestrator.submit([tool_call("c1")])
    await orchestrator.confirm_and_run("c1")
    await orchestrator.wait_for_completion(timeout=1.0)

    assert len(completed) == 1
    assert isinstance(orchestrator.last_handback_error, RuntimeError)
