import json
from typing import Any, List
from unittest.mock import AsyncMock, MagicMock

import pytest
from openai import AsyncOpenAI

from toolbridge import OpenAIHandbackAdapter, ToolCall, ToolCallResult
from toolbridge.core.messages import ToolMessage
from toolbridge.core.tools.execution import BatchOutcome, BatchStatus, MessageHandbackAdapter, result_text
from toolbridge.core.tools.models import ExecutionState


@pytest.fixture
def mock_openai_client() -> Any:
    client = MagicMock(spec=AsyncOpenAI)
    client.chat = MagicMock()
    client.chat.completions = MagicMock()
    client.chat.completions.create = AsyncMock(return_value="next-turn")
    return client


@pytest.fixture
def outcome() -> BatchOutcome:
    calls = [
        ToolCall(id="call_1", name="echo", arguments={"text": "hi"}, server_id="alpha"),
        ToolCall(id="call_2", name="search", arguments={"q": "cats"}, server_id="beta"),
        ToolCall(id="call_3", name="add", arguments={"a": 1}, server_id="alpha"),
    ]
    # results arrive out of call order
    results = [
        ToolCallResult(tool_call_id="call_3", success=False, state=ExecutionState.FAILED, error="missing b"),
        ToolCallResult(
            tool_call_id="call_1",
            success=True,
            state=ExecutionState.SUCCEEDED,
            result={"content": [{"type": "text", "text": "hi"}]},
        ),
        ToolCallResult(tool_call_id="call_2", success=False, state=ExecutionState.SKIPPED, error="Skipped by user."),
    ]
    return BatchOutcome(batch_id="b1", status=BatchStatus.COMPLETED, calls=calls, results=results)


def test_result_text_per_state() -> None:
    def result(state: ExecutionState, **kwargs: Any) -> ToolCallResult:
        return ToolCallResult(tool_call_id="c", success=state is ExecutionState.SUCCEEDED, state=state, **kwargs)

    assert result_text(result(ExecutionState.SUCCEEDED, result=None)) == "Success"
    assert result_text(result(ExecutionState.SUCCEEDED, result={"answer": 42})) == '{"answer": 42}'
    assert result_text(result(ExecutionState.FAILED, error="boom")) == "Error: boom"
    assert result_text(result(ExecutionState.FAILED)) == "Error: tool execution failed"
    assert "not to run" in result_text(result(ExecutionState.SKIPPED))
    assert "cancelled" in result_text(result(ExecutionState.CANCELLED))


def test_result_text_renders_content_blocks() -> None:
    payload = {
        "content": [
            {"type": "text", "text": "Here you go"},
            {"type": "image", "data": "aGVsbG8=", "mimeType": "image/png"},
            {"type": "resource", "resource": {"uri": "file:///tmp/report.txt", "text": "..."}},
        ]
    }
    text = result_text(ToolCallResult(tool_call_id="c", success=True, state=ExecutionState.SUCCEEDED, result=payload))

    assert text.splitlines() == ["Here you go", "[Image: image/png]", "[Resource: file:///tmp/report.txt]"]


@pytest.mark.asyncio
async def test_message_adapter_keeps_call_order(outcome: BatchOutcome) -> None:
    received: List[List[ToolMessage]] = []
    adapter = MessageHandbackAdapter(received.append)

    await adapter.hand_back(outcome)

    messages = received[0]
    assert [m.tool_call_id for m in messages] == ["call_1", "call_2", "call_3"]
    assert [m.name for m in messages] == ["echo", "search", "add"]
    assert messages[0].content == "hi"
    assert messages[2].content == "Error: missing b"
    assert all(m.author == "tool" for m in messages)


@pytest.mark.asyncio
async def test_message_adapter_awaits_async_callback(outcome: BatchOutcome) -> None:
    callback = AsyncMock(return_value="answer")
    adapter = MessageHandbackAdapter(callback)

    assert await adapter.hand_back(outcome) == "answer"
    callback.assert_awaited_once()
    assert len(callback.await_args.args[0]) == 3


@pytest.mark.asyncio
async def test_openai_adapter_extends_history_and_requests_completion(
    mock_openai_client: Any, outcome: BatchOutcome
) -> None:
    history: List[Any] = [{"role": "user", "content": "Say hi and search cats."}]
    tools = [{"type": "function", "function": {"name": "echo", "parameters": {"type": "object"}}}]
    adapter = OpenAIHandbackAdapter(
        mock_openai_client,
        "gpt-4o-mini",
        history,
        tools=tools,  # type: ignore[arg-type]
        temperature=0.2,
        assistant_content="On it.",
    )

    response = await adapter.hand_back(outcome)

    assert response == "next-turn"
    assert len(history) == 5
    assistant = history[1]
    assert assistant["role"] == "assistant"
    assert assistant["content"] == "On it."
    assert [c["id"] for c in assistant["tool_calls"]] == ["call_1", "call_2", "call_3"]
    assert json.loads(assistant["tool_calls"][1]["function"]["arguments"]) == {"q": "cats"}
    assert history[2] == {"role": "tool", "tool_call_id": "call_1", "name": "echo", "content": "hi"}
    assert history[3]["content"].startswith("The user chose not to run")

    kwargs = mock_openai_client.chat.completions.create.await_args.kwargs
    assert kwargs["model"] == "gpt-4o-mini"
    assert kwargs["tools"] == tools
    assert kwargs["temperature"] == 0.2
    assert "max_tokens" not in kwargs
    assert kwargs["messages"] is history


@pytest.mark.asyncio
async def test_openai_adapter_without_optional_settings(mock_openai_client: Any, outcome: BatchOutcome) -> None:
    adapter = OpenAIHandbackAdapter(mock_openai_client, "gpt-4o-mini", [])

    await adapter.hand_back(outcome)

    kwargs = mock_openai_client.chat.completions.create.await_args.kwargs
    assert set(kwargs) == {"model", "messages"}
    assert adapter.messages[0]["content"] is None
