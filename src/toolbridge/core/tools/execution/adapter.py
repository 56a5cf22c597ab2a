"""Hand-back of completed batches to the model."""

import inspect
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Sequence

from .batch import BatchOutcome
from ..models import ExecutionState, ToolCall, ToolCallResult
from ...messages import ToolMessage
from ....protocol.content import render_call_result

SKIPPED_TEXT = "The user chose not to run this tool."
CANCELLED_TEXT = "The tool call was cancelled."


def result_text(result: ToolCallResult) -> str:
    """Text the model sees for one tool call outcome."""
    if result.state is ExecutionState.SUCCEEDED:
        return render_call_result(result.result)
    if result.state is ExecutionState.SKIPPED:
        return SKIPPED_TEXT
    if result.state is ExecutionState.CANCELLED:
        return CANCELLED_TEXT
    return f"Error: {result.error or 'tool execution failed'}"


class HandbackAdapter(ABC):
    """
    Converts the outcome of a batch into provider-specific messages and sends them.
    """

    @abstractmethod
    def build_tool_response_message(self, call: ToolCall, result: ToolCallResult) -> Any:
        """Converts one tool call outcome into a provider-specific message."""
        ...

    @abstractmethod
    async def send_tool_responses(self, calls: Sequence[ToolCall], messages: Sequence[Any]) -> Any:
        """Sends the tool response messages back to the model and returns its answer."""
        ...

    async def hand_back(self, outcome: BatchOutcome) -> Any:
        """Build one message per call, in call order, and send them together.

        Args:
            outcome: The completed batch.

        Returns:
            Whatever ``send_tool_responses`` returns.
        """
        results: Dict[str, ToolCallResult] = {r.tool_call_id: r for r in outcome.results}
        calls = [call for call in outcome.calls if call.id in results]
        messages = [self.build_tool_response_message(call, results[call.id]) for call in calls]
        return await self.send_tool_responses(calls, messages)


class MessageHandbackAdapter(HandbackAdapter):
    """Builds provider-agnostic ToolMessages and passes them to a callback."""

    def __init__(self, callback: Callable[[List[ToolMessage]], Any]) -> None:
        """
        Args:
            callback: Receives the tool messages; may be sync or async.
        """
        self.callback = callback

    def build_tool_response_message(self, call: ToolCall, result: ToolCallResult) -> ToolMessage:
        return ToolMessage(content=result_text(result), tool_call_id=call.id, name=call.name)

    async def send_tool_responses(self, calls: Sequence[ToolCall], messages: Sequence[Any]) -> Any:
        response = self.callback(list(messages))
        if inspect.isawaitable(response):
            response = await response
        return response
