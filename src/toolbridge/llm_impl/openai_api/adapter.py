import json
from typing import Any, Dict, Iterable, List, Optional, Sequence, cast

from openai import AsyncOpenAI
from openai.types.chat import ChatCompletion, ChatCompletionToolParam

from toolbridge.core.logger import get_logger
from toolbridge.core.tools.execution import HandbackAdapter, result_text
from toolbridge.core.tools.models import ToolCall, ToolCallResult

logger = get_logger(__name__)


class OpenAIHandbackAdapter(HandbackAdapter):
    """Hands tool results back to an OpenAI chat completion conversation."""

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        messages: List[Dict[str, Any]],
        tools: Optional[Iterable[ChatCompletionToolParam]] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        assistant_content: Optional[str] = None,
    ):
        """Initialize the OpenAI hand-back adapter.

        Args:
            client: The OpenAI client instance.
            model: The name of the model to use.
            messages: The conversation history; extended in place.
            tools: Optional tool definitions offered with the follow-up request.
            temperature: Optional sampling temperature.
            max_tokens: Optional maximum number of tokens to generate.
            assistant_content: Text the model streamed alongside its tool calls.
        """
        self.client = client
        self.model = model
        self.messages = messages
        self.tools = tools
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.assistant_content = assistant_content

    def record_assistant_message(self, calls: Sequence[ToolCall]) -> None:
        """Append the assistant turn that requested ``calls`` to the history.

        Args:
            calls: The tool calls of the completed batch.
        """
        self.messages.append(
            {
                "role": "assistant",
                "content": self.assistant_content,
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                    }
                    for call in calls
                ],
            }
        )

    def build_tool_response_message(self, call: ToolCall, result: ToolCallResult) -> Dict[str, Any]:
        """Build a tool response message for the OpenAI API.

        Args:
            call: The tool call the result belongs to.
            result: The outcome of the call.

        Returns:
            A dictionary representing the tool response message.
        """
        return {
            "role": "tool",
            "tool_call_id": call.id,
            "name": call.name,
            "content": result_text(result),
        }

    async def send_tool_responses(self, calls: Sequence[ToolCall], messages: Sequence[Any]) -> ChatCompletion:
        """Send tool responses back to the OpenAI API and get a new completion.

        Args:
            calls: The tool calls of the completed batch.
            messages: One tool response message per call.

        Returns:
            The next chat completion response from OpenAI.
        """
        self.record_assistant_message(calls)
        self.messages.extend(messages)

        options: Dict[str, Any] = {}
        if self.tools is not None:
            options["tools"] = self.tools
        if self.temperature is not None:
            options["temperature"] = self.temperature
        if self.max_tokens is not None:
            options["max_tokens"] = self.max_tokens

        logger.debug("Sending %d tool response(s) to model '%s'.", len(messages), self.model)
        # messages are plain dicts, structurally compatible with the param union
        return await self.client.chat.completions.create(
            model=self.model,
            messages=cast(Iterable[Any], self.messages),
            **options,
        )
