"""Provider-agnostic message models handed back to the model after a batch."""

from abc import ABC
from typing import Any, List, Optional

from pydantic import BaseModel


class BaseMessage(ABC, BaseModel):
    """Base model for messages exchanged with an LLM.

    Attributes:
        author: Role associated with the message.
        content: Text payload of the message.
    """

    author: str
    content: str


class AssistantMessage(BaseMessage):
    """Message authored by the assistant, optionally containing tool calls."""

    author: str = "assistant"
    tool_calls: Optional[List[Any]] = None


class ToolMessage(BaseMessage):
    """Message carrying the outcome of one tool call."""

    author: str = "tool"
    tool_call_id: str
    name: str
