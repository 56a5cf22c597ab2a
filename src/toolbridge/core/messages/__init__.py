"""Expose provider-agnostic message model types used for the hand-back to the model."""

from .models import BaseMessage, AssistantMessage, ToolMessage

__all__ = [
    "BaseMessage",
    "AssistantMessage",
    "ToolMessage",
]
