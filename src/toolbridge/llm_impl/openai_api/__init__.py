"""Expose the OpenAI-specific hand-back of tool results."""

from .adapter import OpenAIHandbackAdapter

__all__ = ["OpenAIHandbackAdapter"]
