"""Collect provider-specific hand-back implementations."""

from .openai_api import OpenAIHandbackAdapter

__all__ = ["OpenAIHandbackAdapter"]
