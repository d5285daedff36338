"""Vendor adapters."""

from .anthropic import AnthropicAdapter
from .base import BaseAdapter, EmbeddingModel, Model, ProviderCapabilities, ResponseAccumulator
from .gemini import GeminiAdapter
from .mock import MockAdapter, MockReply
from .openai import OpenAIAdapter

__all__ = [
    "AnthropicAdapter",
    "BaseAdapter",
    "EmbeddingModel",
    "GeminiAdapter",
    "MockAdapter",
    "MockReply",
    "Model",
    "OpenAIAdapter",
    "ProviderCapabilities",
    "ResponseAccumulator",
]
