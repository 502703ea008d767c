"""Vendor wire adapters."""

from .anthropic import AnthropicAdapter
from .base import (
    ParsedResponse,
    ProviderCapabilities,
    StreamDecoder,
    SupportsFileUpload,
    SupportsResponseIdContinuation,
    VendorAdapter,
)
from .gemini import GeminiAdapter
from .grok import GrokAdapter
from .openai import OpenAIAdapter
from .openrouter import OpenRouterAdapter

__all__ = [
    "AnthropicAdapter",
    "GeminiAdapter",
    "GrokAdapter",
    "OpenAIAdapter",
    "OpenRouterAdapter",
    "ParsedResponse",
    "ProviderCapabilities",
    "StreamDecoder",
    "SupportsFileUpload",
    "SupportsResponseIdContinuation",
    "VendorAdapter",
]
