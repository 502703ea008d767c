"""aihttp: one request/response model over several LLM vendor HTTP APIs.

Public API:
    - Client: send, send_streaming, continue_with_tool_results
    - ClientConfig: provider selection and fallback order
    - StandardRequest / StandardResponse / StreamChunk: the unified shapes
    - Success / Failure: operation results
"""

from __future__ import annotations

import logging

from aihttp.client import Client
from aihttp.config import ClientConfig, ProviderConfig, resolve_provider_config
from aihttp.continuation import (
    ContinuationManager,
    ContinuationState,
    ContinuationStore,
    InMemoryContinuationStore,
)
from aihttp.errors import (
    AIHttpError,
    ConfigurationError,
    ContinuationError,
    MissingModelError,
    ParseError,
    TransportError,
    UnknownProviderError,
    ValidationError,
    VendorError,
)
from aihttp.models import (
    ConnectionTestResult,
    ContentPart,
    Message,
    ModelInfo,
    StandardRequest,
    StandardResponse,
    StreamChunk,
    ToolCall,
    ToolCallDelta,
    ToolDefinition,
    ToolResult,
    Usage,
)
from aihttp.registry import provider_names
from aihttp.result import Failure, Result, Success
from aihttp.retry import RetryPolicy

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("aihttp-client")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("aihttp").addHandler(logging.NullHandler())

__all__ = [
    "AIHttpError",
    "Client",
    "ClientConfig",
    "ConfigurationError",
    "ConnectionTestResult",
    "ContentPart",
    "ContinuationError",
    "ContinuationManager",
    "ContinuationState",
    "ContinuationStore",
    "Failure",
    "InMemoryContinuationStore",
    "Message",
    "MissingModelError",
    "ModelInfo",
    "ParseError",
    "ProviderConfig",
    "Result",
    "RetryPolicy",
    "StandardRequest",
    "StandardResponse",
    "StreamChunk",
    "Success",
    "ToolCall",
    "ToolCallDelta",
    "ToolDefinition",
    "ToolResult",
    "TransportError",
    "UnknownProviderError",
    "Usage",
    "ValidationError",
    "VendorError",
    "provider_names",
    "resolve_provider_config",
]
