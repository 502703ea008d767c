"""Vendor adapter protocol: pure translation between standard and wire shapes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal, Protocol, runtime_checkable

from aihttp.models import Usage

if TYPE_CHECKING:
    from aihttp.config import ProviderConfig
    from aihttp.models import (
        Message,
        ModelInfo,
        StandardRequest,
        StreamChunk,
        ToolCall,
        ToolResult,
    )
    from aihttp.sse import SSEEvent
    from aihttp.tool_calls import ToolCallCodec

ContinuationKind = Literal["response_id", "history", "flat"]


@dataclass(frozen=True)
class ProviderCapabilities:
    """Feature flags exposed by adapters."""

    streaming: bool = True
    tools: bool = True
    model_listing: bool = True
    reasoning: bool = False
    continuation: ContinuationKind = "flat"
    file_upload: bool = False


@dataclass(frozen=True)
class ParsedResponse:
    """One vendor response, decoded but not yet normalized.

    ``finish_reason`` is still the vendor's own string.
    """

    content: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    usage: Usage = field(default_factory=Usage)
    model: str | None = None
    finish_reason: str | None = None
    response_id: str | None = None


@runtime_checkable
class StreamDecoder(Protocol):
    """Per-stream state machine turning SSE events into StreamChunks.

    A decoder emits at most one ``done=True`` chunk. ``model`` and
    ``response_id`` are filled in as the stream reveals them.
    """

    model: str | None
    response_id: str | None

    def decode(self, event: SSEEvent) -> list[StreamChunk]:
        """Decode one event; raises ``ParseError`` for malformed frames."""
        ...


@runtime_checkable
class VendorAdapter(Protocol):
    """Translation for one vendor's HTTP API. No I/O happens here."""

    name: str
    config: ProviderConfig
    tool_codec: ToolCallCodec

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Feature flags for this vendor."""
        ...

    def endpoint(self, model: str, *, stream: bool) -> str:
        """Absolute URL for a generation call."""
        ...

    def headers(self) -> dict[str, str]:
        """Auth and version headers."""
        ...

    def build_request(self, request: StandardRequest, *, stream: bool) -> dict[str, Any]:
        """Translate a validated request (model already resolved) to the wire body."""
        ...

    def messages_from_request(self, body: dict[str, Any]) -> tuple[Message, ...]:
        """Recover standard messages from a wire body built by ``build_request``."""
        ...

    def parse_response(self, raw: dict[str, Any]) -> ParsedResponse:
        """Decode a non-streaming response body."""
        ...

    def map_finish_reason(self, raw_reason: str | None) -> str:
        """Map a vendor finish reason into stop/length/tool_calls/unknown."""
        ...

    def stream_decoder(self) -> StreamDecoder:
        """Fresh decoder for one streaming turn."""
        ...

    def models_endpoint(self) -> str:
        """Absolute URL of the model listing endpoint."""
        ...

    def parse_models(self, raw: Any) -> tuple[ModelInfo, ...]:
        """Filter and normalize a model listing body."""
        ...


@runtime_checkable
class SupportsResponseIdContinuation(Protocol):
    """Adapters whose vendor resumes a turn from an opaque response id."""

    def build_tool_output_request(
        self,
        *,
        response_id: str,
        tool_results: tuple[ToolResult, ...],
        template: StandardRequest,
        stream: bool,
    ) -> dict[str, Any]:
        """Body carrying only the stored id and the tool outputs."""
        ...


@runtime_checkable
class SupportsFileUpload(Protocol):
    """Adapters whose vendor stores uploaded files behind a Files API."""

    def files_endpoint(self) -> str:
        """Absolute URL that accepts ``multipart/form-data`` uploads."""
        ...

    def parse_file_id(self, raw: Any) -> str:
        """Extract the file id from the upload reply."""
        ...
