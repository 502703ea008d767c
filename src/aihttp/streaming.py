"""Streaming assembly: transport reads -> SSE frames -> StreamChunks -> sink.

``StreamAssembler.feed`` is handed to the transport as its per-read sink.
Chunks reach the caller's sink one at a time in arrival order, and every
turn ends with exactly one ``done=True`` chunk: the vendor's terminal event,
a synthesized terminator at end of stream, or a final error chunk.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from aihttp.errors import ParseError
from aihttp.models import StandardResponse, StreamChunk, Usage
from aihttp.providers._utils import reconcile_finish_reason
from aihttp.sse import SSEParser
from aihttp.tool_calls import ToolCallAccumulator

if TYPE_CHECKING:
    from collections.abc import Callable

    from aihttp.models import FinishReason
    from aihttp.providers.base import VendorAdapter
    from aihttp.sse import SSEEvent

logger = logging.getLogger(__name__)


class StreamAssembler:
    """Decode one streamed turn and build its final StandardResponse."""

    def __init__(
        self,
        adapter: VendorAdapter,
        sink: Callable[[StreamChunk], None] | None = None,
        *,
        requested_model: str | None = None,
    ) -> None:
        self._adapter = adapter
        self._sink = sink
        self._requested_model = requested_model
        self._parser = SSEParser()
        self._decoder = adapter.stream_decoder()
        self._content: list[str] = []
        self._tool_calls = ToolCallAccumulator()
        self._finish: FinishReason | None = None
        self._usage: Usage | None = None
        self._done = False
        self.skipped_frames = 0

    @property
    def done(self) -> bool:
        return self._done

    def feed(self, data: bytes | str) -> bool:
        """Consume one transport read; returns False once the turn is over."""
        if self._done:
            return False
        for event in self._parser.feed(data):
            self._handle(event)
            if self._done:
                return False
        return True

    def finish(self) -> StandardResponse:
        """Flush trailing bytes, guarantee the terminal chunk, build the response."""
        if not self._done:
            for event in self._parser.flush():
                self._handle(event)
                if self._done:
                    break
        if not self._done:
            logger.debug("%s stream ended without a terminal event", self._adapter.name)
            self._emit(
                StreamChunk(
                    done=True,
                    finish_reason=reconcile_finish_reason(
                        self._finish or "unknown", has_tool_calls=bool(self._tool_calls)
                    ),
                    usage=self._usage,
                )
            )

        calls = self._tool_calls.calls()
        return StandardResponse(
            success=True,
            content="".join(self._content),
            usage=self._usage or Usage(),
            model=self._decoder.model or self._requested_model,
            finish_reason=reconcile_finish_reason(
                self._finish or "unknown", has_tool_calls=bool(calls)
            ),
            tool_calls=calls or None,
            response_id=self._decoder.response_id,
            provider=self._adapter.name,
        )

    def fail(self, error: Exception) -> None:
        """Terminate the turn with an error chunk, unless already terminated."""
        if self._done:
            return
        self._emit(
            StreamChunk(
                done=True,
                error=str(error),
                error_type=type(error).__name__,
                usage=self._usage,
            )
        )

    def _handle(self, event: SSEEvent) -> None:
        try:
            chunks = self._decoder.decode(event)
        except (ParseError, KeyError, TypeError, ValueError) as e:
            self.skipped_frames += 1
            logger.warning("Skipping malformed %s stream frame: %s", self._adapter.name, e)
            return
        for chunk in chunks:
            self._emit(chunk)
            if self._done:
                return

    def _emit(self, chunk: StreamChunk) -> None:
        if self._done:
            return
        if chunk.content_delta:
            self._content.append(chunk.content_delta)
        for delta in chunk.tool_call_deltas:
            self._tool_calls.add(delta)
        if chunk.finish_reason is not None:
            self._finish = chunk.finish_reason
        if chunk.usage is not None:
            self._usage = chunk.usage
        if chunk.done:
            self._done = True
        if self._sink is not None:
            self._sink(chunk)
