"""Incremental Server-Sent Events parser.

Bytes may arrive split anywhere (mid-line, mid-frame, mid-UTF-8 sequence);
``SSEParser.feed`` buffers until a blank-line frame boundary and only then
emits events, so the event sequence depends on the concatenated stream alone.
"""

from __future__ import annotations

import codecs
from dataclasses import dataclass
import json
from typing import TYPE_CHECKING, Any

from aihttp.errors import ParseError

if TYPE_CHECKING:
    from collections.abc import Iterable

DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True)
class SSEEvent:
    """One dispatched SSE frame."""

    event: str = "message"
    data: str = ""
    id: str | None = None
    retry: int | None = None

    @property
    def is_done(self) -> bool:
        return self.data.strip() == DONE_SENTINEL

    def json(self) -> Any:
        """Decode ``data`` as JSON, raising ``ParseError`` on malformed input."""
        try:
            return json.loads(self.data)
        except ValueError as e:
            preview = self.data if len(self.data) <= 80 else self.data[:77] + "..."
            raise ParseError(
                f"Malformed JSON in SSE frame (event={self.event!r}): {preview!r}"
            ) from e


class SSEParser:
    """Stateful frame splitter; feed bytes or text, collect events."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._pending_cr = False

    def feed(self, data: bytes | str) -> list[SSEEvent]:
        """Consume one read and return every frame it completed."""
        text = self._decoder.decode(data) if isinstance(data, bytes) else data
        return self._consume(text)

    def flush(self) -> list[SSEEvent]:
        """Emit any trailing frame that was not terminated by a blank line."""
        events = self._consume(self._decoder.decode(b"", final=True))
        if self._pending_cr:
            self._pending_cr = False
            self._buffer += "\n"
        tail, self._buffer = self._buffer, ""
        event = _parse_frame(tail)
        if event is not None:
            events.append(event)
        return events

    def _consume(self, text: str) -> list[SSEEvent]:
        # A lone trailing CR may be the first half of CRLF; hold it back.
        if self._pending_cr:
            text = "\r" + text
            self._pending_cr = False
        if text.endswith("\r"):
            self._pending_cr = True
            text = text[:-1]
        self._buffer += text.replace("\r\n", "\n").replace("\r", "\n")

        events: list[SSEEvent] = []
        while True:
            idx = self._buffer.find("\n\n")
            if idx < 0:
                break
            frame = self._buffer[:idx]
            self._buffer = self._buffer[idx + 2 :]
            event = _parse_frame(frame)
            if event is not None:
                events.append(event)
        return events


def _parse_frame(frame: str) -> SSEEvent | None:
    event_type: str | None = None
    data_lines: list[str] = []
    event_id: str | None = None
    retry: int | None = None

    for line in frame.split("\n"):
        if not line or line.startswith(":"):
            continue
        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]
        if name == "event":
            event_type = value
        elif name == "data":
            data_lines.append(value)
        elif name == "id":
            event_id = value
        elif name == "retry" and value.isdigit():
            retry = int(value)

    # Frames without data lines are not dispatched.
    if not data_lines:
        return None
    return SSEEvent(
        event=event_type or "message",
        data="\n".join(data_lines),
        id=event_id,
        retry=retry,
    )


def parse_events(chunks: Iterable[bytes | str]) -> list[SSEEvent]:
    """Parse a complete sequence of reads into events."""
    parser = SSEParser()
    events: list[SSEEvent] = []
    for chunk in chunks:
        events.extend(parser.feed(chunk))
    events.extend(parser.flush())
    return events
