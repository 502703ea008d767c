"""Shared helpers for adapter implementations."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from aihttp.errors import ParseError
from aihttp.models import FINISH_REASONS, ContentPart, ToolDefinition

if TYPE_CHECKING:
    from collections.abc import Mapping

    from aihttp.models import FinishReason

logger = logging.getLogger(__name__)


def clamp(value: float, low: float, high: float, *, field: str, provider: str) -> float:
    """Clamp *value* into ``[low, high]``, logging when it moves."""
    clamped = min(max(value, low), high)
    if clamped != value:
        logger.debug("%s: clamped %s from %r to %r", provider, field, value, clamped)
    return clamped


def clamp_int(value: int, low: int, high: int | None, *, field: str, provider: str) -> int:
    clamped = max(value, low)
    if high is not None:
        clamped = min(clamped, high)
    if clamped != value:
        logger.debug("%s: clamped %s from %r to %r", provider, field, value, clamped)
    return int(clamped)


def map_finish_reason(
    raw_reason: str | None, mapping: Mapping[str, FinishReason]
) -> FinishReason:
    """Map a vendor finish reason into the closed vocabulary."""
    if raw_reason is None:
        return "unknown"
    key = str(raw_reason)
    mapped = mapping.get(key)
    if mapped is None:
        mapped = mapping.get(key.lower())
    if mapped is None and key.lower() in FINISH_REASONS:
        return key.lower()  # type: ignore[return-value]
    return mapped or "unknown"


def reconcile_finish_reason(reason: FinishReason, *, has_tool_calls: bool) -> FinishReason:
    """Keep ``tool_calls`` and the presence of calls consistent.

    Vendors that report a plain stop alongside function calls get
    ``tool_calls``; a ``tool_calls`` reason with no calls becomes ``unknown``.
    """
    if has_tool_calls and reason in ("stop", "unknown"):
        return "tool_calls"
    if not has_tool_calls and reason == "tool_calls":
        return "unknown"
    return reason


def tool_definitions(tools: Any) -> list[ToolDefinition]:
    """Tools after sanitizing; the request normalizer guarantees the type."""
    return [t for t in tools or () if isinstance(t, ToolDefinition)]


def image_source(part: ContentPart) -> tuple[str, str] | None:
    """Return ``("url", url)`` or ``("data", data_url)`` for an image part."""
    if part.url:
        return "url", part.url
    if part.data:
        mime = part.mime_type or "image/png"
        return "data", f"data:{mime};base64,{part.data}"
    return None


def split_data_url(url: str) -> tuple[str, str] | None:
    """Split ``data:<mime>;base64,<payload>`` into ``(mime, payload)``."""
    if not url.startswith("data:") or ";base64," not in url:
        return None
    header, payload = url[5:].split(";base64,", 1)
    return header or "application/octet-stream", payload


def join_url(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


def uploaded_file_id(raw: Any, *, provider: str) -> str:
    """Read the ``id`` of a Files API upload reply (``{"id": "file-..."}``)."""
    file_id = raw.get("id") if isinstance(raw, dict) else None
    if not isinstance(file_id, str) or not file_id:
        raise ParseError(f"{provider} upload reply carries no file id")
    return file_id
