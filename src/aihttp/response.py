"""Response normalization: vendor body -> ``StandardResponse``.

The adapter decodes the body (branching on envelope shape where a vendor has
more than one); this module merges usage, model, finish reason, and tool
calls into the standard shape and keeps them mutually consistent.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from aihttp.errors import ParseError, VendorError
from aihttp.models import StandardResponse
from aihttp.providers._errors import parse_vendor_error
from aihttp.providers._utils import reconcile_finish_reason

if TYPE_CHECKING:
    from aihttp.providers.base import ParsedResponse, VendorAdapter

logger = logging.getLogger(__name__)


def build_response(
    parsed: ParsedResponse,
    adapter: VendorAdapter,
    *,
    requested_model: str | None = None,
    raw: Any = None,
) -> StandardResponse:
    """Assemble a StandardResponse from an adapter's decoded fields."""
    finish = reconcile_finish_reason(
        adapter.map_finish_reason(parsed.finish_reason),
        has_tool_calls=bool(parsed.tool_calls),
    )
    return StandardResponse(
        success=True,
        content=parsed.content,
        usage=parsed.usage,
        model=parsed.model or requested_model,
        finish_reason=finish,
        tool_calls=parsed.tool_calls or None,
        response_id=parsed.response_id,
        provider=adapter.name,
        raw=raw,
    )


def normalize_response(
    raw: Any,
    adapter: VendorAdapter,
    *,
    requested_model: str | None = None,
) -> StandardResponse:
    """Normalize one non-streaming vendor response body.

    Raises:
        VendorError: If the body is an error envelope despite a 2xx status.
        ParseError: If the body is not a JSON object.
    """
    if isinstance(raw, list) and len(raw) == 1 and isinstance(raw[0], dict):
        raw = raw[0]
    if not isinstance(raw, dict):
        raise ParseError(
            f"{adapter.name} response is not a JSON object (got {type(raw).__name__})"
        )

    envelope = parse_vendor_error(raw)
    if envelope is None and isinstance(raw.get("response"), dict):
        envelope = parse_vendor_error(raw["response"])
    if envelope is not None:
        message, vendor_type, retry_after_s = envelope
        raise VendorError(
            f"{adapter.name} returned an error: {message}",
            provider=adapter.name,
            phase="response",
            vendor_type=vendor_type,
            retry_after_s=retry_after_s,
            body=raw,
        )

    parsed = adapter.parse_response(raw)
    response = build_response(parsed, adapter, requested_model=requested_model, raw=raw)
    logger.debug(
        "%s response: finish=%s tool_calls=%d tokens=%d",
        adapter.name,
        response.finish_reason,
        len(response.tool_calls or ()),
        response.usage.total_tokens,
    )
    return response
