"""Map HTTP failures into the aihttp error taxonomy.

A non-2xx response whose body carries a recognizable vendor error envelope
becomes ``VendorError``; anything else (network failure, timeout, opaque
error body) becomes ``TransportError``. Both carry retry metadata.
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import Any

import httpx

from aihttp.errors import TransportError, VendorError, _walk_exception_chain
from aihttp.retry import RETRYABLE_STATUS_CODES

API_KEY_ENV: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "grok": "XAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}

_PROTO_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)s$")


def parse_retry_after(headers: httpx.Headers | None) -> float | None:
    """Read a numeric ``Retry-After`` header, in seconds."""
    if headers is None:
        return None
    raw = headers.get("Retry-After")
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        seconds = float(raw)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def _retry_info_seconds(error: dict[str, Any]) -> float | None:
    """Extract Google API-style ``RetryInfo.retryDelay`` (e.g. ``"8s"``)."""
    details = error.get("details")
    if not isinstance(details, list):
        return None
    for entry in details:
        if not isinstance(entry, dict):
            continue
        at_type = entry.get("@type", "")
        if not isinstance(at_type, str) or "RetryInfo" not in at_type:
            continue
        delay_raw = entry.get("retryDelay")
        if isinstance(delay_raw, str):
            m = _PROTO_DURATION_RE.match(delay_raw)
            if m:
                return float(m.group(1))
    return None


def parse_vendor_error(body: Any) -> tuple[str, str | None, float | None] | None:
    """Recognize a vendor error envelope.

    Handles the shapes the supported vendors use::

        {"error": {"message": ..., "type"|"status"|"code": ...}}   OpenAI, Gemini, OpenRouter
        {"type": "error", "error": {"type": ..., "message": ...}}  Anthropic
        {"error": "text", "code": ...}                             Grok
        [{"error": {...}}]                                         Gemini (list-wrapped)

    Returns ``(message, vendor_type, retry_after_s)`` or None.
    """
    if isinstance(body, list) and len(body) == 1:
        body = body[0]
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if isinstance(error, str) and error.strip():
        code = body.get("code")
        return error.strip(), str(code) if code is not None else None, None
    if not isinstance(error, dict):
        return None
    message = error.get("message")
    if not isinstance(message, str) or not message.strip():
        return None
    vendor_type: Any = None
    for key in ("type", "status", "code"):
        if error.get(key) is not None:
            vendor_type = error[key]
            break
    return (
        message.strip(),
        str(vendor_type) if vendor_type is not None else None,
        _retry_info_seconds(error),
    )


def _auth_hint(provider: str, status_code: int | None, cause_message: str) -> str | None:
    """Generate a hint for auth errors where naming the env var is useful."""
    cause_lower = cause_message.lower()
    if status_code in {401, 403} or (
        status_code == 400 and ("api key" in cause_lower or "api_key" in cause_lower)
    ):
        env_var = API_KEY_ENV.get(provider, "the provider API key")
        return f"Check credentials/permissions (try setting {env_var} or api_key)."
    return None


def error_from_response(
    *,
    status_code: int,
    headers: httpx.Headers | None,
    content: bytes,
    provider: str,
    phase: str,
) -> TransportError:
    """Build the typed error for a non-2xx HTTP response."""
    body: Any = None
    text = content.decode("utf-8", errors="replace")
    if text.strip():
        try:
            body = json.loads(text)
        except ValueError:
            body = None

    retry_after_s = parse_retry_after(headers)
    retryable = retry_after_s is not None or status_code in RETRYABLE_STATUS_CODES

    envelope = parse_vendor_error(body)
    if envelope is not None:
        message, vendor_type, retry_info = envelope
        if retry_after_s is None:
            retry_after_s = retry_info
        return VendorError(
            f"{provider} {phase} failed (status={status_code}): {message}",
            hint=_auth_hint(provider, status_code, message),
            retryable=retryable or retry_after_s is not None,
            status_code=status_code,
            retry_after_s=retry_after_s,
            provider=provider,
            phase=phase,
            vendor_type=vendor_type,
            body=body,
        )

    snippet = text.strip()[:200]
    return TransportError(
        f"{provider} {phase} failed (status={status_code})"
        + (f": {snippet}" if snippet else ""),
        hint=_auth_hint(provider, status_code, snippet),
        retryable=retryable,
        status_code=status_code,
        retry_after_s=retry_after_s,
        provider=provider,
        phase=phase,
    )


def wrap_transport_error(
    exc: BaseException,
    *,
    provider: str,
    phase: str,
) -> TransportError:
    """Map httpx exceptions into ``TransportError`` with retry metadata."""
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    # Already wrapped: fill in missing context only.
    if isinstance(exc, TransportError):
        if exc.provider is None:
            exc.provider = provider
        if exc.phase is None:
            exc.phase = phase
        return exc

    retryable = False
    kind = "request failed"
    for e in _walk_exception_chain(exc):
        if isinstance(e, httpx.TimeoutException):
            retryable = True
            kind = "timed out"
            break
        if isinstance(e, httpx.TransportError):
            retryable = True
            kind = "network error"
            break

    cause = str(exc) or type(exc).__name__
    return TransportError(
        f"{provider} {phase} {kind}: {cause}",
        retryable=retryable,
        provider=provider,
        phase=phase,
    )
