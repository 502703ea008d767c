"""Bounded async retry for non-streaming vendor calls.

A failed call is re-sent only when the error says the vendor may accept it
later. The vendor's own error code (Anthropic ``type``, Gemini ``status``,
OpenAI ``type``/``code``) decides first; the ``retryable`` flag and HTTP
status decide otherwise. A server-requested wait (``Retry-After`` or Gemini
``RetryInfo``) is honoured as given, or the call gives up when it does not
fit the remaining budget. Streaming requests are not retried: chunks may
already have reached the sink.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import random
from typing import TYPE_CHECKING, TypeVar

from aihttp.errors import TransportError, VendorError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from aihttp.config import ProviderConfig

T = TypeVar("T")

log = logging.getLogger(__name__)

# 529 is Anthropic's "overloaded" status.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset(
    {408, 409, 429, 500, 502, 503, 504, 529}
)

TRANSIENT_VENDOR_TYPES: frozenset[str] = frozenset(
    {
        # Anthropic
        "overloaded_error",
        "rate_limit_error",
        "api_error",
        # OpenAI and chat-completions vendors
        "server_error",
        "rate_limit_exceeded",
        # Gemini
        "RESOURCE_EXHAUSTED",
        "UNAVAILABLE",
        "INTERNAL",
        "DEADLINE_EXCEEDED",
    }
)

PERMANENT_VENDOR_TYPES: frozenset[str] = frozenset(
    {
        "invalid_request_error",
        "authentication_error",
        "permission_error",
        "not_found_error",
        "insufficient_quota",
        "invalid_api_key",
        "context_length_exceeded",
        "INVALID_ARGUMENT",
        "FAILED_PRECONDITION",
        "PERMISSION_DENIED",
        "UNAUTHENTICATED",
        "NOT_FOUND",
    }
)


@dataclass(frozen=True)
class RetryPolicy:
    """How often, and how patiently, a failed request is re-sent.

    Attributes:
        max_attempts: Total attempts including the first one.
        base_delay_s: Backoff ceiling before the first retry; doubles per retry.
        max_delay_s: Upper bound for any computed backoff.
        budget_s: Total seconds that may be spent waiting between attempts.
            ``None`` disables the bound.
    """

    max_attempts: int = 2
    base_delay_s: float = 0.5
    max_delay_s: float = 8.0
    budget_s: float | None = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("RetryPolicy.max_attempts must be >= 1")
        if self.base_delay_s < 0 or self.max_delay_s < 0:
            raise ValueError("RetryPolicy delays must be >= 0")
        if self.budget_s is not None and self.budget_s < 0:
            raise ValueError("RetryPolicy.budget_s must be >= 0 or None")

    @classmethod
    def for_provider(cls, config: ProviderConfig) -> RetryPolicy:
        """Policy for one provider: its attempt count, waiting at most one timeout."""
        return cls(max_attempts=config.max_attempts, budget_s=config.timeout_s)


def should_retry(exc: BaseException) -> bool:
    """Return True when the vendor may accept the same request later."""
    if not isinstance(exc, TransportError):
        return False
    if isinstance(exc, VendorError) and exc.vendor_type is not None:
        if exc.vendor_type in PERMANENT_VENDOR_TYPES:
            return False
        if exc.vendor_type in TRANSIENT_VENDOR_TYPES:
            return True
    if exc.retryable is not None:
        return exc.retryable
    return exc.status_code in RETRYABLE_STATUS_CODES


def retry_delay(
    exc: BaseException,
    policy: RetryPolicy,
    *,
    attempt: int,
    waited_s: float = 0.0,
) -> float | None:
    """Seconds to wait before re-sending after failed ``attempt``, or None to give up."""
    if attempt >= policy.max_attempts or not should_retry(exc):
        return None
    remaining = None if policy.budget_s is None else policy.budget_s - waited_s

    requested = exc.retry_after_s if isinstance(exc, TransportError) else None
    if requested is not None and requested >= 0:
        if remaining is not None and requested > remaining:
            return None
        return float(requested)

    if remaining is not None and remaining <= 0:
        return None
    ceiling = min(policy.max_delay_s, policy.base_delay_s * 2 ** (attempt - 1))
    delay = random.uniform(0.0, ceiling)  # noqa: S311
    return delay if remaining is None else min(delay, remaining)


async def retry_async(
    factory: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> T:
    """Await ``factory()`` until it succeeds or ``policy`` gives up.

    Only ``TransportError`` is considered; any other exception propagates
    from the first attempt.
    """
    attempt = 1
    waited = 0.0
    while True:
        try:
            return await factory()
        except TransportError as exc:
            delay = retry_delay(exc, policy, attempt=attempt, waited_s=waited)
            if delay is None:
                raise
            log.debug(
                "%s %s failed (status=%s, type=%s); attempt %d/%d, waiting %.2fs",
                exc.provider or "vendor",
                exc.phase or "request",
                exc.status_code,
                getattr(exc, "vendor_type", None),
                attempt,
                policy.max_attempts,
                delay,
            )
            await sleep(delay)
            waited += delay
            attempt += 1
