"""Exception hierarchy for aihttp.

Pipeline stages raise these; the client facade converts them into
``Failure`` results. Only programmer errors (``UnknownProviderError``) escape
the facade as exceptions.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator


class AIHttpError(Exception):
    """Base exception for all aihttp errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint

    @property
    def message(self) -> str:
        return str(self)

    def to_dict(self) -> dict[str, Any]:
        """Serializable summary used by response/chunk ``error`` fields."""
        data: dict[str, Any] = {"type": type(self).__name__, "message": str(self)}
        if self.hint:
            data["hint"] = self.hint
        return data


class ConfigurationError(AIHttpError):
    """Missing or invalid credentials, model, or provider settings."""


class MissingModelError(ConfigurationError):
    """No model on the request and no default model configured."""


class ValidationError(AIHttpError):
    """The StandardRequest (or tool results) is malformed."""


class ParseError(AIHttpError):
    """A JSON body or SSE frame could not be decoded."""


class ContinuationError(AIHttpError):
    """Continuation state is missing, expired, or does not match."""


class UnknownProviderError(AIHttpError, LookupError):
    """A provider name was requested that is not registered.

    This is a programmer error and is raised, never returned.
    """


class TransportError(AIHttpError):
    """Network failure, timeout, or non-2xx without a vendor error body.

    Retry metadata is attached so the retry loop can decide without
    inspecting messages.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        provider: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.provider = provider
        self.phase = phase

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.status_code is not None:
            data["status_code"] = self.status_code
        if self.provider is not None:
            data["provider"] = self.provider
        return data


class VendorError(TransportError):
    """The vendor answered with a parseable error envelope."""

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        provider: str | None = None,
        phase: str | None = None,
        vendor_type: str | None = None,
        body: Any = None,
    ) -> None:
        super().__init__(
            message,
            hint=hint,
            retryable=retryable,
            status_code=status_code,
            retry_after_s=retry_after_s,
            provider=provider,
            phase=phase,
        )
        self.vendor_type = vendor_type
        self.body = body

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.vendor_type is not None:
            data["vendor_type"] = self.vendor_type
        return data


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
