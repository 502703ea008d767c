"""Result type for client operations.

Expected failures (bad requests, vendor errors, network trouble) travel as
``Failure`` values instead of exceptions, so callers branch on data rather
than wrapping every call in try/except.
"""

from __future__ import annotations

import dataclasses
import typing

TSuccess = typing.TypeVar("TSuccess")
TFailure = typing.TypeVar("TFailure", bound=Exception)


@dataclasses.dataclass(frozen=True, slots=True)
class Success(typing.Generic[TSuccess]):
    """A successful outcome."""

    value: TSuccess

    @property
    def ok(self) -> bool:
        return True


@dataclasses.dataclass(frozen=True, slots=True)
class Failure(typing.Generic[TFailure]):
    """A failed outcome carrying a typed error."""

    error: TFailure

    @property
    def ok(self) -> bool:
        return False


Result = Success[TSuccess] | Failure[TFailure]
