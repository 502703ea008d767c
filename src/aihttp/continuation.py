"""Continuation: resuming a conversation after external tool execution.

After every successful turn the manager records a minimal
``ContinuationState`` keyed by ``(provider, session)``. When the caller comes
back with tool results, the state is loaded and the next request is rebuilt
with the strategy the provider's adapter declares:

- ``response_id``: send the stored opaque id plus tool outputs; no history.
- ``history``: replay the full history; the last assistant turn carries one
  tool-call block per completed call, followed by the matching results.
- ``flat``: append one ``role: tool`` message per result.

State lives in a process-local cache backed by an injected
``ContinuationStore``; entries expire after a fixed TTL (300s by default).
Missing, expired, or mismatched state raises ``ContinuationError``; the
manager never starts a fresh, contextless conversation in its place.

At most one turn per session may be in flight; callers serialize turns.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import json
import logging
import time
from typing import TYPE_CHECKING, Any, Literal, Protocol

from aihttp.config import DEFAULT_CONTINUATION_TTL_S
from aihttp.errors import ContinuationError, ValidationError
from aihttp.models import Message, StandardRequest, ToolCall, ToolResult
from aihttp.providers.base import SupportsResponseIdContinuation
from aihttp.request import VendorRequest, normalize_request

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from aihttp.models import StandardResponse
    from aihttp.providers.base import VendorAdapter

logger = logging.getLogger(__name__)

StateKind = Literal["response_id", "history"]


def state_key(provider: str, session_id: str) -> str:
    """Store key for one conversation."""
    return f"continuation:{provider}:{session_id}"


@dataclass(frozen=True)
class ContinuationState:
    """What is needed to resume one conversation.

    ``request`` is the template for the next turn (model, sampling options,
    tools). For ``history`` state its messages are the full conversation so
    far, ending with the assistant turn; for ``response_id`` state they are
    empty and ``response_id`` is the vendor's opaque handle.
    """

    provider: str
    kind: StateKind
    request: StandardRequest
    response_id: str | None = None
    pending_tool_calls: tuple[ToolCall, ...] = ()
    created_at: float = field(default=0.0, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "kind": self.kind,
            "response_id": self.response_id,
            "request": self.request.to_dict(),
            "pending_tool_calls": [c.to_dict() for c in self.pending_tool_calls],
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Any) -> ContinuationState:
        if not isinstance(data, dict):
            raise ContinuationError("Stored continuation state is not an object")
        kind = data.get("kind")
        if kind not in ("response_id", "history"):
            raise ContinuationError(f"Stored continuation state has unknown kind {kind!r}")
        try:
            request = StandardRequest.from_dict(data.get("request"))
            calls = tuple(ToolCall.from_dict(c) for c in data.get("pending_tool_calls") or ())
        except ValidationError as e:
            raise ContinuationError(f"Stored continuation state is corrupt: {e}") from e
        return cls(
            provider=str(data.get("provider", "")),
            kind=kind,
            request=request,
            response_id=data.get("response_id"),
            pending_tool_calls=calls,
            created_at=float(data.get("created_at") or 0.0),
        )


# =============================================================================
# Store
# =============================================================================


class ContinuationStore(Protocol):
    """Key-value store with per-entry TTL, supplied by the host application."""

    async def get(self, key: str) -> str | None:
        """Return the stored value, or None when absent or expired."""
        ...

    async def put(self, key: str, value: str, ttl_seconds: float) -> None:
        """Store *value* under *key* for *ttl_seconds*."""
        ...

    async def delete(self, key: str) -> None:
        """Remove *key* if present."""
        ...


class InMemoryContinuationStore:
    """Process-local ``ContinuationStore`` with expiry tracking."""

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._entries: dict[str, tuple[str, float]] = {}
        self._clock = clock

    async def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def put(self, key: str, value: str, ttl_seconds: float) -> None:
        self.purge_expired()
        self._entries[key] = (value, self._clock() + max(0.0, ttl_seconds))

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [k for k, (_, expires_at) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


# =============================================================================
# Strategies
# =============================================================================


def _tool_message(result: ToolResult, name: str | None) -> Message:
    return Message(
        role="tool",
        content=result.content_text,
        tool_call_id=result.tool_call_id,
        name=name,
    )


def _call_for(result: ToolResult, pending: dict[str, ToolCall]) -> ToolCall:
    """The call a result answers; rebuilt from the result when not recorded."""
    call = pending.get(result.tool_call_id)
    if call is not None:
        return call
    return ToolCall(
        id=result.tool_call_id,
        name=result.tool_name or "",
        arguments=json.dumps(result.structured_input or {}),
    )


class ResponseIdStrategy:
    """Send the stored response id verbatim with the tool outputs as input."""

    def build(
        self,
        state: ContinuationState,
        results: tuple[ToolResult, ...],
        adapter: VendorAdapter,
        *,
        stream: bool,
    ) -> VendorRequest:
        if not isinstance(adapter, SupportsResponseIdContinuation) or not state.response_id:
            raise ContinuationError(
                f"{adapter.name} cannot continue from a response id",
            )
        template = state.request
        if not template.model:
            raise ContinuationError("Stored continuation state has no model")
        body = adapter.build_tool_output_request(
            response_id=state.response_id,
            tool_results=results,
            template=template,
            stream=stream,
        )
        pending = {c.id: c for c in state.pending_tool_calls}
        tool_messages = tuple(_tool_message(r, _call_for(r, pending).name) for r in results)
        return VendorRequest(
            provider=adapter.name,
            url=adapter.endpoint(template.model, stream=stream),
            body=body,
            stream=stream,
            request=template.with_messages(tool_messages),
        )


class HistoryRebuildStrategy:
    """Replay history; the last assistant turn holds one call block per result."""

    def build(
        self,
        state: ContinuationState,
        results: tuple[ToolResult, ...],
        adapter: VendorAdapter,
        *,
        stream: bool,
    ) -> VendorRequest:
        messages = list(state.request.messages)
        pending = {c.id: c for c in state.pending_tool_calls}
        calls = tuple(_call_for(r, pending) for r in results)

        last = messages[-1] if messages else None
        if last is not None and last.role == "assistant":
            messages[-1] = replace(last, tool_calls=calls)
        else:
            messages.append(Message(role="assistant", content="", tool_calls=calls))
        messages.extend(_tool_message(r, c.name) for r, c in zip(results, calls, strict=True))
        return normalize_request(
            state.request.with_messages(messages), adapter, stream=stream
        )


class FlatMessageStrategy:
    """Append one ``role: tool`` message per result; prior turns untouched."""

    def build(
        self,
        state: ContinuationState,
        results: tuple[ToolResult, ...],
        adapter: VendorAdapter,
        *,
        stream: bool,
    ) -> VendorRequest:
        pending = {c.id: c for c in state.pending_tool_calls}
        messages = list(state.request.messages)
        messages.extend(_tool_message(r, _call_for(r, pending).name) for r in results)
        return normalize_request(
            state.request.with_messages(messages), adapter, stream=stream
        )


_STRATEGIES = {
    "response_id": ResponseIdStrategy(),
    "history": HistoryRebuildStrategy(),
    "flat": FlatMessageStrategy(),
}


def select_strategy(
    state: ContinuationState, adapter: VendorAdapter
) -> ResponseIdStrategy | HistoryRebuildStrategy | FlatMessageStrategy:
    """Pick the strategy from the adapter's declared continuation kind."""
    declared = adapter.capabilities.continuation
    if declared == "response_id" and state.kind != "response_id":
        # No id was returned (e.g. legacy envelope); replay history instead.
        return _STRATEGIES["history"]
    return _STRATEGIES[declared]


# =============================================================================
# Manager
# =============================================================================


class ContinuationManager:
    """Record and consume per-session continuation state.

    Args:
        store: Durable backing store; defaults to an in-memory store.
        ttl_seconds: Lifetime of unconsumed state.
        clock: Time source, injectable for tests.
    """

    def __init__(
        self,
        store: ContinuationStore | None = None,
        *,
        ttl_seconds: float = DEFAULT_CONTINUATION_TTL_S,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store: ContinuationStore = (
            store if store is not None else InMemoryContinuationStore(clock=clock)
        )
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._cache: dict[str, ContinuationState] = {}

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def _expired(self, state: ContinuationState) -> bool:
        return self._clock() >= state.created_at + self._ttl_seconds

    async def record(
        self,
        provider: str,
        session_id: str,
        request: StandardRequest,
        response: StandardResponse,
        adapter: VendorAdapter,
    ) -> ContinuationState:
        """Persist state after a successful turn, replacing any previous state."""
        calls = response.tool_calls or ()
        if adapter.capabilities.continuation == "response_id" and response.response_id:
            state = ContinuationState(
                provider=provider,
                kind="response_id",
                request=request.with_messages(()),
                response_id=response.response_id,
                pending_tool_calls=calls,
                created_at=self._clock(),
            )
        else:
            assistant = Message(role="assistant", content=response.content, tool_calls=calls or None)
            state = ContinuationState(
                provider=provider,
                kind="history",
                request=request.with_messages((*request.messages, assistant)),
                response_id=response.response_id,
                pending_tool_calls=calls,
                created_at=self._clock(),
            )

        key = state_key(provider, session_id)
        self.purge_expired()
        self._cache[key] = state
        payload = json.dumps({"state": state.to_dict(), "timestamp": state.created_at})
        await self._store.put(key, payload, self._ttl_seconds)
        logger.debug("Recorded %s continuation state for %s", state.kind, key)
        return state

    async def load(self, provider: str, session_id: str) -> ContinuationState:
        """Load live state for a session.

        Raises:
            ContinuationError: If state is absent, expired, or unreadable.
        """
        key = state_key(provider, session_id)
        state = self._cache.get(key)
        if state is None:
            raw = await self._store.get(key)
            if raw is None:
                raise ContinuationError(
                    f"No continuation state for provider {provider!r} session {session_id!r}",
                    hint="Send a request for this session before submitting tool results.",
                )
            state = self._decode(raw)
            self._cache[key] = state

        if self._expired(state):
            await self.clear(provider, session_id)
            logger.info("Continuation state expired for %s", key)
            raise ContinuationError(
                f"Continuation state for provider {provider!r} session {session_id!r} expired",
                hint=f"State lives for {self._ttl_seconds:g}s; start a new turn with send().",
            )
        if state.provider != provider:
            raise ContinuationError(
                f"Continuation state for {key} belongs to provider {state.provider!r}"
            )
        return state

    @staticmethod
    def _decode(raw: str) -> ContinuationState:
        try:
            payload = json.loads(raw)
        except ValueError as e:
            raise ContinuationError("Stored continuation state is not valid JSON") from e
        if not isinstance(payload, dict):
            raise ContinuationError("Stored continuation state is not an object")
        state = ContinuationState.from_dict(payload.get("state"))
        timestamp = payload.get("timestamp")
        if isinstance(timestamp, (int, float)):
            state = replace(state, created_at=float(timestamp))
        return state

    async def can_continue(self, provider: str, session_id: str) -> bool:
        try:
            await self.load(provider, session_id)
        except ContinuationError:
            return False
        return True

    async def clear(self, provider: str, session_id: str) -> None:
        key = state_key(provider, session_id)
        self._cache.pop(key, None)
        await self._store.delete(key)

    def purge_expired(self) -> int:
        """Drop expired entries from the process-local cache."""
        expired = [k for k, s in self._cache.items() if self._expired(s)]
        for key in expired:
            del self._cache[key]
        return len(expired)

    async def build_continuation(
        self,
        provider: str,
        session_id: str,
        tool_results: Sequence[ToolResult],
        adapter: VendorAdapter,
        *,
        stream: bool = False,
    ) -> VendorRequest:
        """Load state and rebuild the next request carrying *tool_results*.

        State is left in place; it is replaced when the continuation turn
        succeeds (``record``), so a failed attempt may be retried until TTL.

        Raises:
            ValidationError: If *tool_results* is empty or malformed.
            ContinuationError: If state is missing, expired, or the results
                answer calls that were never requested.
        """
        results = _check_results(tool_results)
        state = await self.load(provider, session_id)

        pending_ids = {c.id for c in state.pending_tool_calls}
        for result in results:
            if result.tool_call_id not in pending_ids and not result.tool_name:
                raise ContinuationError(
                    f"Tool result {result.tool_call_id!r} does not match any pending tool call",
                    hint="Pass tool_name (and structured_input) for calls made outside the last turn.",
                )

        strategy = select_strategy(state, adapter)
        logger.debug(
            "Continuing %s with %s (%d results)",
            state_key(provider, session_id),
            type(strategy).__name__,
            len(results),
        )
        return strategy.build(state, results, adapter, stream=stream)


def _check_results(tool_results: Sequence[Any]) -> tuple[ToolResult, ...]:
    if not tool_results:
        raise ValidationError(
            "tool_results must not be empty",
            hint="Pass one ToolResult per executed tool call.",
        )
    results: list[ToolResult] = []
    seen: set[str] = set()
    for idx, item in enumerate(tool_results):
        result = item if isinstance(item, ToolResult) else ToolResult.from_dict(item)
        if not result.tool_call_id:
            raise ValidationError(f"tool_results[{idx}] has no tool_call_id")
        if result.tool_call_id in seen:
            raise ValidationError(f"tool_results[{idx}] repeats {result.tool_call_id!r}")
        seen.add(result.tool_call_id)
        results.append(result)
    return tuple(results)
