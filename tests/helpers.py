"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: HTTP is always faked through
``httpx.MockTransport`` so no test touches the network.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass, field
import json
from typing import Any

import httpx

from aihttp.config import ClientConfig
from aihttp.transport import HttpTransport

TEST_PROVIDERS: dict[str, dict[str, Any]] = {
    "openai": {"api_key": "sk-openai-test", "model": "gpt-4o-mini", "max_attempts": 1},
    "anthropic": {
        "api_key": "sk-ant-test",
        "model": "claude-3-5-haiku-latest",
        "max_attempts": 1,
    },
    "gemini": {"api_key": "gemini-test", "model": "gemini-2.0-flash", "max_attempts": 1},
    "grok": {"api_key": "xai-test", "model": "grok-3-mini", "max_attempts": 1},
    "openrouter": {
        "api_key": "or-test",
        "model": "openai/gpt-4o-mini",
        "max_attempts": 1,
    },
}


def client_config(**kwargs: Any) -> ClientConfig:
    """ClientConfig with credentials for every provider unless overridden."""
    kwargs.setdefault("providers", TEST_PROVIDERS)
    return ClientConfig(**kwargs)


@dataclass
class ScriptedHandler:
    """``httpx.MockTransport`` handler replaying a script of responses.

    Items may be ``httpx.Response``, an exception to raise, or a dict sent
    back as a 200 JSON body. Every request is recorded.
    """

    script: list[httpx.Response | BaseException | dict[str, Any]] = field(
        default_factory=list
    )
    requests: list[httpx.Request] = field(default_factory=list)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.script:
            return httpx.Response(200, json={})
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, httpx.Response):
            return item
        return httpx.Response(200, json=item)

    @property
    def bodies(self) -> list[dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests if r.content]


def mock_transport(handler: ScriptedHandler) -> HttpTransport:
    return HttpTransport(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


async def _chunks(parts: Iterable[bytes]) -> AsyncIterator[bytes]:
    for part in parts:
        yield part


def sse_response(*chunks: str, status_code: int = 200) -> httpx.Response:
    """Streaming response delivering each string as a separate body read."""
    return httpx.Response(
        status_code,
        headers={"content-type": "text/event-stream"},
        content=_chunks([c.encode("utf-8") for c in chunks]),
    )


def sse_frame(data: Any, *, event: str | None = None) -> str:
    payload = data if isinstance(data, str) else json.dumps(data)
    prefix = f"event: {event}\n" if event else ""
    return f"{prefix}data: {payload}\n\n"
