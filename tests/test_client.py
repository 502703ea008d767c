"""Client facade tests over a mocked HTTP layer.

Every test drives the full pipeline (normalize -> transport -> normalize ->
continuation) with ``httpx.MockTransport``; nothing reaches the network.
"""

from __future__ import annotations

import json

import httpx
import pytest

from aihttp import Client
from aihttp.continuation import InMemoryContinuationStore
from aihttp.errors import (
    ConfigurationError,
    ContinuationError,
    MissingModelError,
    ParseError,
    TransportError,
    UnknownProviderError,
    ValidationError,
    VendorError,
)
from aihttp.models import Message, StandardRequest, StreamChunk, ToolResult
from tests.helpers import (
    ScriptedHandler,
    client_config,
    mock_transport,
    sse_frame,
    sse_response,
)

pytestmark = pytest.mark.integration


def _request(text: str = "2+2?", model: str | None = None) -> StandardRequest:
    return StandardRequest(messages=(Message(role="user", content=text),), model=model)


def _client(handler: ScriptedHandler, **config) -> Client:
    return Client(client_config(**config), transport=mock_transport(handler))


def _openai_text(text: str, *, response_id: str = "resp_1") -> dict:
    return {
        "id": response_id,
        "model": "gpt-4.1",
        "status": "completed",
        "output": [
            {"type": "message", "content": [{"type": "output_text", "text": text}]}
        ],
        "usage": {"input_tokens": 4, "output_tokens": 2},
    }


def _openai_tool_call() -> dict:
    return {
        "id": "resp_tool",
        "model": "gpt-4.1",
        "status": "completed",
        "output": [
            {
                "type": "function_call",
                "call_id": "call_1",
                "name": "lookup",
                "arguments": '{"q":"x"}',
            }
        ],
    }


def _anthropic_text(text: str) -> dict:
    return {
        "id": "msg_1",
        "model": "claude-3-5-haiku-latest",
        "content": [{"type": "text", "text": text}],
        "stop_reason": "end_turn",
        "usage": {"input_tokens": 3, "output_tokens": 1},
    }


# =============================================================================
# send
# =============================================================================


@pytest.mark.asyncio
async def test_send_returns_normalized_response() -> None:
    handler = ScriptedHandler([_openai_text("2+2 = 4")])
    async with _client(handler) as client:
        result = await client.send(_request(model="gpt-4.1"), provider="openai")

    assert result.ok
    assert "4" in result.value.content
    assert result.value.finish_reason == "stop"
    (req,) = handler.requests
    assert req.url == "https://api.openai.com/v1/responses"
    assert req.headers["Authorization"] == "Bearer sk-openai-test"
    assert handler.bodies[0]["model"] == "gpt-4.1"


@pytest.mark.asyncio
async def test_missing_model_fails_before_any_http_call() -> None:
    handler = ScriptedHandler()
    client = _client(handler, providers={"openai": {"api_key": "sk-test"}})

    result = await client.send(_request(), provider="openai")

    assert not result.ok
    assert isinstance(result.error, MissingModelError)
    assert isinstance(result.error, ConfigurationError)
    assert handler.requests == []


@pytest.mark.asyncio
async def test_missing_api_key_fails_before_any_http_call() -> None:
    handler = ScriptedHandler()
    client = _client(handler, providers={"anthropic": {"model": "claude-3-5-haiku-latest"}})

    result = await client.send(_request(), provider="anthropic")

    assert not result.ok
    assert isinstance(result.error, ConfigurationError)
    assert "ANTHROPIC_API_KEY" in (result.error.hint or "")
    assert handler.requests == []


@pytest.mark.asyncio
async def test_unknown_provider_raises() -> None:
    client = _client(ScriptedHandler())
    with pytest.raises(UnknownProviderError) as exc:
        await client.send(_request(), provider="mistral")
    assert "openai" in (exc.value.hint or "")


@pytest.mark.asyncio
async def test_vendor_error_is_returned_as_failure() -> None:
    handler = ScriptedHandler(
        [
            httpx.Response(
                401,
                json={"error": {"message": "Incorrect API key", "type": "invalid_request_error"}},
            )
        ]
    )
    result = await _client(handler).send(_request(), provider="openai")

    assert isinstance(result.error, VendorError)
    assert result.error.status_code == 401
    assert result.error.provider == "openai"
    assert result.error.vendor_type == "invalid_request_error"


@pytest.mark.asyncio
async def test_fallback_moves_to_next_provider_on_transport_error(caplog) -> None:
    handler = ScriptedHandler(
        [httpx.Response(500, text="upstream exploded"), _anthropic_text("4")]
    )
    client = _client(
        handler,
        default_provider="openai",
        fallback_enabled=True,
        fallback_providers=("anthropic",),
    )

    result = await client.send(_request())

    assert result.ok
    assert result.value.provider == "anthropic"
    assert [r.url.host for r in handler.requests] == ["api.openai.com", "api.anthropic.com"]
    assert any("falling back to anthropic" in r.getMessage() for r in caplog.records)
    assert await client.can_continue("anthropic", "default")
    assert not await client.can_continue("openai", "default")


@pytest.mark.asyncio
async def test_fallback_skips_misconfigured_provider() -> None:
    handler = ScriptedHandler([_anthropic_text("4")])
    client = _client(
        handler,
        providers={
            "openai": {},
            "anthropic": {"api_key": "sk-ant-test", "model": "claude-3-5-haiku-latest"},
        },
        fallback_enabled=True,
        fallback_providers=("anthropic",),
    )

    result = await client.send(_request())

    assert result.ok
    assert len(handler.requests) == 1


@pytest.mark.asyncio
async def test_no_fallback_when_disabled() -> None:
    handler = ScriptedHandler([httpx.Response(503, text="busy")])
    client = _client(handler, fallback_enabled=False, fallback_providers=("anthropic",))

    result = await client.send(_request())

    assert isinstance(result.error, TransportError)
    assert result.error.retryable
    assert len(handler.requests) == 1


@pytest.mark.asyncio
async def test_last_provider_error_is_returned() -> None:
    handler = ScriptedHandler([httpx.Response(500, text="a"), httpx.Response(502, text="b")])
    client = _client(handler, fallback_enabled=True, fallback_providers=("grok",))

    result = await client.send(_request())

    assert isinstance(result.error, TransportError)
    assert result.error.provider == "grok"
    assert result.error.status_code == 502


@pytest.mark.asyncio
async def test_overrides_apply_to_the_call() -> None:
    handler = ScriptedHandler([_openai_text("ok")])
    client = _client(handler)

    await client.send(
        _request(), provider="openai", overrides={"base_url": "https://proxy.test/v1"}
    )

    assert str(handler.requests[0].url) == "https://proxy.test/v1/responses"


# =============================================================================
# Streaming
# =============================================================================


@pytest.mark.asyncio
async def test_streaming_success_records_state() -> None:
    handler = ScriptedHandler(
        [
            sse_response(
                sse_frame({"id": "gen-1", "choices": [{"delta": {"content": "Hel"}}]}),
                sse_frame({"choices": [{"delta": {"content": "lo"}, "finish_reason": "stop"}]}),
                sse_frame("[DONE]"),
            )
        ]
    )
    client = _client(handler)
    chunks: list[StreamChunk] = []

    result = await client.send_streaming(_request(), chunks.append, provider="grok", session_id="s")

    assert result.ok
    assert result.value.content == "Hello"
    assert sum(c.done for c in chunks) == 1
    assert handler.bodies[0]["stream"] is True
    assert await client.can_continue("grok", "s")


@pytest.mark.asyncio
async def test_streaming_http_error_ends_with_error_chunk() -> None:
    handler = ScriptedHandler(
        [httpx.Response(429, json={"error": {"message": "slow down", "type": "rate_limit"}})]
    )
    chunks: list[StreamChunk] = []

    result = await _client(handler).send_streaming(_request(), chunks.append, provider="grok")

    assert isinstance(result.error, VendorError)
    assert result.error.status_code == 429
    assert len(chunks) == 1
    assert chunks[0].done
    assert chunks[0].error_type == "VendorError"


@pytest.mark.asyncio
async def test_streaming_error_event_mid_stream() -> None:
    handler = ScriptedHandler(
        [
            sse_response(
                sse_frame({"type": "message_start", "message": {"id": "m", "model": "c"}}),
                sse_frame(
                    {
                        "type": "content_block_delta",
                        "index": 0,
                        "delta": {"type": "text_delta", "text": "par"},
                    }
                ),
                sse_frame({"type": "error", "error": {"type": "overloaded_error", "message": "busy"}}),
            )
        ]
    )
    chunks: list[StreamChunk] = []
    client = _client(handler)

    result = await client.send_streaming(_request(), chunks.append, provider="anthropic")

    assert isinstance(result.error, VendorError)
    assert result.error.provider == "anthropic"
    assert [c.content_delta for c in chunks] == ["par", ""]
    assert chunks[-1].done and chunks[-1].error_type == "VendorError"
    assert not await client.can_continue("anthropic", "default")


@pytest.mark.asyncio
async def test_streaming_configuration_error_reaches_sink() -> None:
    handler = ScriptedHandler()
    chunks: list[StreamChunk] = []
    client = _client(handler, providers={"gemini": {"model": "gemini-2.0-flash"}})

    result = await client.send_streaming(_request(), chunks.append, provider="gemini")

    assert isinstance(result.error, ConfigurationError)
    assert [c.error_type for c in chunks] == ["ConfigurationError"]
    assert handler.requests == []


# =============================================================================
# Continuation
# =============================================================================


@pytest.mark.asyncio
async def test_continue_without_send_fails_without_request() -> None:
    handler = ScriptedHandler()
    client = _client(handler)

    result = await client.continue_with_tool_results(
        "openai", "fresh", [ToolResult(tool_call_id="call_1", content="x")]
    )

    assert isinstance(result.error, ContinuationError)
    assert handler.requests == []


@pytest.mark.asyncio
async def test_openai_send_then_continue_uses_previous_response_id() -> None:
    handler = ScriptedHandler([_openai_tool_call(), _openai_text("x is 42", response_id="resp_2")])
    client = _client(handler)

    first = await client.send(_request("look up x"), provider="openai", session_id="s1")
    assert first.ok
    assert first.value.finish_reason == "tool_calls"

    second = await client.continue_with_tool_results(
        "openai", "s1", [ToolResult(tool_call_id="call_1", content={"x": 42})]
    )

    assert second.ok
    assert second.value.content == "x is 42"
    body = handler.bodies[1]
    assert body["previous_response_id"] == "resp_tool"
    assert body["input"] == [
        {"type": "function_call_output", "call_id": "call_1", "output": '{"x": 42}'}
    ]
    assert "look up x" not in json.dumps(body)
    state = await client.continuations.load("openai", "s1")
    assert state.response_id == "resp_2"


@pytest.mark.asyncio
async def test_anthropic_send_then_streamed_continue() -> None:
    tool_turn = {
        "id": "msg_1",
        "model": "claude-3-5-haiku-latest",
        "content": [{"type": "tool_use", "id": "toolu_1", "name": "lookup", "input": {"q": "x"}}],
        "stop_reason": "tool_use",
    }
    handler = ScriptedHandler(
        [
            tool_turn,
            sse_response(
                sse_frame({"type": "message_start", "message": {"id": "msg_2", "model": "c"}}),
                sse_frame(
                    {
                        "type": "content_block_delta",
                        "index": 0,
                        "delta": {"type": "text_delta", "text": "done"},
                    }
                ),
                sse_frame({"type": "message_delta", "delta": {"stop_reason": "end_turn"}}),
                sse_frame({"type": "message_stop"}),
            ),
        ]
    )
    client = _client(handler)
    chunks: list[StreamChunk] = []

    await client.send(_request("look up x"), provider="anthropic", session_id="s1")
    result = await client.continue_with_tool_results(
        "anthropic",
        "s1",
        [ToolResult(tool_call_id="toolu_1", content="found")],
        on_chunk=chunks.append,
    )

    assert result.ok
    assert result.value.content == "done"
    assert chunks[-1].done
    messages = handler.bodies[1]["messages"]
    assert [m["role"] for m in messages] == ["user", "assistant", "user"]
    assert messages[2]["content"] == [
        {"type": "tool_result", "tool_use_id": "toolu_1", "content": "found"}
    ]


@pytest.mark.asyncio
async def test_failed_continuation_keeps_state() -> None:
    handler = ScriptedHandler(
        [_openai_tool_call(), httpx.Response(500, text="boom"), _openai_text("ok")]
    )
    client = _client(handler)
    results = [ToolResult(tool_call_id="call_1", content="v")]

    await client.send(_request(), provider="openai", session_id="s1")
    failed = await client.continue_with_tool_results("openai", "s1", results)
    retried = await client.continue_with_tool_results("openai", "s1", results)

    assert isinstance(failed.error, TransportError)
    assert retried.ok
    assert handler.bodies[2]["previous_response_id"] == "resp_tool"


@pytest.mark.asyncio
async def test_clear_continuation() -> None:
    handler = ScriptedHandler([_openai_text("hi")])
    client = _client(handler)
    await client.send(_request(), provider="openai", session_id="s1")

    await client.clear_continuation("openai", "s1")

    assert not await client.can_continue("openai", "s1")


# =============================================================================
# Models and connection test
# =============================================================================


@pytest.mark.asyncio
async def test_list_models_filters_listing() -> None:
    handler = ScriptedHandler(
        [{"data": [{"id": "gpt-4o"}, {"id": "text-embedding-3-small"}, {"id": "gpt-4o-mini"}]}]
    )
    result = await _client(handler).list_models("openai")

    assert [m.id for m in result.value] == ["gpt-4o", "gpt-4o-mini"]
    assert handler.requests[0].method == "GET"
    assert str(handler.requests[0].url) == "https://api.openai.com/v1/models"


@pytest.mark.asyncio
async def test_list_models_failure() -> None:
    handler = ScriptedHandler([httpx.Response(403, json={"error": {"message": "nope"}})])
    result = await _client(handler).list_models("grok")

    assert isinstance(result.error, VendorError)
    assert "XAI_API_KEY" in (result.error.hint or "")


@pytest.mark.asyncio
async def test_connection_succeeds() -> None:
    handler = ScriptedHandler([_anthropic_text("OK")])
    outcome = await _client(handler).test_connection("anthropic")

    assert outcome.success
    assert outcome.message == "Connection successful"
    assert outcome.model_used == "claude-3-5-haiku-latest"
    assert outcome.response_content == "OK"
    assert handler.bodies[0]["max_tokens"] == 10


@pytest.mark.asyncio
async def test_connection_failure_is_reported_not_raised() -> None:
    handler = ScriptedHandler([httpx.ConnectError("refused")])
    outcome = await _client(handler).test_connection("gemini", model="gemini-2.0-flash")

    assert not outcome.success
    assert outcome.message.startswith("Connection test failed:")
    assert outcome.provider == "gemini"
    assert outcome.model_used == "gemini-2.0-flash"


@pytest.mark.asyncio
async def test_empty_injected_store_is_used_and_shared() -> None:
    store = InMemoryContinuationStore()
    handler = ScriptedHandler([_openai_tool_call(), _openai_text("x is 42", response_id="resp_2")])
    first_client = Client(client_config(), transport=mock_transport(handler), store=store)

    sent = await first_client.send(_request("look up x"), provider="openai", session_id="s1")

    assert sent.ok
    assert len(store) == 1

    second_client = Client(client_config(), transport=mock_transport(handler), store=store)
    resumed = await second_client.continue_with_tool_results(
        "openai", "s1", [ToolResult(tool_call_id="call_1", content="42")]
    )

    assert resumed.ok
    assert resumed.value.content == "x is 42"
    assert handler.bodies[1]["previous_response_id"] == "resp_tool"


# =============================================================================
# Malformed stream frames
# =============================================================================


@pytest.mark.asyncio
async def test_streaming_frame_with_wrong_field_types_is_skipped() -> None:
    handler = ScriptedHandler(
        [
            sse_response(
                sse_frame({"type": "message_start", "message": {"id": "m", "model": "c"}}),
                sse_frame(
                    {
                        "type": "content_block_start",
                        "index": None,
                        "content_block": {"type": "tool_use", "id": "toolu_1", "name": "f"},
                    }
                ),
                sse_frame(
                    {
                        "type": "content_block_delta",
                        "index": 0,
                        "delta": {"type": "text_delta", "text": "fine"},
                    }
                ),
                sse_frame({"type": "message_delta", "delta": {"stop_reason": "end_turn"}}),
                sse_frame({"type": "message_stop"}),
            )
        ]
    )
    chunks: list[StreamChunk] = []

    result = await _client(handler).send_streaming(
        _request(), chunks.append, provider="anthropic"
    )

    assert result.ok
    assert result.value.content == "fine"
    assert not result.value.tool_calls
    assert sum(c.done for c in chunks) == 1
    assert chunks[-1].error is None


# =============================================================================
# File uploads
# =============================================================================


@pytest.mark.asyncio
async def test_upload_file_posts_multipart_and_returns_id(tmp_path) -> None:
    path = tmp_path / "notes.txt"
    path.write_text("meeting notes")
    handler = ScriptedHandler([{"id": "file-abc123", "object": "file"}])

    result = await _client(handler).upload_file("openai", path, purpose="assistants")

    assert result.ok
    assert result.value == "file-abc123"
    (req,) = handler.requests
    assert req.method == "POST"
    assert str(req.url) == "https://api.openai.com/v1/files"
    assert req.headers["Authorization"] == "Bearer sk-openai-test"
    assert req.headers["Content-Type"].startswith("multipart/form-data; boundary=")
    assert b'name="purpose"' in req.content
    assert b"assistants" in req.content
    assert b'filename="notes.txt"' in req.content
    assert b"meeting notes" in req.content


@pytest.mark.asyncio
async def test_upload_file_uses_provider_base_url(tmp_path) -> None:
    path = tmp_path / "data.csv"
    path.write_text("a,b\n1,2\n")
    handler = ScriptedHandler([{"id": "file-or-1"}])

    result = await _client(handler).upload_file("openrouter", str(path))

    assert result.value == "file-or-1"
    assert str(handler.requests[0].url) == "https://openrouter.ai/api/v1/files"
    assert b"user_data" in handler.requests[0].content


@pytest.mark.asyncio
async def test_upload_file_unsupported_provider_fails_without_request(tmp_path) -> None:
    path = tmp_path / "notes.txt"
    path.write_text("x")
    handler = ScriptedHandler()

    result = await _client(handler).upload_file("anthropic", path)

    assert isinstance(result.error, ConfigurationError)
    assert handler.requests == []


@pytest.mark.asyncio
async def test_upload_file_missing_path_is_validation_error(tmp_path) -> None:
    handler = ScriptedHandler()

    result = await _client(handler).upload_file("grok", tmp_path / "absent.pdf")

    assert isinstance(result.error, ValidationError)
    assert handler.requests == []


@pytest.mark.asyncio
async def test_upload_file_vendor_error_is_failure(tmp_path) -> None:
    path = tmp_path / "notes.txt"
    path.write_text("x")
    handler = ScriptedHandler(
        [httpx.Response(400, json={"error": {"message": "bad purpose", "type": "invalid_request_error"}})]
    )

    result = await _client(handler).upload_file("openai", path, purpose="nonsense")

    assert isinstance(result.error, VendorError)
    assert result.error.provider == "openai"
    assert result.error.vendor_type == "invalid_request_error"


@pytest.mark.asyncio
async def test_upload_file_reply_without_id_is_parse_error(tmp_path) -> None:
    path = tmp_path / "notes.txt"
    path.write_text("x")
    handler = ScriptedHandler([{"object": "file"}])

    result = await _client(handler).upload_file("openai", path)

    assert isinstance(result.error, ParseError)
