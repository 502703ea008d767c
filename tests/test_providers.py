"""Provider characterization tests.

These tests pin the exact wire shapes each adapter produces and consumes.
Vendor formats are consumed externally and drift is hard to detect, so the
shapes are asserted literally.
"""

from __future__ import annotations

from typing import Any

import pytest

from aihttp.errors import ValidationError
from aihttp.models import (
    ContentPart,
    Message,
    StandardRequest,
    ToolCall,
    ToolDefinition,
)
from aihttp.registry import ProviderFactory
from aihttp.request import normalize_request
from aihttp.response import normalize_response
from tests.helpers import client_config

pytestmark = pytest.mark.contract

_WEATHER_TOOL = ToolDefinition(
    name="get_weather",
    description="Look up the weather",
    parameter_schema={"type": "object", "properties": {"city": {"type": "string"}}},
)


def _adapter(provider: str, **overrides: Any):
    return ProviderFactory(client_config()).create(provider, overrides or None)


def _body(provider: str, request: StandardRequest, *, stream: bool = False, **overrides: Any):
    return normalize_request(request, _adapter(provider, **overrides), stream=stream).body


def _request(*messages: Message, **kwargs: Any) -> StandardRequest:
    return StandardRequest(messages=messages, **kwargs)


_CONVERSATION = (
    Message(role="system", content="Be brief."),
    Message(role="user", content="Hi"),
    Message(role="assistant", content="Hello!"),
    Message(role="user", content="Weather in Paris?"),
)


# =============================================================================
# Inverse mapping
# =============================================================================


@pytest.mark.parametrize("provider", ["openai", "anthropic", "gemini", "grok", "openrouter"])
def test_text_messages_survive_translation_round_trip(provider: str) -> None:
    adapter = _adapter(provider)
    body = normalize_request(_request(*_CONVERSATION), adapter).body

    recovered = adapter.messages_from_request(body)

    assert [(m.role, m.text) for m in recovered] == [(m.role, m.text) for m in _CONVERSATION]


@pytest.mark.parametrize("provider", ["openai", "anthropic", "grok"])
def test_tool_turns_survive_translation_round_trip(provider: str) -> None:
    call = ToolCall(id="call_1", name="get_weather", arguments='{"city":"Paris"}')
    messages = (
        Message(role="user", content="Weather in Paris?"),
        Message(role="assistant", content="", tool_calls=(call,)),
        Message(role="tool", content="21C", tool_call_id="call_1"),
    )
    adapter = _adapter(provider)
    body = normalize_request(_request(*messages), adapter).body

    recovered = adapter.messages_from_request(body)

    assert [m.role for m in recovered] == ["user", "assistant", "tool"]
    assert recovered[1].tool_calls is not None
    assert recovered[1].tool_calls[0].id == "call_1"
    assert recovered[1].tool_calls[0].parsed_arguments() == {"city": "Paris"}
    assert recovered[2].tool_call_id == "call_1"
    assert recovered[2].text == "21C"


# =============================================================================
# OpenAI (Responses API)
# =============================================================================


def test_openai_request_shape() -> None:
    adapter = _adapter("openai", organization="org-1")
    vendor = normalize_request(
        _request(
            Message(role="user", content="Hi"),
            max_tokens=50,
            temperature=3.5,
            tools=(_WEATHER_TOOL,),
            tool_choice={"name": "get_weather"},
            reasoning_effort="LOW",
        ),
        adapter,
    )

    assert vendor.url == "https://api.openai.com/v1/responses"
    assert vendor.body == {
        "model": "gpt-4o-mini",
        "input": [{"role": "user", "content": "Hi"}],
        "temperature": 2.0,
        "max_output_tokens": 50,
        "tools": [
            {
                "type": "function",
                "name": "get_weather",
                "description": "Look up the weather",
                "parameters": _WEATHER_TOOL.parameter_schema,
            }
        ],
        "tool_choice": {"type": "function", "name": "get_weather"},
        "reasoning": {"effort": "low"},
    }
    assert adapter.headers()["Authorization"] == "Bearer sk-openai-test"
    assert adapter.headers()["OpenAI-Organization"] == "org-1"


def test_openai_multimodal_parts() -> None:
    message = Message(
        role="user",
        content=(
            ContentPart(type="text", text="Describe"),
            ContentPart(type="image", data="AAAA", mime_type="image/jpeg"),
            ContentPart(type="file", file_id="file-1"),
        ),
    )
    body = _body("openai", _request(message))

    assert body["input"][0]["content"] == [
        {"type": "input_text", "text": "Describe"},
        {"type": "input_image", "image_url": "data:image/jpeg;base64,AAAA"},
        {"type": "input_file", "file_id": "file-1"},
    ]


def test_openai_parses_function_call_output() -> None:
    raw = {
        "id": "resp_1",
        "model": "gpt-4o-mini-2024",
        "status": "completed",
        "output": [
            {
                "type": "function_call",
                "call_id": "call_1",
                "name": "get_weather",
                "arguments": '{"city":"Paris"}',
            }
        ],
        "usage": {"input_tokens": 12, "output_tokens": 5},
    }
    response = normalize_response(raw, _adapter("openai"))

    assert response.finish_reason == "tool_calls"
    assert response.response_id == "resp_1"
    assert response.usage.total_tokens == 17
    assert response.tool_calls == (
        ToolCall(id="call_1", name="get_weather", arguments='{"city":"Paris"}'),
    )


def test_openai_incomplete_maps_to_length() -> None:
    raw = {
        "status": "incomplete",
        "incomplete_details": {"reason": "max_output_tokens"},
        "output": [{"type": "message", "content": [{"type": "output_text", "text": "Par"}]}],
    }
    response = normalize_response(raw, _adapter("openai"))
    assert response.content == "Par"
    assert response.finish_reason == "length"


def test_openai_accepts_legacy_choices_envelope() -> None:
    raw = {
        "id": "chatcmpl-1",
        "choices": [{"message": {"content": "Hello"}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 1, "completion_tokens": 1, "total_tokens": 2},
    }
    response = normalize_response(raw, _adapter("openai"))
    assert response.content == "Hello"
    assert response.finish_reason == "stop"


def test_openai_tool_output_request_carries_only_id_and_outputs() -> None:
    from aihttp.models import ToolResult

    adapter = _adapter("openai")
    body = adapter.build_tool_output_request(
        response_id="resp_1",
        tool_results=(ToolResult(tool_call_id="call_1", content="21C"),),
        template=_request(model="gpt-4o-mini", tools=(_WEATHER_TOOL,)),
        stream=False,
    )

    assert body["previous_response_id"] == "resp_1"
    assert body["input"] == [
        {"type": "function_call_output", "call_id": "call_1", "output": "21C"}
    ]
    assert "messages" not in body


def test_openai_model_listing_filter() -> None:
    raw = {
        "data": [
            {"id": "whisper-1"},
            {"id": "gpt-4o"},
            {"id": "text-embedding-3-small"},
            {"id": "o3-mini"},
            {"id": "gpt-4o-mini-tts"},
            {"id": "babbage-002"},
        ]
    }
    assert [m.id for m in _adapter("openai").parse_models(raw)] == ["gpt-4o", "o3-mini"]


# =============================================================================
# Anthropic
# =============================================================================


def test_anthropic_request_shape() -> None:
    adapter = _adapter("anthropic")
    vendor = normalize_request(
        _request(
            Message(role="system", content="Be brief."),
            Message(role="system", content="Use metric."),
            Message(role="user", content="Hi"),
            temperature=1.7,
            max_tokens=100_000,
            tools=(_WEATHER_TOOL,),
            tool_choice="required",
        ),
        adapter,
    )

    assert vendor.url == "https://api.anthropic.com/v1/messages"
    assert vendor.body == {
        "model": "claude-3-5-haiku-latest",
        "messages": [{"role": "user", "content": "Hi"}],
        "max_tokens": 4096,
        "system": "Be brief.\nUse metric.",
        "temperature": 1.0,
        "tools": [
            {
                "name": "get_weather",
                "description": "Look up the weather",
                "input_schema": _WEATHER_TOOL.parameter_schema,
            }
        ],
        "tool_choice": {"type": "any"},
    }
    headers = adapter.headers()
    assert headers["x-api-key"] == "sk-ant-test"
    assert headers["anthropic-version"] == "2023-06-01"


def test_anthropic_default_max_tokens_comes_from_config() -> None:
    body = _body("anthropic", _request(Message(role="user", content="Hi")), default_max_tokens=512)
    assert body["max_tokens"] == 512


def test_anthropic_groups_tool_results_into_one_user_turn() -> None:
    calls = (
        ToolCall(id="toolu_1", name="a", arguments="{}"),
        ToolCall(id="toolu_2", name="b", arguments='{"x":1}'),
    )
    body = _body(
        "anthropic",
        _request(
            Message(role="user", content="Go"),
            Message(role="assistant", content="Calling.", tool_calls=calls),
            Message(role="tool", content="A", tool_call_id="toolu_1"),
            Message(role="tool", content="B", tool_call_id="toolu_2"),
        ),
    )

    assert body["messages"][1] == {
        "role": "assistant",
        "content": [
            {"type": "text", "text": "Calling."},
            {"type": "tool_use", "id": "toolu_1", "name": "a", "input": {}},
            {"type": "tool_use", "id": "toolu_2", "name": "b", "input": {"x": 1}},
        ],
    }
    assert body["messages"][2] == {
        "role": "user",
        "content": [
            {"type": "tool_result", "tool_use_id": "toolu_1", "content": "A"},
            {"type": "tool_result", "tool_use_id": "toolu_2", "content": "B"},
        ],
    }


def test_anthropic_image_url_and_base64_sources() -> None:
    message = Message(
        role="user",
        content=(
            ContentPart(type="image", url="https://example.test/cat.png"),
            ContentPart(type="image", url="data:image/gif;base64,R0lG"),
        ),
    )
    body = _body("anthropic", _request(message))

    assert body["messages"][0]["content"] == [
        {"type": "image", "source": {"type": "url", "url": "https://example.test/cat.png"}},
        {"type": "image", "source": {"type": "base64", "media_type": "image/gif", "data": "R0lG"}},
    ]


def test_anthropic_parses_text_and_tool_use() -> None:
    raw = {
        "id": "msg_1",
        "model": "claude-3-5-haiku-20241022",
        "content": [
            {"type": "text", "text": "Let me "},
            {"type": "text", "text": "check."},
            {"type": "tool_use", "id": "toolu_1", "name": "get_weather", "input": {"city": "Paris"}},
        ],
        "stop_reason": "tool_use",
        "usage": {"input_tokens": 10, "output_tokens": 4},
    }
    response = normalize_response(raw, _adapter("anthropic"))

    assert response.content == "Let me check."
    assert response.finish_reason == "tool_calls"
    assert response.tool_calls is not None and response.tool_calls[0].id == "toolu_1"
    assert response.usage.total_tokens == 14
    assert response.model == "claude-3-5-haiku-20241022"


# =============================================================================
# Gemini
# =============================================================================


def test_gemini_request_shape() -> None:
    adapter = _adapter("gemini")
    vendor = normalize_request(
        _request(
            Message(role="system", content="Be brief."),
            Message(role="user", content="Hi"),
            Message(role="assistant", content="Hello!"),
            Message(role="user", content="Weather?"),
            temperature=0.2,
            top_p=1.5,
            max_tokens=64,
            tools=(_WEATHER_TOOL,),
            tool_choice="none",
        ),
        adapter,
    )

    assert vendor.url == (
        "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.0-flash:generateContent"
    )
    assert vendor.body == {
        "contents": [
            {"role": "user", "parts": [{"text": "Hi"}]},
            {"role": "model", "parts": [{"text": "Hello!"}]},
            {"role": "user", "parts": [{"text": "Weather?"}]},
        ],
        "systemInstruction": {"parts": [{"text": "Be brief."}]},
        "generationConfig": {"temperature": 0.2, "topP": 1.0, "maxOutputTokens": 64},
        "tools": [
            {
                "functionDeclarations": [
                    {
                        "name": "get_weather",
                        "description": "Look up the weather",
                        "parameters": _WEATHER_TOOL.parameter_schema,
                    }
                ]
            }
        ],
        "toolConfig": {"functionCallingConfig": {"mode": "NONE"}},
    }
    assert adapter.headers()["x-goog-api-key"] == "gemini-test"


def test_gemini_stream_endpoint() -> None:
    adapter = _adapter("gemini")
    assert adapter.endpoint("gemini-2.0-flash", stream=True).endswith(
        "/models/gemini-2.0-flash:streamGenerateContent?alt=sse"
    )


def test_gemini_function_response_uses_call_name() -> None:
    call = ToolCall(id="call_9", name="get_weather", arguments='{"city":"Paris"}')
    body = _body(
        "gemini",
        _request(
            Message(role="user", content="Weather?"),
            Message(role="assistant", content="", tool_calls=(call,)),
            Message(role="tool", content="sunny", tool_call_id="call_9"),
        ),
    )

    assert body["contents"][1] == {
        "role": "model",
        "parts": [{"functionCall": {"name": "get_weather", "args": {"city": "Paris"}}}],
    }
    assert body["contents"][2] == {
        "role": "user",
        "parts": [
            {"functionResponse": {"name": "get_weather", "response": {"result": "sunny"}}}
        ],
    }


def test_gemini_parses_candidates() -> None:
    raw = {
        "candidates": [
            {
                "content": {
                    "role": "model",
                    "parts": [{"text": "Thinking", "thought": True}, {"text": "Paris is sunny."}],
                },
                "finishReason": "STOP",
            }
        ],
        "usageMetadata": {"promptTokenCount": 7, "candidatesTokenCount": 4},
        "modelVersion": "gemini-2.0-flash-001",
        "responseId": "abc",
    }
    response = normalize_response(raw, _adapter("gemini"))

    assert response.content == "Paris is sunny."
    assert response.finish_reason == "stop"
    assert response.usage.total_tokens == 11
    assert response.model == "gemini-2.0-flash-001"


def test_gemini_model_listing_filter() -> None:
    raw = {
        "models": [
            {"name": "models/gemini-2.0-flash", "displayName": "Gemini 2.0 Flash"},
            {"name": "models/text-embedding-004"},
            {"name": "models/gemini-embedding-exp"},
            {"name": "models/aqa"},
        ]
    }
    models = _adapter("gemini").parse_models(raw)
    assert [(m.id, m.display_name) for m in models] == [
        ("gemini-2.0-flash", "Gemini 2.0 Flash")
    ]


# =============================================================================
# Chat Completions (Grok, OpenRouter)
# =============================================================================


def test_grok_request_shape_and_stream_options() -> None:
    adapter = _adapter("grok")
    vendor = normalize_request(
        _request(
            Message(role="user", content="Hi"),
            temperature=-1,
            max_tokens=0,
            reasoning_effort="High",
        ),
        adapter,
        stream=True,
    )

    assert vendor.url == "https://api.x.ai/v1/chat/completions"
    assert vendor.body == {
        "model": "grok-3-mini",
        "messages": [{"role": "user", "content": "Hi"}],
        "temperature": 0.0,
        "max_tokens": 1,
        "reasoning_effort": "high",
        "stream": True,
        "stream_options": {"include_usage": True},
    }


def test_grok_rejects_unknown_reasoning_effort() -> None:
    with pytest.raises(ValidationError):
        _body("grok", _request(Message(role="user", content="Hi"), reasoning_effort="max"))


def test_chat_completions_assistant_tool_call_message() -> None:
    call = ToolCall(id="call_1", name="get_weather", arguments='{"city":"Paris"}')
    body = _body(
        "openrouter",
        _request(
            Message(role="user", content="Weather?"),
            Message(role="assistant", content="", tool_calls=(call,)),
            Message(role="tool", content="21C", tool_call_id="call_1", name="get_weather"),
        ),
    )

    assert body["messages"][1] == {
        "role": "assistant",
        "content": None,
        "tool_calls": [
            {
                "id": "call_1",
                "type": "function",
                "function": {"name": "get_weather", "arguments": '{"city":"Paris"}'},
            }
        ],
    }
    assert body["messages"][2] == {
        "role": "tool",
        "content": "21C",
        "tool_call_id": "call_1",
        "name": "get_weather",
    }


def test_openrouter_headers_and_reasoning() -> None:
    adapter = _adapter("openrouter", http_referer="https://app.test", app_title="Demo")
    headers = adapter.headers()
    assert headers["HTTP-Referer"] == "https://app.test"
    assert headers["X-Title"] == "Demo"

    body = _body("openrouter", _request(Message(role="user", content="Hi"), reasoning_effort="medium"))
    assert body["reasoning"] == {"effort": "medium"}
    assert "reasoning_effort" not in body


def test_chat_completions_parses_tool_calls_and_usage() -> None:
    raw = {
        "id": "chatcmpl-1",
        "model": "grok-3-mini",
        "choices": [
            {
                "message": {
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [
                        {
                            "id": "call_1",
                            "type": "function",
                            "function": {"name": "get_weather", "arguments": '{"city":"Paris"}'},
                        }
                    ],
                },
                "finish_reason": "tool_calls",
            }
        ],
        "usage": {"prompt_tokens": 9, "completion_tokens": 3},
    }
    response = normalize_response(raw, _adapter("grok"))

    assert response.content == ""
    assert response.finish_reason == "tool_calls"
    assert response.usage.total_tokens == 12


def test_grok_model_listing_filter() -> None:
    raw = {"data": [{"id": "grok-3"}, {"id": "grok-2-image"}, {"id": "other"}]}
    assert [m.id for m in _adapter("grok").parse_models(raw)] == ["grok-3", "grok-2-image"]
