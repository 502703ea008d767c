"""Anthropic Messages API adapter."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, ClassVar

from aihttp.errors import ParseError, VendorError
from aihttp.models import (
    ContentPart,
    Message,
    ModelInfo,
    StreamChunk,
    ToolCall,
    ToolCallDelta,
    Usage,
    arguments_to_text,
)
from aihttp.providers._errors import parse_vendor_error
from aihttp.providers._utils import (
    clamp,
    clamp_int,
    join_url,
    map_finish_reason,
    reconcile_finish_reason,
    split_data_url,
    tool_definitions,
)
from aihttp.providers.base import ParsedResponse, ProviderCapabilities
from aihttp.tool_calls import AnthropicToolCodec

if TYPE_CHECKING:
    from aihttp.config import ProviderConfig
    from aihttp.models import FinishReason, StandardRequest, ToolChoice
    from aihttp.sse import SSEEvent

logger = logging.getLogger(__name__)

ANTHROPIC_MAX_TOKENS = 4096

_FINISH_REASONS: dict[str, FinishReason] = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "max_tokens": "length",
    "tool_use": "tool_calls",
}


def _append_tool_result(messages: list[dict[str, Any]], block: dict[str, Any]) -> None:
    """Add a ``tool_result`` block, sharing one user turn with adjacent results.

    Anthropic expects every result for one assistant turn inside a single
    user message.
    """
    if messages:
        prev = messages[-1]
        content = prev["content"]
        if (
            prev["role"] == "user"
            and isinstance(content, list)
            and content
            and all(b.get("type") == "tool_result" for b in content)
        ):
            content.append(block)
            return
    messages.append({"role": "user", "content": [block]})


def _usage(raw: Any) -> Usage:
    if not isinstance(raw, dict):
        return Usage()
    return Usage.from_counts(raw.get("input_tokens"), raw.get("output_tokens"))



def _token_count(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ParseError(f"token count is not a number: {value!r}")
    return int(value)


def _block_index(payload: dict[str, Any], default: int) -> int:
    index = payload.get("index", default)
    if isinstance(index, bool) or not isinstance(index, int):
        raise ParseError(f"content block index is not an integer: {index!r}")
    return index

class AnthropicStreamDecoder:
    """Decode Messages API stream events; ``message_stop`` is terminal."""

    def __init__(self) -> None:
        self.model: str | None = None
        self.response_id: str | None = None
        self._block_ordinals: dict[int, int] = {}
        self._input_tokens = 0
        self._output_tokens = 0
        self._finish: FinishReason | None = None
        self._done = False

    def decode(self, event: SSEEvent) -> list[StreamChunk]:
        if self._done:
            return []
        payload = event.json()
        if not isinstance(payload, dict):
            return []
        kind = payload.get("type") or event.event

        if kind == "message_start":
            message = payload.get("message")
            if isinstance(message, dict):
                self.response_id = message.get("id")
                self.model = message.get("model")
                usage = message.get("usage")
                if isinstance(usage, dict):
                    self._input_tokens = _token_count(usage.get("input_tokens"))
                    self._output_tokens = _token_count(usage.get("output_tokens"))
            return []

        if kind == "content_block_start":
            block = payload.get("content_block")
            if not isinstance(block, dict):
                return []
            if block.get("type") == "tool_use":
                ordinal = len(self._block_ordinals)
                self._block_ordinals[_block_index(payload, ordinal)] = ordinal
                initial = block.get("input")
                return [
                    StreamChunk(
                        tool_call_deltas=(
                            ToolCallDelta(
                                index=ordinal,
                                id=block.get("id"),
                                name=block.get("name"),
                                arguments_delta=arguments_to_text(initial) if initial else "",
                            ),
                        )
                    )
                ]
            text = block.get("text")
            return [StreamChunk(content_delta=text)] if isinstance(text, str) and text else []

        if kind == "content_block_delta":
            delta = payload.get("delta")
            if not isinstance(delta, dict):
                return []
            if delta.get("type") == "text_delta":
                text = delta.get("text")
                return [StreamChunk(content_delta=text)] if isinstance(text, str) and text else []
            if delta.get("type") == "input_json_delta":
                ordinal = self._block_ordinals.get(_block_index(payload, -1))
                partial = delta.get("partial_json")
                if ordinal is None or not isinstance(partial, str) or not partial:
                    return []
                return [
                    StreamChunk(
                        tool_call_deltas=(ToolCallDelta(index=ordinal, arguments_delta=partial),)
                    )
                ]
            return []

        if kind == "message_delta":
            usage = payload.get("usage")
            if isinstance(usage, dict) and usage.get("output_tokens") is not None:
                self._output_tokens = _token_count(usage["output_tokens"])
            delta = payload.get("delta")
            stop_reason = delta.get("stop_reason") if isinstance(delta, dict) else None
            if stop_reason is None:
                return []
            self._finish = reconcile_finish_reason(
                map_finish_reason(stop_reason, _FINISH_REASONS),
                has_tool_calls=bool(self._block_ordinals),
            )
            return [StreamChunk(finish_reason=self._finish)]

        if kind == "message_stop":
            self._done = True
            return [
                StreamChunk(
                    done=True,
                    finish_reason=self._finish
                    or reconcile_finish_reason("unknown", has_tool_calls=bool(self._block_ordinals)),
                    usage=Usage.from_counts(self._input_tokens, self._output_tokens),
                )
            ]

        if kind == "error":
            envelope = parse_vendor_error(payload)
            message, vendor_type, _ = envelope or ("Anthropic stream error", None, None)
            raise VendorError(message, vendor_type=vendor_type, phase="stream", body=payload)

        # ping, content_block_stop: nothing to emit
        return []


class AnthropicAdapter:
    """Anthropic Messages API."""

    name: ClassVar[str] = "anthropic"
    default_base_url: ClassVar[str] = "https://api.anthropic.com/v1"

    def __init__(self, config: ProviderConfig) -> None:
        self.config = config
        self.tool_codec = AnthropicToolCodec()

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            streaming=True,
            tools=True,
            model_listing=True,
            reasoning=False,
            continuation="history",
        )

    def endpoint(self, model: str, *, stream: bool) -> str:
        del model, stream
        return join_url(self.config.base_url, "messages")

    def headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.config.require_api_key(),
            "anthropic-version": self.config.anthropic_version,
            "Content-Type": "application/json",
        }

    # --- request ---

    def build_request(self, request: StandardRequest, *, stream: bool) -> dict[str, Any]:
        system_texts: list[str] = []
        messages: list[dict[str, Any]] = []
        for message in request.messages:
            if message.role == "system":
                system_texts.append(message.text)
            elif message.role == "tool":
                _append_tool_result(
                    messages,
                    {
                        "type": "tool_result",
                        "tool_use_id": message.tool_call_id,
                        "content": message.text,
                    },
                )
            else:
                messages.append(self._encode_message(message))

        max_tokens = request.max_tokens or self.config.default_max_tokens or ANTHROPIC_MAX_TOKENS
        body: dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "max_tokens": clamp_int(
                max_tokens, 1, ANTHROPIC_MAX_TOKENS, field="max_tokens", provider=self.name
            ),
        }
        if system_texts:
            body["system"] = "\n".join(system_texts)
        if request.temperature is not None:
            body["temperature"] = clamp(
                request.temperature, 0.0, 1.0, field="temperature", provider=self.name
            )
        if request.top_p is not None:
            body["top_p"] = clamp(request.top_p, 0.0, 1.0, field="top_p", provider=self.name)

        tools = tool_definitions(request.tools)
        if tools:
            body["tools"] = [
                {"name": t.name, "description": t.description, "input_schema": t.parameter_schema}
                for t in tools
            ]
            mapped = self._map_tool_choice(request.tool_choice)
            if mapped is not None:
                body["tool_choice"] = mapped
        if request.reasoning_effort is not None:
            logger.debug("anthropic: reasoning_effort is not mapped; ignoring")
        if stream:
            body["stream"] = True
        return body

    @staticmethod
    def _map_tool_choice(tool_choice: ToolChoice | None) -> dict[str, str] | None:
        if tool_choice is None:
            return None
        if isinstance(tool_choice, str):
            if tool_choice == "required":
                return {"type": "any"}
            if tool_choice in ("auto", "none"):
                return {"type": tool_choice}
        elif isinstance(tool_choice, dict) and "name" in tool_choice:
            return {"type": "tool", "name": tool_choice["name"]}
        return None

    def _encode_message(self, message: Message) -> dict[str, Any]:
        if message.role == "assistant" and message.tool_calls:
            blocks: list[dict[str, Any]] = []
            if isinstance(message.content, str):
                if message.content:
                    blocks.append({"type": "text", "text": message.content})
            else:
                blocks.extend(b for b in (self._encode_part(p) for p in message.content) if b)
            blocks.extend(self.tool_codec.encode(c) for c in message.tool_calls)
            return {"role": "assistant", "content": blocks}
        if isinstance(message.content, str):
            return {"role": message.role, "content": message.content}
        return {
            "role": message.role,
            "content": [b for b in (self._encode_part(p) for p in message.content) if b],
        }

    @staticmethod
    def _encode_part(part: ContentPart) -> dict[str, Any] | None:
        if part.type == "text":
            return {"type": "text", "text": part.text or ""}
        block_type = "image" if part.type == "image" else "document"
        if part.file_id:
            return {"type": block_type, "source": {"type": "file", "file_id": part.file_id}}
        if part.data:
            default_mime = "image/png" if part.type == "image" else "application/pdf"
            return {
                "type": block_type,
                "source": {
                    "type": "base64",
                    "media_type": part.mime_type or default_mime,
                    "data": part.data,
                },
            }
        if part.url:
            inline = split_data_url(part.url)
            if inline is not None:
                return {
                    "type": block_type,
                    "source": {"type": "base64", "media_type": inline[0], "data": inline[1]},
                }
            return {"type": block_type, "source": {"type": "url", "url": part.url}}
        logger.warning("anthropic: dropping %s part without a source", part.type)
        return None

    def messages_from_request(self, body: dict[str, Any]) -> tuple[Message, ...]:
        messages: list[Message] = []
        if body.get("system"):
            messages.append(Message(role="system", content=body["system"]))
        for raw in body.get("messages", []):
            content = raw.get("content")
            if isinstance(content, str):
                messages.append(Message(role=raw["role"], content=content))
                continue
            results = [b for b in content if b.get("type") == "tool_result"]
            if results and len(results) == len(content):
                messages.extend(
                    Message(role="tool", content=b.get("content", ""), tool_call_id=b["tool_use_id"])
                    for b in results
                )
                continue
            calls = tuple(
                ToolCall(id=b["id"], name=b["name"], arguments=arguments_to_text(b.get("input")))
                for b in content
                if b.get("type") == "tool_use"
            )
            parts = [_decode_block(b) for b in content if b.get("type") != "tool_use"]
            if calls and all(p.type == "text" for p in parts):
                messages.append(
                    Message(
                        role=raw["role"],
                        content="".join(p.text or "" for p in parts),
                        tool_calls=calls,
                    )
                )
            else:
                messages.append(
                    Message(role=raw["role"], content=tuple(parts), tool_calls=calls or None)
                )
        return tuple(messages)

    # --- response ---

    def parse_response(self, raw: dict[str, Any]) -> ParsedResponse:
        blocks = raw.get("content") if isinstance(raw.get("content"), list) else []
        text = "".join(
            b.get("text", "") for b in blocks if isinstance(b, dict) and b.get("type") == "text"
        )
        return ParsedResponse(
            content=text,
            tool_calls=tuple(self.tool_codec.extract(raw)),
            usage=_usage(raw.get("usage")),
            model=raw.get("model") if isinstance(raw.get("model"), str) else None,
            finish_reason=raw.get("stop_reason"),
            response_id=raw.get("id") if isinstance(raw.get("id"), str) else None,
        )

    def map_finish_reason(self, raw_reason: str | None) -> FinishReason:
        return map_finish_reason(raw_reason, _FINISH_REASONS)

    def stream_decoder(self) -> AnthropicStreamDecoder:
        return AnthropicStreamDecoder()

    # --- model listing ---

    def models_endpoint(self) -> str:
        return join_url(self.config.base_url, "models")

    def parse_models(self, raw: Any) -> tuple[ModelInfo, ...]:
        data = raw.get("data") if isinstance(raw, dict) else None
        if not isinstance(data, list):
            return ()
        return tuple(
            ModelInfo(id=entry["id"], display_name=entry.get("display_name"))
            for entry in data
            if isinstance(entry, dict) and isinstance(entry.get("id"), str)
        )


def _decode_block(block: dict[str, Any]) -> ContentPart:
    kind = block.get("type")
    if kind in ("image", "document"):
        source = block.get("source") or {}
        return ContentPart(
            type="image" if kind == "image" else "file",
            url=source.get("url"),
            data=source.get("data"),
            mime_type=source.get("media_type"),
            file_id=source.get("file_id"),
        )
    return ContentPart(type="text", text=block.get("text", ""))
