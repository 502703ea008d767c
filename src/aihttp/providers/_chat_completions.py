"""OpenAI-compatible Chat Completions wire format.

Grok and OpenRouter speak this dialect directly; the OpenAI adapter reuses
``parse_chat_completion`` for the legacy ``choices[]`` envelope.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, ClassVar

from aihttp.errors import VendorError
from aihttp.models import (
    ContentPart,
    Message,
    ModelInfo,
    StreamChunk,
    ToolCall,
    ToolCallDelta,
    Usage,
)
from aihttp.providers._errors import parse_vendor_error
from aihttp.providers._utils import (
    clamp,
    clamp_int,
    image_source,
    join_url,
    map_finish_reason,
    reconcile_finish_reason,
    tool_definitions,
    uploaded_file_id,
)
from aihttp.providers.base import ParsedResponse, ProviderCapabilities
from aihttp.tool_calls import ChatCompletionsToolCodec

if TYPE_CHECKING:
    from aihttp.config import ProviderConfig
    from aihttp.models import FinishReason, StandardRequest, ToolChoice
    from aihttp.sse import SSEEvent
    from aihttp.tool_calls import ToolCallCodec

logger = logging.getLogger(__name__)

CHAT_FINISH_REASONS: dict[str, FinishReason] = {
    "stop": "stop",
    "end_turn": "stop",
    "length": "length",
    "max_tokens": "length",
    "tool_calls": "tool_calls",
    "function_call": "tool_calls",
}


def _text_of(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            p.get("text", "")
            for p in content
            if isinstance(p, dict) and p.get("type") in ("text", "output_text")
        )
    return ""


def parse_chat_completion(raw: dict[str, Any], codec: ToolCallCodec) -> ParsedResponse:
    """Decode a ``choices[]`` response body."""
    choices = raw.get("choices")
    choice: dict[str, Any] = {}
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        choice = choices[0]
    message = choice.get("message") if isinstance(choice.get("message"), dict) else {}

    usage_raw = raw.get("usage") if isinstance(raw.get("usage"), dict) else {}
    return ParsedResponse(
        content=_text_of(message.get("content")),
        tool_calls=tuple(codec.extract(raw)),
        usage=Usage.from_counts(
            usage_raw.get("prompt_tokens"),
            usage_raw.get("completion_tokens"),
            usage_raw.get("total_tokens"),
        ),
        model=raw.get("model") if isinstance(raw.get("model"), str) else None,
        finish_reason=choice.get("finish_reason"),
        response_id=raw.get("id") if isinstance(raw.get("id"), str) else None,
    )


class ChatCompletionsStreamDecoder:
    """Decode ``chat.completion.chunk`` frames terminated by ``[DONE]``."""

    def __init__(self, finish_reasons: dict[str, FinishReason]) -> None:
        self.model: str | None = None
        self.response_id: str | None = None
        self._finish_reasons = finish_reasons
        self._finish: FinishReason | None = None
        self._usage: Usage | None = None
        self._has_tool_calls = False
        self._done = False

    def decode(self, event: SSEEvent) -> list[StreamChunk]:
        if self._done:
            return []
        if event.is_done:
            return [self._terminal()]

        payload = event.json()
        if not isinstance(payload, dict):
            return []
        envelope = parse_vendor_error(payload)
        if envelope is not None:
            message, vendor_type, _ = envelope
            raise VendorError(message, vendor_type=vendor_type, phase="stream", body=payload)

        if isinstance(payload.get("model"), str):
            self.model = payload["model"]
        if isinstance(payload.get("id"), str):
            self.response_id = payload["id"]
        usage = payload.get("usage")
        if isinstance(usage, dict):
            self._usage = Usage.from_counts(
                usage.get("prompt_tokens"),
                usage.get("completion_tokens"),
                usage.get("total_tokens"),
            )

        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return []
        choice = choices[0]
        delta = choice.get("delta") if isinstance(choice.get("delta"), dict) else {}

        content = delta.get("content")
        deltas: list[ToolCallDelta] = []
        raw_calls = delta.get("tool_calls")
        if isinstance(raw_calls, list):
            for pos, tc in enumerate(raw_calls):
                if not isinstance(tc, dict):
                    continue
                fn = tc.get("function") if isinstance(tc.get("function"), dict) else {}
                index = tc.get("index")
                deltas.append(
                    ToolCallDelta(
                        index=index if isinstance(index, int) else pos,
                        id=tc.get("id"),
                        name=fn.get("name"),
                        arguments_delta=fn.get("arguments") or "",
                    )
                )
        if deltas:
            self._has_tool_calls = True

        finish: FinishReason | None = None
        if choice.get("finish_reason") is not None:
            finish = map_finish_reason(choice["finish_reason"], self._finish_reasons)
            self._finish = finish

        chunk = StreamChunk(
            content_delta=content if isinstance(content, str) else "",
            tool_call_deltas=tuple(deltas),
            finish_reason=finish,
        )
        return [] if chunk.is_empty else [chunk]

    def _terminal(self) -> StreamChunk:
        self._done = True
        return StreamChunk(
            done=True,
            finish_reason=reconcile_finish_reason(
                self._finish or "unknown", has_tool_calls=self._has_tool_calls
            ),
            usage=self._usage,
        )


class ChatCompletionsAdapter:
    """Base adapter for OpenAI-compatible ``/chat/completions`` vendors."""

    name: ClassVar[str] = "chat_completions"
    default_base_url: ClassVar[str] = ""
    finish_reasons: ClassVar[dict[str, FinishReason]] = CHAT_FINISH_REASONS

    def __init__(self, config: ProviderConfig) -> None:
        self.config = config
        self.tool_codec = ChatCompletionsToolCodec()

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            streaming=True,
            tools=True,
            model_listing=True,
            reasoning=True,
            continuation="flat",
            file_upload=True,
        )

    def endpoint(self, model: str, *, stream: bool) -> str:
        del model, stream
        return join_url(self.config.base_url, "chat/completions")

    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.require_api_key()}",
            "Content-Type": "application/json",
        }

    # --- request ---

    def build_request(self, request: StandardRequest, *, stream: bool) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": request.model,
            "messages": [self._encode_message(m) for m in request.messages],
        }
        if request.temperature is not None:
            body["temperature"] = clamp(
                request.temperature, 0.0, 2.0, field="temperature", provider=self.name
            )
        if request.top_p is not None:
            body["top_p"] = clamp(request.top_p, 0.0, 1.0, field="top_p", provider=self.name)
        if request.max_tokens is not None:
            body["max_tokens"] = clamp_int(
                request.max_tokens, 1, None, field="max_tokens", provider=self.name
            )

        tools = tool_definitions(request.tools)
        if tools:
            body["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.parameter_schema,
                    },
                }
                for t in tools
            ]
            mapped = self._map_tool_choice(request.tool_choice)
            if mapped is not None:
                body["tool_choice"] = mapped

        if request.reasoning_effort is not None:
            self._apply_reasoning(body, request.reasoning_effort)

        if stream:
            body["stream"] = True
            body["stream_options"] = {"include_usage": True}
        return body

    def _apply_reasoning(self, body: dict[str, Any], effort: str) -> None:
        body["reasoning_effort"] = effort

    @staticmethod
    def _map_tool_choice(tool_choice: ToolChoice | None) -> Any:
        if tool_choice is None:
            return None
        if isinstance(tool_choice, str):
            return tool_choice if tool_choice in ("auto", "none", "required") else None
        if isinstance(tool_choice, dict) and "name" in tool_choice:
            return {"type": "function", "function": {"name": tool_choice["name"]}}
        return None

    def _encode_message(self, message: Message) -> dict[str, Any]:
        out: dict[str, Any] = {"role": message.role}
        if isinstance(message.content, str):
            content: Any = message.content
        else:
            content = [p for p in (self._encode_part(part) for part in message.content) if p]
        if message.role == "assistant" and message.tool_calls:
            out["content"] = content or None
            out["tool_calls"] = [self.tool_codec.encode(c) for c in message.tool_calls]
        else:
            out["content"] = content
        if message.role == "tool":
            out["tool_call_id"] = message.tool_call_id
            if message.name:
                out["name"] = message.name
        return out

    def _encode_part(self, part: ContentPart) -> dict[str, Any] | None:
        if part.type == "text":
            return {"type": "text", "text": part.text or ""}
        if part.type == "image":
            source = image_source(part)
            if source is None:
                return None
            return {"type": "image_url", "image_url": {"url": source[1]}}
        if part.file_id:
            return {"type": "file", "file": {"file_id": part.file_id}}
        if part.data:
            mime = part.mime_type or "application/octet-stream"
            return {"type": "file", "file": {"file_data": f"data:{mime};base64,{part.data}"}}
        logger.warning("%s: dropping file part without file_id or data", self.name)
        return None

    def messages_from_request(self, body: dict[str, Any]) -> tuple[Message, ...]:
        messages: list[Message] = []
        for raw in body.get("messages", []):
            content = raw.get("content")
            parts: str | tuple[ContentPart, ...]
            if isinstance(content, list):
                parts = tuple(_decode_part(p) for p in content)
            else:
                parts = content or ""
            tool_calls = None
            if raw.get("tool_calls"):
                tool_calls = tuple(
                    ToolCall(
                        id=tc["id"],
                        name=tc["function"]["name"],
                        arguments=tc["function"]["arguments"],
                    )
                    for tc in raw["tool_calls"]
                )
            messages.append(
                Message(
                    role=raw["role"],
                    content=parts,
                    tool_call_id=raw.get("tool_call_id"),
                    tool_calls=tool_calls,
                    name=raw.get("name"),
                )
            )
        return tuple(messages)

    # --- response ---

    def parse_response(self, raw: dict[str, Any]) -> ParsedResponse:
        return parse_chat_completion(raw, self.tool_codec)

    def map_finish_reason(self, raw_reason: str | None) -> FinishReason:
        return map_finish_reason(raw_reason, self.finish_reasons)

    def stream_decoder(self) -> ChatCompletionsStreamDecoder:
        return ChatCompletionsStreamDecoder(self.finish_reasons)

    # --- files ---

    def files_endpoint(self) -> str:
        return join_url(self.config.base_url, "files")

    def parse_file_id(self, raw: Any) -> str:
        return uploaded_file_id(raw, provider=self.name)

    # --- model listing ---

    def models_endpoint(self) -> str:
        return join_url(self.config.base_url, "models")

    def parse_models(self, raw: Any) -> tuple[ModelInfo, ...]:
        data = raw.get("data") if isinstance(raw, dict) else None
        if not isinstance(data, list):
            return ()
        models: list[ModelInfo] = []
        for entry in data:
            if not isinstance(entry, dict) or not isinstance(entry.get("id"), str):
                continue
            if self._keep_model(entry["id"]):
                name = entry.get("name")
                models.append(
                    ModelInfo(id=entry["id"], display_name=name if isinstance(name, str) else None)
                )
        return tuple(models)

    def _keep_model(self, model_id: str) -> bool:
        del model_id
        return True


def _decode_part(raw: dict[str, Any]) -> ContentPart:
    kind = raw.get("type")
    if kind == "image_url":
        return ContentPart(type="image", url=raw.get("image_url", {}).get("url"))
    if kind == "file":
        file = raw.get("file", {})
        return ContentPart(type="file", file_id=file.get("file_id"), data=file.get("file_data"))
    return ContentPart(type="text", text=raw.get("text", ""))
