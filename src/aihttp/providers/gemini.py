"""Google Gemini ``generateContent`` adapter."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, ClassVar

from aihttp.models import (
    ContentPart,
    Message,
    ModelInfo,
    StreamChunk,
    ToolCall,
    ToolCallDelta,
    ToolResult,
    Usage,
    arguments_to_text,
)
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
from aihttp.tool_calls import GeminiToolCodec, synthesize_call_id

if TYPE_CHECKING:
    from aihttp.config import ProviderConfig
    from aihttp.models import FinishReason, StandardRequest, ToolChoice
    from aihttp.sse import SSEEvent

logger = logging.getLogger(__name__)

_FINISH_REASONS: dict[str, FinishReason] = {
    "STOP": "stop",
    "MAX_TOKENS": "length",
}

_MODEL_EXCLUDE_MARKERS = ("embedding", "vision", "text-embedding")


def _first_candidate(raw: dict[str, Any]) -> dict[str, Any]:
    candidates = raw.get("candidates")
    if isinstance(candidates, list) and candidates and isinstance(candidates[0], dict):
        return candidates[0]
    return {}


def _candidate_parts(candidate: dict[str, Any]) -> list[dict[str, Any]]:
    content = candidate.get("content")
    parts = content.get("parts") if isinstance(content, dict) else None
    return [p for p in parts if isinstance(p, dict)] if isinstance(parts, list) else []


def _usage(raw: Any) -> Usage | None:
    if not isinstance(raw, dict):
        return None
    return Usage.from_counts(
        raw.get("promptTokenCount"),
        raw.get("candidatesTokenCount"),
        raw.get("totalTokenCount"),
    )


def _part_text(part: dict[str, Any]) -> str:
    # Thought summaries are not answer text.
    if part.get("thought") is True:
        return ""
    text = part.get("text")
    return text if isinstance(text, str) else ""


class GeminiStreamDecoder:
    """Decode ``streamGenerateContent?alt=sse`` frames.

    Every frame is a full ``GenerateContentResponse`` fragment; the first
    frame carrying a ``finishReason`` is terminal.
    """

    def __init__(self) -> None:
        self.model: str | None = None
        self.response_id: str | None = None
        self._next_call = 0
        self._usage: Usage | None = None
        self._done = False

    def decode(self, event: SSEEvent) -> list[StreamChunk]:
        if self._done:
            return []
        payload = event.json()
        if isinstance(payload, list):
            payload = payload[0] if payload else {}
        if not isinstance(payload, dict):
            return []
        if isinstance(payload.get("modelVersion"), str):
            self.model = payload["modelVersion"]
        if isinstance(payload.get("responseId"), str):
            self.response_id = payload["responseId"]
        usage = _usage(payload.get("usageMetadata"))
        if usage is not None:
            self._usage = usage

        candidate = _first_candidate(payload)
        text_parts: list[str] = []
        deltas: list[ToolCallDelta] = []
        for part in _candidate_parts(candidate):
            fc = part.get("functionCall")
            if isinstance(fc, dict) and isinstance(fc.get("name"), str):
                deltas.append(
                    ToolCallDelta(
                        index=self._next_call,
                        id=fc.get("id") or synthesize_call_id(),
                        name=fc["name"],
                        arguments_delta=arguments_to_text(fc.get("args")),
                    )
                )
                self._next_call += 1
            else:
                text_parts.append(_part_text(part))

        finish_raw = candidate.get("finishReason")
        if finish_raw is None:
            chunk = StreamChunk(content_delta="".join(text_parts), tool_call_deltas=tuple(deltas))
            return [] if chunk.is_empty else [chunk]

        self._done = True
        return [
            StreamChunk(
                content_delta="".join(text_parts),
                tool_call_deltas=tuple(deltas),
                done=True,
                finish_reason=reconcile_finish_reason(
                    map_finish_reason(finish_raw, _FINISH_REASONS),
                    has_tool_calls=self._next_call > 0,
                ),
                usage=self._usage,
            )
        ]


class GeminiAdapter:
    """Gemini ``generateContent`` / ``streamGenerateContent``."""

    name: ClassVar[str] = "gemini"
    default_base_url: ClassVar[str] = "https://generativelanguage.googleapis.com/v1beta"

    def __init__(self, config: ProviderConfig) -> None:
        self.config = config
        self.tool_codec = GeminiToolCodec()

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
        model_path = model if model.startswith("models/") else f"models/{model}"
        if stream:
            return join_url(self.config.base_url, f"{model_path}:streamGenerateContent?alt=sse")
        return join_url(self.config.base_url, f"{model_path}:generateContent")

    def headers(self) -> dict[str, str]:
        return {
            "x-goog-api-key": self.config.require_api_key(),
            "Content-Type": "application/json",
        }

    # --- request ---

    def build_request(self, request: StandardRequest, *, stream: bool) -> dict[str, Any]:
        del stream  # streaming is selected by endpoint, not body
        system_texts: list[str] = []
        contents: list[dict[str, Any]] = []
        call_names: dict[str, str] = {}
        for message in request.messages:
            if message.role == "system":
                system_texts.append(message.text)
                continue
            if message.role == "tool":
                name = message.name or call_names.get(message.tool_call_id or "", "")
                part = self.tool_codec.encode_result(
                    ToolResult(tool_call_id=message.tool_call_id or "", content=message.text),
                    tool_name=name,
                )
                prev = contents[-1] if contents else None
                if prev is not None and prev["role"] == "user" and all(
                    "functionResponse" in p for p in prev["parts"]
                ):
                    prev["parts"].append(part)
                else:
                    contents.append({"role": "user", "parts": [part]})
                continue

            parts = self._encode_content(message)
            if message.role == "assistant" and message.tool_calls:
                for call in message.tool_calls:
                    call_names[call.id] = call.name
                    parts.append(self.tool_codec.encode(call))
            contents.append(
                {"role": "model" if message.role == "assistant" else "user", "parts": parts}
            )

        body: dict[str, Any] = {"contents": contents}
        if system_texts:
            body["systemInstruction"] = {"parts": [{"text": "\n".join(system_texts)}]}

        generation: dict[str, Any] = {}
        if request.temperature is not None:
            generation["temperature"] = clamp(
                request.temperature, 0.0, 2.0, field="temperature", provider=self.name
            )
        if request.top_p is not None:
            generation["topP"] = clamp(request.top_p, 0.0, 1.0, field="top_p", provider=self.name)
        if request.max_tokens is not None:
            generation["maxOutputTokens"] = clamp_int(
                request.max_tokens, 1, None, field="max_tokens", provider=self.name
            )
        if generation:
            body["generationConfig"] = generation

        tools = tool_definitions(request.tools)
        if tools:
            body["tools"] = [
                {
                    "functionDeclarations": [
                        {"name": t.name, "description": t.description, "parameters": t.parameter_schema}
                        for t in tools
                    ]
                }
            ]
            mapped = self._map_tool_choice(request.tool_choice)
            if mapped is not None:
                body["toolConfig"] = {"functionCallingConfig": mapped}
        if request.reasoning_effort is not None:
            logger.debug("gemini: reasoning_effort is not mapped; ignoring")
        return body

    @staticmethod
    def _map_tool_choice(tool_choice: ToolChoice | None) -> dict[str, Any] | None:
        if isinstance(tool_choice, str):
            mode = {"auto": "AUTO", "required": "ANY", "none": "NONE"}.get(tool_choice)
            return {"mode": mode} if mode else None
        if isinstance(tool_choice, dict) and "name" in tool_choice:
            return {"mode": "ANY", "allowedFunctionNames": [tool_choice["name"]]}
        return None

    def _encode_content(self, message: Message) -> list[dict[str, Any]]:
        if isinstance(message.content, str):
            if not message.content and message.tool_calls:
                return []
            return [{"text": message.content}]
        return [p for p in (self._encode_part(part) for part in message.content) if p]

    @staticmethod
    def _encode_part(part: ContentPart) -> dict[str, Any] | None:
        if part.type == "text":
            return {"text": part.text or ""}
        default_mime = "image/png" if part.type == "image" else "application/octet-stream"
        if part.data:
            return {"inlineData": {"mimeType": part.mime_type or default_mime, "data": part.data}}
        uri = part.url or part.file_id
        if uri:
            inline = split_data_url(uri)
            if inline is not None:
                return {"inlineData": {"mimeType": inline[0], "data": inline[1]}}
            return {"fileData": {"mimeType": part.mime_type or default_mime, "fileUri": uri}}
        logger.warning("gemini: dropping %s part without a source", part.type)
        return None

    def messages_from_request(self, body: dict[str, Any]) -> tuple[Message, ...]:
        messages: list[Message] = []
        system = body.get("systemInstruction")
        if isinstance(system, dict):
            text = "".join(p.get("text", "") for p in system.get("parts", []))
            messages.append(Message(role="system", content=text))
        for entry in body.get("contents", []):
            role = "assistant" if entry.get("role") == "model" else "user"
            parts = entry.get("parts", [])
            responses = [p["functionResponse"] for p in parts if "functionResponse" in p]
            if responses and len(responses) == len(parts):
                for fr in responses:
                    payload = fr.get("response")
                    if isinstance(payload, dict) and set(payload) == {"result"}:
                        payload = payload["result"]
                    messages.append(
                        Message(
                            role="tool",
                            content=payload if isinstance(payload, str) else json.dumps(payload),
                            name=fr.get("name"),
                        )
                    )
                continue
            calls = tuple(
                ToolCall(
                    id=p["functionCall"].get("id") or synthesize_call_id(),
                    name=p["functionCall"]["name"],
                    arguments=arguments_to_text(p["functionCall"].get("args")),
                )
                for p in parts
                if "functionCall" in p
            )
            content_parts = [_decode_part(p) for p in parts if "functionCall" not in p]
            if all(p.type == "text" for p in content_parts):
                content: str | tuple[ContentPart, ...] = "".join(p.text or "" for p in content_parts)
            else:
                content = tuple(content_parts)
            messages.append(Message(role=role, content=content, tool_calls=calls or None))
        return tuple(messages)

    # --- response ---

    def parse_response(self, raw: dict[str, Any]) -> ParsedResponse:
        candidate = _first_candidate(raw)
        if not candidate and isinstance(raw.get("promptFeedback"), dict):
            logger.warning(
                "gemini: prompt blocked (%s)", raw["promptFeedback"].get("blockReason")
            )
        text = "".join(
            _part_text(p) for p in _candidate_parts(candidate) if "functionCall" not in p
        )
        return ParsedResponse(
            content=text,
            tool_calls=tuple(self.tool_codec.extract(raw)),
            usage=_usage(raw.get("usageMetadata")) or Usage(),
            model=raw.get("modelVersion") if isinstance(raw.get("modelVersion"), str) else None,
            finish_reason=candidate.get("finishReason"),
            response_id=raw.get("responseId") if isinstance(raw.get("responseId"), str) else None,
        )

    def map_finish_reason(self, raw_reason: str | None) -> FinishReason:
        return map_finish_reason(raw_reason, _FINISH_REASONS)

    def stream_decoder(self) -> GeminiStreamDecoder:
        return GeminiStreamDecoder()

    # --- model listing ---

    def models_endpoint(self) -> str:
        return join_url(self.config.base_url, "models")

    def parse_models(self, raw: Any) -> tuple[ModelInfo, ...]:
        data = raw.get("models") if isinstance(raw, dict) else None
        if not isinstance(data, list):
            return ()
        models: list[ModelInfo] = []
        for entry in data:
            name = entry.get("name") if isinstance(entry, dict) else None
            if not isinstance(name, str):
                continue
            model_id = name.removeprefix("models/")
            if not model_id.startswith("gemini-"):
                continue
            if any(marker in model_id for marker in _MODEL_EXCLUDE_MARKERS):
                continue
            models.append(ModelInfo(id=model_id, display_name=entry.get("displayName")))
        return tuple(models)


def _decode_part(part: dict[str, Any]) -> ContentPart:
    if "inlineData" in part:
        inline = part["inlineData"]
        mime = inline.get("mimeType")
        kind = "image" if isinstance(mime, str) and mime.startswith("image/") else "file"
        return ContentPart(type=kind, data=inline.get("data"), mime_type=mime)
    if "fileData" in part:
        data = part["fileData"]
        mime = data.get("mimeType")
        kind = "image" if isinstance(mime, str) and mime.startswith("image/") else "file"
        return ContentPart(type=kind, url=data.get("fileUri"), mime_type=mime)
    return ContentPart(type="text", text=part.get("text", ""))
