"""OpenAI Responses API adapter.

Requests go to ``POST /responses``. Continuations after tool execution send
``previous_response_id`` plus ``function_call_output`` items only; the
conversation itself stays on OpenAI's side.
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
from aihttp.providers._chat_completions import parse_chat_completion
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
from aihttp.tool_calls import ChatCompletionsToolCodec, ResponsesToolCodec

if TYPE_CHECKING:
    from aihttp.config import ProviderConfig
    from aihttp.models import FinishReason, StandardRequest, ToolChoice, ToolResult
    from aihttp.sse import SSEEvent

logger = logging.getLogger(__name__)

_FINISH_REASONS: dict[str, FinishReason] = {
    "completed": "stop",
    "stop": "stop",
    "max_output_tokens": "length",
    "length": "length",
    "tool_calls": "tool_calls",
}

_MODEL_INCLUDE_PREFIXES = ("gpt-", "gpt4", "chatgpt", "o1", "o3", "o4")
_MODEL_EXCLUDE_MARKERS = ("embedding", "whisper", "tts", "dall-e", "davinci-edit")


def _extract_finish_reason(payload: dict[str, Any]) -> str | None:
    """Prefer ``incomplete_details.reason`` over the bare status."""
    status = payload.get("status")
    if not isinstance(status, str):
        return None
    normalized_status = status.lower()
    if normalized_status == "incomplete":
        details = payload.get("incomplete_details")
        reason = details.get("reason") if isinstance(details, dict) else None
        if isinstance(reason, str) and reason:
            return reason.lower()
    return normalized_status


def _usage_from(payload: Any) -> Usage | None:
    if not isinstance(payload, dict):
        return None
    return Usage.from_counts(
        payload.get("input_tokens"),
        payload.get("output_tokens"),
        payload.get("total_tokens"),
    )


def _output_text(output: list[Any]) -> str:
    texts: list[str] = []
    for item in output:
        if not isinstance(item, dict):
            continue
        item_type = item.get("type")
        if item_type == "message":
            for block in item.get("content") or []:
                if isinstance(block, dict) and block.get("type") in ("output_text", "text"):
                    texts.append(block.get("text") or "")
        elif item_type in ("content", "output_text"):
            text = item.get("text")
            if isinstance(text, str):
                texts.append(text)
    return "".join(texts)


class ResponsesStreamDecoder:
    """Decode Responses API stream events (``response.*``)."""

    def __init__(self) -> None:
        self.model: str | None = None
        self.response_id: str | None = None
        self._ordinals: dict[Any, int] = {}
        self._streamed_args: set[int] = set()
        self._done = False

    def _ordinal(self, *keys: Any) -> int:
        keys = tuple(k for k in keys if isinstance(k, (str, int)))
        for key in keys:
            if key in self._ordinals:
                return self._ordinals[key]
        ordinal = len({*self._ordinals.values()})
        for key in keys:
            self._ordinals[key] = ordinal
        return ordinal

    def _capture(self, response: Any) -> None:
        if not isinstance(response, dict):
            return
        if isinstance(response.get("id"), str):
            self.response_id = response["id"]
        if isinstance(response.get("model"), str):
            self.model = response["model"]

    def decode(self, event: SSEEvent) -> list[StreamChunk]:
        if self._done:
            return []
        if event.is_done:
            return [self._terminal(None)]
        payload = event.json()
        if not isinstance(payload, dict):
            return []
        kind = payload.get("type") or event.event

        if kind in ("response.created", "response.in_progress"):
            self._capture(payload.get("response"))
            return []

        if kind in ("response.output_text.delta", "response.content.delta"):
            delta = payload.get("delta")
            if isinstance(delta, dict):
                delta = delta.get("text")
            return [StreamChunk(content_delta=delta)] if isinstance(delta, str) and delta else []

        if kind in ("response.output_item.added", "response.output_item.done"):
            item = payload.get("item")
            if not isinstance(item, dict) or item.get("type") != "function_call":
                return []
            index = self._ordinal(item.get("id"), payload.get("output_index"))
            arguments = item.get("arguments") or ""
            if kind == "response.output_item.done":
                # Only needed when no argument deltas were streamed.
                if index in self._streamed_args or not arguments:
                    return []
                self._streamed_args.add(index)
                return [
                    StreamChunk(
                        tool_call_deltas=(ToolCallDelta(index=index, arguments_delta=arguments),)
                    )
                ]
            if arguments:
                self._streamed_args.add(index)
            return [
                StreamChunk(
                    tool_call_deltas=(
                        ToolCallDelta(
                            index=index,
                            id=item.get("call_id") or item.get("id"),
                            name=item.get("name"),
                            arguments_delta=arguments,
                        ),
                    )
                )
            ]

        if kind == "response.function_call_arguments.delta":
            delta = payload.get("delta")
            if not isinstance(delta, str) or not delta:
                return []
            index = self._ordinal(payload.get("item_id"), payload.get("output_index"))
            self._streamed_args.add(index)
            return [StreamChunk(tool_call_deltas=(ToolCallDelta(index=index, arguments_delta=delta),))]

        if kind in ("response.completed", "response.incomplete"):
            response = payload.get("response")
            self._capture(response)
            return [self._terminal(response if isinstance(response, dict) else None)]

        if kind in ("response.failed", "error"):
            response = payload.get("response")
            envelope = parse_vendor_error(response if isinstance(response, dict) else payload)
            if envelope is None and isinstance(payload.get("message"), str):
                envelope = (payload["message"], payload.get("code"), None)
            message, vendor_type, _ = envelope or ("OpenAI stream failed", None, None)
            raise VendorError(message, vendor_type=vendor_type, phase="stream", body=payload)

        return []

    def _terminal(self, response: dict[str, Any] | None) -> StreamChunk:
        self._done = True
        reason: FinishReason = "stop"
        usage = None
        if response is not None:
            reason = map_finish_reason(_extract_finish_reason(response), _FINISH_REASONS)
            usage = _usage_from(response.get("usage"))
        return StreamChunk(
            done=True,
            finish_reason=reconcile_finish_reason(reason, has_tool_calls=bool(self._ordinals)),
            usage=usage,
        )


class OpenAIAdapter:
    """OpenAI Responses API."""

    name: ClassVar[str] = "openai"
    default_base_url: ClassVar[str] = "https://api.openai.com/v1"

    def __init__(self, config: ProviderConfig) -> None:
        self.config = config
        self.tool_codec = ResponsesToolCodec()

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            streaming=True,
            tools=True,
            model_listing=True,
            reasoning=True,
            continuation="response_id",
            file_upload=True,
        )

    def endpoint(self, model: str, *, stream: bool) -> str:
        del model, stream
        return join_url(self.config.base_url, "responses")

    def headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.config.require_api_key()}",
            "Content-Type": "application/json",
        }
        if self.config.organization:
            headers["OpenAI-Organization"] = self.config.organization
        return headers

    # --- request ---

    def build_request(self, request: StandardRequest, *, stream: bool) -> dict[str, Any]:
        items: list[dict[str, Any]] = []
        for message in request.messages:
            items.extend(self._encode_message(message))
        body: dict[str, Any] = {"model": request.model, "input": items}
        self._apply_options(body, request)
        if stream:
            body["stream"] = True
        return body

    def build_tool_output_request(
        self,
        *,
        response_id: str,
        tool_results: tuple[ToolResult, ...],
        template: StandardRequest,
        stream: bool,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": template.model,
            "previous_response_id": response_id,
            "input": [self.tool_codec.encode_result(r) for r in tool_results],
        }
        self._apply_options(body, template)
        if stream:
            body["stream"] = True
        return body

    def _apply_options(self, body: dict[str, Any], request: StandardRequest) -> None:
        if request.temperature is not None:
            body["temperature"] = clamp(
                request.temperature, 0.0, 2.0, field="temperature", provider=self.name
            )
        if request.top_p is not None:
            body["top_p"] = clamp(request.top_p, 0.0, 1.0, field="top_p", provider=self.name)
        if request.max_tokens is not None:
            body["max_output_tokens"] = clamp_int(
                request.max_tokens, 1, None, field="max_tokens", provider=self.name
            )
        tools = tool_definitions(request.tools)
        if tools:
            body["tools"] = [
                {
                    "type": "function",
                    "name": t.name,
                    "description": t.description,
                    "parameters": t.parameter_schema,
                }
                for t in tools
            ]
            mapped = self._map_tool_choice(request.tool_choice)
            if mapped is not None:
                body["tool_choice"] = mapped
        if request.reasoning_effort is not None:
            body["reasoning"] = {"effort": request.reasoning_effort.strip().lower()}

    @staticmethod
    def _map_tool_choice(tool_choice: ToolChoice | None) -> Any:
        if isinstance(tool_choice, str) and tool_choice in ("auto", "none", "required"):
            return tool_choice
        if isinstance(tool_choice, dict) and "name" in tool_choice:
            return {"type": "function", "name": tool_choice["name"]}
        return None

    def _encode_message(self, message: Message) -> list[dict[str, Any]]:
        if message.role == "tool":
            return [
                {
                    "type": "function_call_output",
                    "call_id": message.tool_call_id,
                    "output": message.text,
                }
            ]
        items: list[dict[str, Any]] = []
        if isinstance(message.content, str):
            if message.content or not message.tool_calls:
                items.append({"role": message.role, "content": message.content})
        else:
            text_type = "output_text" if message.role == "assistant" else "input_text"
            blocks = [
                b for b in (self._encode_part(p, text_type) for p in message.content) if b
            ]
            items.append({"role": message.role, "content": blocks})
        if message.role == "assistant" and message.tool_calls:
            items.extend(self.tool_codec.encode(c) for c in message.tool_calls)
        return items

    def _encode_part(self, part: ContentPart, text_type: str) -> dict[str, Any] | None:
        if part.type == "text":
            return {"type": text_type, "text": part.text or ""}
        if part.type == "image":
            if part.file_id:
                return {"type": "input_image", "file_id": part.file_id}
            source = image_source(part)
            if source is None:
                return None
            return {"type": "input_image", "image_url": source[1]}
        if part.file_id:
            return {"type": "input_file", "file_id": part.file_id}
        if part.url:
            return {"type": "input_file", "file_url": part.url}
        if part.data:
            mime = part.mime_type or "application/octet-stream"
            return {"type": "input_file", "file_data": f"data:{mime};base64,{part.data}"}
        logger.warning("openai: dropping file part without a source")
        return None

    def messages_from_request(self, body: dict[str, Any]) -> tuple[Message, ...]:
        messages: list[Message] = []
        for item in body.get("input", []):
            item_type = item.get("type")
            if item_type == "function_call":
                call = ToolCall(id=item["call_id"], name=item["name"], arguments=item["arguments"])
                last = messages[-1] if messages else None
                if last is not None and last.role == "assistant":
                    messages[-1] = Message(
                        role="assistant",
                        content=last.content,
                        tool_calls=(*(last.tool_calls or ()), call),
                    )
                else:
                    messages.append(Message(role="assistant", content="", tool_calls=(call,)))
            elif item_type == "function_call_output":
                messages.append(
                    Message(role="tool", content=item.get("output", ""), tool_call_id=item["call_id"])
                )
            else:
                content = item.get("content", "")
                if isinstance(content, list):
                    content = tuple(_decode_block(b) for b in content)
                messages.append(Message(role=item["role"], content=content))
        return tuple(messages)

    # --- response ---

    def parse_response(self, raw: dict[str, Any]) -> ParsedResponse:
        if isinstance(raw.get("response"), dict):
            raw = raw["response"]
        if "choices" in raw:
            return parse_chat_completion(raw, ChatCompletionsToolCodec())

        output = raw.get("output") if isinstance(raw.get("output"), list) else []
        content = _output_text(output)
        if not content and isinstance(raw.get("output_text"), str):
            content = raw["output_text"]
        return ParsedResponse(
            content=content,
            tool_calls=tuple(self.tool_codec.extract(raw)),
            usage=_usage_from(raw.get("usage")) or Usage(),
            model=raw.get("model") if isinstance(raw.get("model"), str) else None,
            finish_reason=_extract_finish_reason(raw),
            response_id=raw.get("id") if isinstance(raw.get("id"), str) else None,
        )

    def map_finish_reason(self, raw_reason: str | None) -> FinishReason:
        return map_finish_reason(raw_reason, _FINISH_REASONS)

    def stream_decoder(self) -> ResponsesStreamDecoder:
        return ResponsesStreamDecoder()

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
            model_id = entry.get("id") if isinstance(entry, dict) else None
            if not isinstance(model_id, str):
                continue
            lowered = model_id.lower()
            if not lowered.startswith(_MODEL_INCLUDE_PREFIXES):
                continue
            if any(marker in lowered for marker in _MODEL_EXCLUDE_MARKERS):
                continue
            models.append(ModelInfo(id=model_id))
        return tuple(sorted(models, key=lambda m: m.id))


def _decode_block(block: dict[str, Any]) -> ContentPart:
    kind = block.get("type")
    if kind == "input_image":
        return ContentPart(type="image", url=block.get("image_url"), file_id=block.get("file_id"))
    if kind == "input_file":
        return ContentPart(
            type="file",
            file_id=block.get("file_id"),
            url=block.get("file_url"),
            data=block.get("file_data"),
        )
    return ContentPart(type="text", text=block.get("text", ""))
