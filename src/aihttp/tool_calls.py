"""Tool-call codecs: vendor encodings of function calls <-> ``ToolCall``.

Each vendor spells a tool invocation differently:

- Chat Completions (Grok, OpenRouter): ``tool_calls[].function{name, arguments}``
  with arguments as JSON text.
- OpenAI Responses: ``output[]`` items of ``type: function_call`` keyed by
  ``call_id``.
- Anthropic: ``content[]`` blocks of ``type: tool_use`` with ``input`` as an
  object.
- Gemini: ``parts[].functionCall{name, args}``; ids are optional on the wire.

Arguments always come out as JSON text. Ids are unique within one turn; a
missing or repeated id is replaced with a synthesized ``call_<hex>`` id.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol
import uuid

from aihttp.models import ToolCall, arguments_to_object, arguments_to_text

if TYPE_CHECKING:
    from collections.abc import Iterable

    from aihttp.models import ToolCallDelta, ToolResult

logger = logging.getLogger(__name__)


def synthesize_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


def _unique(calls: Iterable[ToolCall]) -> list[ToolCall]:
    seen: set[str] = set()
    out: list[ToolCall] = []
    for call in calls:
        if not call.id or call.id in seen:
            call = ToolCall(id=synthesize_call_id(), name=call.name, arguments=call.arguments)
        seen.add(call.id)
        out.append(call)
    return out


class ToolCallCodec(Protocol):
    """Bidirectional mapping for one vendor's tool-call encoding."""

    def extract(self, payload: Any) -> list[ToolCall]:
        """All tool calls in a response payload, in order."""
        ...

    def encode(self, call: ToolCall) -> dict[str, Any]:
        """Vendor fragment for replaying *call* in a later request."""
        ...

    def encode_result(self, result: ToolResult, *, tool_name: str | None = None) -> dict[str, Any]:
        """Vendor fragment carrying a tool's output back to the model."""
        ...


class ChatCompletionsToolCodec:
    """OpenAI-compatible ``tool_calls`` arrays (Grok, OpenRouter)."""

    def extract(self, payload: Any) -> list[ToolCall]:
        message = payload
        if isinstance(payload, dict) and isinstance(payload.get("choices"), list):
            choices = payload["choices"]
            first = choices[0] if choices and isinstance(choices[0], dict) else {}
            message = first.get("message") or first.get("delta") or {}
        if not isinstance(message, dict):
            return []
        raw_calls = message.get("tool_calls")
        if not isinstance(raw_calls, list):
            return []
        calls: list[ToolCall] = []
        for entry in raw_calls:
            if not isinstance(entry, dict):
                continue
            fn = entry.get("function")
            if not isinstance(fn, dict) or not isinstance(fn.get("name"), str):
                logger.warning("Skipping tool call without a function name: %r", entry)
                continue
            calls.append(
                ToolCall(
                    id=str(entry.get("id") or ""),
                    name=fn["name"],
                    arguments=arguments_to_text(fn.get("arguments")),
                )
            )
        return _unique(calls)

    def encode(self, call: ToolCall) -> dict[str, Any]:
        return {
            "id": call.id,
            "type": "function",
            "function": {"name": call.name, "arguments": call.arguments},
        }

    def encode_result(self, result: ToolResult, *, tool_name: str | None = None) -> dict[str, Any]:
        del tool_name
        return {
            "role": "tool",
            "tool_call_id": result.tool_call_id,
            "content": result.content_text,
        }


class ResponsesToolCodec:
    """OpenAI Responses API ``function_call`` output items."""

    def extract(self, payload: Any) -> list[ToolCall]:
        if isinstance(payload, dict) and isinstance(payload.get("response"), dict):
            payload = payload["response"]
        output = payload.get("output") if isinstance(payload, dict) else None
        if not isinstance(output, list):
            return []
        calls: list[ToolCall] = []
        for item in output:
            if not isinstance(item, dict) or item.get("type") != "function_call":
                continue
            name = item.get("name")
            if not isinstance(name, str) or not name:
                logger.warning("Skipping function_call item without a name")
                continue
            calls.append(
                ToolCall(
                    id=str(item.get("call_id") or item.get("id") or ""),
                    name=name,
                    arguments=arguments_to_text(item.get("arguments")),
                )
            )
        return _unique(calls)

    def encode(self, call: ToolCall) -> dict[str, Any]:
        return {
            "type": "function_call",
            "call_id": call.id,
            "name": call.name,
            "arguments": call.arguments,
        }

    def encode_result(self, result: ToolResult, *, tool_name: str | None = None) -> dict[str, Any]:
        del tool_name
        return {
            "type": "function_call_output",
            "call_id": result.tool_call_id,
            "output": result.content_text,
        }


class AnthropicToolCodec:
    """Anthropic ``tool_use`` / ``tool_result`` content blocks."""

    def extract(self, payload: Any) -> list[ToolCall]:
        blocks = payload.get("content") if isinstance(payload, dict) else None
        if not isinstance(blocks, list):
            return []
        calls: list[ToolCall] = []
        for block in blocks:
            if not isinstance(block, dict) or block.get("type") != "tool_use":
                continue
            name = block.get("name")
            if not isinstance(name, str) or not name:
                logger.warning("Skipping tool_use block without a name")
                continue
            calls.append(
                ToolCall(
                    id=str(block.get("id") or ""),
                    name=name,
                    arguments=arguments_to_text(block.get("input")),
                )
            )
        return _unique(calls)

    def encode(self, call: ToolCall) -> dict[str, Any]:
        return {
            "type": "tool_use",
            "id": call.id,
            "name": call.name,
            "input": call.parsed_arguments(),
        }

    def encode_result(self, result: ToolResult, *, tool_name: str | None = None) -> dict[str, Any]:
        del tool_name
        return {
            "type": "tool_result",
            "tool_use_id": result.tool_call_id,
            "content": result.content_text,
        }


class GeminiToolCodec:
    """Gemini ``functionCall`` / ``functionResponse`` parts."""

    def extract(self, payload: Any) -> list[ToolCall]:
        parts: Any = None
        if isinstance(payload, dict):
            candidates = payload.get("candidates")
            if isinstance(candidates, list) and candidates and isinstance(candidates[0], dict):
                content = candidates[0].get("content")
                parts = content.get("parts") if isinstance(content, dict) else None
            elif isinstance(payload.get("parts"), list):
                parts = payload["parts"]
        if not isinstance(parts, list):
            return []
        calls: list[ToolCall] = []
        for part in parts:
            fc = part.get("functionCall") if isinstance(part, dict) else None
            if not isinstance(fc, dict):
                continue
            name = fc.get("name")
            if not isinstance(name, str) or not name:
                logger.warning("Skipping functionCall part without a name")
                continue
            calls.append(
                ToolCall(
                    id=str(fc.get("id") or ""),
                    name=name,
                    arguments=arguments_to_text(fc.get("args")),
                )
            )
        return _unique(calls)

    def encode(self, call: ToolCall) -> dict[str, Any]:
        return {"functionCall": {"name": call.name, "args": call.parsed_arguments()}}

    def encode_result(self, result: ToolResult, *, tool_name: str | None = None) -> dict[str, Any]:
        name = tool_name or result.tool_name or ""
        content = result.content
        if isinstance(content, str):
            parsed = arguments_to_object(content)
            response: Any = parsed if parsed or content.strip() == "{}" else {"result": content}
        elif isinstance(content, dict):
            response = content
        else:
            response = {"result": content}
        return {"functionResponse": {"name": name, "response": response}}


class ToolCallAccumulator:
    """Assemble streamed ``ToolCallDelta`` fragments into complete calls."""

    def __init__(self) -> None:
        self._entries: dict[int, dict[str, Any]] = {}

    def add(self, delta: ToolCallDelta) -> None:
        entry = self._entries.setdefault(
            delta.index, {"id": None, "name": None, "arguments": []}
        )
        if delta.id:
            entry["id"] = delta.id
        if delta.name:
            entry["name"] = delta.name
        if delta.arguments_delta:
            entry["arguments"].append(delta.arguments_delta)

    def __bool__(self) -> bool:
        return any(e["name"] for e in self._entries.values())

    def calls(self) -> tuple[ToolCall, ...]:
        out: list[ToolCall] = []
        for index in sorted(self._entries):
            entry = self._entries[index]
            if not entry["name"]:
                logger.warning("Dropping streamed tool call %d without a name", index)
                continue
            out.append(
                ToolCall(
                    id=entry["id"] or "",
                    name=entry["name"],
                    arguments=arguments_to_text("".join(entry["arguments"])),
                )
            )
        return tuple(_unique(out))
