"""Vendor-neutral value types shared by every stage of the pipeline.

Every optional field is an explicit ``None`` default; adapters never probe
raw dictionaries for keys. ``from_dict``/``to_dict`` give the JSON shapes
that surrounding application code exchanges with the client.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import json
from typing import TYPE_CHECKING, Any, Literal

from aihttp.errors import ValidationError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

Role = Literal["user", "assistant", "system", "tool"]
ROLES: frozenset[str] = frozenset({"user", "assistant", "system", "tool"})

FinishReason = Literal["stop", "length", "tool_calls", "unknown"]
FINISH_REASONS: frozenset[str] = frozenset({"stop", "length", "tool_calls", "unknown"})

ToolChoice = Literal["auto", "none", "required"] | dict[str, str]


def _require_mapping(data: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(data, dict):
        raise ValidationError(
            f"{what} must be an object, got {type(data).__name__}",
        )
    return data


def arguments_to_text(arguments: Any) -> str:
    """Normalize tool-call arguments into JSON text."""
    if arguments is None:
        return "{}"
    if isinstance(arguments, str):
        return arguments if arguments.strip() else "{}"
    return json.dumps(arguments, separators=(",", ":"), ensure_ascii=False)


def arguments_to_object(arguments: str) -> dict[str, Any]:
    """Parse JSON-text arguments; anything that is not an object becomes ``{}``."""
    try:
        parsed = json.loads(arguments) if arguments else {}
    except (TypeError, ValueError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


# =============================================================================
# Messages
# =============================================================================


@dataclass(frozen=True)
class ContentPart:
    """One element of multipart message content."""

    type: Literal["text", "image", "file"]
    text: str | None = None
    url: str | None = None
    data: str | None = None  # base64 payload
    mime_type: str | None = None
    file_id: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> ContentPart:
        obj = _require_mapping(data, "content part")
        part_type = obj.get("type", "text")
        if part_type in ("image_url", "input_image"):
            part_type = "image"
        if part_type not in ("text", "image", "file"):
            raise ValidationError(f"Unsupported content part type: {part_type!r}")
        url = obj.get("url")
        image_url = obj.get("image_url")
        if url is None and isinstance(image_url, dict):
            url = image_url.get("url")
        elif url is None and isinstance(image_url, str):
            url = image_url
        return cls(
            type=part_type,
            text=obj.get("text"),
            url=url,
            data=obj.get("data"),
            mime_type=obj.get("mime_type"),
            file_id=obj.get("file_id"),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type}
        for key in ("text", "url", "data", "mime_type", "file_id"):
            value = getattr(self, key)
            if value is not None:
                out[key] = value
        return out


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the model.

    ``arguments`` is always JSON text, whatever the vendor sent.
    """

    id: str
    name: str
    arguments: str = "{}"

    def parsed_arguments(self) -> dict[str, Any]:
        return arguments_to_object(self.arguments)

    @classmethod
    def from_dict(cls, data: Any) -> ToolCall:
        obj = _require_mapping(data, "tool call")
        fn = obj.get("function")
        if isinstance(fn, dict):
            name = fn.get("name")
            arguments = fn.get("arguments")
        else:
            name = obj.get("name")
            arguments = obj.get("arguments")
        call_id = obj.get("id")
        if not isinstance(call_id, str) or not call_id:
            raise ValidationError("tool call requires a non-empty 'id'")
        if not isinstance(name, str) or not name:
            raise ValidationError(f"tool call {call_id!r} requires a 'name'")
        return cls(id=call_id, name=name, arguments=arguments_to_text(arguments))

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}


@dataclass(frozen=True)
class Message:
    """A single conversational turn."""

    role: str
    content: str | tuple[ContentPart, ...] = ""
    tool_call_id: str | None = None
    tool_calls: tuple[ToolCall, ...] | None = None
    name: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.content, list):
            object.__setattr__(self, "content", tuple(self.content))
        if isinstance(self.tool_calls, list):
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))

    @property
    def text(self) -> str:
        """Concatenated text of the message, ignoring non-text parts."""
        if isinstance(self.content, str):
            return self.content
        return "".join(p.text or "" for p in self.content if p.type == "text")

    @property
    def is_multipart(self) -> bool:
        return not isinstance(self.content, str)

    @classmethod
    def from_dict(cls, data: Any) -> Message:
        obj = _require_mapping(data, "message")
        raw_content = obj.get("content")
        content: str | tuple[ContentPart, ...]
        if raw_content is None:
            content = ""
        elif isinstance(raw_content, str):
            content = raw_content
        elif isinstance(raw_content, list):
            content = tuple(ContentPart.from_dict(p) for p in raw_content)
        else:
            raise ValidationError(
                "message content must be text or a list of content parts"
            )
        raw_calls = obj.get("tool_calls")
        tool_calls: tuple[ToolCall, ...] | None = None
        if raw_calls:
            if not isinstance(raw_calls, list):
                raise ValidationError("message tool_calls must be a list")
            tool_calls = tuple(ToolCall.from_dict(c) for c in raw_calls)
        return cls(
            role=str(obj.get("role", "")),
            content=content,
            tool_call_id=obj.get("tool_call_id"),
            tool_calls=tool_calls,
            name=obj.get("name"),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"role": self.role}
        if isinstance(self.content, str):
            out["content"] = self.content
        else:
            out["content"] = [p.to_dict() for p in self.content]
        if self.tool_call_id is not None:
            out["tool_call_id"] = self.tool_call_id
        if self.tool_calls:
            out["tool_calls"] = [c.to_dict() for c in self.tool_calls]
        if self.name is not None:
            out["name"] = self.name
        return out


# =============================================================================
# Tools
# =============================================================================


def _default_schema() -> dict[str, Any]:
    return {"type": "object", "properties": {}}


@dataclass(frozen=True)
class ToolDefinition:
    """A function the model may call, described by a JSON Schema."""

    name: str
    description: str = ""
    parameter_schema: dict[str, Any] = field(default_factory=_default_schema)

    @classmethod
    def from_dict(cls, data: Any) -> ToolDefinition:
        """Accept the flat, OpenAI-nested, and Anthropic-style spellings."""
        obj = _require_mapping(data, "tool definition")
        fn = obj.get("function")
        if obj.get("type") == "function" and isinstance(fn, dict):
            obj = fn
        name = obj.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("tool definition requires a non-empty 'name'")
        schema: Any = _default_schema()
        for key in ("parameter_schema", "parameters", "input_schema"):
            if key in obj:
                schema = obj[key]
                break
        if not isinstance(schema, dict):
            raise ValidationError(f"tool {name!r} parameter schema must be an object")
        description = obj.get("description") or ""
        if not isinstance(description, str):
            raise ValidationError(f"tool {name!r} description must be text")
        return cls(name=name.strip(), description=description, parameter_schema=schema)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameter_schema": self.parameter_schema,
        }


@dataclass(frozen=True)
class ToolResult:
    """The outcome of executing a tool call outside the model."""

    tool_call_id: str
    content: Any = ""
    tool_name: str | None = None
    structured_input: dict[str, Any] | None = None

    @property
    def content_text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return json.dumps(self.content, ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Any) -> ToolResult:
        obj = _require_mapping(data, "tool result")
        call_id = obj.get("tool_call_id")
        if not isinstance(call_id, str) or not call_id:
            raise ValidationError("tool result requires a non-empty 'tool_call_id'")
        structured = obj.get("structured_input")
        if structured is not None and not isinstance(structured, dict):
            raise ValidationError("tool result structured_input must be an object")
        return cls(
            tool_call_id=call_id,
            content=obj.get("content", ""),
            tool_name=obj.get("tool_name"),
            structured_input=structured,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"tool_call_id": self.tool_call_id, "content": self.content}
        if self.tool_name is not None:
            out["tool_name"] = self.tool_name
        if self.structured_input is not None:
            out["structured_input"] = self.structured_input
        return out


# =============================================================================
# Request / Response
# =============================================================================


@dataclass(frozen=True)
class StandardRequest:
    """A vendor-neutral chat request.

    ``tools`` may hold ``ToolDefinition`` values or vendor-shaped dicts; the
    request normalizer coerces the latter and drops entries it cannot read.
    """

    messages: tuple[Message, ...]
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    tools: tuple[ToolDefinition | dict[str, Any], ...] | None = None
    tool_choice: ToolChoice | None = None
    reasoning_effort: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.messages, list):
            object.__setattr__(self, "messages", tuple(self.messages))
        if isinstance(self.tools, list):
            object.__setattr__(self, "tools", tuple(self.tools))

    def with_model(self, model: str) -> StandardRequest:
        return replace(self, model=model)

    def with_messages(self, messages: Iterable[Message]) -> StandardRequest:
        return replace(self, messages=tuple(messages))

    @classmethod
    def from_dict(cls, data: Any) -> StandardRequest:
        obj = _require_mapping(data, "request")
        raw_messages = obj.get("messages")
        if not isinstance(raw_messages, list):
            raise ValidationError("request 'messages' must be a list")
        raw_tools = obj.get("tools")
        if raw_tools is not None and not isinstance(raw_tools, list):
            raise ValidationError("request 'tools' must be a list")
        return cls(
            messages=tuple(Message.from_dict(m) for m in raw_messages),
            model=obj.get("model"),
            temperature=obj.get("temperature"),
            max_tokens=obj.get("max_tokens"),
            top_p=obj.get("top_p"),
            tools=tuple(raw_tools) if raw_tools is not None else None,
            tool_choice=obj.get("tool_choice"),
            reasoning_effort=obj.get("reasoning_effort"),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"messages": [m.to_dict() for m in self.messages]}
        for key in (
            "model",
            "temperature",
            "max_tokens",
            "top_p",
            "tool_choice",
            "reasoning_effort",
        ):
            value = getattr(self, key)
            if value is not None:
                out[key] = value
        if self.tools is not None:
            out["tools"] = [
                t.to_dict() if isinstance(t, ToolDefinition) else t for t in self.tools
            ]
        return out


@dataclass(frozen=True)
class Usage:
    """Token accounting in standard field names."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_counts(
        cls,
        prompt: Any,
        completion: Any,
        total: Any = None,
    ) -> Usage:
        """Build usage from loosely typed vendor counts, computing the total."""
        p = prompt if isinstance(prompt, int) else 0
        c = completion if isinstance(completion, int) else 0
        t = total if isinstance(total, int) and total > 0 else p + c
        return cls(prompt_tokens=p, completion_tokens=c, total_tokens=t)

    def to_dict(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(frozen=True)
class StandardResponse:
    """A vendor-neutral completed turn."""

    success: bool
    content: str = ""
    usage: Usage = field(default_factory=Usage)
    model: str | None = None
    finish_reason: FinishReason = "unknown"
    tool_calls: tuple[ToolCall, ...] | None = None
    error: dict[str, Any] | None = None
    response_id: str | None = None
    provider: str | None = None
    raw: Any = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if isinstance(self.tool_calls, list):
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))
        if self.finish_reason not in FINISH_REASONS:
            raise ValueError(f"finish_reason must be one of {sorted(FINISH_REASONS)}")
        if self.finish_reason == "tool_calls" and not self.tool_calls:
            raise ValueError("finish_reason 'tool_calls' requires tool calls")

    @classmethod
    def failed(cls, error: Exception, *, provider: str | None = None) -> StandardResponse:
        """Serializable failure form for callers that need the JSON shape."""
        to_dict = getattr(error, "to_dict", None)
        detail = to_dict() if callable(to_dict) else {"message": str(error)}
        return cls(success=False, error=detail, provider=provider)

    def to_dict(self, *, include_raw: bool = False) -> dict[str, Any]:
        out: dict[str, Any] = {
            "success": self.success,
            "content": self.content,
            "usage": self.usage.to_dict(),
            "model": self.model,
            "finish_reason": self.finish_reason,
        }
        if self.tool_calls:
            out["tool_calls"] = [c.to_dict() for c in self.tool_calls]
        if self.error is not None:
            out["error"] = self.error
        if self.response_id is not None:
            out["response_id"] = self.response_id
        if self.provider is not None:
            out["provider"] = self.provider
        if include_raw and self.raw is not None:
            out["raw"] = self.raw
        return out


# =============================================================================
# Streaming
# =============================================================================


@dataclass(frozen=True)
class ToolCallDelta:
    """An incremental fragment of one tool call within a streamed turn."""

    index: int
    id: str | None = None
    name: str | None = None
    arguments_delta: str = ""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"index": self.index, "arguments_delta": self.arguments_delta}
        if self.id is not None:
            out["id"] = self.id
        if self.name is not None:
            out["name"] = self.name
        return out


@dataclass(frozen=True)
class StreamChunk:
    """One element of a streamed turn; exactly one per turn has ``done=True``."""

    content_delta: str = ""
    tool_call_deltas: tuple[ToolCallDelta, ...] = ()
    done: bool = False
    finish_reason: FinishReason | None = None
    usage: Usage | None = None
    error: str | None = None
    error_type: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.tool_call_deltas, list):
            object.__setattr__(self, "tool_call_deltas", tuple(self.tool_call_deltas))

    @property
    def is_empty(self) -> bool:
        return (
            not self.content_delta
            and not self.tool_call_deltas
            and not self.done
            and self.finish_reason is None
            and self.usage is None
            and self.error is None
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "content_delta": self.content_delta,
            "tool_call_deltas": [d.to_dict() for d in self.tool_call_deltas],
            "done": self.done,
        }
        if self.finish_reason is not None:
            out["finish_reason"] = self.finish_reason
        if self.usage is not None:
            out["usage"] = self.usage.to_dict()
        if self.error is not None:
            out["error"] = self.error
            out["error_type"] = self.error_type
        return out


# =============================================================================
# Auxiliary results
# =============================================================================


@dataclass(frozen=True)
class ModelInfo:
    """A model advertised by a provider's listing endpoint."""

    id: str
    display_name: str | None = None


@dataclass(frozen=True)
class ConnectionTestResult:
    """Outcome of a provider connectivity probe."""

    success: bool
    message: str
    provider: str
    model_used: str | None = None
    response_content: str | None = None
