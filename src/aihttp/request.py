"""Request normalization: validate, resolve the model, sanitize, translate.

Steps run in a fixed order and fail fast; nothing is partially normalized:

1. structural validation (``ValidationError``)
2. model fallback to the provider default (``MissingModelError``)
3. sanitizing (tool definitions coerced; malformed entries dropped with a warning)
4. delegation to the vendor adapter
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import logging
from numbers import Real
from typing import TYPE_CHECKING, Any

from aihttp.errors import MissingModelError, ValidationError
from aihttp.models import ROLES, ContentPart, Message, StandardRequest, ToolCall, ToolDefinition

if TYPE_CHECKING:
    from aihttp.config import ProviderConfig
    from aihttp.providers.base import VendorAdapter

logger = logging.getLogger(__name__)

_TOOL_CHOICES = ("auto", "none", "required")


@dataclass(frozen=True)
class VendorRequest:
    """A request translated for one vendor, ready for the transport."""

    provider: str
    url: str
    body: dict[str, Any]
    stream: bool
    request: StandardRequest  # model resolved, tools sanitized


def _fail(message: str, hint: str | None = None) -> ValidationError:
    return ValidationError(message, hint=hint)


def _has_content(message: Message) -> bool:
    if isinstance(message.content, str):
        return bool(message.content.strip())
    return any(p.type != "text" or (p.text or "").strip() for p in message.content)


def _validate_message(idx: int, message: Any) -> None:
    label = f"messages[{idx}]"
    if not isinstance(message, Message):
        raise _fail(
            f"{label} must be a Message, got {type(message).__name__}",
            hint="Build messages with Message(...) or StandardRequest.from_dict().",
        )
    if message.role not in ROLES:
        raise _fail(
            f"{label} has unsupported role {message.role!r}",
            hint=f"Use one of: {', '.join(sorted(ROLES))}.",
        )
    content = message.content
    if not isinstance(content, str):
        if not isinstance(content, tuple) or not all(isinstance(p, ContentPart) for p in content):
            raise _fail(f"{label} content must be text or a sequence of ContentPart")

    if message.role == "tool":
        if not isinstance(message.tool_call_id, str) or not message.tool_call_id:
            raise _fail(
                f"{label} is a tool message without tool_call_id",
                hint="Tool messages must reference the call they answer.",
            )
    elif message.role == "assistant":
        if not _has_content(message) and not message.tool_calls:
            raise _fail(f"{label} is an empty assistant message")
    elif not _has_content(message):
        raise _fail(f"{label} ({message.role}) has no content")

    if message.tool_calls:
        if message.role != "assistant":
            raise _fail(f"{label}: only assistant messages may carry tool_calls")
        seen: set[str] = set()
        for call in message.tool_calls:
            if not isinstance(call, ToolCall) or not call.id or not call.name:
                raise _fail(f"{label} has a malformed tool call")
            if call.id in seen:
                raise _fail(f"{label} repeats tool call id {call.id!r}")
            seen.add(call.id)


def _validate_number(name: str, value: Any) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, Real):
        raise _fail(f"{name} must be a number, got {type(value).__name__}")


def validate_request(request: Any) -> None:
    """Structural validation of a StandardRequest.

    Raises:
        ValidationError: On the first malformed field found.
    """
    if not isinstance(request, StandardRequest):
        raise _fail(
            f"Expected StandardRequest, got {type(request).__name__}",
            hint="Use StandardRequest(...) or StandardRequest.from_dict().",
        )
    if not isinstance(request.messages, tuple) or not request.messages:
        raise _fail("messages must be a non-empty sequence", hint="Add at least one message.")
    for idx, message in enumerate(request.messages):
        _validate_message(idx, message)

    if request.model is not None and not isinstance(request.model, str):
        raise _fail("model must be a string")
    _validate_number("temperature", request.temperature)
    _validate_number("top_p", request.top_p)
    if request.max_tokens is not None and (
        isinstance(request.max_tokens, bool) or not isinstance(request.max_tokens, int)
    ):
        raise _fail("max_tokens must be an integer")

    choice = request.tool_choice
    if choice is not None and not (
        (isinstance(choice, str) and choice in _TOOL_CHOICES)
        or (isinstance(choice, dict) and isinstance(choice.get("name"), str))
    ):
        raise _fail(
            f"Unsupported tool_choice: {choice!r}",
            hint="Use 'auto', 'none', 'required', or {'name': <tool name>}.",
        )
    if request.reasoning_effort is not None and not isinstance(request.reasoning_effort, str):
        raise _fail("reasoning_effort must be a string")
    if request.tools is not None and not isinstance(request.tools, tuple):
        raise _fail("tools must be a sequence")


def resolve_model(request: StandardRequest, provider_config: ProviderConfig) -> StandardRequest:
    """Fill in the provider's default model when the request has none."""
    model = request.model.strip() if isinstance(request.model, str) else None
    if model:
        return request if model == request.model else request.with_model(model)
    if provider_config.model:
        return request.with_model(provider_config.model)
    raise MissingModelError(
        f"No model specified and no default model configured for {provider_config.provider!r}",
        hint=(
            "Set StandardRequest.model, or configure a default via the provider "
            f"config 'model' or AIHTTP_{provider_config.provider.upper()}_MODEL."
        ),
    )


def sanitize_tools(tools: Any) -> tuple[ToolDefinition, ...] | None:
    """Coerce tool entries to ToolDefinition, dropping malformed ones."""
    if tools is None:
        return None
    clean: list[ToolDefinition] = []
    names: set[str] = set()
    for idx, entry in enumerate(tools):
        if isinstance(entry, ToolDefinition):
            tool = entry
        else:
            try:
                tool = ToolDefinition.from_dict(entry)
            except ValidationError as e:
                logger.warning("Dropping malformed tool definition tools[%d]: %s", idx, e)
                continue
        if tool.name in names:
            logger.warning("Dropping duplicate tool definition %r", tool.name)
            continue
        names.add(tool.name)
        clean.append(tool)
    return tuple(clean)


def normalize_request(
    request: StandardRequest,
    adapter: VendorAdapter,
    provider_config: ProviderConfig | None = None,
    *,
    stream: bool = False,
) -> VendorRequest:
    """Validate, resolve the model, sanitize, and translate *request*.

    Args:
        request: The vendor-neutral request.
        adapter: Wire adapter for the target provider.
        provider_config: Config supplying the default model; defaults to the
            adapter's own config.
        stream: Whether the vendor request should stream.

    Raises:
        ValidationError: If the request is malformed.
        MissingModelError: If no model can be determined.
    """
    validate_request(request)
    config = provider_config or adapter.config
    effective = resolve_model(request, config)
    effective = replace(effective, tools=sanitize_tools(effective.tools))

    body = adapter.build_request(effective, stream=stream)
    return VendorRequest(
        provider=adapter.name,
        url=adapter.endpoint(str(effective.model), stream=stream),
        body=body,
        stream=stream,
        request=effective,
    )
