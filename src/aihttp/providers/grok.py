"""X.AI Grok chat-completions adapter."""

from __future__ import annotations

from typing import Any, ClassVar

from aihttp.errors import ValidationError
from aihttp.providers._chat_completions import ChatCompletionsAdapter

_ALLOWED_REASONING_EFFORTS = ("low", "medium", "high")


class GrokAdapter(ChatCompletionsAdapter):
    """Grok speaks Chat Completions at ``api.x.ai`` with bearer auth."""

    name: ClassVar[str] = "grok"
    default_base_url: ClassVar[str] = "https://api.x.ai/v1"

    def _apply_reasoning(self, body: dict[str, Any], effort: str) -> None:
        normalized = effort.strip().lower()
        if normalized not in _ALLOWED_REASONING_EFFORTS:
            raise ValidationError(
                f"Unsupported reasoning_effort for Grok: {effort!r}",
                hint=f"Use one of: {', '.join(_ALLOWED_REASONING_EFFORTS)}.",
            )
        body["reasoning_effort"] = normalized

    def _keep_model(self, model_id: str) -> bool:
        return model_id.startswith("grok-")
