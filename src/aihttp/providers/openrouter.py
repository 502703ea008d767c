"""OpenRouter chat-completions adapter."""

from __future__ import annotations

from typing import Any, ClassVar

from aihttp.providers._chat_completions import ChatCompletionsAdapter


class OpenRouterAdapter(ChatCompletionsAdapter):
    """OpenRouter proxies many vendors behind the Chat Completions dialect.

    ``HTTP-Referer`` and ``X-Title`` identify the calling application when
    configured.
    """

    name: ClassVar[str] = "openrouter"
    default_base_url: ClassVar[str] = "https://openrouter.ai/api/v1"

    def headers(self) -> dict[str, str]:
        headers = super().headers()
        if self.config.http_referer:
            headers["HTTP-Referer"] = self.config.http_referer
        if self.config.app_title:
            headers["X-Title"] = self.config.app_title
        return headers

    def _apply_reasoning(self, body: dict[str, Any], effort: str) -> None:
        body["reasoning"] = {"effort": effort.strip().lower()}
