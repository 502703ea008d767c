"""Provider registry and factory.

The registry maps a provider name to its adapter class. The factory resolves
that provider's configuration layers and hands back a configured adapter;
nothing here touches the network.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from aihttp.config import resolve_provider_config
from aihttp.errors import UnknownProviderError
from aihttp.providers._errors import API_KEY_ENV
from aihttp.providers.anthropic import AnthropicAdapter
from aihttp.providers.gemini import GeminiAdapter
from aihttp.providers.grok import GrokAdapter
from aihttp.providers.openai import OpenAIAdapter
from aihttp.providers.openrouter import OpenRouterAdapter

if TYPE_CHECKING:
    from collections.abc import Mapping

    from aihttp.config import ClientConfig, ProviderConfig
    from aihttp.providers.base import VendorAdapter

logger = logging.getLogger(__name__)

ADAPTERS: dict[str, type[Any]] = {
    "openai": OpenAIAdapter,
    "anthropic": AnthropicAdapter,
    "gemini": GeminiAdapter,
    "grok": GrokAdapter,
    "openrouter": OpenRouterAdapter,
}


def provider_names() -> tuple[str, ...]:
    """Registered provider names, in registration order."""
    return tuple(ADAPTERS)


def adapter_class(provider: str) -> type[Any]:
    """Look up the adapter class for *provider*.

    Raises:
        UnknownProviderError: If *provider* is not registered.
    """
    try:
        return ADAPTERS[provider]
    except KeyError:
        raise UnknownProviderError(
            f"Unknown provider: {provider!r}",
            hint=f"Registered providers: {', '.join(ADAPTERS)}.",
        ) from None


class ProviderFactory:
    """Build configured adapters from a ``ClientConfig``."""

    def __init__(self, config: ClientConfig) -> None:
        self._config = config

    def resolve(
        self, provider: str, overrides: Mapping[str, Any] | None = None
    ) -> ProviderConfig:
        """Merge defaults < env < provider config < *overrides* for *provider*."""
        cls = adapter_class(provider)
        return resolve_provider_config(
            provider,
            defaults={"base_url": cls.default_base_url},
            api_key_env=API_KEY_ENV.get(provider),
            provider_config=self._config.provider_layer(provider),
            overrides=overrides,
        )

    def create(
        self, provider: str, overrides: Mapping[str, Any] | None = None
    ) -> VendorAdapter:
        """Construct the adapter for *provider*.

        Raises:
            UnknownProviderError: If *provider* is not registered.
            ConfigurationError: If the merged configuration is invalid.
        """
        adapter: VendorAdapter = adapter_class(provider)(self.resolve(provider, overrides))
        logger.debug("Created %s adapter", provider)
        return adapter

