"""Configuration schema and layered resolution.

Per-provider settings pass through a single Pydantic schema
(``ProviderSettings``) and come out as an immutable ``ProviderConfig``.
Layers are merged in order, last wins::

    library defaults < environment < provider config < per-call overrides

``resolve_provider_config(..., explain=True)`` also returns a source map that
records which layer supplied each field.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import logging
import os
from typing import TYPE_CHECKING, Any, Literal, overload

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic import ValidationError as PydanticValidationError

from aihttp.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 60.0
DEFAULT_MAX_ATTEMPTS = 2
DEFAULT_CONTINUATION_TTL_S = 300.0
ANTHROPIC_VERSION = "2023-06-01"

# --- Schema (Pydantic wall) ---


class ProviderSettings(BaseModel):
    """Single source of truth for per-provider configuration fields."""

    api_key: SecretStr | str | None = Field(default=None)
    model: str | None = Field(default=None)
    base_url: str = Field(min_length=1)
    timeout_s: float = Field(default=DEFAULT_TIMEOUT_S, gt=0)
    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1)

    # Vendor-specific extras
    organization: str | None = Field(default=None)
    http_referer: str | None = Field(default=None)
    app_title: str | None = Field(default=None)
    anthropic_version: str = Field(default=ANTHROPIC_VERSION, min_length=1)
    default_max_tokens: int | None = Field(default=None, ge=1)

    model_config = {"extra": "allow"}  # Preserve unknown keys for extensibility

    @field_validator("api_key", mode="before")
    @classmethod
    def normalize_api_key(cls, v: Any) -> Any:
        """Trim whitespace, map empty to None, wrap in SecretStr."""
        if v is None:
            return None
        if isinstance(v, SecretStr):
            s = v.get_secret_value().strip()
            return SecretStr(s) if s else None
        if isinstance(v, str):
            s = v.strip()
            return SecretStr(s) if s else None
        return v

    @field_validator(
        "model", "organization", "http_referer", "app_title", mode="before"
    )
    @classmethod
    def normalize_optional_text(cls, v: Any) -> Any:
        """Trim surrounding whitespace; empty strings mean unset."""
        if isinstance(v, str):
            s = v.strip()
            return s or None
        return v

    @field_validator("base_url", mode="before")
    @classmethod
    def normalize_base_url(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().rstrip("/")
        return v


# --- Immutable runtime payload ---


@dataclass(frozen=True)
class ProviderConfig:
    """Resolved, validated configuration for one provider."""

    provider: str
    api_key: str | None
    model: str | None
    base_url: str
    timeout_s: float = DEFAULT_TIMEOUT_S
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    organization: str | None = None
    http_referer: str | None = None
    app_title: str | None = None
    anthropic_version: str = ANTHROPIC_VERSION
    default_max_tokens: int | None = None
    api_key_env: str | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    def require_api_key(self) -> str:
        """Return the API key or raise before any network call is made."""
        if self.api_key:
            return self.api_key
        env_hint = f"Set {self.api_key_env} or pass" if self.api_key_env else "Pass"
        raise ConfigurationError(
            f"No API key configured for provider {self.provider!r}",
            hint=f"{env_hint} api_key in the {self.provider!r} provider config.",
        )

    def __str__(self) -> str:
        """String representation with the API key redacted."""
        fields = []
        for name in self.__dataclass_fields__:
            value = getattr(self, name)
            if name == "api_key" and value:
                fields.append(f"{name}='[REDACTED]'")
            elif name == "extra":
                continue
            else:
                fields.append(f"{name}={value!r}")
        return f"ProviderConfig({', '.join(fields)})"

    __repr__ = __str__


@dataclass(frozen=True)
class ClientConfig:
    """Facade-level settings: provider selection and fallback order.

    ``providers`` maps a provider name to its provider-specific config layer
    (plain mappings validated by ``ProviderSettings`` at resolution time).
    """

    default_provider: str = "openai"
    fallback_providers: tuple[str, ...] = ()
    fallback_enabled: bool = False
    providers: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    continuation_ttl_s: float = DEFAULT_CONTINUATION_TTL_S

    def __post_init__(self) -> None:
        """Validate invariants early so misconfiguration fails at construction."""
        if not isinstance(self.default_provider, str) or not self.default_provider:
            raise ConfigurationError(
                "default_provider must be a non-empty string",
                hint="Use one of: openai, anthropic, gemini, grok, openrouter.",
            )
        if isinstance(self.fallback_providers, list):
            object.__setattr__(self, "fallback_providers", tuple(self.fallback_providers))
        if not all(isinstance(p, str) and p for p in self.fallback_providers):
            raise ConfigurationError("fallback_providers must be provider names")
        if self.continuation_ttl_s <= 0:
            raise ConfigurationError("continuation_ttl_s must be > 0")

    def provider_layer(self, provider: str) -> Mapping[str, Any]:
        return self.providers.get(provider, {})


# --- Audit types ---


class Origin(str, Enum):
    """Source origin for configuration field values."""

    DEFAULT = "default"
    ENV = "env"
    PROVIDER = "provider"
    OVERRIDES = "overrides"


@dataclass(frozen=True)
class FieldOrigin:
    """Tracks the origin of one configuration field value."""

    origin: Origin
    env_key: str | None = None


SourceMap = dict[str, FieldOrigin]

_DOTENV_LOADED: bool = False


def _try_load_dotenv() -> None:
    """Load a project ``.env`` file once per process."""
    global _DOTENV_LOADED
    if _DOTENV_LOADED:
        return
    _DOTENV_LOADED = True
    import dotenv

    try:
        dotenv.load_dotenv()
    except OSError as exc:
        logger.debug("Skipping .env file: %s", exc)


def load_env(provider: str, api_key_env: str | None) -> tuple[dict[str, Any], dict[str, str]]:
    """Read the environment layer for *provider*.

    Returns the values and, for each field, the variable it came from.
    """
    prefix = f"AIHTTP_{provider.upper()}_"
    candidates: dict[str, str] = {
        "model": f"{prefix}MODEL",
        "base_url": f"{prefix}BASE_URL",
        "timeout_s": f"{prefix}TIMEOUT_S",
    }
    if api_key_env:
        candidates["api_key"] = api_key_env

    values: dict[str, Any] = {}
    keys: dict[str, str] = {}
    for field_name, env_key in candidates.items():
        raw = os.environ.get(env_key)
        if raw is not None and raw.strip():
            values[field_name] = raw
            keys[field_name] = env_key
    return values, keys


# --- Public resolution API ---


@overload
def resolve_provider_config(
    provider: str,
    *,
    defaults: Mapping[str, Any] | None = ...,
    api_key_env: str | None = ...,
    provider_config: Mapping[str, Any] | None = ...,
    overrides: Mapping[str, Any] | None = ...,
    explain: Literal[True],
) -> tuple[ProviderConfig, SourceMap]: ...


@overload
def resolve_provider_config(
    provider: str,
    *,
    defaults: Mapping[str, Any] | None = ...,
    api_key_env: str | None = ...,
    provider_config: Mapping[str, Any] | None = ...,
    overrides: Mapping[str, Any] | None = ...,
    explain: Literal[False] = ...,
) -> ProviderConfig: ...


def resolve_provider_config(
    provider: str,
    *,
    defaults: Mapping[str, Any] | None = None,
    api_key_env: str | None = None,
    provider_config: Mapping[str, Any] | None = None,
    overrides: Mapping[str, Any] | None = None,
    explain: bool = False,
) -> ProviderConfig | tuple[ProviderConfig, SourceMap]:
    """Resolve configuration for one provider into a ``ProviderConfig``.

    Args:
        provider: Registered provider name.
        defaults: Library defaults for the provider (base URL and the like).
        api_key_env: Environment variable holding the provider's API key.
        provider_config: Provider-specific configuration layer.
        overrides: Per-call overrides; highest precedence.
        explain: If True, also return the source map.

    Raises:
        ConfigurationError: If the merged values fail validation.
    """
    _try_load_dotenv()

    env_values, env_keys = load_env(provider, api_key_env)
    merged, sources = _resolve_layers(
        defaults=defaults or {},
        env=env_values,
        env_keys=env_keys,
        provider_layer=provider_config or {},
        overrides=overrides or {},
    )

    try:
        settings = ProviderSettings.model_validate(merged)
    except PydanticValidationError as e:
        err = e.errors()[0]
        loc = ".".join(str(p) for p in err.get("loc", ()))
        msg = err.get("msg") or "invalid value"
        if msg.startswith("Value error, "):
            msg = msg[13:]
        raise ConfigurationError(
            f"Invalid configuration for provider {provider!r}: {loc}: {msg}",
            hint=f"Check the {loc!r} setting in the {provider!r} provider config.",
        ) from e

    frozen = _freeze(provider, settings, api_key_env)
    logger.debug("Resolved %s", frozen)
    return (frozen, sources) if explain else frozen


# --- Internal helpers ---


def _resolve_layers(
    *,
    defaults: Mapping[str, Any],
    env: Mapping[str, Any],
    env_keys: Mapping[str, str],
    provider_layer: Mapping[str, Any],
    overrides: Mapping[str, Any],
) -> tuple[dict[str, Any], SourceMap]:
    merged: dict[str, Any] = {}
    sources: SourceMap = {}
    layers: tuple[tuple[Origin, Mapping[str, Any]], ...] = (
        (Origin.DEFAULT, defaults),
        (Origin.ENV, env),
        (Origin.PROVIDER, provider_layer),
        (Origin.OVERRIDES, overrides),
    )
    for origin, layer in layers:
        for key, value in layer.items():
            if value is None:
                continue
            merged[key] = value
            sources[key] = FieldOrigin(
                origin=origin,
                env_key=env_keys.get(key) if origin is Origin.ENV else None,
            )
    return merged, sources


def _freeze(
    provider: str, settings: ProviderSettings, api_key_env: str | None
) -> ProviderConfig:
    api_key = settings.api_key
    if isinstance(api_key, SecretStr):
        api_key_value: str | None = api_key.get_secret_value()
    else:
        api_key_value = api_key
    return ProviderConfig(
        provider=provider,
        api_key=api_key_value,
        model=settings.model,
        base_url=settings.base_url,
        timeout_s=settings.timeout_s,
        max_attempts=settings.max_attempts,
        organization=settings.organization,
        http_referer=settings.http_referer,
        app_title=settings.app_title,
        anthropic_version=settings.anthropic_version,
        default_max_tokens=settings.default_max_tokens,
        api_key_env=api_key_env,
        extra=dict(settings.model_extra or {}),
    )
