"""Configuration: frozen Config with environment fallback for credentials."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
import os
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator

from cadence.catalog import PROVIDERS
from cadence.errors import ConfigurationError

load_dotenv()

#: https://models.dev publishes context/tool/reasoning metadata across vendors.
MODELS_DEV_API_URL = "https://models.dev/api.json"


@dataclass(frozen=True)
class Config:
    """Immutable settings for the orchestrator.

    Credentials resolve in order: ``api_keys`` entry, then the provider's
    environment variable(s). The local Ollama provider needs no credential.

    Example:
        config = Config(api_keys={"openai": "sk-..."})
        config.api_key_for("anthropic")  # falls back to ANTHROPIC_API_KEY
    """

    api_keys: Mapping[str, str] = field(default_factory=dict)
    #: Overrides for each provider's API base URL.
    base_urls: Mapping[str, str] = field(default_factory=dict)
    #: Restrict the registry to these providers; *None* enables all.
    providers: tuple[str, ...] | None = None
    #: External search backend (e.g. "brave"); used instead of native search.
    web_search_provider: str | None = None
    web_search_api_key: str | None = None
    model_cache_ttl_s: float = 3600.0
    metadata_url: str | None = MODELS_DEV_API_URL
    #: Upper bound on waiting for trailing usage data after ``finish``.
    usage_wait_s: float = 0.05
    http_timeout_s: float = 30.0

    def __post_init__(self) -> None:
        """Validate numeric fields and provider names."""
        if self.model_cache_ttl_s < 0:
            raise ConfigurationError(
                "config",
                f"model_cache_ttl_s must be >= 0, got {self.model_cache_ttl_s}",
            )
        if self.usage_wait_s < 0:
            raise ConfigurationError(
                "config", f"usage_wait_s must be >= 0, got {self.usage_wait_s}"
            )
        if self.providers is not None:
            object.__setattr__(self, "providers", tuple(self.providers))
            unknown = [p for p in self.providers if p not in PROVIDERS]
            if unknown:
                raise ConfigurationError(
                    unknown[0],
                    f"Unknown provider(s): {', '.join(unknown)}",
                    hint=f"Supported providers: {', '.join(PROVIDERS)}",
                )

    def api_key_for(self, provider: str) -> str | None:
        """Resolve a credential: explicit config first, then environment."""
        explicit = self.api_keys.get(provider)
        if explicit:
            return explicit
        spec = PROVIDERS.get(provider)
        if spec is None:
            return None
        for env_var in spec.env_vars:
            value = os.environ.get(env_var)
            if value:
                return value
        return None

    @property
    def external_search_configured(self) -> bool:
        """Whether a caller-side search backend has a key."""
        return bool(self.web_search_provider and self.web_search_api_key)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], **overrides: Any) -> Config:
        """Build a Config from an application config mapping.

        Expected shape::

            {"llm": {"openai": {"api_key": "...", "base_url": "..."}},
             "web_search": {"provider": "brave", "brave": {"api_key": "..."}}}
        """
        try:
            settings = _AppSettings.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(
                "config",
                f"Invalid configuration: {e.errors()[0]['msg']}",
                hint="Expected llm.<provider>.api_key and web_search.<provider>.api_key",
            ) from e

        api_keys: dict[str, str] = {}
        base_urls: dict[str, str] = {}
        for name, entry in settings.llm.items():
            if entry.api_key is not None:
                api_keys[name] = entry.api_key.get_secret_value()
            if entry.base_url:
                base_urls[name] = entry.base_url

        search_provider = settings.web_search.provider
        search_key = None
        if search_provider:
            search_entry = settings.web_search.model_extra or {}
            raw = search_entry.get(search_provider)
            if isinstance(raw, Mapping) and raw.get("api_key"):
                search_key = str(raw["api_key"])

        kwargs: dict[str, Any] = {
            "api_keys": api_keys,
            "base_urls": base_urls,
            "web_search_provider": search_provider,
            "web_search_api_key": search_key,
        }
        kwargs.update(overrides)
        return cls(**kwargs)

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        keys = ", ".join(f"{k}=[REDACTED]" for k in sorted(self.api_keys))
        return (
            f"Config(api_keys={{{keys}}}, providers={self.providers!r}, "
            f"web_search_provider={self.web_search_provider!r})"
        )

    __repr__ = __str__


class _ProviderSettings(BaseModel):
    api_key: SecretStr | None = None
    base_url: str | None = None

    @field_validator("api_key", mode="before")
    @classmethod
    def normalize_api_key(cls, v: Any) -> Any:
        """Trim whitespace and map empty strings to None."""
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v


class _WebSearchSettings(BaseModel):
    provider: str | None = None

    model_config = {"extra": "allow"}


class _AppSettings(BaseModel):
    llm: dict[str, _ProviderSettings] = Field(default_factory=dict)
    web_search: _WebSearchSettings = Field(default_factory=_WebSearchSettings)

    model_config = {"extra": "ignore"}
