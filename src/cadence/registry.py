"""Provider registry and model descriptor resolution."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING

from cadence.cache import TTLCache
from cadence.catalog import GATEWAY_MODEL_IDS, PROVIDERS, ProviderSpec
from cadence.discovery import ModelFetcher, RawModelEntry, resolve_descriptor
from cadence.errors import AuthenticationError, ConfigurationError
from cadence.metadata import ModelMetadata, ModelsDevClient, metadata_from_map
from cadence.types import ModelDescriptor, ProviderDescriptor

if TYPE_CHECKING:
    from collections.abc import Mapping

    from cadence.config import Config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderHandle:
    """A resolved provider as seen by callers."""

    name: str
    display_name: str
    supported_models: tuple[ModelDescriptor, ...]
    default_model: str
    api_key: str | None
    requires_api_key: bool = True

    def authenticate(self) -> None:
        """Raise AuthenticationError when no credential is available."""
        if self.requires_api_key and not self.api_key:
            raise AuthenticationError(
                self.name,
                f"{self.display_name} API key not configured",
                hint=f"Set llm.{self.name}.api_key in your config or export the API key.",
            )


class ProviderRegistry:
    """Enumerates providers, resolves credentials and model descriptors.

    The caches are injected so tests (and long-lived hosts) control their
    lifetime instead of sharing process-wide state.
    """

    def __init__(
        self,
        config: Config,
        *,
        catalog: Mapping[str, ProviderSpec] = PROVIDERS,
        metadata: ModelsDevClient | None = None,
        fetcher: ModelFetcher | None = None,
        model_lists: TTLCache[str, tuple[ModelDescriptor, ...]] | None = None,
        models: TTLCache[tuple[str, str], ModelDescriptor] | None = None,
    ) -> None:
        self.config = config
        self._catalog = catalog
        self._metadata = metadata or ModelsDevClient(
            config.metadata_url,
            ttl_s=config.model_cache_ttl_s,
            timeout_s=config.http_timeout_s,
        )
        self._fetcher = fetcher or ModelFetcher(timeout_s=config.http_timeout_s)
        self._model_lists = model_lists or TTLCache(ttl_s=config.model_cache_ttl_s)
        self._models = models or TTLCache(ttl_s=config.model_cache_ttl_s)

        enabled = config.providers if config.providers is not None else tuple(catalog)
        self._enabled = tuple(p for p in enabled if p in catalog)
        if not any(self.is_configured(p) for p in self._enabled):
            raise ConfigurationError(
                "unknown",
                "No LLM provider is configured.",
                hint="Set llm.<provider>.api_key in your config or export e.g. OPENAI_API_KEY.",
            )

    # --- Providers ---

    def spec(self, provider: str) -> ProviderSpec:
        """Return the catalog entry for an enabled provider."""
        spec = self._catalog.get(provider)
        if spec is None or provider not in self._enabled:
            raise ConfigurationError(
                provider,
                f"Provider not supported: {provider}",
                hint=f"Supported providers: {', '.join(self._enabled)}",
            )
        return spec

    def api_key(self, provider: str) -> str | None:
        return self.config.api_key_for(provider)

    def base_url(self, provider: str) -> str | None:
        override = self.config.base_urls.get(provider)
        if override:
            return override.rstrip("/")
        spec = self._catalog.get(provider)
        return spec.base_url if spec is not None else None

    def is_configured(self, provider: str) -> bool:
        spec = self._catalog.get(provider)
        if spec is None:
            return False
        if not spec.requires_api_key:
            return True
        return bool(self.api_key(provider))

    def list_providers(self) -> list[ProviderDescriptor]:
        return [
            ProviderDescriptor(
                name=name,
                display_name=self._catalog[name].display_name,
                configured=self.is_configured(name),
            )
            for name in self._enabled
        ]

    async def get_provider(self, provider: str) -> ProviderHandle:
        """Resolve a provider with its model list.

        Raises:
            ConfigurationError: Unknown provider or model discovery failure.
        """
        spec = self.spec(provider)
        models = await self.list_models(provider)
        return ProviderHandle(
            name=provider,
            display_name=spec.display_name,
            supported_models=models,
            default_model=models[0].id if models else "",
            api_key=self.api_key(provider),
            requires_api_key=spec.requires_api_key,
        )

    # --- Models ---

    async def list_models(self, provider: str) -> tuple[ModelDescriptor, ...]:
        spec = self.spec(provider)
        return await self._model_lists.get_or_fetch(
            provider, lambda: self._fetch_model_list(spec)
        )

    async def get_model(self, provider: str, model_id: str) -> ModelDescriptor:
        """Resolve one model's descriptor, fetching at most once per TTL.

        Raises:
            ConfigurationError: Unknown provider, or a model that neither the
                provider listing nor models.dev knows.
        """
        self.spec(provider)
        return await self._models.get_or_fetch(
            (provider, model_id), lambda: self._resolve_model(provider, model_id)
        )

    async def _resolve_model(self, provider: str, model_id: str) -> ModelDescriptor:
        for model in await self.list_models(provider):
            if model.id == model_id:
                return model

        metadata = await self._metadata.get_map()
        if metadata_from_map(metadata, model_id) is not None or model_id in GATEWAY_MODEL_IDS:
            return resolve_descriptor(
                RawModelEntry(id=model_id, display_name=model_id), metadata
            )
        raise ConfigurationError(
            provider,
            f"Unknown model {model_id!r} for provider {provider}",
            hint="List available models with get_provider(...).supported_models.",
        )

    async def _fetch_model_list(self, spec: ProviderSpec) -> tuple[ModelDescriptor, ...]:
        metadata = await self._metadata.get_map()
        if not spec.dynamic:
            return tuple(
                _static_descriptor(m.id, m.display_name, m.is_reasoning_model, metadata)
                for m in spec.static_models
            )

        base_url = self.base_url(spec.name)
        if not base_url:
            logger.warning(
                "No base URL configured for %s; model list is empty", spec.name
            )
            return ()
        assert spec.listing_path is not None
        return await self._fetcher.fetch_models(
            spec.name,
            base_url,
            spec.listing_path,
            api_key=self.api_key(spec.name),
            metadata=metadata,
        )

    async def aclose(self) -> None:
        await asyncio.gather(self._metadata.aclose(), self._fetcher.aclose())


def _static_descriptor(
    model_id: str,
    display_name: str,
    is_reasoning_model: bool,
    metadata: Mapping[str, ModelMetadata] | None,
) -> ModelDescriptor:
    """Static entries assume tool support when models.dev has no entry."""
    return resolve_descriptor(
        RawModelEntry(
            id=model_id,
            display_name=display_name,
            supports_tools=True,
            is_reasoning_model=is_reasoning_model,
        ),
        metadata,
    )
