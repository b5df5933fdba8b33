"""Client for the models.dev metadata catalog (~1MB JSON).

Supplies context window, tool-call, reasoning and input-modality metadata for
models across vendors. The catalog is fetched lazily on first use, indexed by
lowercased model id and cached for an hour. Any failure degrades to "no
metadata"; it never fails the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING

import httpx
from pydantic import BaseModel, ValidationError

from cadence.cache import DEFAULT_TTL_S, TTLCache
from cadence.types import DEFAULT_CONTEXT_WINDOW

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

_MAP_KEY = "models.dev"


@dataclass(frozen=True)
class ModelMetadata:
    context_window: int
    supports_tools: bool
    is_reasoning_model: bool
    supports_vision: bool = False
    supports_pdf: bool = False


class _Limit(BaseModel):
    context: int | None = None
    output: int | None = None


class _Modalities(BaseModel):
    input: list[str] = []
    output: list[str] = []


class _ModelEntry(BaseModel):
    limit: _Limit | None = None
    tool_call: bool = False
    reasoning: bool = False
    attachment: bool = False
    modalities: _Modalities | None = None


class _ProviderEntry(BaseModel):
    models: dict[str, _ModelEntry] = {}


def lookup_keys(model_id: str) -> list[str]:
    """Normalized lookup keys: exact lowercase id, then the id before ``:tag``."""
    normalized = model_id.strip().lower()
    keys = [normalized]
    base = normalized.split(":", 1)[0]
    if base and base != normalized:
        keys.append(base)
    return keys


def build_metadata_map(api: Mapping[str, object]) -> dict[str, ModelMetadata]:
    """Flatten the per-provider catalog into one id-indexed map.

    Later providers overwrite earlier ones for duplicate ids; malformed
    provider entries are skipped.
    """
    out: dict[str, ModelMetadata] = {}
    for provider_id, raw in api.items():
        try:
            provider = _ProviderEntry.model_validate(raw)
        except ValidationError:
            logger.debug("Skipping malformed models.dev provider entry %r", provider_id)
            continue
        for model_id, spec in provider.models.items():
            context = spec.limit.context if spec.limit else None
            inputs = spec.modalities.input if spec.modalities else []
            out[model_id.strip().lower()] = ModelMetadata(
                context_window=context if context and context > 0 else DEFAULT_CONTEXT_WINDOW,
                supports_tools=spec.tool_call,
                is_reasoning_model=spec.reasoning,
                supports_vision="image" in inputs,
                supports_pdf="pdf" in inputs,
            )
    return out


def metadata_from_map(
    metadata: Mapping[str, ModelMetadata] | None, model_id: str
) -> ModelMetadata | None:
    """Look up a model, trying the exact id then its base name."""
    if not metadata:
        return None
    for key in lookup_keys(model_id):
        found = metadata.get(key)
        if found is not None:
            return found
    return None


class ModelsDevClient:
    """Lazy, cached access to the models.dev catalog."""

    def __init__(
        self,
        url: str | None,
        *,
        http: httpx.AsyncClient | None = None,
        ttl_s: float = DEFAULT_TTL_S,
        timeout_s: float = 30.0,
    ) -> None:
        self.url = url
        self._http = http
        self._owns_http = http is None
        self._timeout_s = timeout_s
        self._cache: TTLCache[str, dict[str, ModelMetadata]] = TTLCache(ttl_s=ttl_s)

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self._timeout_s)
        return self._http

    async def get_map(self) -> dict[str, ModelMetadata] | None:
        """Return the indexed catalog, or None when it is unavailable."""
        if self.url is None:
            return None
        try:
            return await self._cache.get_or_fetch(_MAP_KEY, self._fetch)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("models.dev metadata unavailable: %s", e)
            return None

    async def lookup(self, model_id: str) -> ModelMetadata | None:
        return metadata_from_map(await self.get_map(), model_id)

    async def _fetch(self) -> dict[str, ModelMetadata]:
        assert self.url is not None
        response = await self._client().get(
            self.url, headers={"Accept": "application/json"}
        )
        response.raise_for_status()
        api = response.json()
        if not isinstance(api, dict):
            raise ValueError("models.dev returned a non-object payload")
        metadata = build_metadata_map(api)
        logger.debug("Loaded models.dev metadata for %d models", len(metadata))
        return metadata

    async def aclose(self) -> None:
        http = self._http
        if http is None or not self._owns_http:
            return
        self._http = None
        await http.aclose()
