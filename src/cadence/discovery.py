"""Dynamic model discovery from provider listing endpoints.

Each provider only supplies the list of model ids (plus whatever capability
hints its listing carries). Metadata is then resolved in one shared step:
models.dev first, the provider's hints second, defaults last.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import BaseModel, ValidationError

from cadence.errors import ConfigurationError
from cadence.metadata import ModelMetadata, metadata_from_map
from cadence.types import DEFAULT_CONTEXT_WINDOW, ModelDescriptor

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

logger = logging.getLogger(__name__)

#: Bound on concurrent Ollama ``/api/show`` requests.
OLLAMA_DETAIL_CONCURRENCY = 5

_TOOL_PARAMS = frozenset(
    {"tools", "tool_choice", "function_call", "functions", "response_format:json_schema"}
)


@dataclass(frozen=True)
class RawModelEntry:
    """A listed model before metadata resolution."""

    id: str
    display_name: str
    context_window: int | None = None
    supports_tools: bool | None = None
    is_reasoning_model: bool | None = None
    supports_vision: bool | None = None


def resolve_descriptor(
    entry: RawModelEntry, metadata: Mapping[str, ModelMetadata] | None
) -> ModelDescriptor:
    """Resolve a listed model: models.dev, then listing hints, then defaults."""
    dev = metadata_from_map(metadata, entry.id)
    if dev is not None:
        return ModelDescriptor(
            id=entry.id,
            display_name=entry.display_name,
            context_window=dev.context_window,
            supports_tools=dev.supports_tools,
            is_reasoning_model=dev.is_reasoning_model,
            supports_vision=dev.supports_vision,
            supports_pdf=dev.supports_pdf,
        )
    return ModelDescriptor(
        id=entry.id,
        display_name=entry.display_name,
        context_window=entry.context_window or DEFAULT_CONTEXT_WINDOW,
        supports_tools=bool(entry.supports_tools),
        is_reasoning_model=bool(entry.is_reasoning_model),
        supports_vision=bool(entry.supports_vision),
    )


# --- Listing payloads ---


class _OpenRouterArchitecture(BaseModel):
    input_modalities: list[str] = []


class _OpenRouterModel(BaseModel):
    id: str
    name: str | None = None
    context_length: int | None = None
    supported_parameters: list[str] = []
    architecture: _OpenRouterArchitecture | None = None


class _GatewayModel(BaseModel):
    id: str
    name: str | None = None
    context_window: int | None = None
    tags: list[str] = []


class _OpenAIListedModel(BaseModel):
    id: str
    owned_by: str | None = None
    display_name: str | None = None
    context_window: int | None = None
    context_length: int | None = None


class _OllamaDetails(BaseModel):
    family: str | None = None
    metadata: dict[str, Any] = {}


class _OllamaModel(BaseModel):
    name: str
    details: _OllamaDetails | None = None


def _data_list(payload: Any) -> list[Any]:
    """Listing endpoints return either ``{"data": [...]}`` or a bare list."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict) and isinstance(payload.get("data"), list):
        return payload["data"]
    raise ValueError("unexpected listing payload shape")


def _extract_openrouter(payload: Any) -> list[RawModelEntry]:
    entries = []
    for raw in _data_list(payload):
        model = _OpenRouterModel.model_validate(raw)
        params = set(model.supported_parameters)
        modalities = model.architecture.input_modalities if model.architecture else []
        entries.append(
            RawModelEntry(
                id=model.id,
                display_name=model.name or model.id,
                context_window=model.context_length,
                supports_tools=bool(params & _TOOL_PARAMS),
                is_reasoning_model="reasoning" in params or "include_reasoning" in params,
                supports_vision="image" in modalities,
            )
        )
    return entries


def _extract_gateway(payload: Any) -> list[RawModelEntry]:
    entries = []
    for raw in _data_list(payload):
        model = _GatewayModel.model_validate(raw)
        entries.append(
            RawModelEntry(
                id=model.id,
                display_name=model.name or model.id,
                context_window=model.context_window,
                supports_tools="tool-use" in model.tags,
                is_reasoning_model="reasoning" in model.tags,
                supports_vision="vision" in model.tags,
            )
        )
    return entries


def _extract_openai_style(payload: Any) -> list[RawModelEntry]:
    entries = []
    for raw in _data_list(payload):
        model = _OpenAIListedModel.model_validate(raw)
        if model.display_name:
            name = model.display_name
        elif model.owned_by:
            name = f"{model.owned_by.lower()}/{model.id.lower()}"
        else:
            name = model.id
        entries.append(
            RawModelEntry(
                id=model.id,
                display_name=name,
                context_window=model.context_window or model.context_length,
            )
        )
    return entries


_LIST_EXTRACTORS: dict[str, Callable[[Any], list[RawModelEntry]]] = {
    "openrouter": _extract_openrouter,
    "ai_gateway": _extract_gateway,
    "groq": _extract_openai_style,
    "cerebras": _extract_openai_style,
    "togetherai": _extract_openai_style,
    "fireworks": _extract_openai_style,
}


def _ollama_context_length(model_info: Any) -> int | None:
    """Ollama keys the context length as ``<family>.context_length``."""
    if not isinstance(model_info, dict):
        return None
    for key, value in model_info.items():
        if key.endswith(".context_length") and isinstance(value, int):
            return value
    return None


def _ollama_tool_flag(model: _OllamaModel) -> bool:
    metadata = model.details.metadata if model.details else {}
    flag = (
        metadata.get("supports_tools")
        or metadata.get("tool_use")
        or metadata.get("function_calling")
    )
    return flag is True


def _ollama_root(base_url: str) -> str:
    """Native Ollama endpoints live beside the OpenAI-compatible ``/v1`` prefix."""
    root = base_url.rstrip("/")
    for suffix in ("/v1", "/api"):
        if root.endswith(suffix):
            return root[: -len(suffix)]
    return root


class ModelFetcher:
    """Lists models from provider endpoints over HTTP."""

    def __init__(
        self, *, http: httpx.AsyncClient | None = None, timeout_s: float = 30.0
    ) -> None:
        self._http = http
        self._owns_http = http is None
        self._timeout_s = timeout_s

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self._timeout_s)
        return self._http

    async def fetch_models(
        self,
        provider: str,
        base_url: str,
        listing_path: str,
        *,
        api_key: str | None = None,
        metadata: Mapping[str, ModelMetadata] | None = None,
    ) -> tuple[ModelDescriptor, ...]:
        """Fetch and resolve a provider's model list.

        Raises:
            ConfigurationError: Listing failed or returned an unusable payload.
        """
        try:
            if provider == "ollama":
                return await self._fetch_ollama(_ollama_root(base_url), listing_path, metadata)

            extractor = _LIST_EXTRACTORS.get(provider)
            if extractor is None:
                raise ValueError(f"No list extractor found for provider: {provider}")
            payload = await self._get_json(f"{base_url}{listing_path}", api_key)
            return tuple(resolve_descriptor(e, metadata) for e in extractor(payload))
        except asyncio.CancelledError:
            raise
        except (httpx.HTTPError, ValidationError, ValueError) as e:
            raise ConfigurationError(
                provider, f"Model discovery failed: {e}"
            ) from e

    async def _get_json(self, url: str, api_key: str | None) -> Any:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        response = await self._client().get(url, headers=headers)
        response.raise_for_status()
        return response.json()

    async def _fetch_ollama(
        self,
        root: str,
        listing_path: str,
        metadata: Mapping[str, ModelMetadata] | None,
    ) -> tuple[ModelDescriptor, ...]:
        response = await self._client().get(f"{root}{listing_path}")
        if response.status_code == 404:
            raise ValueError("No models found. Pull a model using `ollama pull` first.")
        response.raise_for_status()
        payload = response.json()
        raw_models = payload.get("models", []) if isinstance(payload, dict) else []
        models = [_OllamaModel.model_validate(m) for m in raw_models]

        semaphore = asyncio.Semaphore(OLLAMA_DETAIL_CONCURRENCY)

        async def resolve(model: _OllamaModel) -> ModelDescriptor:
            entry = RawModelEntry(id=model.name, display_name=model.name)
            if metadata_from_map(metadata, model.name) is not None:
                return resolve_descriptor(entry, metadata)
            async with semaphore:
                context = await self._ollama_context_window(root, model.name)
            # Only models.dev knows reasoning support; Ollama manifests do not.
            entry = RawModelEntry(
                id=model.name,
                display_name=model.name,
                context_window=context,
                supports_tools=_ollama_tool_flag(model),
                is_reasoning_model=False,
            )
            return resolve_descriptor(entry, None)

        return tuple(await asyncio.gather(*(resolve(m) for m in models)))

    async def _ollama_context_window(self, root: str, model_name: str) -> int | None:
        """Best-effort ``/api/show`` lookup; failures mean "unknown"."""
        try:
            response = await self._client().post(
                f"{root}/api/show", json={"model": model_name}
            )
            if response.status_code != 200:
                return None
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.debug("Ollama /api/show failed for %s: %s", model_name, e)
            return None
        return _ollama_context_length(data.get("model_info") if isinstance(data, dict) else None)

    async def aclose(self) -> None:
        http = self._http
        if http is None or not self._owns_http:
            return
        self._http = None
        await http.aclose()
