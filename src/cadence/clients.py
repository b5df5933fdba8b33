"""Per-provider, per-model client handles."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING

from cadence.providers import create_adapter

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, MutableMapping

    from cadence.catalog import ProviderSpec
    from cadence.providers.base import ProviderAdapter, ProviderResponse, StreamPart
    from cadence.request import ProviderCallParams

    AdapterFactory = Callable[[ProviderSpec, str | None, str | None], ProviderAdapter]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelClient:
    """A provider adapter bound to one model."""

    provider: str
    model: str
    adapter: ProviderAdapter

    async def complete(self, params: ProviderCallParams) -> ProviderResponse:
        return await self.adapter.complete(params)

    def stream(self, params: ProviderCallParams) -> AsyncIterator[StreamPart]:
        return self.adapter.stream(params)


class ClientSelector:
    """Creates and caches model clients keyed by ``(provider, model)``.

    Clients for the same provider share one adapter (and so one SDK client),
    since vendor SDK clients are not model-specific.
    """

    def __init__(
        self,
        *,
        factory: AdapterFactory = create_adapter,
        clients: MutableMapping[tuple[str, str], ModelClient] | None = None,
    ) -> None:
        self._factory = factory
        self._clients = clients if clients is not None else {}
        self._adapters: dict[str, ProviderAdapter] = {}

    def get(
        self,
        spec: ProviderSpec,
        model: str,
        *,
        api_key: str | None,
        base_url: str | None,
    ) -> ModelClient:
        key = (spec.name, model)
        client = self._clients.get(key)
        if client is not None:
            return client
        adapter = self._adapters.get(spec.name)
        if adapter is None:
            adapter = self._factory(spec, api_key, base_url)
            self._adapters[spec.name] = adapter
            logger.debug("Created %s adapter for %s", spec.dialect, spec.name)
        client = ModelClient(provider=spec.name, model=model, adapter=adapter)
        self._clients[key] = client
        return client

    async def aclose(self) -> None:
        adapters = list(self._adapters.values())
        self._adapters.clear()
        self._clients.clear()
        await asyncio.gather(*(a.aclose() for a in adapters))
