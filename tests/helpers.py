"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: registry collaborators that never
touch the network, and shortcuts for wiring a service to a scripted adapter.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from cadence.clients import ClientSelector
from cadence.config import Config
from cadence.providers.base import ProviderStream
from cadence.registry import ProviderRegistry
from cadence.request import ProviderCallParams
from cadence.service import LLMService
from cadence.stream import StreamingResult, StreamNormalizer

if TYPE_CHECKING:
    from cadence.metadata import ModelMetadata
    from cadence.providers.mock import ScriptedAdapter
    from cadence.types import ModelDescriptor


@dataclass
class FakeMetadata:
    """models.dev stand-in returning a fixed map and counting fetches."""

    models: dict[str, ModelMetadata] = field(default_factory=dict)
    calls: int = 0

    async def get_map(self) -> dict[str, ModelMetadata] | None:
        self.calls += 1
        return self.models

    async def aclose(self) -> None:
        return None


@dataclass
class FakeFetcher:
    """Listing-endpoint stand-in keyed by provider name."""

    listings: dict[str, tuple[ModelDescriptor, ...]] = field(default_factory=dict)
    calls: list[str] = field(default_factory=list)
    error: Exception | None = None

    async def fetch_models(
        self,
        provider: str,
        base_url: str,
        listing_path: str,
        *,
        api_key: str | None = None,
        metadata: Any = None,
    ) -> tuple[ModelDescriptor, ...]:
        del base_url, listing_path, api_key, metadata
        self.calls.append(provider)
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.listings.get(provider, ())

    async def aclose(self) -> None:
        return None


def make_params(**overrides: Any) -> ProviderCallParams:
    """ProviderCallParams with test defaults."""
    values: dict[str, Any] = {
        "provider": "openai",
        "dialect": "openai-responses",
        "model": "gpt-4o-mini",
        "payload": {},
    }
    values.update(overrides)
    return ProviderCallParams(**values)


def make_registry(config: Config, **kwargs: Any) -> ProviderRegistry:
    """Registry wired to offline metadata and listing doubles."""
    kwargs.setdefault("metadata", FakeMetadata())
    kwargs.setdefault("fetcher", FakeFetcher())
    return ProviderRegistry(config, **kwargs)


def make_service(
    adapter: ScriptedAdapter, config: Config | None = None, **kwargs: Any
) -> LLMService:
    """LLMService whose every provider call goes to *adapter*."""
    config = config or Config(api_keys={"openai": "sk-test", "anthropic": "sk-ant"})
    return LLMService(
        config,
        registry=make_registry(config, **kwargs),
        clients=ClientSelector(factory=lambda spec, key, url: adapter),
    )


def start_stream(
    adapter: ScriptedAdapter,
    *,
    signal: Any = None,
    usage_wait_s: float = 0.05,
    **params: Any,
) -> StreamingResult:
    """Run the scripted adapter through the real pump and normalizer.

    Must be called from a running event loop.
    """
    call = make_params(**params)
    normalizer = StreamNormalizer(
        ProviderStream(adapter.stream(call)), call, usage_wait_s=usage_wait_s
    )
    return StreamingResult(normalizer, signal=signal)


async def collect(result: StreamingResult) -> list[Any]:
    return [event async for event in result.events]
