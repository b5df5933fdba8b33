"""Provider adapters, one per wire dialect."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .anthropic import AnthropicAdapter
from .base import ProviderAdapter, ProviderResponse, ProviderStream, StreamPart
from .gemini import GeminiAdapter
from .openai import OpenAIAdapter
from .openai_compat import ChatCompletionsAdapter

if TYPE_CHECKING:
    from cadence.catalog import ProviderSpec


def create_adapter(
    spec: ProviderSpec, api_key: str | None, base_url: str | None
) -> ProviderAdapter:
    """Instantiate the adapter for a provider's wire dialect."""
    if spec.dialect == "openai-responses":
        return OpenAIAdapter(api_key, base_url=base_url)
    if spec.dialect == "anthropic":
        return AnthropicAdapter(api_key, base_url=base_url)
    if spec.dialect == "gemini":
        return GeminiAdapter(api_key, base_url=base_url)
    return ChatCompletionsAdapter(api_key, base_url=base_url, provider=spec.name)


__all__ = [
    "AnthropicAdapter",
    "ChatCompletionsAdapter",
    "GeminiAdapter",
    "OpenAIAdapter",
    "ProviderAdapter",
    "ProviderResponse",
    "ProviderStream",
    "StreamPart",
    "create_adapter",
]
