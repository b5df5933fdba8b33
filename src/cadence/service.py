"""LLMService: the single entry point for chat completions.

Resolves the provider and model, builds the vendor call, runs it, and makes
sure every failure leaves as exactly one typed :class:`LLMError`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any
import uuid

from cadence.classify import classify_error, log_failure
from cadence.clients import ClientSelector
from cadence.config import Config
from cadence.errors import AuthenticationError, LLMError
from cadence.providers.base import ProviderStream
from cadence.registry import ProviderRegistry
from cadence.request import build_request
from cadence.stream import StreamingResult, StreamNormalizer
from cadence.types import ChatCompletionResponse

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from cadence.clients import ModelClient
    from cadence.options import ChatCompletionOptions
    from cadence.providers.base import ProviderResponse
    from cadence.registry import ProviderHandle
    from cadence.request import ProviderCallParams
    from cadence.types import ProviderDescriptor

logger = logging.getLogger(__name__)


class LLMService:
    """Multi-provider chat completion orchestrator.

    Example:
        service = LLMService(Config(api_keys={"openai": "sk-..."}))
        options = ChatCompletionOptions(
            model="gpt-4o-mini",
            messages=[{"role": "user", "content": "Hello"}],
        )
        response = await service.create_chat_completion("openai", options)
    """

    def __init__(
        self,
        config: Config | None = None,
        *,
        registry: ProviderRegistry | None = None,
        clients: ClientSelector | None = None,
    ) -> None:
        self.config = config or Config()
        self.registry = registry or ProviderRegistry(self.config)
        self.clients = clients or ClientSelector()

    def list_providers(self) -> list[ProviderDescriptor]:
        return self.registry.list_providers()

    async def get_provider(self, name: str) -> ProviderHandle:
        return await self.registry.get_provider(name)

    def supports_native_web_search(self, provider: str) -> bool:
        """Whether the provider can run web searches server-side."""
        spec = self.registry.spec(provider)
        return spec.native_web_search

    async def create_chat_completion(
        self,
        provider: str,
        options: ChatCompletionOptions,
        *,
        signal: asyncio.Event | None = None,
    ) -> ChatCompletionResponse:
        """Run a blocking completion.

        Raises:
            LLMError: Any provider, configuration or transport failure.
            asyncio.CancelledError: *signal* was set before the call finished.
        """
        try:
            client, params = await _until_signalled(
                self._prepare(provider, options), signal
            )
            raw = await _until_signalled(client.complete(params), signal)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise _classified(e, provider) from e
        return _to_response(raw, params)

    async def create_streaming_chat_completion(
        self,
        provider: str,
        options: ChatCompletionOptions,
        *,
        signal: asyncio.Event | None = None,
    ) -> StreamingResult:
        """Start a streaming completion.

        Setup failures (unknown provider or model, missing credential) raise;
        everything after the stream starts arrives as an ``error`` event.
        A *signal* set during setup raises :class:`asyncio.CancelledError`.
        """
        try:
            client, params = await _until_signalled(
                self._prepare(provider, options), signal
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise _classified(e, provider) from e

        normalizer = StreamNormalizer(
            ProviderStream(client.stream(params)),
            params,
            usage_wait_s=self.config.usage_wait_s,
        )
        return StreamingResult(normalizer, signal=signal)

    async def _prepare(
        self, provider: str, options: ChatCompletionOptions
    ) -> tuple[ModelClient, ProviderCallParams]:
        spec = self.registry.spec(provider)
        api_key = self.registry.api_key(provider)
        if spec.requires_api_key and not api_key:
            raise AuthenticationError(
                provider,
                f"{spec.display_name} API key not configured",
                hint=f"Set llm.{provider}.api_key in your config or export "
                f"{spec.env_vars[0] if spec.env_vars else 'the API key'}.",
            )
        model = await self.registry.get_model(provider, options.model)
        params = build_request(
            spec,
            options,
            model,
            external_search_configured=self.config.external_search_configured,
        )
        client = self.clients.get(
            spec,
            options.model,
            api_key=api_key,
            base_url=self.registry.base_url(provider),
        )
        logger.debug(
            "Calling %s model=%s tools_disabled=%s",
            provider,
            options.model,
            params.tools_disabled,
        )
        return client, params

    async def aclose(self) -> None:
        """Close SDK clients and HTTP sessions."""
        await asyncio.gather(self.clients.aclose(), self.registry.aclose())


def _classified(exc: Exception, provider: str) -> LLMError:
    error = classify_error(exc, provider)
    log_failure(error, exc, provider)
    return error


async def _until_signalled(call: Awaitable[Any], signal: asyncio.Event | None) -> Any:
    """Await *call*, cancelling it if *signal* is set first."""
    if signal is None:
        return await call
    task = asyncio.ensure_future(call)
    waiter = asyncio.create_task(signal.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()
    if not task.done():
        task.cancel()
        raise asyncio.CancelledError("request cancelled by signal")
    return task.result()


def _to_response(
    raw: ProviderResponse, params: ProviderCallParams
) -> ChatCompletionResponse:
    invocations = []
    for invocation in raw.tool_invocations:
        if invocation.name in params.native_tool_names:
            logger.info(
                "%s executed native tool %s (id=%s); not forwarding it",
                params.provider,
                invocation.name,
                invocation.id,
            )
            continue
        invocations.append(invocation)
    return ChatCompletionResponse(
        id=raw.response_id or f"resp_{uuid.uuid4().hex}",
        model=params.model,
        content=raw.text,
        tool_invocations=tuple(invocations) or None,
        usage=raw.usage,
        tools_disabled=params.tools_disabled,
    )
