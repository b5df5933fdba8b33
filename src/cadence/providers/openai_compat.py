"""OpenAI-compatible Chat Completions provider.

Serves every vendor that exposes ``/chat/completions`` (Mistral, xAI,
DeepSeek, OpenRouter, Groq, Ollama, ...) through the ``openai`` SDK pointed
at the vendor's base URL.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from cadence.errors import ConfigurationError
from cadence.providers.base import ProviderResponse, StreamPart
from cadence.types import ToolInvocation, Usage

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from cadence.request import ProviderCallParams

_FINISH_REASONS = {"tool_calls": "tool-calls", "function_call": "tool-calls"}

#: Placeholder credential for endpoints that accept anonymous calls (Ollama).
_NO_KEY = "not-needed"


@dataclass
class _PendingCall:
    id: str = ""
    name: str = ""
    arguments: str = ""


class ChatCompletionsAdapter:
    """Chat Completions adapter for OpenAI-compatible endpoints."""

    def __init__(
        self,
        api_key: str | None,
        *,
        base_url: str | None = None,
        provider: str = "openai",
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url
        self.provider = provider
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazily initialize and return the OpenAI client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError as e:
                raise ConfigurationError(
                    self.provider,
                    "openai package not installed",
                    hint="uv pip install openai",
                ) from e
            self._client = AsyncOpenAI(
                api_key=self.api_key or _NO_KEY, base_url=self.base_url
            )
        return self._client

    async def complete(self, params: ProviderCallParams) -> ProviderResponse:
        client = self._get_client()
        response = await client.chat.completions.create(**params.payload)
        return _parse_response(response)

    async def stream(self, params: ProviderCallParams) -> AsyncIterator[StreamPart]:
        client = self._get_client()
        chunks = await client.chat.completions.create(
            **params.payload, stream=True, stream_options={"include_usage": True}
        )
        pending: dict[int, _PendingCall] = {}
        in_reasoning = False
        finished = False
        async for chunk in chunks:
            usage = _usage(getattr(chunk, "usage", None))
            choices = getattr(chunk, "choices", None) or []
            if not choices:
                if usage is not None:
                    yield StreamPart("usage", usage=usage)
                continue

            choice = choices[0]
            delta = getattr(choice, "delta", None)
            reasoning = _reasoning_text(delta)
            if reasoning:
                if not in_reasoning:
                    in_reasoning = True
                    yield StreamPart("reasoning-start")
                yield StreamPart("reasoning-delta", text=reasoning)

            content = getattr(delta, "content", None)
            if content:
                if in_reasoning:
                    in_reasoning = False
                    yield StreamPart("reasoning-end")
                yield StreamPart("text-delta", text=content)

            for tc in getattr(delta, "tool_calls", None) or []:
                call = pending.setdefault(getattr(tc, "index", 0) or 0, _PendingCall())
                call.id = getattr(tc, "id", None) or call.id
                fn = getattr(tc, "function", None)
                if fn is not None:
                    call.name = getattr(fn, "name", None) or call.name
                    call.arguments += getattr(fn, "arguments", None) or ""

            finish_reason = getattr(choice, "finish_reason", None)
            if finish_reason and not finished:
                finished = True
                if in_reasoning:
                    in_reasoning = False
                    yield StreamPart("reasoning-end")
                for index in sorted(pending):
                    call = pending[index]
                    yield StreamPart(
                        "tool-call",
                        invocation=ToolInvocation(
                            id=call.id,
                            name=call.name,
                            arguments=call.arguments or "{}",
                        ),
                    )
                pending.clear()
                yield StreamPart(
                    "finish",
                    finish_reason=_FINISH_REASONS.get(finish_reason, finish_reason),
                    usage=usage,
                )
            elif usage is not None:
                yield StreamPart("usage", usage=usage)

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        client = self._client
        if client is None:
            return
        self._client = None
        await client.close()


def _reasoning_text(delta: Any) -> str | None:
    """Vendors put reasoning in ``reasoning_content`` or ``reasoning``."""
    for attr in ("reasoning_content", "reasoning"):
        value = getattr(delta, attr, None)
        if isinstance(value, str) and value:
            return value
    return None


def _usage(raw: Any) -> Usage | None:
    if raw is None:
        return None
    prompt = int(getattr(raw, "prompt_tokens", 0) or 0)
    completion = int(getattr(raw, "completion_tokens", 0) or 0)
    completion_details = getattr(raw, "completion_tokens_details", None)
    prompt_details = getattr(raw, "prompt_tokens_details", None)
    return Usage(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=int(getattr(raw, "total_tokens", 0) or prompt + completion),
        reasoning_tokens=getattr(completion_details, "reasoning_tokens", None),
        cache_read_tokens=getattr(prompt_details, "cached_tokens", None),
    )


def _parse_response(response: Any) -> ProviderResponse:
    """Parse a ChatCompletion into ProviderResponse."""
    choices = getattr(response, "choices", None) or []
    message = getattr(choices[0], "message", None) if choices else None
    invocations = [
        ToolInvocation(
            id=getattr(tc, "id", ""),
            name=tc.function.name,
            arguments=tc.function.arguments or "{}",
        )
        for tc in getattr(message, "tool_calls", None) or []
    ]
    finish_reason = getattr(choices[0], "finish_reason", None) if choices else None
    response_id = getattr(response, "id", None)
    return ProviderResponse(
        text=getattr(message, "content", None) or "",
        tool_invocations=invocations,
        usage=_usage(getattr(response, "usage", None)),
        response_id=response_id if isinstance(response_id, str) else None,
        finish_reason=(
            _FINISH_REASONS.get(finish_reason, finish_reason) if finish_reason else None
        ),
    )
