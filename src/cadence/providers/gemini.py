"""Gemini provider implementation."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any
import uuid

from cadence.errors import ConfigurationError
from cadence.providers.base import ProviderResponse, StreamPart
from cadence.types import ToolInvocation, Usage

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from cadence.request import ProviderCallParams

_FINISH_REASONS = {"STOP": "stop", "MAX_TOKENS": "length"}


class GeminiAdapter:
    """Google Gemini API adapter."""

    def __init__(self, api_key: str | None, *, base_url: str | None = None) -> None:
        self.api_key = api_key
        self.base_url = base_url
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazy-initialize the Gemini client."""
        if self._client is None:
            try:
                from google import genai
            except ImportError as e:
                raise ConfigurationError(
                    "google",
                    "google-genai package not installed",
                    hint="uv pip install google-genai",
                ) from e
            http_options = {"base_url": self.base_url} if self.base_url else None
            self._client = genai.Client(api_key=self.api_key, http_options=http_options)
        return self._client

    async def complete(self, params: ProviderCallParams) -> ProviderResponse:
        client = self._get_client()
        response = await client.aio.models.generate_content(**params.payload)
        return _parse_response(response)

    async def stream(self, params: ProviderCallParams) -> AsyncIterator[StreamPart]:
        client = self._get_client()
        chunks = await client.aio.models.generate_content_stream(**params.payload)
        in_reasoning = False
        saw_function_call = False
        async for chunk in chunks:
            candidate = _first_candidate(chunk)
            for part in _parts(candidate):
                text = getattr(part, "text", None)
                function_call = getattr(part, "function_call", None)
                if getattr(part, "thought", False) and text:
                    if not in_reasoning:
                        in_reasoning = True
                        yield StreamPart("reasoning-start")
                    yield StreamPart("reasoning-delta", text=text)
                    continue
                if in_reasoning:
                    in_reasoning = False
                    yield StreamPart("reasoning-end")
                if function_call is not None:
                    saw_function_call = True
                    yield StreamPart("tool-call", invocation=_invocation(part))
                elif text:
                    yield StreamPart("text-delta", text=text)

            finish = getattr(candidate, "finish_reason", None)
            if finish is not None:
                if in_reasoning:
                    in_reasoning = False
                    yield StreamPart("reasoning-end")
                yield StreamPart(
                    "finish",
                    finish_reason=_map_finish_reason(finish, saw_function_call),
                    usage=_usage(getattr(chunk, "usage_metadata", None)),
                )
            elif getattr(chunk, "usage_metadata", None) is not None:
                yield StreamPart("usage", usage=_usage(chunk.usage_metadata))

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        client = self._client
        if client is None:
            return
        self._client = None
        aclose = getattr(getattr(client, "aio", None), "aclose", None)
        if aclose is not None:
            await aclose()


def _first_candidate(response: Any) -> Any:
    candidates = getattr(response, "candidates", None)
    return candidates[0] if candidates else None


def _parts(candidate: Any) -> list[Any]:
    content = getattr(candidate, "content", None)
    return list(getattr(content, "parts", None) or [])


def _invocation(part: Any) -> ToolInvocation:
    fc = part.function_call
    # Gemini args are typed as Optional[dict[str, Any]].
    return ToolInvocation(
        id=str(fc.id or f"call_{uuid.uuid4().hex[:8]}"),
        name=str(fc.name),
        arguments=json.dumps(fc.args or {}),
        continuation=getattr(part, "thought_signature", None),
    )


def _map_finish_reason(finish: Any, saw_function_call: bool) -> str:
    name = getattr(finish, "name", None) or str(finish)
    reason = _FINISH_REASONS.get(name.upper(), name.lower())
    if reason == "stop" and saw_function_call:
        return "tool-calls"
    return reason


def _usage(um: Any) -> Usage | None:
    """Gemini SDK attrs to provider-agnostic usage."""
    if um is None:
        return None
    prompt = getattr(um, "prompt_token_count", None) or 0
    completion = getattr(um, "candidates_token_count", None) or 0
    return Usage(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=getattr(um, "total_token_count", None) or prompt + completion,
        reasoning_tokens=getattr(um, "thoughts_token_count", None),
        cache_read_tokens=getattr(um, "cached_content_token_count", None),
    )


def _parse_response(response: Any) -> ProviderResponse:
    """Parse a GenerateContentResponse into ProviderResponse."""
    candidate = _first_candidate(response)
    text_parts: list[str] = []
    invocations: list[ToolInvocation] = []
    for part in _parts(candidate):
        if getattr(part, "thought", False):
            continue
        if getattr(part, "function_call", None) is not None:
            invocations.append(_invocation(part))
        elif getattr(part, "text", None):
            text_parts.append(part.text)

    finish = getattr(candidate, "finish_reason", None)
    response_id = getattr(response, "response_id", None)
    return ProviderResponse(
        text="".join(text_parts),
        tool_invocations=invocations,
        usage=_usage(getattr(response, "usage_metadata", None)),
        response_id=response_id if isinstance(response_id, str) else None,
        finish_reason=(
            _map_finish_reason(finish, bool(invocations))
            if finish is not None
            else None
        ),
    )
