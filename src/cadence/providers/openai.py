"""OpenAI provider over the Responses API."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from cadence.errors import ConfigurationError
from cadence.providers.base import ProviderResponse, StreamFailure, StreamPart
from cadence.types import ToolInvocation, Usage

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from cadence.request import ProviderCallParams

_WEB_SEARCH_CALL = "web_search_call"


class OpenAIAdapter:
    """OpenAI Responses API adapter."""

    def __init__(self, api_key: str | None, *, base_url: str | None = None) -> None:
        self.api_key = api_key
        self.base_url = base_url
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazily initialize and return the OpenAI client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError as e:
                raise ConfigurationError(
                    "openai",
                    "openai package not installed",
                    hint="uv pip install openai",
                ) from e
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    async def complete(self, params: ProviderCallParams) -> ProviderResponse:
        client = self._get_client()
        response = await client.responses.create(**params.payload)
        return _parse_response(response)

    async def stream(self, params: ProviderCallParams) -> AsyncIterator[StreamPart]:
        client = self._get_client()
        events = await client.responses.create(**params.payload, stream=True)
        saw_function_call = False
        in_reasoning = False
        async for event in events:
            event_type = getattr(event, "type", "")
            if event_type == "response.output_text.delta":
                if in_reasoning:
                    in_reasoning = False
                    yield StreamPart("reasoning-end")
                yield StreamPart("text-delta", text=event.delta)
            elif event_type in (
                "response.reasoning_summary_text.delta",
                "response.reasoning_text.delta",
            ):
                if not in_reasoning:
                    in_reasoning = True
                    yield StreamPart("reasoning-start")
                yield StreamPart("reasoning-delta", text=event.delta)
            elif event_type == "response.output_item.done":
                item = event.item
                item_type = getattr(item, "type", None)
                if item_type == "reasoning" and in_reasoning:
                    in_reasoning = False
                    yield StreamPart("reasoning-end")
                invocation = _invocation_from_item(item)
                if invocation is not None:
                    if item_type == "function_call":
                        saw_function_call = True
                    yield StreamPart("tool-call", invocation=invocation)
            elif event_type in ("response.completed", "response.incomplete"):
                response = event.response
                if in_reasoning:
                    in_reasoning = False
                    yield StreamPart("reasoning-end")
                yield StreamPart(
                    "finish",
                    finish_reason=_finish_reason(response, saw_function_call),
                    usage=_usage(getattr(response, "usage", None)),
                )
            elif event_type == "response.failed":
                error = getattr(event.response, "error", None)
                yield StreamPart(
                    "error",
                    error=StreamFailure(
                        getattr(error, "message", None) or "OpenAI response failed",
                        code=getattr(error, "code", None),
                    ),
                )
            elif event_type == "error":
                yield StreamPart(
                    "error",
                    error=StreamFailure(
                        getattr(event, "message", "") or "OpenAI stream error",
                        code=getattr(event, "code", None),
                    ),
                )

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        client = self._client
        if client is None:
            return
        self._client = None
        await client.close()


def _invocation_from_item(item: Any) -> ToolInvocation | None:
    item_type = getattr(item, "type", None)
    if item_type == "function_call":
        return ToolInvocation(
            id=getattr(item, "call_id", None) or getattr(item, "id", ""),
            name=getattr(item, "name", ""),
            arguments=getattr(item, "arguments", None) or "{}",
        )
    if item_type == _WEB_SEARCH_CALL:
        action = getattr(item, "action", None)
        query = getattr(action, "query", None)
        return ToolInvocation(
            id=getattr(item, "id", ""),
            name="web_search",
            arguments=json.dumps({"query": query}) if query else "{}",
        )
    return None


def _finish_reason(response: Any, saw_function_call: bool) -> str:
    details = getattr(response, "incomplete_details", None)
    reason = getattr(details, "reason", None)
    if reason == "max_output_tokens":
        return "length"
    if reason:
        return str(reason)
    return "tool-calls" if saw_function_call else "stop"


def _usage(raw: Any) -> Usage | None:
    if raw is None:
        return None
    input_tokens = int(getattr(raw, "input_tokens", 0) or 0)
    output_tokens = int(getattr(raw, "output_tokens", 0) or 0)
    output_details = getattr(raw, "output_tokens_details", None)
    input_details = getattr(raw, "input_tokens_details", None)
    return Usage(
        prompt_tokens=input_tokens,
        completion_tokens=output_tokens,
        total_tokens=int(
            getattr(raw, "total_tokens", 0) or input_tokens + output_tokens
        ),
        reasoning_tokens=getattr(output_details, "reasoning_tokens", None),
        cache_read_tokens=getattr(input_details, "cached_tokens", None),
    )


def _parse_response(response: Any) -> ProviderResponse:
    """Parse a Responses API result into ProviderResponse."""
    text_parts: list[str] = []
    invocations: list[ToolInvocation] = []
    saw_function_call = False
    for item in getattr(response, "output", None) or []:
        if getattr(item, "type", None) == "message":
            for block in getattr(item, "content", None) or []:
                if getattr(block, "type", None) == "output_text":
                    text_parts.append(getattr(block, "text", ""))
            continue
        invocation = _invocation_from_item(item)
        if invocation is not None:
            saw_function_call = saw_function_call or item.type == "function_call"
            invocations.append(invocation)

    response_id = getattr(response, "id", None)
    return ProviderResponse(
        text="".join(text_parts),
        tool_invocations=invocations,
        usage=_usage(getattr(response, "usage", None)),
        response_id=response_id if isinstance(response_id, str) else None,
        finish_reason=_finish_reason(response, saw_function_call),
    )
