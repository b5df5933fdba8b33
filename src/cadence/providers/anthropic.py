"""Anthropic Messages API provider."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
from typing import TYPE_CHECKING, Any

from cadence.errors import ConfigurationError
from cadence.providers.base import ProviderResponse, StreamFailure, StreamPart
from cadence.types import ToolInvocation, Usage

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from cadence.request import ProviderCallParams

_STOP_REASONS = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "max_tokens": "length",
    "tool_use": "tool-calls",
}


class AnthropicAdapter:
    """Anthropic Messages API adapter."""

    def __init__(self, api_key: str | None, *, base_url: str | None = None) -> None:
        self.api_key = api_key
        self.base_url = base_url
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazily initialize and return the async Anthropic client."""
        if self._client is None:
            try:
                from anthropic import AsyncAnthropic
            except ImportError as e:
                raise ConfigurationError(
                    "anthropic",
                    "anthropic package not installed",
                    hint="uv pip install anthropic",
                ) from e
            self._client = AsyncAnthropic(api_key=self.api_key, base_url=self.base_url)
        return self._client

    async def complete(self, params: ProviderCallParams) -> ProviderResponse:
        client = self._get_client()
        response = await client.messages.create(**params.payload)
        return _parse_response(response)

    async def stream(self, params: ProviderCallParams) -> AsyncIterator[StreamPart]:
        client = self._get_client()
        events = await client.messages.create(**params.payload, stream=True)
        state = _StreamState()
        async for event in events:
            for part in state.handle(event):
                yield part

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        client = self._client
        if client is None:
            return
        self._client = None
        await client.close()


@dataclass
class _Block:
    type: str
    id: str = ""
    name: str = ""
    text: str = ""
    signature: str | None = None


@dataclass
class _StreamState:
    """Reassembles content blocks from raw Messages stream events."""

    blocks: dict[int, _Block] = field(default_factory=dict)
    thinking_blocks: list[dict[str, Any]] = field(default_factory=list)
    client_calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read: int | None = None
    cache_write: int | None = None
    stop_reason: str | None = None

    def handle(self, event: Any) -> list[StreamPart]:
        event_type = getattr(event, "type", None)
        if event_type == "message_start":
            self._record_usage(getattr(event.message, "usage", None))
        elif event_type == "content_block_start":
            return self._start(event.index, event.content_block)
        elif event_type == "content_block_delta":
            return self._delta(event.index, event.delta)
        elif event_type == "content_block_stop":
            return self._stop(event.index)
        elif event_type == "message_delta":
            stop_reason = getattr(event.delta, "stop_reason", None)
            self.stop_reason = stop_reason or self.stop_reason
            self._record_usage(getattr(event, "usage", None))
        elif event_type == "message_stop":
            return [
                StreamPart(
                    "finish",
                    finish_reason=_map_stop_reason(self.stop_reason),
                    usage=self.usage(),
                )
            ]
        elif event_type == "error":
            error = getattr(event, "error", None)
            return [
                StreamPart(
                    "error",
                    error=StreamFailure(
                        getattr(error, "message", None) or "Anthropic stream error",
                        code=getattr(error, "type", None),
                    ),
                )
            ]
        return []

    def _start(self, index: int, block: Any) -> list[StreamPart]:
        block_type = getattr(block, "type", "")
        self.blocks[index] = _Block(
            type=block_type,
            id=getattr(block, "id", "") or "",
            name=getattr(block, "name", "") or "",
        )
        if block_type == "thinking":
            return [StreamPart("reasoning-start")]
        if block_type == "redacted_thinking":
            data = getattr(block, "data", None)
            if isinstance(data, str):
                self.thinking_blocks.append({"type": "redacted_thinking", "data": data})
        return []

    def _delta(self, index: int, delta: Any) -> list[StreamPart]:
        block = self.blocks.get(index)
        delta_type = getattr(delta, "type", None)
        if delta_type == "text_delta":
            return [StreamPart("text-delta", text=delta.text)]
        if block is None:
            return []
        if delta_type == "thinking_delta":
            block.text += delta.thinking
            return [StreamPart("reasoning-delta", text=delta.thinking)]
        if delta_type == "signature_delta":
            block.signature = delta.signature
        elif delta_type == "input_json_delta":
            block.text += delta.partial_json
        return []

    def _stop(self, index: int) -> list[StreamPart]:
        block = self.blocks.pop(index, None)
        if block is None:
            return []
        if block.type == "thinking":
            if block.signature is not None:
                self.thinking_blocks.append(
                    {
                        "type": "thinking",
                        "thinking": block.text,
                        "signature": block.signature,
                    }
                )
            return [StreamPart("reasoning-end")]
        if block.type in ("tool_use", "server_tool_use"):
            continuation = None
            if block.type == "tool_use":
                if self.client_calls == 0 and self.thinking_blocks:
                    continuation = list(self.thinking_blocks)
                self.client_calls += 1
            invocation = ToolInvocation(
                id=block.id,
                name=block.name,
                arguments=block.text or "{}",
                continuation=continuation,
            )
            return [StreamPart("tool-call", invocation=invocation)]
        return []

    def _record_usage(self, raw: Any) -> None:
        if raw is None:
            return
        self.input_tokens = getattr(raw, "input_tokens", None) or self.input_tokens
        self.output_tokens = getattr(raw, "output_tokens", None) or self.output_tokens
        self.cache_read = (
            getattr(raw, "cache_read_input_tokens", None) or self.cache_read
        )
        self.cache_write = (
            getattr(raw, "cache_creation_input_tokens", None) or self.cache_write
        )

    def usage(self) -> Usage:
        return Usage(
            prompt_tokens=self.input_tokens,
            completion_tokens=self.output_tokens,
            total_tokens=self.input_tokens + self.output_tokens,
            cache_read_tokens=self.cache_read,
            cache_write_tokens=self.cache_write,
        )


def _map_stop_reason(stop_reason: Any) -> str | None:
    """Map Anthropic stop_reason to the canonical finish reason."""
    if stop_reason is None:
        return None
    reason = str(stop_reason).lower()
    return _STOP_REASONS.get(reason, reason)


def _parse_response(response: Any) -> ProviderResponse:
    """Parse an Anthropic Message response into ProviderResponse."""
    text_parts: list[str] = []
    invocations: list[ToolInvocation] = []
    thinking_blocks: list[dict[str, Any]] = []
    client_calls = 0

    for block in getattr(response, "content", []):
        block_type = getattr(block, "type", None)
        if block_type == "text":
            text_parts.append(getattr(block, "text", ""))
        elif block_type == "thinking":
            thinking = getattr(block, "thinking", "")
            signature = getattr(block, "signature", None)
            if isinstance(thinking, str) and isinstance(signature, str):
                thinking_blocks.append(
                    {"type": "thinking", "thinking": thinking, "signature": signature}
                )
        elif block_type == "redacted_thinking":
            data = getattr(block, "data", None)
            if isinstance(data, str):
                thinking_blocks.append({"type": "redacted_thinking", "data": data})
        elif block_type in ("tool_use", "server_tool_use"):
            is_first_client_call = block_type == "tool_use" and client_calls == 0
            if block_type == "tool_use":
                client_calls += 1
            invocations.append(
                ToolInvocation(
                    id=getattr(block, "id", ""),
                    name=getattr(block, "name", ""),
                    arguments=json.dumps(getattr(block, "input", {}) or {}),
                    continuation=(
                        list(thinking_blocks)
                        if is_first_client_call and thinking_blocks
                        else None
                    ),
                )
            )

    usage = None
    usage_raw = getattr(response, "usage", None)
    if usage_raw is not None:
        input_tokens = int(getattr(usage_raw, "input_tokens", 0) or 0)
        output_tokens = int(getattr(usage_raw, "output_tokens", 0) or 0)
        usage = Usage(
            prompt_tokens=input_tokens,
            completion_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
            cache_read_tokens=getattr(usage_raw, "cache_read_input_tokens", None),
            cache_write_tokens=getattr(usage_raw, "cache_creation_input_tokens", None),
        )

    response_id = getattr(response, "id", None)
    return ProviderResponse(
        text="".join(text_parts),
        tool_invocations=invocations,
        usage=usage,
        response_id=response_id if isinstance(response_id, str) else None,
        finish_reason=_map_stop_reason(getattr(response, "stop_reason", None)),
    )
