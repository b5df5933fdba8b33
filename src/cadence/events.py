"""Canonical streaming events.

Every streaming call yields a strictly ordered sequence of these events,
ending with exactly one :class:`Complete` or :class:`ErrorEvent` unless the
caller cancels first.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal, TypeAlias

if TYPE_CHECKING:
    from cadence.errors import LLMError
    from cadence.types import ChatCompletionResponse, ToolInvocation, Usage


@dataclass(frozen=True)
class StreamStart:
    provider: str
    model: str
    timestamp: float
    type: Literal["stream_start"] = field(default="stream_start", init=False)


@dataclass(frozen=True)
class TextStart:
    type: Literal["text_start"] = field(default="text_start", init=False)


@dataclass(frozen=True)
class TextChunk:
    delta: str
    accumulated: str
    sequence: int
    type: Literal["text_chunk"] = field(default="text_chunk", init=False)


@dataclass(frozen=True)
class ThinkingStart:
    provider: str
    type: Literal["thinking_start"] = field(default="thinking_start", init=False)


@dataclass(frozen=True)
class ThinkingChunk:
    content: str
    sequence: int
    type: Literal["thinking_chunk"] = field(default="thinking_chunk", init=False)


@dataclass(frozen=True)
class ThinkingComplete:
    total_tokens: int | None = None
    type: Literal["thinking_complete"] = field(default="thinking_complete", init=False)


@dataclass(frozen=True)
class ToolCall:
    invocation: ToolInvocation
    sequence: int
    type: Literal["tool_call"] = field(default="tool_call", init=False)


@dataclass(frozen=True)
class UsageUpdate:
    usage: Usage
    type: Literal["usage_update"] = field(default="usage_update", init=False)


@dataclass(frozen=True)
class StreamMetrics:
    """Latency and throughput figures attached to :class:`Complete`."""

    first_token_latency_ms: float
    first_text_latency_ms: float | None = None
    first_reasoning_latency_ms: float | None = None
    tokens_per_second: float | None = None
    total_tokens: int | None = None


@dataclass(frozen=True)
class Complete:
    response: ChatCompletionResponse
    total_duration_ms: float
    metrics: StreamMetrics | None = None
    type: Literal["complete"] = field(default="complete", init=False)


@dataclass(frozen=True)
class ErrorEvent:
    error: LLMError
    recoverable: bool = False
    type: Literal["error"] = field(default="error", init=False)


StreamEvent: TypeAlias = (
    StreamStart
    | TextStart
    | TextChunk
    | ThinkingStart
    | ThinkingChunk
    | ThinkingComplete
    | ToolCall
    | UsageUpdate
    | Complete
    | ErrorEvent
)
