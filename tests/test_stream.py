"""Streaming normalization behavior.

Scripted adapters drive the real pump and normalizer, so every test here
exercises the same path a vendor stream takes: ordering, the single terminal
event, cancellation, and the finish/usage race.
"""

from __future__ import annotations

import asyncio
import logging

import pytest

from cadence.errors import RateLimitError, RequestError
from cadence.events import Complete, ErrorEvent
from cadence.providers.base import StreamFailure, StreamPart
from cadence.providers.mock import ScriptedAdapter
from cadence.stream import StreamState
from cadence.types import ToolInvocation, Usage
from tests.helpers import collect, start_stream

pytestmark = pytest.mark.unit

WEATHER_CALL = ToolInvocation("call_1", "get_weather", '{"city": "Oslo"}')
USAGE = Usage(prompt_tokens=3, completion_tokens=2, total_tokens=5)


def _types(events) -> list[str]:
    return [e.type for e in events]


def _terminals(events) -> list:
    return [e for e in events if isinstance(e, (Complete, ErrorEvent))]


class _SdkError(Exception):
    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


# =============================================================================
# Ordering and completion
# =============================================================================


@pytest.mark.asyncio
async def test_text_and_tool_calls_are_ordered_and_completed() -> None:
    adapter = ScriptedAdapter(
        [
            StreamPart("text-delta", text="Hel"),
            StreamPart("text-delta", text=""),
            StreamPart("text-delta", text="lo"),
            StreamPart("tool-call", invocation=WEATHER_CALL),
            StreamPart("finish", finish_reason="tool-calls", usage=USAGE),
        ]
    )
    result = start_stream(adapter)

    events = await collect(result)

    assert _types(events) == [
        "stream_start",
        "text_start",
        "text_chunk",
        "text_chunk",
        "tool_call",
        "usage_update",
        "complete",
    ]
    assert [e.accumulated for e in events if e.type == "text_chunk"] == ["Hel", "Hello"]
    # Tool calls share the text counter.
    assert [e.sequence for e in events if hasattr(e, "sequence")] == [1, 2, 3]

    complete = events[-1]
    response = await result.final_response
    assert response is complete.response
    assert response.content == "Hello"
    assert response.tool_invocations == (WEATHER_CALL,)
    assert response.usage == USAGE
    assert response.id.startswith("resp_")
    assert result.state is StreamState.FINISHED


@pytest.mark.asyncio
async def test_finish_stops_consumption() -> None:
    adapter = ScriptedAdapter(
        [
            StreamPart("text-delta", text="done"),
            StreamPart("finish", finish_reason="stop"),
            StreamPart("text-delta", text=" and more"),
            StreamPart("abort"),
        ]
    )
    result = start_stream(adapter)

    events = await collect(result)

    assert len(_terminals(events)) == 1
    assert isinstance(events[-1], Complete)
    assert (await result.final_response).content == "done"


@pytest.mark.asyncio
async def test_metrics_describe_the_stream() -> None:
    adapter = ScriptedAdapter(
        [
            StreamPart("text-delta", text="hi"),
            StreamPart("finish", finish_reason="stop", usage=USAGE),
        ]
    )
    events = await collect(start_stream(adapter))

    metrics = events[-1].metrics
    assert metrics.first_text_latency_ms is not None
    assert metrics.first_reasoning_latency_ms is None
    assert metrics.total_tokens == 5
    assert events[-1].total_duration_ms >= metrics.first_token_latency_ms


@pytest.mark.asyncio
async def test_unexpected_finish_reason_is_logged_but_completes(caplog) -> None:
    adapter = ScriptedAdapter([StreamPart("finish", finish_reason="content-filter")])

    with caplog.at_level(logging.WARNING, logger="cadence"):
        events = await collect(start_stream(adapter))

    assert isinstance(events[-1], Complete)
    assert any("Unexpected finish reason" in r.getMessage() for r in caplog.records)


# =============================================================================
# Failures
# =============================================================================


@pytest.mark.asyncio
async def test_error_part_rejects_with_the_same_error() -> None:
    failure = StreamFailure("overloaded", status_code=529)
    adapter = ScriptedAdapter(
        [StreamPart("text-delta", text="par"), StreamPart("error", error=failure)]
    )
    result = start_stream(adapter)

    events = await collect(result)

    terminal = events[-1]
    assert isinstance(terminal, ErrorEvent)
    assert len(_terminals(events)) == 1
    assert isinstance(terminal.error, RequestError)
    assert terminal.error.message == "Server error (529): overloaded"
    with pytest.raises(RequestError) as exc_info:
        await result.final_response
    assert exc_info.value is terminal.error
    assert result.state is StreamState.FAILED


@pytest.mark.asyncio
async def test_raised_exception_becomes_classified_error_event() -> None:
    adapter = ScriptedAdapter(
        [StreamPart("text-delta", text="x"), _SdkError("slow down", 429)]
    )
    result = start_stream(adapter)

    events = await collect(result)

    terminal = events[-1]
    assert isinstance(terminal, ErrorEvent)
    assert isinstance(terminal.error, RateLimitError)
    assert terminal.recoverable is True


@pytest.mark.asyncio
async def test_abort_before_finish_fails() -> None:
    adapter = ScriptedAdapter([StreamPart("text-delta", text="x"), StreamPart("abort")])
    result = start_stream(adapter)

    events = await collect(result)

    assert isinstance(events[-1], ErrorEvent)
    assert events[-1].error.message == "Stream aborted before completion"


@pytest.mark.asyncio
async def test_source_ending_without_finish_fails() -> None:
    adapter = ScriptedAdapter([StreamPart("text-delta", text="x")])
    result = start_stream(adapter)

    events = await collect(result)

    assert isinstance(events[-1], ErrorEvent)
    assert events[-1].error.message == "Stream ended without a finish signal"
    with pytest.raises(RequestError):
        await result.final_response


# =============================================================================
# Cancellation
# =============================================================================


@pytest.mark.asyncio
async def test_cancel_mid_stream_stops_events_and_cancels_response() -> None:
    adapter = ScriptedAdapter(
        [
            StreamPart("text-delta", text="a"),
            StreamPart("text-delta", text="b"),
            StreamPart("finish", finish_reason="stop"),
        ],
        delay_s=0.05,
    )
    result = start_stream(adapter)

    seen = []
    async for event in result.events:
        seen.append(event)
        if event.type == "text_chunk":
            result.cancel()
            result.cancel()
    await result.aclose()

    assert _terminals(seen) == []
    assert result.final_response.cancelled()
    assert result.state is StreamState.CANCELLED


@pytest.mark.asyncio
async def test_cancel_after_complete_is_a_no_op() -> None:
    adapter = ScriptedAdapter([StreamPart("finish", finish_reason="stop")])
    result = start_stream(adapter)
    await collect(result)

    result.cancel()

    assert result.state is StreamState.FINISHED
    assert (await result.final_response).content == ""


@pytest.mark.asyncio
async def test_signal_cancels_the_stream() -> None:
    adapter = ScriptedAdapter(
        [StreamPart("text-delta", text="slow"), StreamPart("finish", finish_reason="stop")],
        delay_s=0.2,
    )
    signal = asyncio.Event()
    result = start_stream(adapter, signal=signal)

    signal.set()
    events = await collect(result)
    await result.aclose()

    assert _terminals(events) == []
    assert result.final_response.cancelled()


# =============================================================================
# Reasoning and tools
# =============================================================================


@pytest.mark.asyncio
async def test_thinking_completes_once_with_aggregate_tokens() -> None:
    adapter = ScriptedAdapter(
        [
            StreamPart("reasoning-start"),
            StreamPart("reasoning-delta", text="hmm"),
            StreamPart("reasoning-delta", text="ok"),
            StreamPart(
                "reasoning-end",
                usage=Usage(reasoning_tokens=5),
                total_usage=Usage(reasoning_tokens=9),
            ),
            StreamPart("text-delta", text="A"),
            StreamPart("finish", finish_reason="stop"),
        ]
    )
    result = start_stream(adapter, reasoning_enabled=True)

    events = await collect(result)

    assert _types(events) == [
        "stream_start",
        "thinking_start",
        "thinking_chunk",
        "thinking_chunk",
        "thinking_complete",
        "text_start",
        "text_chunk",
        "complete",
    ]
    thinking = [e for e in events if e.type == "thinking_chunk"]
    assert [(e.content, e.sequence) for e in thinking] == [("hmm", 1), ("ok", 2)]
    assert events[4].total_tokens == 9
    # Thinking has its own counter; text starts at one.
    assert events[6].sequence == 1


@pytest.mark.asyncio
async def test_later_reasoning_blocks_keep_streaming() -> None:
    adapter = ScriptedAdapter(
        [
            StreamPart("reasoning-delta", text="plan A"),
            StreamPart("reasoning-end"),
            StreamPart("text-delta", text="checking"),
            StreamPart("reasoning-delta", text="plan B"),
            StreamPart("reasoning-end"),
            StreamPart("finish", finish_reason="stop"),
        ]
    )
    events = await collect(start_stream(adapter, reasoning_enabled=True))

    assert _types(events) == [
        "stream_start",
        "thinking_start",
        "thinking_chunk",
        "thinking_complete",
        "text_start",
        "text_chunk",
        "thinking_chunk",
        "complete",
    ]
    thinking = [e for e in events if e.type == "thinking_chunk"]
    assert [(e.content, e.sequence) for e in thinking] == [
        ("plan A", 1),
        ("plan B", 2),
    ]


@pytest.mark.asyncio
async def test_thinking_tokens_fall_back_to_step_usage() -> None:
    adapter = ScriptedAdapter(
        [
            StreamPart("reasoning-delta", text="hmm"),
            StreamPart("reasoning-end", usage=Usage(reasoning_tokens=5)),
            StreamPart("finish", finish_reason="stop"),
        ]
    )
    events = await collect(start_stream(adapter, reasoning_enabled=True))

    complete = next(e for e in events if e.type == "thinking_complete")
    assert complete.total_tokens == 5


@pytest.mark.asyncio
async def test_reasoning_is_ignored_when_not_requested() -> None:
    adapter = ScriptedAdapter(
        [
            StreamPart("reasoning-start"),
            StreamPart("reasoning-delta", text="hidden"),
            StreamPart("reasoning-end"),
            StreamPart("text-delta", text="A"),
            StreamPart("finish", finish_reason="stop"),
        ]
    )
    events = await collect(start_stream(adapter, reasoning_enabled=False))

    assert _types(events) == ["stream_start", "text_start", "text_chunk", "complete"]


@pytest.mark.asyncio
async def test_native_tool_calls_are_not_forwarded(caplog) -> None:
    adapter = ScriptedAdapter(
        [
            StreamPart("tool-call", invocation=ToolInvocation("ws_1", "web_search")),
            StreamPart("text-delta", text="Found it"),
            StreamPart("finish", finish_reason="stop"),
        ]
    )
    result = start_stream(adapter, native_tool_names=frozenset({"web_search"}))

    with caplog.at_level(logging.INFO, logger="cadence"):
        events = await collect(result)

    assert "tool_call" not in _types(events)
    response = await result.final_response
    assert response.tool_invocations is None
    assert any("native tool web_search" in r.getMessage() for r in caplog.records)


# =============================================================================
# Usage race
# =============================================================================


@pytest.mark.asyncio
async def test_trailing_usage_precedes_complete() -> None:
    adapter = ScriptedAdapter(
        [
            StreamPart("text-delta", text="A"),
            StreamPart("finish", finish_reason="stop"),
            StreamPart("usage", usage=USAGE),
        ]
    )
    result = start_stream(adapter, usage_wait_s=1.0)

    events = await collect(result)

    assert _types(events)[-2:] == ["usage_update", "complete"]
    assert events[-2].usage == USAGE
    assert (await result.final_response).usage == USAGE


@pytest.mark.asyncio
async def test_late_usage_is_dropped() -> None:
    adapter = ScriptedAdapter(
        [StreamPart("finish", finish_reason="stop"), StreamPart("usage", usage=USAGE)],
        delay_s=0.2,
    )
    result = start_stream(adapter, usage_wait_s=0.01)

    events = await collect(result)

    assert "usage_update" not in _types(events)
    assert (await result.final_response).usage is None


@pytest.mark.asyncio
async def test_aggregate_usage_on_finish_wins() -> None:
    total = Usage(prompt_tokens=10, completion_tokens=10, total_tokens=20)
    adapter = ScriptedAdapter(
        [StreamPart("finish", finish_reason="stop", usage=USAGE, total_usage=total)]
    )
    result = start_stream(adapter)

    await collect(result)

    assert (await result.final_response).usage == total
