"""Streaming event normalization.

A :class:`StreamNormalizer` is the single consumer of a
:class:`~cadence.providers.base.ProviderStream`. It translates raw parts into
canonical events and is the only party that decides when a call is done:
``finish`` short-circuits everything else, and usage that has not arrived
within a short bound after ``finish`` is dropped.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from typing import TYPE_CHECKING, Any
import uuid

from cadence.classify import classify_error, log_failure
from cadence.errors import RequestError
from cadence.events import (
    Complete,
    ErrorEvent,
    StreamMetrics,
    StreamStart,
    TextChunk,
    TextStart,
    ThinkingChunk,
    ThinkingComplete,
    ThinkingStart,
    ToolCall,
    UsageUpdate,
)
from cadence.types import ChatCompletionResponse

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from cadence.events import StreamEvent
    from cadence.providers.base import ProviderStream, StreamPart
    from cadence.request import ProviderCallParams
    from cadence.types import ToolInvocation, Usage

logger = logging.getLogger(__name__)

#: Finish reasons that need no attention.
EXPECTED_FINISH_REASONS = frozenset({"stop", "length", "tool-calls"})

_END = object()


class StreamState(enum.Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    FINISHED = "finished"
    FAILED = "failed"
    CANCELLED = "cancelled"


_TERMINAL = frozenset({StreamState.FINISHED, StreamState.FAILED, StreamState.CANCELLED})


def _consume_future_exception(fut: asyncio.Future[Any]) -> None:
    """Avoid 'Future exception was never retrieved' when nobody awaits."""
    if not fut.cancelled():
        fut.exception()


class StreamNormalizer:
    """Single-consumer state machine from raw parts to canonical events.

    ``IDLE -> STREAMING -> FINISHED | FAILED``, or ``CANCELLED`` when the
    caller cancels first. Terminal states are never left.
    """

    def __init__(
        self,
        stream: ProviderStream,
        params: ProviderCallParams,
        *,
        usage_wait_s: float = 0.05,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._stream = stream
        self._params = params
        self._usage_wait_s = usage_wait_s
        self._clock = clock
        self.state = StreamState.IDLE

        loop = asyncio.get_running_loop()
        self.events: asyncio.Queue[object] = asyncio.Queue()
        self.final_response: asyncio.Future[ChatCompletionResponse] = (
            loop.create_future()
        )
        self.final_response.add_done_callback(_consume_future_exception)

        self._text = ""
        self._text_started = False
        self._sequence = 0
        self._thinking_sequence = 0
        self._thinking_started = False
        self._thinking_completed = False
        self._invocations: list[ToolInvocation] = []

        self._started_at = 0.0
        self._first_token_at: float | None = None
        self._first_text_at: float | None = None
        self._first_reasoning_at: float | None = None

    @property
    def terminal(self) -> bool:
        return self.state in _TERMINAL

    # --- Driving ---

    async def run(self) -> None:
        """Consume the provider stream until a terminal state is reached."""
        self._started_at = self._clock()
        self.state = StreamState.STREAMING
        self._stream.start()
        self._emit(
            StreamStart(
                provider=self._params.provider,
                model=self._params.model,
                timestamp=time.time(),
            )
        )
        try:
            async for part in self._stream:
                if await self._handle(part):
                    return
            self._fail(
                RequestError(
                    self._params.provider, "Stream ended without a finish signal"
                )
            )
        except asyncio.CancelledError:
            self.cancel()
            raise
        except Exception as e:
            self._fail(e)
        finally:
            await self._stream.aclose()

    async def _handle(self, part: StreamPart) -> bool:
        """Apply one part; return True once a terminal state is reached."""
        if part.type == "text-delta":
            self._on_text(part.text)
        elif part.type in ("reasoning-start", "reasoning-delta", "reasoning-end"):
            self._on_reasoning(part)
        elif part.type == "tool-call" and part.invocation is not None:
            self._on_tool_call(part.invocation)
        elif part.type == "finish":
            await self._on_finish(part)
            return True
        elif part.type == "error":
            self._fail(
                part.error
                or RequestError(
                    self._params.provider, "Provider reported a stream error"
                )
            )
            return True
        elif part.type == "abort":
            self._fail(
                RequestError(self._params.provider, "Stream aborted before completion")
            )
            return True
        return False

    def cancel(self) -> None:
        """Enter CANCELLED unless already terminal; idempotent."""
        if self.terminal:
            return
        self.state = StreamState.CANCELLED
        self.final_response.cancel()
        self.events.put_nowait(_END)
        logger.debug("Stream for %s cancelled by caller", self._params.provider)

    # --- Part handlers ---

    def _mark_first_token(self, now: float) -> None:
        if self._first_token_at is None:
            self._first_token_at = now

    def _on_text(self, delta: str) -> None:
        if not delta:
            return
        now = self._clock()
        self._mark_first_token(now)
        if not self._text_started:
            self._text_started = True
            self._first_text_at = now
            self._emit(TextStart())
        self._text += delta
        self._sequence += 1
        self._emit(
            TextChunk(delta=delta, accumulated=self._text, sequence=self._sequence)
        )

    def _on_reasoning(self, part: StreamPart) -> None:
        if not self._params.reasoning_enabled:
            return
        if part.type == "reasoning-delta":
            if not part.text:
                return
            now = self._clock()
            self._mark_first_token(now)
            if not self._thinking_started:
                self._thinking_started = True
                self._first_reasoning_at = now
                self._emit(ThinkingStart(provider=self._params.provider))
            self._thinking_sequence += 1
            self._emit(
                ThinkingChunk(content=part.text, sequence=self._thinking_sequence)
            )
        elif part.type == "reasoning-end" and self._thinking_started:
            # Later blocks keep streaming chunks; completion is reported once.
            if self._thinking_completed:
                return
            self._thinking_completed = True
            self._emit(ThinkingComplete(total_tokens=_reasoning_tokens(part)))

    def _on_tool_call(self, invocation: ToolInvocation) -> None:
        if invocation.name in self._params.native_tool_names:
            logger.info(
                "%s executed native tool %s (id=%s); not forwarding it",
                self._params.provider,
                invocation.name,
                invocation.id,
            )
            return
        self._mark_first_token(self._clock())
        self._invocations.append(invocation)
        self._sequence += 1
        self._emit(ToolCall(invocation=invocation, sequence=self._sequence))

    async def _on_finish(self, part: StreamPart) -> None:
        reason = part.finish_reason
        if reason not in EXPECTED_FINISH_REASONS:
            logger.warning(
                "Unexpected finish reason from %s: %r", self._params.provider, reason
            )
        usage = part.total_usage or part.usage
        if usage is None:
            usage = await self._stream.usage(self._usage_wait_s)
        if self.terminal:
            return

        response = ChatCompletionResponse(
            id=f"resp_{uuid.uuid4().hex}",
            model=self._params.model,
            content=self._text,
            tool_invocations=tuple(self._invocations) or None,
            usage=usage,
            tools_disabled=self._params.tools_disabled,
        )
        now = self._clock()
        self.state = StreamState.FINISHED
        if usage is not None:
            self._emit(UsageUpdate(usage=usage))
        self._emit(
            Complete(
                response=response,
                total_duration_ms=(now - self._started_at) * 1000,
                metrics=self._metrics(now, usage),
            )
        )
        self.events.put_nowait(_END)
        self.final_response.set_result(response)

    def _fail(self, raw: object) -> None:
        if self.terminal:
            return
        error = classify_error(raw, self._params.provider)
        log_failure(error, raw, self._params.provider)
        self.state = StreamState.FAILED
        self._emit(ErrorEvent(error=error, recoverable=error.retryable))
        self.events.put_nowait(_END)
        self.final_response.set_exception(error)

    # --- Helpers ---

    def _emit(self, event: StreamEvent) -> None:
        self.events.put_nowait(event)

    def _metrics(self, now: float, usage: Usage | None) -> StreamMetrics:
        def ms(at: float | None) -> float | None:
            return (at - self._started_at) * 1000 if at is not None else None

        first_token_ms = ms(self._first_token_at)
        tokens_per_second = None
        if usage is not None and self._first_token_at is not None:
            elapsed = now - self._first_token_at
            if elapsed > 0 and usage.completion_tokens:
                tokens_per_second = usage.completion_tokens / elapsed
        return StreamMetrics(
            first_token_latency_ms=(
                first_token_ms
                if first_token_ms is not None
                else (now - self._started_at) * 1000
            ),
            first_text_latency_ms=ms(self._first_text_at),
            first_reasoning_latency_ms=ms(self._first_reasoning_at),
            tokens_per_second=tokens_per_second,
            total_tokens=usage.total_tokens if usage is not None else None,
        )


def _reasoning_tokens(part: StreamPart) -> int | None:
    """Prefer aggregate usage over per-step usage for the reasoning count."""
    for usage in (part.total_usage, part.usage):
        if usage is not None and usage.reasoning_tokens is not None:
            return usage.reasoning_tokens
    return None


class StreamingResult:
    """Handle for one streaming call.

    Example:
        result = await service.create_streaming_chat_completion("openai", options)
        async for event in result.events:
            ...
        response = await result.final_response
    """

    def __init__(
        self, normalizer: StreamNormalizer, *, signal: asyncio.Event | None = None
    ) -> None:
        self._normalizer = normalizer
        self._task = asyncio.create_task(normalizer.run())
        self._task.add_done_callback(self._on_done)
        self._watcher: asyncio.Task[None] | None = None
        if signal is not None:
            self._watcher = asyncio.create_task(self._watch(signal))

    @property
    def final_response(self) -> asyncio.Future[ChatCompletionResponse]:
        return self._normalizer.final_response

    @property
    def state(self) -> StreamState:
        return self._normalizer.state

    @property
    def events(self) -> AsyncIterator[StreamEvent]:
        return self._iter_events()

    async def _iter_events(self) -> AsyncIterator[StreamEvent]:
        queue = self._normalizer.events
        while True:
            item = await queue.get()
            if item is _END or self._normalizer.state is StreamState.CANCELLED:
                queue.put_nowait(_END)
                return
            yield item  # type: ignore[misc]

    def cancel(self) -> None:
        """Abort the provider transport and stop event delivery.

        Idempotent, and a no-op once the call has completed or failed.
        """
        if self._normalizer.terminal:
            return
        self._normalizer.cancel()
        self._task.cancel()

    async def _watch(self, signal: asyncio.Event) -> None:
        await signal.wait()
        self.cancel()

    def _on_done(self, _task: asyncio.Task[None]) -> None:
        if self._watcher is not None and not self._watcher.done():
            self._watcher.cancel()

    async def aclose(self) -> None:
        """Cancel if still running and wait for the transport to shut down."""
        self.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
