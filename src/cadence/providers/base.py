"""Provider protocol and the raw stream shared by all adapters."""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field
import logging
from typing import TYPE_CHECKING, Literal, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from cadence.request import ProviderCallParams
    from cadence.types import ToolInvocation, Usage

logger = logging.getLogger(__name__)

StreamPartType = Literal[
    "text-delta",
    "reasoning-start",
    "reasoning-delta",
    "reasoning-end",
    "tool-call",
    "finish",
    "error",
    "abort",
    "usage",
    "other",
]


class StreamFailure(Exception):
    """An error reported inside a vendor stream rather than raised by the SDK."""

    def __init__(
        self, message: str, *, status_code: int | None = None, code: str | None = None
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


@dataclass(frozen=True)
class StreamPart:
    """One vendor stream item, translated but not yet normalized."""

    type: StreamPartType
    text: str = ""
    invocation: ToolInvocation | None = None
    finish_reason: str | None = None
    usage: Usage | None = None
    #: Aggregate usage across steps, when the vendor reports it separately.
    total_usage: Usage | None = None
    error: BaseException | None = None


@dataclass
class ProviderResponse:
    """A standardized response from a blocking provider call."""

    text: str = ""
    tool_invocations: list[ToolInvocation] = field(default_factory=list)
    usage: Usage | None = None
    response_id: str | None = None
    finish_reason: str | None = None


@runtime_checkable
class ProviderAdapter(Protocol):
    """Minimal adapter protocol: one blocking call, one streaming call."""

    async def complete(self, params: ProviderCallParams) -> ProviderResponse:
        """Run a blocking completion."""
        ...

    def stream(self, params: ProviderCallParams) -> AsyncIterator[StreamPart]:
        """Yield raw stream parts for a streaming completion."""
        ...

    async def aclose(self) -> None:
        """Release SDK client resources."""
        ...


_EOF = object()


class ProviderStream:
    """Pumps an adapter's part iterator on a background task.

    Parts are queued for a single consumer. ``usage`` parts are diverted to a
    future so usage can still arrive after the consumer has seen ``finish``.
    Any exception from the source is delivered as one ``error`` part.
    """

    def __init__(self, source: AsyncIterator[StreamPart]) -> None:
        self._source = source
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._usage: asyncio.Future[Usage | None] = (
            asyncio.get_running_loop().create_future()
        )
        self._task: asyncio.Task[None] | None = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._pump())

    async def _pump(self) -> None:
        try:
            async for part in self._source:
                if part.type == "usage":
                    if part.usage is not None and not self._usage.done():
                        self._usage.set_result(part.usage)
                    continue
                self._queue.put_nowait(part)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._queue.put_nowait(StreamPart("error", error=e))
        finally:
            if not self._usage.done():
                self._usage.set_result(None)
            self._queue.put_nowait(_EOF)
            aclose = getattr(self._source, "aclose", None)
            if aclose is not None:
                with contextlib.suppress(Exception):
                    await aclose()

    def __aiter__(self) -> ProviderStream:
        return self

    async def __anext__(self) -> StreamPart:
        item = await self._queue.get()
        if item is _EOF:
            # Keep the sentinel for any later reads.
            self._queue.put_nowait(_EOF)
            raise StopAsyncIteration
        assert isinstance(item, StreamPart)
        return item

    async def usage(self, timeout_s: float) -> Usage | None:
        """Wait at most *timeout_s* for trailing usage; late usage is dropped."""
        try:
            return await asyncio.wait_for(asyncio.shield(self._usage), timeout_s)
        except TimeoutError:
            logger.debug(
                "Usage not available within %.3fs; completing without it", timeout_s
            )
            return None

    async def abort(self) -> None:
        """Stop the transport; safe to call more than once."""
        task = self._task
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    aclose = abort
