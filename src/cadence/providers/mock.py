"""Scripted provider for testing without API calls."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from cadence.providers.base import ProviderResponse, StreamPart

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from cadence.request import ProviderCallParams


class ScriptedAdapter:
    """Replays canned stream parts and returns a canned response.

    ``parts`` may contain exceptions, which are raised at that point in the
    stream. ``delay_s`` pauses before every part so tests can cancel
    mid-stream. Every call's params are recorded in ``calls``.
    """

    def __init__(
        self,
        parts: Sequence[StreamPart | BaseException] = (),
        *,
        response: ProviderResponse | BaseException | None = None,
        delay_s: float = 0.0,
    ) -> None:
        self.parts = list(parts)
        self.response = response
        self.delay_s = delay_s
        self.calls: list[ProviderCallParams] = []
        self.closed = False

    async def complete(self, params: ProviderCallParams) -> ProviderResponse:
        self.calls.append(params)
        if isinstance(self.response, BaseException):
            raise self.response
        if self.response is None:
            return ProviderResponse(text="echo", finish_reason="stop")
        return self.response

    async def stream(self, params: ProviderCallParams) -> AsyncIterator[StreamPart]:
        self.calls.append(params)
        for part in self.parts:
            if self.delay_s:
                await asyncio.sleep(self.delay_s)
            if isinstance(part, BaseException):
                raise part
            yield part

    async def aclose(self) -> None:
        self.closed = True
