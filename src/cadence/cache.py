"""Keyed TTL store with single-flight fetches.

Used for model descriptors, provider model lists and the models.dev map.
Concurrent misses for the same key join one in-flight fetch; failures are
propagated to every waiter and never cached.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import time
from typing import TYPE_CHECKING, Any, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Hashable

K = TypeVar("K", bound="Hashable")
V = TypeVar("V")

#: Model metadata entries live for one hour by default.
DEFAULT_TTL_S = 3600.0


def _consume_future_exception(fut: asyncio.Future[Any]) -> None:
    """Avoid 'Future exception was never retrieved' when nobody joined."""
    if not fut.cancelled():
        fut.exception()


@dataclass
class TTLCache(Generic[K, V]):
    """Time-bounded keyed store.

    Safe for concurrent readers; each key has at most one writer in flight.
    """

    ttl_s: float = DEFAULT_TTL_S
    clock: Callable[[], float] = time.monotonic
    _entries: dict[K, tuple[V, float]] = field(default_factory=dict)
    _inflight: dict[K, asyncio.Future[V]] = field(default_factory=dict)

    def get(self, key: K) -> V | None:
        """Return the cached value if present and unexpired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self.clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: K, value: V) -> None:
        self._entries[key] = (value, self.clock() + max(0.0, self.ttl_s))

    def invalidate(self, key: K | None = None) -> None:
        """Drop one key, or everything when *key* is None."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    async def get_or_fetch(self, key: K, fetch: Callable[[], Awaitable[V]]) -> V:
        """Return the cached value for *key* or compute it exactly once.

        - Cached and fresh: returned immediately.
        - Fetch already in flight: awaits the same future.
        - Otherwise: this caller runs *fetch* and publishes the result.
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        # No await between the lookup and the registration below, so on a
        # single event loop no second creator can slip in.
        pending = self._inflight.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        fut: asyncio.Future[V] = asyncio.get_running_loop().create_future()
        fut.add_done_callback(_consume_future_exception)
        self._inflight[key] = fut
        try:
            value = await fetch()
        except asyncio.CancelledError:
            fut.cancel()
            raise
        except Exception as e:
            fut.set_exception(e)
            raise
        else:
            self.set(key, value)
            fut.set_result(value)
            return value
        finally:
            self._inflight.pop(key, None)
