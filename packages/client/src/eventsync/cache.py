"""Bounded cache — fixed capacity, insertion-order eviction.

Learn: Used for results that are expensive to recompute and never change
for the same input (translations of identical text into the same
language). Two guarantees:

1. len(cache) <= capacity, always. Inserting a NEW key at capacity
   evicts the single oldest-inserted entry first. This is FIFO, not
   LRU — reads do not refresh an entry's position.
2. At most one outstanding fetch per key. resolve() parks concurrent
   callers on the same future instead of issuing a second request.

No TTL: entries leave only by eviction or when the owning connection
is torn down.
"""

import asyncio
import hashlib
from typing import Any, Awaitable, Callable, Hashable, Iterator, Optional

import structlog

logger = structlog.get_logger()

_MISSING = object()


def cache_key(content: str, target: str) -> str:
    """Deterministic key for (source content, target parameter)."""
    digest = hashlib.sha256()
    digest.update(content.encode("utf-8"))
    digest.update(b"\x00")
    digest.update(target.encode("utf-8"))
    return digest.hexdigest()[:32]


class BoundedCache:
    """Key → value store with a hard size limit."""

    def __init__(self, capacity: int = 500, name: str = "cache"):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.name = name
        self.evictions = 0
        self._entries: dict[Hashable, Any] = {}
        self._inflight: dict[Hashable, asyncio.Future] = {}

    # ─── Mapping ────────────────────────────────────────

    def get(self, key: Hashable, default: Any = None) -> Any:
        return self._entries.get(key, default)

    def put(self, key: Hashable, value: Any) -> None:
        """Insert or overwrite. Overwrites keep their original position."""
        if key not in self._entries and len(self._entries) >= self.capacity:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
            self.evictions += 1
            logger.debug("cache.evicted", cache=self.name, size=len(self._entries))
        self._entries[key] = value

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def keys(self) -> Iterator[Hashable]:
        """Keys in insertion order, oldest first."""
        return iter(list(self._entries))

    def clear(self) -> None:
        """Drop every entry. Callers waiting on a fetch get None."""
        self._entries.clear()
        for future in self._inflight.values():
            if not future.done():
                future.set_result(None)
        self._inflight.clear()

    # ─── In-flight deduplication ────────────────────────

    def is_pending(self, key: Hashable) -> bool:
        return key in self._inflight

    @property
    def pending_count(self) -> int:
        return len(self._inflight)

    async def resolve(
        self,
        key: Hashable,
        fetch: Callable[[], Awaitable[Optional[Any]]],
    ) -> Optional[Any]:
        """Return the cached value, or fetch it exactly once.

        `fetch` returns the value to cache, or None for a failed lookup
        (failures are not cached, so a later call may try again).
        """
        value = self._entries.get(key, _MISSING)
        if value is not _MISSING:
            return value

        pending = self._inflight.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            value = await fetch()
        except asyncio.CancelledError:
            # Only the caller that owns the fetch sees the cancellation.
            if not future.done():
                future.set_result(None)
            raise
        except Exception as e:
            if not future.done():
                future.set_exception(e)
                # Mark retrieved so a lone failing fetch doesn't log "never retrieved"
                future.exception()
            raise
        else:
            # A fetch that outlived clear() is not cached.
            if value is not None and self._inflight.get(key) is future:
                self.put(key, value)
            if not future.done():
                future.set_result(value)
            return value
        finally:
            if self._inflight.get(key) is future:
                del self._inflight[key]
