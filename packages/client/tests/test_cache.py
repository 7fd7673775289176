"""BoundedCache tests — FIFO eviction and single-flight fetches.

Pattern: test_<behavior>_<scenario>
"""

import asyncio

import pytest

from eventsync.cache import BoundedCache, cache_key


def test_capacity_evicts_oldest_inserted():
    cache = BoundedCache(capacity=2)
    cache.put("k1", 1)
    cache.put("k2", 2)
    cache.put("k3", 3)

    assert len(cache) == 2
    assert "k1" not in cache
    assert list(cache.keys()) == ["k2", "k3"]
    assert cache.evictions == 1


def test_overwrite_keeps_position_and_reads_do_not_refresh():
    cache = BoundedCache(capacity=2)
    cache.put("k1", 1)
    cache.put("k2", 2)
    cache.put("k1", 10)
    assert cache.get("k1") == 10  # a read is not a "use"

    cache.put("k3", 3)
    assert "k1" not in cache
    assert cache.get("k2") == 2


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        BoundedCache(capacity=0)


def test_cache_key_is_deterministic_and_target_sensitive():
    assert cache_key("hello", "es") == cache_key("hello", "es")
    assert cache_key("hello", "es") != cache_key("hello", "fr")
    # The separator keeps ("ab", "c") and ("a", "bc") apart.
    assert cache_key("ab", "c") != cache_key("a", "bc")


async def test_resolve_shares_one_fetch_between_concurrent_callers():
    cache = BoundedCache(capacity=10)
    calls = 0
    gate = asyncio.Event()

    async def fetch():
        nonlocal calls
        calls += 1
        await gate.wait()
        return "hola"

    first = asyncio.ensure_future(cache.resolve("k", fetch))
    second = asyncio.ensure_future(cache.resolve("k", fetch))
    await asyncio.sleep(0)
    assert cache.is_pending("k")
    gate.set()

    assert await asyncio.gather(first, second) == ["hola", "hola"]
    assert calls == 1
    assert cache.get("k") == "hola"
    assert cache.pending_count == 0


async def test_resolve_serves_cached_value_without_fetching():
    cache = BoundedCache(capacity=10)
    cache.put("k", "cached")

    async def fetch():
        raise AssertionError("should not fetch")

    assert await cache.resolve("k", fetch) == "cached"


async def test_failed_fetch_is_not_cached():
    cache = BoundedCache(capacity=10)
    results = iter([None, "second try"])

    async def fetch():
        return next(results)

    assert await cache.resolve("k", fetch) is None
    assert "k" not in cache
    assert await cache.resolve("k", fetch) == "second try"


async def test_fetch_exception_reaches_every_waiter():
    cache = BoundedCache(capacity=10)
    gate = asyncio.Event()

    async def fetch():
        await gate.wait()
        raise RuntimeError("boom")

    first = asyncio.ensure_future(cache.resolve("k", fetch))
    second = asyncio.ensure_future(cache.resolve("k", fetch))
    await asyncio.sleep(0)
    gate.set()

    results = await asyncio.gather(first, second, return_exceptions=True)
    assert all(isinstance(r, RuntimeError) for r in results)
    assert not cache.is_pending("k")


def test_clear_drops_entries():
    cache = BoundedCache(capacity=3)
    cache.put("a", 1)
    cache.put("b", 2)
    cache.clear()
    assert len(cache) == 0


async def test_clear_releases_waiters_with_none():
    cache = BoundedCache(capacity=3)
    gate = asyncio.Event()

    async def fetch():
        await gate.wait()
        return "late"

    owner = asyncio.ensure_future(cache.resolve("k", fetch))
    waiter = asyncio.ensure_future(cache.resolve("k", fetch))
    await asyncio.sleep(0)

    cache.clear()
    assert await waiter is None
    gate.set()
    assert await owner == "late"
    assert "k" not in cache


async def test_cancelled_owner_does_not_cancel_waiters():
    cache = BoundedCache(capacity=3)

    async def fetch():
        await asyncio.sleep(10)

    owner = asyncio.ensure_future(cache.resolve("k", fetch))
    waiter = asyncio.ensure_future(cache.resolve("k", fetch))
    await asyncio.sleep(0)

    owner.cancel()
    assert await waiter is None
    assert owner.cancelled()
    assert not cache.is_pending("k")
