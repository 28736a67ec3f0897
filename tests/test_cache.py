"""查询缓存测试"""

from __future__ import annotations

import asyncio

import pytest

from modlock.services import QueryCache


class TestQueryCache:
    """缓存命中、请求合并与过期"""

    async def test_concurrent_misses_share_one_fetch(self) -> None:
        cache = QueryCache()
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return {"id": "AANobbMI"}

        key = ("modrinth", "project:id", "AANobbMI")
        results = await asyncio.gather(*(cache.get_or_fetch(key, fetch) for _ in range(5)))

        assert calls == 1
        assert all(r == {"id": "AANobbMI"} for r in results)
        assert cache.stats.misses == 1
        assert cache.stats.coalesced == 4

    async def test_hit_after_fill(self) -> None:
        cache = QueryCache()
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            return None

        key = ("modrinth", "project:slug", "missing")
        assert await cache.get_or_fetch(key, fetch) is None
        assert await cache.get_or_fetch(key, fetch) is None
        assert calls == 1
        assert cache.stats.hits == 1

    async def test_errors_are_not_cached(self) -> None:
        cache = QueryCache()
        attempts = 0

        async def fetch():
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise RuntimeError("boom")
            return "ok"

        key = ("modrinth", "files", "P1")
        with pytest.raises(RuntimeError):
            await cache.get_or_fetch(key, fetch)
        assert await cache.get_or_fetch(key, fetch) == "ok"
        assert attempts == 2

    async def test_returned_values_are_copies(self) -> None:
        cache = QueryCache()

        async def fetch():
            return {"files": []}

        key = ("modrinth", "project:id", "P1")
        first = await cache.get_or_fetch(key, fetch)
        first["files"].append("mutated")
        assert await cache.get_or_fetch(key, fetch) == {"files": []}

    async def test_entries_expire(self) -> None:
        cache = QueryCache(ttl=0.01)

        async def fetch():
            return 1

        key = ("modrinth", "project:id", "P1")
        await cache.get_or_fetch(key, fetch)
        assert key in cache
        await asyncio.sleep(0.03)
        assert key not in cache

    async def test_size_bound_evicts_least_recent(self) -> None:
        cache = QueryCache(max_size=2)

        async def fetch():
            return 1

        a, b, c = (("modrinth", "project:id", k) for k in "abc")
        await cache.get_or_fetch(a, fetch)
        await cache.get_or_fetch(b, fetch)
        await cache.get_or_fetch(a, fetch)
        await cache.get_or_fetch(c, fetch)

        assert a in cache
        assert b not in cache
        assert len(cache) == 2
