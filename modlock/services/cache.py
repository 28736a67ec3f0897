"""
查询缓存

按 (平台, 查询类型, 键) 缓存平台查询结果，生命周期为一次解析会话。
并发请求同一个键时只发起一次网络请求。
"""

import asyncio
import copy
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Hashable, Tuple

from loguru import logger

CacheKey = Tuple[str, str, Hashable]


@dataclass
class CacheStats:
    """缓存统计"""

    hits: int = 0
    misses: int = 0
    coalesced: int = 0


class QueryCache:
    """带 TTL 和容量上限的查询缓存，支持请求合并"""

    def __init__(self, ttl: float = 600.0, max_size: int = 512):
        self.ttl = ttl
        self.max_size = max_size
        self.stats = CacheStats()
        self._entries: "OrderedDict[CacheKey, Tuple[float, Any]]" = OrderedDict()
        self._inflight: Dict[CacheKey, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        return self._lookup(key)[0]

    def _lookup(self, key: CacheKey) -> Tuple[bool, Any]:
        entry = self._entries.get(key)
        if entry is None:
            return False, None
        stored_at, value = entry
        if self.ttl and time.monotonic() - stored_at > self.ttl:
            del self._entries[key]
            return False, None
        self._entries.move_to_end(key)
        return True, value

    def _store(self, key: CacheKey, value: Any) -> None:
        self._entries[key] = (time.monotonic(), value)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    async def get_or_fetch(
        self, key: CacheKey, fetch: Callable[[], Awaitable[Any]]
    ) -> Any:
        """
        获取缓存值，未命中时调用 fetch

        fetch 抛出的异常会传递给所有等待者，且不会被缓存。
        返回值是缓存内容的深拷贝，调用方可以随意修改。
        """
        found, value = self._lookup(key)
        if found:
            self.stats.hits += 1
            return copy.deepcopy(value)

        task = self._inflight.get(key)
        if task is None:
            self.stats.misses += 1
            logger.debug(f"[缓存] 未命中 {key}")
            task = asyncio.ensure_future(self._fill(key, fetch))
            self._inflight[key] = task
        else:
            self.stats.coalesced += 1
            logger.debug(f"[缓存] 合并请求 {key}")

        value = await asyncio.shield(task)
        return copy.deepcopy(value)

    async def _fill(self, key: CacheKey, fetch: Callable[[], Awaitable[Any]]) -> Any:
        try:
            value = await fetch()
        finally:
            self._inflight.pop(key, None)
        self._store(key, value)
        return value

    def clear(self) -> None:
        self._entries.clear()
