"""
Cache store protocol.

The operations the tagged cache layer, the coordination primitives and the
tenant directory need from the shared key-value store. ``RedisClient``
satisfies it; the cache is an optimization only, never the source of truth.
"""
from __future__ import annotations

from typing import Any, AsyncIterator, Optional, Protocol


class ICacheStore(Protocol):
    def key(self, *parts: str) -> str: ...

    async def get_json(self, key: str) -> Optional[Any]: ...

    async def set_json(self, key: str, value: Any, ex: Optional[int] = None) -> bool: ...

    async def mget(self, keys: list[str]) -> list[Optional[str]]: ...

    async def delete(self, *keys: str) -> int: ...

    async def exists(self, key: str) -> bool: ...

    async def expire(self, key: str, ttl: int) -> bool: ...

    async def ttl(self, key: str) -> int: ...

    async def incrby(self, key: str, amount: int) -> int: ...

    async def sadd(self, key: str, *members: str) -> int: ...

    def sscan_batches(self, key: str, count: int = 500) -> AsyncIterator[list[str]]: ...

    async def delete_matching(self, pattern: str, count: int = 500) -> int: ...

    async def rename_if_exists(self, src: str, dst: str, ttl_seconds: int) -> bool: ...

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool: ...

    async def compare_and_delete(self, key: str, expected: str) -> bool: ...

    async def compare_and_expire(self, key: str, expected: str, ttl_seconds: int) -> bool: ...

    async def incr_window(self, key: str, window_seconds: int) -> tuple[int, int]: ...

    async def publish(self, channel: str, message: Any) -> int: ...
