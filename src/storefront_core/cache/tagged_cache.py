"""
Tagged cache layer over the shared cache store.

Keys:
    <key>                       global entry
    t:<tenant hex>:<key>        tenant entry (same derivation family as schema names)
    [t:<tenant hex>:]tag:<tag>  tag set holding the effective keys tagged <tag>

All of the above are additionally prefixed by the store's environment
namespace, if one is configured.
"""
from __future__ import annotations

import asyncio
import functools
import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, TypeVar
from uuid import uuid4

import structlog

from storefront_core.cache.cache_protocol import ICacheStore
from storefront_core.database.namespaces import TenantId, tenant_cache_prefix
from storefront_core.exceptions import StoreUnavailableError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CacheTTL:
    SHORT = 300
    MEDIUM = 600
    LONG = 3600
    DAY = 86_400
    WEEK = 604_800


@dataclass(frozen=True)
class CacheOptions:
    ttl: Optional[int] = None
    tenant: Optional[TenantId] = None
    tags: tuple[str, ...] = field(default_factory=tuple)

    def with_tenant(self, tenant: Optional[TenantId]) -> "CacheOptions":
        return CacheOptions(ttl=self.ttl, tenant=tenant, tags=self.tags)


_NO_OPTIONS = CacheOptions()


class TaggedCache:
    """Tenant-namespaced JSON cache with tag invalidation and cache-aside helpers."""

    def __init__(
        self,
        store: ICacheStore,
        *,
        default_ttl: int = CacheTTL.MEDIUM,
        tag_ttl: int = CacheTTL.DAY,
    ) -> None:
        self.store = store
        self.default_ttl = default_ttl
        self.tag_ttl = tag_ttl

    # ---------- keys ----------

    def effective_key(self, key: str, tenant: Optional[TenantId] = None) -> str:
        raw = f"{tenant_cache_prefix(tenant)}{key}" if tenant is not None else key
        return self.store.key(raw)

    def tag_key(self, tag: str, tenant: Optional[TenantId] = None) -> str:
        return self.effective_key(f"tag:{tag}", tenant)

    # ---------- basic operations ----------

    async def get(self, key: str, options: CacheOptions = _NO_OPTIONS) -> Optional[Any]:
        return await self.store.get_json(self.effective_key(key, options.tenant))

    async def set(self, key: str, value: Any, options: CacheOptions = _NO_OPTIONS) -> None:
        cache_key = self.effective_key(key, options.tenant)
        ttl = options.ttl or self.default_ttl
        # tag first: a tagged value must never exist outside its tag sets
        if options.tags:
            await self._add_to_tags(cache_key, options.tags, options.tenant, ttl)
        await self.store.set_json(cache_key, value, ex=ttl)

    async def delete(self, key: str, tenant: Optional[TenantId] = None) -> bool:
        return await self.store.delete(self.effective_key(key, tenant)) > 0

    async def exists(self, key: str, tenant: Optional[TenantId] = None) -> bool:
        return await self.store.exists(self.effective_key(key, tenant))

    async def _add_to_tags(
        self,
        cache_key: str,
        tags: Iterable[str],
        tenant: Optional[TenantId],
        entry_ttl: int,
    ) -> None:
        tag_ttl = max(self.tag_ttl, entry_ttl)
        for tag in tags:
            tag_key = self.tag_key(tag, tenant)
            await self.store.sadd(tag_key, cache_key)
            # only ever extended: the set must outlive its longest-lived member
            if await self.store.ttl(tag_key) < tag_ttl:
                await self.store.expire(tag_key, tag_ttl)

    # ---------- cache-aside ----------

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Awaitable[T]],
        options: CacheOptions = _NO_OPTIONS,
    ) -> T:
        """
        Return the cached value or compute, store and return it.

        Factory errors propagate and nothing is cached. ``None`` results are not
        cached. A cache outage on either side degrades to the factory result.
        """
        try:
            cached = await self.get(key, options)
        except StoreUnavailableError:
            logger.warning("Cache read degraded to direct computation", key=key)
            return await factory()
        if cached is not None:
            return cached

        value = await factory()
        if value is not None:
            try:
                await self.set(key, value, options)
            except StoreUnavailableError:
                logger.warning("Cache write skipped, store unavailable", key=key)
        return value

    async def remember_forever(
        self,
        key: str,
        factory: Callable[[], Awaitable[T]],
        tenant: Optional[TenantId] = None,
    ) -> T:
        cache_key = self.effective_key(key, tenant)
        try:
            cached = await self.store.get_json(cache_key)
        except StoreUnavailableError:
            logger.warning("Cache read degraded to direct computation", key=key)
            return await factory()
        if cached is not None:
            return cached

        value = await factory()
        if value is not None:
            try:
                await self.store.set_json(cache_key, value)
            except StoreUnavailableError:
                logger.warning("Cache write skipped, store unavailable", key=key)
        return value

    def wrap(
        self,
        fn: Callable[..., Awaitable[T]],
        key_builder: Callable[..., str],
        options: CacheOptions = _NO_OPTIONS,
    ) -> Callable[..., Awaitable[T]]:
        """Cache-aside decorator: ``key_builder`` receives the same arguments as ``fn``."""

        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await self.get_or_set(key_builder(*args, **kwargs), lambda: fn(*args, **kwargs), options)

        return wrapper

    # ---------- invalidation ----------

    async def invalidate_tag(self, tag: str, tenant: Optional[TenantId] = None) -> int:
        """
        Delete every key tagged ``tag`` and the tag set itself; returns keys removed.

        The tag set is first renamed atomically to a private purge key, so keys
        tagged while the purge runs land in a fresh tag set of their own rather
        than being orphaned in the set being deleted.
        """
        tag_key = self.tag_key(tag, tenant)
        purge_key = f"{tag_key}:purge:{uuid4().hex}"
        if not await self.store.rename_if_exists(tag_key, purge_key, self.tag_ttl):
            return 0

        deleted = 0
        async for batch in self.store.sscan_batches(purge_key):
            deleted += await self.store.delete(*batch)
        await self.store.delete(purge_key)
        logger.debug("Cache tag invalidated", tag=tag, tenant=str(tenant) if tenant else None, deleted=deleted)
        return deleted

    async def invalidate_pattern(self, pattern: str, tenant: Optional[TenantId] = None) -> int:
        return await self.store.delete_matching(self.effective_key(pattern, tenant))

    async def clear_tenant_cache(self, tenant_id: TenantId) -> int:
        deleted = await self.store.delete_matching(self.store.key(tenant_cache_prefix(tenant_id)) + "*")
        logger.info("Tenant cache cleared", tenant_id=str(tenant_id), deleted=deleted)
        return deleted

    # ---------- counters & bulk ----------

    async def increment(self, key: str, amount: int = 1, tenant: Optional[TenantId] = None) -> int:
        return await self.store.incrby(self.effective_key(key, tenant), amount)

    async def decrement(self, key: str, amount: int = 1, tenant: Optional[TenantId] = None) -> int:
        return await self.store.incrby(self.effective_key(key, tenant), -amount)

    async def get_many(self, keys: list[str], tenant: Optional[TenantId] = None) -> list[Optional[Any]]:
        raw_values = await self.store.mget([self.effective_key(k, tenant) for k in keys])
        values: list[Optional[Any]] = []
        for raw in raw_values:
            if raw is None:
                values.append(None)
                continue
            try:
                values.append(json.loads(raw))
            except json.JSONDecodeError:
                values.append(None)
        return values

    async def set_many(self, items: Mapping[str, Any], options: CacheOptions = _NO_OPTIONS) -> None:
        await asyncio.gather(*(self.set(key, value, options) for key, value in items.items()))

    async def warm(
        self,
        keys: Iterable[str],
        factory: Callable[[str], Awaitable[Any]],
        options: CacheOptions = _NO_OPTIONS,
    ) -> None:
        async def _one(key: str) -> None:
            await self.set(key, await factory(key), options)

        await asyncio.gather(*(_one(key) for key in keys))
