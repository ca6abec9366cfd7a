from uuid import uuid4

import pytest

from storefront_core.cache.tagged_cache import CacheOptions, TaggedCache
from storefront_core.exceptions import StoreUnavailableError


async def test_get_or_set_calls_factory_once(cache):
    calls = []

    async def factory():
        calls.append(1)
        return {"v": 1}

    assert await cache.get_or_set("k", factory) == {"v": 1}
    assert await cache.get_or_set("k", factory) == {"v": 1}
    assert len(calls) == 1


async def test_get_or_set_does_not_cache_none(cache):
    calls = []

    async def factory():
        calls.append(1)
        return None

    assert await cache.get_or_set("missing", factory) is None
    assert await cache.get_or_set("missing", factory) is None
    assert len(calls) == 2


async def test_factory_error_propagates_and_caches_nothing(cache):
    async def boom():
        raise RuntimeError("db down")

    with pytest.raises(RuntimeError):
        await cache.get_or_set("k", boom)
    assert await cache.get("k") is None


async def test_invalidate_tag_removes_all_tagged_keys(cache):
    opts = CacheOptions(tags=("t",))
    await cache.set("k1", 1, opts)
    await cache.set("k2", 2, opts)
    await cache.set("other", 3)

    assert await cache.invalidate_tag("t") == 2
    assert await cache.get("k1") is None
    assert await cache.get("k2") is None
    assert await cache.get("other") == 3
    assert await cache.invalidate_tag("t") == 0


async def test_tag_set_gets_a_ttl(cache, store):
    await cache.set("k", 1, CacheOptions(tags=("t",)))
    ttl = await store.ttl(cache.tag_key("t"))
    assert 0 < ttl <= cache.tag_ttl


async def test_tag_set_outlives_long_lived_members(cache, store):
    week = 7 * 86400
    await cache.set("long", 1, CacheOptions(ttl=week, tags=("t",)))
    # a short-lived entry added later must not shorten the set
    await cache.set("short", 2, CacheOptions(ttl=60, tags=("t",)))
    assert await store.ttl(cache.tag_key("t")) > cache.tag_ttl

    assert await cache.invalidate_tag("t") == 2
    assert await cache.get("long") is None


async def test_tenant_keys_are_namespaced(cache, store):
    a, b = uuid4(), uuid4()
    await cache.set("product:1", "A", CacheOptions(tenant=a))
    await cache.set("product:1", "B", CacheOptions(tenant=b))

    assert await cache.get("product:1", CacheOptions(tenant=a)) == "A"
    assert await cache.get("product:1", CacheOptions(tenant=b)) == "B"
    assert await cache.get("product:1") is None
    assert await store.get(f"t:{a.hex}:product:1") == '"A"'


async def test_tenant_tags_do_not_cross_tenants(cache):
    a, b = uuid4(), uuid4()
    await cache.set("x", 1, CacheOptions(tenant=a, tags=("products",)))
    await cache.set("x", 2, CacheOptions(tenant=b, tags=("products",)))

    await cache.invalidate_tag("products", tenant=a)
    assert await cache.get("x", CacheOptions(tenant=a)) is None
    assert await cache.get("x", CacheOptions(tenant=b)) == 2


async def test_clear_tenant_cache(cache):
    a, b = uuid4(), uuid4()
    for i in range(5):
        await cache.set(f"k{i}", i, CacheOptions(tenant=a))
    await cache.set("k0", "keep", CacheOptions(tenant=b))

    assert await cache.clear_tenant_cache(a) == 5
    assert await cache.get("k0", CacheOptions(tenant=b)) == "keep"


async def test_invalidate_pattern(cache):
    await cache.set("product:1", 1)
    await cache.set("product:2", 2)
    await cache.set("order:1", 3)
    assert await cache.invalidate_pattern("product:*") == 2
    assert await cache.exists("order:1")


async def test_counters_and_bulk(cache):
    assert await cache.increment("views") == 1
    assert await cache.increment("views", 4) == 5
    assert await cache.decrement("views", 2) == 3

    await cache.set_many({"a": 1, "b": {"x": 2}})
    assert await cache.get_many(["a", "b", "c"]) == [1, {"x": 2}, None]


async def test_wrap_uses_key_builder(cache):
    calls = []

    async def load(product_id):
        calls.append(product_id)
        return {"id": product_id}

    cached_load = cache.wrap(load, lambda product_id: f"product:{product_id}")
    assert await cached_load(7) == {"id": 7}
    assert await cached_load(7) == {"id": 7}
    assert calls == [7]


async def test_remember_forever_has_no_ttl(cache, store):
    async def factory():
        return "v"

    assert await cache.remember_forever("forever", factory) == "v"
    assert await store.ttl("forever") == -1


class _DownStore:
    def key(self, *parts):
        return ":".join(parts)

    async def get_json(self, key):
        raise StoreUnavailableError("down")

    async def set_json(self, key, value, ex=None):
        raise StoreUnavailableError("down")

    async def sadd(self, key, *members):
        raise StoreUnavailableError("down")


async def test_get_or_set_degrades_when_store_down():
    cache = TaggedCache(_DownStore())

    async def factory():
        return 42

    assert await cache.get_or_set("k", factory, CacheOptions(tags=("t",))) == 42
    with pytest.raises(StoreUnavailableError):
        await cache.get("k")
