import fakeredis
import pytest

from storefront_core.exceptions import InternalServerError, StoreUnavailableError
from storefront_core.redis import RedisClient


async def test_namespace_prefix():
    client = RedisClient(namespace="prod:storefront:", client=fakeredis.aioredis.FakeRedis(decode_responses=True))
    assert client.key("lock", "x") == "prod:storefront:lock:x"
    assert RedisClient().key("a") == "a"


async def test_json_helpers(store):
    await store.set_json("j", {"n": 1, "tags": ["a"]}, ex=60)
    assert await store.get_json("j") == {"n": 1, "tags": ["a"]}
    await store.set("raw", "not json")
    assert await store.get_json("raw") is None


async def test_delete_is_idempotent(store):
    await store.set("a", "1")
    assert await store.delete("a", "b") == 1
    assert await store.delete("a") == 0
    assert await store.delete() == 0


async def test_scan_keys_uses_cursor(store):
    for i in range(25):
        await store.set(f"scan:{i}", i)
    keys = [k async for k in store.scan_keys("scan:*", count=5)]
    assert sorted(keys) == sorted(f"scan:{i}" for i in range(25))


async def test_wrong_type_is_internal_error(store):
    await store.sadd("a-set", "x")
    with pytest.raises(InternalServerError):
        await store.incr("a-set")


async def test_scripts_reload_after_flush(store):
    await store.redis.script_flush()
    count, ttl = await store.incr_window("w", 30)
    assert (count, ttl) == (1, 30)


async def test_set_if_absent_and_compare_and_delete(store):
    assert await store.set_if_absent("k", "owner-a", 30)
    assert not await store.set_if_absent("k", "owner-b", 30)
    assert not await store.compare_and_delete("k", "owner-b")
    assert await store.compare_and_delete("k", "owner-a")


async def test_rename_if_exists(store):
    assert not await store.rename_if_exists("src", "dst", 60)
    await store.sadd("src", "a", "b")
    assert await store.rename_if_exists("src", "dst", 60)
    assert await store.smembers("dst") == {"a", "b"}
    assert not await store.exists("src")


async def test_unreachable_server_is_store_unavailable():
    client = RedisClient("redis://127.0.0.1:1/0", socket_timeout=0.2)
    with pytest.raises(StoreUnavailableError):
        await client.connect()
    assert not await client.ping()
    await client.close()


async def test_closed_client_refuses_operations():
    client = RedisClient(client=fakeredis.aioredis.FakeRedis(decode_responses=True))
    await client.connect()
    await client.set("a", "1")
    await client.close()

    with pytest.raises(StoreUnavailableError):
        await client.get("a")
    with pytest.raises(StoreUnavailableError):
        await client.set_json("b", {"n": 1})
    assert not await client.ping()
