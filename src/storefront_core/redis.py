from __future__ import annotations

import asyncio
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, TypeVar
from uuid import UUID

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.exceptions import NoScriptError, RedisError, ResponseError
import structlog

from storefront_core.config import Settings, get_settings
from storefront_core.exceptions import InternalServerError, StoreUnavailableError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def _default_json_serializer(obj: Any) -> Any:
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return str(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def dumps(value: Any) -> str:
    return json.dumps(value, default=_default_json_serializer, separators=(",", ":"))


class RedisClient:
    """
    Async Redis client shared by every service instance.

    One instance per process: call ``connect()`` at startup and ``close()`` at
    shutdown. Every backend failure surfaces as ``StoreUnavailableError``
    (connection/timeout) or ``InternalServerError`` (protocol misuse such as
    WRONGTYPE); callers never see a raw ``RedisError``.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        namespace: Optional[str] = None,
        socket_timeout: Optional[float] = None,
        max_connections: Optional[int] = None,
        client: Optional[Redis] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._url = url
        self._settings = settings
        self._ns = (namespace or "").strip(":")
        self._socket_timeout = socket_timeout
        self._max_connections = max_connections
        self.redis: Optional[Redis] = client
        self._lock = asyncio.Lock()
        self._shas: dict[str, str] = {}
        self._closed = False

    # ---------- connection management ----------

    async def connect(self) -> None:
        """Create the client (unless one was injected), verify it and load scripts."""
        async with self._lock:
            if self.redis is not None and self._shas:
                return
            try:
                if self.redis is None:
                    settings = self._settings or get_settings()
                    # NOTE: from_url is sync; do NOT await it
                    self.redis = redis.from_url(
                        self._url or settings.redis_url,
                        encoding="utf-8",
                        decode_responses=True,
                        health_check_interval=30,
                        socket_connect_timeout=self._socket_timeout or settings.redis_socket_timeout,
                        socket_timeout=self._socket_timeout or settings.redis_socket_timeout,
                        retry_on_timeout=True,
                        max_connections=self._max_connections or settings.redis_max_connections,
                    )
                await self.redis.ping()
                for name, source in self._SCRIPTS.items():
                    self._shas[name] = await self.redis.script_load(source)
            except RedisError as e:
                raise StoreUnavailableError(f"Redis connection failed: {e}") from e
        self._closed = False
        logger.info("Cache store connected", namespace=self._ns or None)

    async def close(self) -> None:
        self._closed = True
        if self.redis is None:
            return
        try:
            await self.redis.aclose()
        except RedisError as e:
            logger.warning("Error while closing cache store", error=str(e))
        finally:
            self.redis = None
            self._shas.clear()
        logger.info("Cache store closed")

    async def ping(self) -> bool:
        if self.redis is None:
            return False
        try:
            return bool(await self.redis.ping())
        except RedisError:
            return False

    # ---------- low-level helpers ----------

    def key(self, *parts: str) -> str:
        """Join parts with ":" and apply the environment namespace ("<env>:<app>:")."""
        raw = ":".join(parts)
        return f"{self._ns}:{raw}" if self._ns else raw

    async def _ensure_connected(self, op: str) -> None:
        # lazy connect for a fresh client; a closed client stays closed until connect()
        if self.redis is None:
            if self._closed:
                raise StoreUnavailableError("Cache store is closed", details={"op": op})
            await self.connect()

    async def _guard(self, op: str, fn: Callable[[], Awaitable[T]]) -> T:
        await self._ensure_connected(op)
        try:
            return await fn()
        except ResponseError as e:
            logger.error("Cache store rejected command", op=op, error=str(e))
            raise InternalServerError(f"Redis rejected {op}: {e}", details={"op": op}) from e
        except RedisError as e:
            logger.warning("Cache store unavailable", op=op, error=str(e))
            raise StoreUnavailableError(f"Redis error during {op}: {e}", details={"op": op}) from e

    async def _run_script(self, name: str, keys: list[str], args: list[Any]) -> Any:
        async def _run():
            try:
                return await self.redis.evalsha(self._shas[name], len(keys), *keys, *args)  # type: ignore[union-attr]
            except (NoScriptError, KeyError):
                # script cache flushed (restart/failover) or never loaded
                return await self.redis.eval(self._SCRIPTS[name], len(keys), *keys, *args)  # type: ignore[union-attr]
        return await self._guard(name, _run)

    # ---------- string & json ----------

    async def get(self, key: str) -> Optional[str]:
        return await self._guard("get", lambda: self.redis.get(key))  # type: ignore[union-attr]

    async def set(self, key: str, value: Any, ex: Optional[int] = None, nx: bool = False) -> bool:
        if isinstance(value, (dict, list)):
            value = dumps(value)
        result = await self._guard("set", lambda: self.redis.set(key, value, ex=ex, nx=nx))  # type: ignore[union-attr]
        return bool(result)

    async def get_json(self, key: str) -> Optional[Any]:
        raw = await self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding undecodable cache entry", key=key)
            return None

    async def set_json(self, key: str, value: Any, ex: Optional[int] = None) -> bool:
        payload = dumps(value)
        return bool(await self._guard("set", lambda: self.redis.set(key, payload, ex=ex)))  # type: ignore[union-attr]

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self._guard("delete", lambda: self.redis.delete(*keys)))  # type: ignore[union-attr]

    async def exists(self, key: str) -> bool:
        return await self._guard("exists", lambda: self.redis.exists(key)) > 0  # type: ignore[union-attr]

    async def expire(self, key: str, ttl: int) -> bool:
        return bool(await self._guard("expire", lambda: self.redis.expire(key, ttl)))  # type: ignore[union-attr]

    async def ttl(self, key: str) -> int:
        return int(await self._guard("ttl", lambda: self.redis.ttl(key)))  # type: ignore[union-attr]

    async def mget(self, keys: list[str]) -> list[Optional[str]]:
        if not keys:
            return []
        return await self._guard("mget", lambda: self.redis.mget(keys))  # type: ignore[union-attr]

    # ---------- counters ----------

    async def incr(self, key: str) -> int:
        return int(await self._guard("incr", lambda: self.redis.incr(key)))  # type: ignore[union-attr]

    async def incrby(self, key: str, amount: int) -> int:
        return int(await self._guard("incrby", lambda: self.redis.incrby(key, amount)))  # type: ignore[union-attr]

    async def decr(self, key: str) -> int:
        return int(await self._guard("decr", lambda: self.redis.decr(key)))  # type: ignore[union-attr]

    # ---------- hashes ----------

    async def hget(self, key: str, field: str) -> Optional[str]:
        return await self._guard("hget", lambda: self.redis.hget(key, field))  # type: ignore[union-attr]

    async def hset(self, key: str, field: str, value: str) -> int:
        return int(await self._guard("hset", lambda: self.redis.hset(key, field, value)))  # type: ignore[union-attr]

    async def hgetall(self, key: str) -> dict[str, str]:
        return await self._guard("hgetall", lambda: self.redis.hgetall(key))  # type: ignore[union-attr]

    async def hdel(self, key: str, *fields: str) -> int:
        return int(await self._guard("hdel", lambda: self.redis.hdel(key, *fields)))  # type: ignore[union-attr]

    # ---------- sets ----------

    async def sadd(self, key: str, *members: str) -> int:
        return int(await self._guard("sadd", lambda: self.redis.sadd(key, *members)))  # type: ignore[union-attr]

    async def srem(self, key: str, *members: str) -> int:
        return int(await self._guard("srem", lambda: self.redis.srem(key, *members)))  # type: ignore[union-attr]

    async def smembers(self, key: str) -> set[str]:
        return set(await self._guard("smembers", lambda: self.redis.smembers(key)))  # type: ignore[union-attr]

    async def sismember(self, key: str, member: str) -> bool:
        return bool(await self._guard("sismember", lambda: self.redis.sismember(key, member)))  # type: ignore[union-attr]

    async def sscan_batches(self, key: str, count: int = 500) -> AsyncIterator[list[str]]:
        """Yield set members in cursor-sized batches."""
        cursor = 0
        while True:
            cursor, members = await self._guard(
                "sscan", lambda: self.redis.sscan(key, cursor=cursor, count=count)  # type: ignore[union-attr]
            )
            if members:
                yield list(members)
            if int(cursor) == 0:
                break

    # ---------- lists ----------

    async def lpush(self, key: str, *values: str) -> int:
        return int(await self._guard("lpush", lambda: self.redis.lpush(key, *values)))  # type: ignore[union-attr]

    async def rpush(self, key: str, *values: str) -> int:
        return int(await self._guard("rpush", lambda: self.redis.rpush(key, *values)))  # type: ignore[union-attr]

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        return await self._guard("lrange", lambda: self.redis.lrange(key, start, stop))  # type: ignore[union-attr]

    async def llen(self, key: str) -> int:
        return int(await self._guard("llen", lambda: self.redis.llen(key)))  # type: ignore[union-attr]

    # ---------- keyspace scan (cursor based, never KEYS) ----------

    async def scan_batches(self, pattern: str, count: int = 500) -> AsyncIterator[list[str]]:
        cursor = 0
        while True:
            cursor, keys = await self._guard(
                "scan", lambda: self.redis.scan(cursor=cursor, match=pattern, count=count)  # type: ignore[union-attr]
            )
            if keys:
                yield list(keys)
            if int(cursor) == 0:
                break

    async def scan_keys(self, pattern: str, count: int = 500) -> AsyncIterator[str]:
        async for batch in self.scan_batches(pattern, count):
            for key in batch:
                yield key

    async def delete_matching(self, pattern: str, count: int = 500) -> int:
        """Delete every key matching ``pattern`` batch by batch; returns keys removed."""
        deleted = 0
        async for batch in self.scan_batches(pattern, count):
            deleted += await self.delete(*batch)
        return deleted

    # ---------- pub/sub ----------

    async def publish(self, channel: str, message: Any) -> int:
        if not isinstance(message, str):
            message = dumps(message)
        return int(await self._guard("publish", lambda: self.redis.publish(channel, message)))  # type: ignore[union-attr]

    async def subscribe(self, *channels: str) -> AsyncIterator[tuple[str, str]]:
        """
        Yield ``(channel, data)`` for each message on a dedicated pub/sub connection.
        The subscription is torn down when the consumer stops iterating.
        """
        await self._ensure_connected("subscribe")
        pubsub = self.redis.pubsub(ignore_subscribe_messages=True)  # type: ignore[union-attr]
        await self._guard("subscribe", lambda: pubsub.subscribe(*channels))
        try:
            while True:
                message = await self._guard(
                    "subscribe", lambda: pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                )
                if message is None or message.get("type") != "message":
                    continue
                yield message["channel"], message["data"]
        finally:
            try:
                await pubsub.unsubscribe(*channels)
            finally:
                await pubsub.aclose()

    # ---------- atomic primitives ----------

    _WINDOW_INCR_LUA = """
    -- KEYS[1] = counter key
    -- ARGV[1] = window ttl seconds
    local c = redis.call('INCR', KEYS[1])
    local t = redis.call('TTL', KEYS[1])
    -- arm expiry only when the window opens; -1 means the counter was
    -- written outside this script and would otherwise never reset
    if c == 1 or t == -1 then
      redis.call('EXPIRE', KEYS[1], tonumber(ARGV[1]))
      t = tonumber(ARGV[1])
    end
    return {c, t}
    """

    _UNLOCK_LUA = """
    -- KEYS[1] = lock key
    -- ARGV[1] = expected owner token
    if redis.call('GET', KEYS[1]) == ARGV[1] then
      return redis.call('DEL', KEYS[1])
    else
      return 0
    end
    """

    _EXTEND_LUA = """
    -- KEYS[1] = lock key
    -- ARGV[1] = expected owner token, ARGV[2] = new ttl seconds
    if redis.call('GET', KEYS[1]) == ARGV[1] then
      return redis.call('EXPIRE', KEYS[1], tonumber(ARGV[2]))
    else
      return 0
    end
    """

    _RENAME_LUA = """
    -- KEYS[1] = source, KEYS[2] = destination
    -- ARGV[1] = ttl seconds for the destination
    if redis.call('EXISTS', KEYS[1]) == 1 then
      redis.call('RENAME', KEYS[1], KEYS[2])
      redis.call('EXPIRE', KEYS[2], tonumber(ARGV[1]))
      return 1
    end
    return 0
    """

    _SCRIPTS = {
        "incr_window": _WINDOW_INCR_LUA,
        "compare_and_delete": _UNLOCK_LUA,
        "compare_and_expire": _EXTEND_LUA,
        "rename_if_exists": _RENAME_LUA,
    }

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        """SET NX EX."""
        result = await self._guard(
            "set_if_absent", lambda: self.redis.set(key, value, nx=True, ex=ttl_seconds)  # type: ignore[union-attr]
        )
        return bool(result)

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        """Delete ``key`` only if it still holds ``expected`` (atomic check & delete)."""
        return int(await self._run_script("compare_and_delete", [key], [expected])) == 1

    async def compare_and_expire(self, key: str, expected: str, ttl_seconds: int) -> bool:
        return int(await self._run_script("compare_and_expire", [key], [expected, ttl_seconds])) == 1

    async def incr_window(self, key: str, window_seconds: int) -> tuple[int, int]:
        """Fixed-window increment. Returns (count, seconds until the window closes)."""
        count, ttl = await self._run_script("incr_window", [key], [window_seconds])
        return int(count), int(ttl)

    async def rename_if_exists(self, src: str, dst: str, ttl_seconds: int) -> bool:
        return int(await self._run_script("rename_if_exists", [src, dst], [ttl_seconds])) == 1


# ---------- process-wide instance ----------

_client: Optional[RedisClient] = None


async def init_redis(
    url: Optional[str] = None,
    *,
    client: Optional[Redis] = None,
    settings: Optional[Settings] = None,
) -> RedisClient:
    """Create and connect the process-wide client. Call once at service startup."""
    global _client
    if _client is not None:
        return _client
    settings = settings or get_settings()
    instance = RedisClient(url, namespace=settings.redis_namespace, client=client, settings=settings)
    try:
        await instance.connect()
    except StoreUnavailableError:
        await instance.close()
        raise
    _client = instance
    return _client


async def close_redis() -> None:
    global _client
    if _client is not None:
        await _client.close()
    _client = None


def get_redis() -> RedisClient:
    if _client is None:
        raise RuntimeError("Redis client not initialized. Call init_redis first.")
    return _client
