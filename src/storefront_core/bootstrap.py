"""
Process-wide wiring: one engine, one cache store client, one directory.

    core = await startup()
    ...
    await shutdown()

Service entry points (HTTP app lifespan, workers) call these once.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from redis.asyncio import Redis
import structlog

from storefront_core.cache.tagged_cache import TaggedCache
from storefront_core.config import Settings, get_settings
from storefront_core.coordination.locks import LockManager
from storefront_core.coordination.ratelimit import RateLimiter
from storefront_core.database.engine import close_database_engine, create_database_engine
from storefront_core.database.health import DatabaseHealthCheck
from storefront_core.database.sessions import TenantDatabase
from storefront_core.logging import setup_logging
from storefront_core.redis import RedisClient, close_redis, init_redis
from storefront_core.sessions import SessionStore
from storefront_core.tenants.directory import TenantDirectory
from storefront_core.tenants.repository import SQLAlchemyTenantRepository

logger = structlog.get_logger(__name__)


@dataclass
class CoreServices:
    settings: Settings
    store: RedisClient
    cache: TaggedCache
    database: TenantDatabase
    directory: TenantDirectory
    rate_limiter: RateLimiter
    locks: LockManager
    sessions: SessionStore
    db_health: DatabaseHealthCheck

    async def health(self) -> dict:
        db = await self.db_health.check_connection()
        cache_ok = await self.store.ping()
        return {
            "healthy": bool(db.get("healthy")) and cache_ok,
            "database": db,
            "cache": {"healthy": cache_ok},
        }


_services: Optional[CoreServices] = None


async def startup(settings: Optional[Settings] = None, *, redis_client: Optional[Redis] = None) -> CoreServices:
    global _services
    if _services is not None:
        return _services

    settings = settings or get_settings()
    setup_logging(settings)

    engine = await create_database_engine(settings.database_url, settings=settings)
    try:
        store = await init_redis(settings.redis_url, client=redis_client, settings=settings)
    except Exception:
        # leave nothing half-started behind
        await close_database_engine()
        raise
    cache = TaggedCache(store, default_ttl=settings.cache_default_ttl, tag_ttl=settings.cache_tag_ttl)
    database = TenantDatabase(engine)

    _services = CoreServices(
        settings=settings,
        store=store,
        cache=cache,
        database=database,
        directory=TenantDirectory(SQLAlchemyTenantRepository(), database, cache, settings=settings),
        rate_limiter=RateLimiter(store),
        locks=LockManager(store),
        sessions=SessionStore(cache),
        db_health=DatabaseHealthCheck(engine),
    )
    logger.info("Storefront core started", **settings.safe_dict())
    return _services


async def shutdown() -> None:
    global _services
    await close_redis()
    await close_database_engine()
    _services = None
    logger.info("Storefront core stopped")


def get_services() -> CoreServices:
    if _services is None:
        raise RuntimeError("Core services not started. Call startup first.")
    return _services
