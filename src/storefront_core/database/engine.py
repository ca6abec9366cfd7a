"""
Async SQLAlchemy engine & session factory (tenant-agnostic).

This module owns:
  - Creating & caching the process-wide AsyncEngine (the shared connection pool)
  - A session context manager for the shared ``public`` schema
  - Safe engine disposal for shutdown hooks and tests

Tenant scoping is NOT applied here; see sessions.py.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool
import structlog

from storefront_core.config import Settings, get_settings
from storefront_core.exceptions import StoreUnavailableError

logger = structlog.get_logger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


async def create_database_engine(
    database_url: Optional[str] = None,
    *,
    settings: Optional[Settings] = None,
) -> AsyncEngine:
    """
    Initialize the async engine & session factory with sane pooling defaults.

    A previously created engine is disposed first so its pool is not leaked.
    """
    global _engine, _session_factory
    settings = settings or get_settings()
    if _engine is not None:
        await close_database_engine()

    pool_kwargs: dict = {}
    if settings.is_testing:
        pool_kwargs["poolclass"] = NullPool
    else:
        pool_kwargs.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_timeout=30,
            pool_recycle=3600,
        )

    _engine = create_async_engine(
        database_url or settings.database_url,
        echo=settings.debug and not settings.is_prod,
        pool_pre_ping=True,
        connect_args={
            "server_settings": {
                "application_name": f"storefront-core-{settings.environment}",
                "statement_timeout": str(settings.database_statement_timeout_ms),
            }
        },
        **pool_kwargs,
    )

    _session_factory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    # Smoke test
    try:
        async with _engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
    except (OperationalError, DBAPIError, OSError) as e:
        logger.error("Failed to connect to database", error=str(e))
        await _engine.dispose()
        _engine = None
        _session_factory = None
        raise StoreUnavailableError(f"Database connection failed: {e}") from e

    logger.info("Database connection established")
    return _engine


async def close_database_engine() -> None:
    global _engine, _session_factory
    if _engine:
        await _engine.dispose()
        logger.info("Database engine disposed")
    _engine = None
    _session_factory = None


def get_engine() -> AsyncEngine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call create_database_engine first.")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        raise RuntimeError("Session factory not initialized. Call create_database_engine first.")
    return _session_factory


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Session on the shared schema (tenant directory tables). Rolls back on error.
    """
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
