from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Callable, Optional, TypeVar
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import InterfaceError, OperationalError, ProgrammingError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncSession
import structlog

from storefront_core.database.engine import get_engine
from storefront_core.database.namespaces import (
    NAMESPACE_PREFIX,
    TenantId,
    derive_namespace,
    is_tenant_namespace,
    parse_namespace,
    quote_namespace,
)
from storefront_core.database.tenant_tables import TENANT_SCHEMA, tenant_metadata
from storefront_core.exceptions import StoreUnavailableError, TenantNotFoundError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class TenantDatabase:
    """
    Gateway that routes tenant-scoped work into the tenant's own schema.

    Every borrow goes through ``tenant_connection``: the connection is checked
    out of the shared pool, a transaction is opened, ``search_path`` is set with
    ``SET LOCAL`` (transaction-scoped) and a schema translate map is attached to
    this checkout only. Nothing tenant-specific survives on the pooled DBAPI
    connection once it is returned, so a connection used for tenant A can never
    serve tenant B without being re-scoped.
    """

    def __init__(self, engine: Optional[AsyncEngine] = None) -> None:
        self._engine = engine

    @property
    def engine(self) -> AsyncEngine:
        return self._engine or get_engine()

    # ---------- scoped access ----------

    @asynccontextmanager
    async def tenant_connection(self, tenant_id: TenantId) -> AsyncGenerator[AsyncConnection, None]:
        """Connection scoped to the tenant's namespace; commits on success, rolls back on error."""
        schema = derive_namespace(tenant_id)
        try:
            async with self.engine.connect() as conn:
                await conn.execution_options(schema_translate_map={TENANT_SCHEMA: schema})
                async with conn.begin():
                    await conn.execute(text(f"SET LOCAL search_path TO {quote_namespace(schema)}, public"))
                    yield conn
        except (OperationalError, InterfaceError) as e:
            logger.warning("Tenant connection failed", namespace=schema, error=str(e))
            raise StoreUnavailableError(
                "Relational store unavailable",
                details={"namespace": schema},
            ) from e
        except ProgrammingError as e:
            # search_path accepts a missing schema; the first table reference does not
            if not await self.namespace_exists(tenant_id):
                raise TenantNotFoundError(
                    "Tenant namespace does not exist",
                    details={"namespace": schema},
                ) from e
            raise

    async def run_in_tenant(self, tenant_id: TenantId, fn: Callable[[AsyncConnection], Awaitable[T]]) -> T:
        """Callback form of ``tenant_connection``."""
        async with self.tenant_connection(tenant_id) as conn:
            return await fn(conn)

    @asynccontextmanager
    async def tenant_session(self, tenant_id: TenantId) -> AsyncGenerator[AsyncSession, None]:
        """ORM session bound to a tenant-scoped connection."""
        async with self.tenant_connection(tenant_id) as conn:
            session = AsyncSession(bind=conn, expire_on_commit=False, join_transaction_mode="create_savepoint")
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    # ---------- namespace lifecycle ----------

    async def namespace_exists(self, tenant_id: TenantId) -> bool:
        schema = derive_namespace(tenant_id)
        async with self._admin_connection() as conn:
            result = await conn.execute(
                text("SELECT EXISTS (SELECT 1 FROM information_schema.schemata WHERE schema_name = :name)"),
                {"name": schema},
            )
            return bool(result.scalar())

    async def provision_namespace(self, tenant_id: TenantId) -> bool:
        """
        Create the tenant schema and its fixed tables/indexes if absent.

        Idempotent: re-running on an existing namespace creates only what is
        missing. Returns True when the schema itself was newly created.
        """
        schema = derive_namespace(tenant_id)
        async with self._admin_connection() as conn:
            async with conn.begin():
                existed = (
                    await conn.execute(
                        text("SELECT EXISTS (SELECT 1 FROM information_schema.schemata WHERE schema_name = :name)"),
                        {"name": schema},
                    )
                ).scalar()
                await conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {quote_namespace(schema)}"))
                await conn.execution_options(schema_translate_map={TENANT_SCHEMA: schema})
                await conn.run_sync(tenant_metadata.create_all, checkfirst=True)
        logger.info("Tenant namespace provisioned", namespace=schema, created=not existed)
        return not existed

    async def drop_namespace(self, tenant_id: TenantId) -> None:
        """Destructive. Administrative purge only; soft delete never calls this."""
        schema = derive_namespace(tenant_id)
        async with self._admin_connection() as conn:
            async with conn.begin():
                await conn.execute(text(f"DROP SCHEMA IF EXISTS {quote_namespace(schema)} CASCADE"))
        logger.warning("Tenant namespace dropped", namespace=schema)

    async def list_namespaces(self) -> list[UUID]:
        """Tenant ids that currently own a namespace."""
        async with self._admin_connection() as conn:
            result = await conn.execute(
                text(
                    "SELECT schema_name FROM information_schema.schemata "
                    "WHERE schema_name LIKE :prefix ORDER BY schema_name"
                ),
                {"prefix": NAMESPACE_PREFIX.replace("_", r"\_") + "%"},
            )
            return [parse_namespace(name) for (name,) in result if is_tenant_namespace(name)]

    @asynccontextmanager
    async def _admin_connection(self) -> AsyncGenerator[AsyncConnection, None]:
        try:
            async with self.engine.connect() as conn:
                yield conn
        except (OperationalError, InterfaceError) as e:
            logger.warning("Relational store unavailable", error=str(e))
            raise StoreUnavailableError("Relational store unavailable") from e
