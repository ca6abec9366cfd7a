from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine
import structlog

from storefront_core.database.engine import get_engine
from storefront_core.database.namespaces import TenantId, derive_namespace

logger = structlog.get_logger(__name__)


class DatabaseHealthCheck:
    def __init__(self, engine: Optional[AsyncEngine] = None) -> None:
        self._engine = engine

    async def check_connection(self) -> Dict[str, Any]:
        try:
            engine = self._engine or get_engine()
            async with engine.connect() as conn:
                res = await conn.execute(text("SELECT 1 AS health_check"))
                row = res.fetchone()
                if not row or row.health_check != 1:
                    return {"healthy": False, "error": "health check failed"}

            payload: Dict[str, Any] = {"healthy": True}
            pool = engine.pool
            for name in ("size", "checkedin", "checkedout", "overflow"):
                if hasattr(pool, name):
                    payload[name if name != "size" else "pool_size"] = getattr(pool, name)()  # type: ignore
            return payload
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return {"healthy": False, "error": str(e)}

    async def check_namespace(self, tenant_id: TenantId) -> Dict[str, Any]:
        schema = derive_namespace(tenant_id)
        try:
            engine = self._engine or get_engine()
            async with engine.connect() as conn:
                res = await conn.execute(
                    text(
                        "SELECT count(*) FROM information_schema.tables "
                        "WHERE table_schema = :schema AND table_name IN ('products', 'product_variants')"
                    ),
                    {"schema": schema},
                )
                tables = int(res.scalar() or 0)
            return {"healthy": tables == 2, "namespace": schema, "tables": tables}
        except Exception as e:
            logger.error("Namespace health check failed", namespace=schema, error=str(e))
            return {"healthy": False, "namespace": schema, "error": str(e)}
