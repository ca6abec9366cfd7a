from .engine import (
    create_database_engine as init_database,
    close_database_engine as close_database,
    get_async_session,
    get_engine,
    get_session_factory,
)
from .health import DatabaseHealthCheck
from .namespaces import (
    NAMESPACE_PREFIX,
    coerce_tenant_id,
    derive_namespace,
    parse_namespace,
    tenant_cache_prefix,
)
from .sessions import TenantDatabase
from .tenant_tables import TENANT_SCHEMA, tenant_metadata

__all__ = [
    "init_database",
    "close_database",
    "get_async_session",
    "get_engine",
    "get_session_factory",
    "DatabaseHealthCheck",
    "NAMESPACE_PREFIX",
    "coerce_tenant_id",
    "derive_namespace",
    "parse_namespace",
    "tenant_cache_prefix",
    "TenantDatabase",
    "TENANT_SCHEMA",
    "tenant_metadata",
]
