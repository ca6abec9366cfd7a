"""
Tenant namespace naming.

Stable, documented mapping shared by the database gateway, the cache layer
and operational tooling:

    schema name        tenant_<uuid hex>      e.g. tenant_0f8fad5bd9cb469fa16570867728950e
    cache key prefix   t:<uuid hex>:          e.g. t:0f8fad5bd9cb469fa16570867728950e:product:42

Both derive from the tenant id only, never from the user-chosen slug, so
renaming a storefront cannot move its data and free text never reaches DDL.
"""
from __future__ import annotations

import re
from typing import Union
from uuid import UUID

from storefront_core.exceptions import ValidationError

NAMESPACE_PREFIX = "tenant_"
CACHE_PREFIX = "t:"

TenantId = Union[UUID, str]

_NAMESPACE_RE = re.compile(r"^tenant_([0-9a-f]{32})$")


def coerce_tenant_id(tenant_id: TenantId) -> UUID:
    """Accept a UUID or its canonical string form; anything else is rejected."""
    if isinstance(tenant_id, UUID):
        return tenant_id
    if isinstance(tenant_id, str):
        try:
            return UUID(tenant_id)
        except ValueError:
            pass
    raise ValidationError(
        "Tenant id must be a UUID",
        code="invalid_tenant_id",
        details={"tenant_id": repr(tenant_id)[:80]},
    )


def derive_namespace(tenant_id: TenantId) -> str:
    """Schema name for a tenant. 39 chars, inside PostgreSQL's 63-char identifier limit."""
    return NAMESPACE_PREFIX + coerce_tenant_id(tenant_id).hex


def parse_namespace(name: str) -> UUID:
    """Inverse of ``derive_namespace``."""
    m = _NAMESPACE_RE.match(name)
    if not m:
        raise ValidationError("Not a tenant namespace", code="invalid_namespace", details={"namespace": name})
    return UUID(hex=m.group(1))


def is_tenant_namespace(name: str) -> bool:
    return bool(_NAMESPACE_RE.match(name))


def tenant_cache_prefix(tenant_id: TenantId) -> str:
    return f"{CACHE_PREFIX}{coerce_tenant_id(tenant_id).hex}:"


def quote_namespace(name: str) -> str:
    """Double-quote a derived schema name for DDL; refuses anything not produced by ``derive_namespace``."""
    if not is_tenant_namespace(name):
        raise ValidationError("Refusing to quote a non-tenant namespace", code="invalid_namespace", details={"namespace": name})
    return f'"{name}"'
