from storefront_core.tenants.directory import TenantDirectory, tenant_tag
from storefront_core.tenants.entities import (
    UNLIMITED,
    LimitCheck,
    Plan,
    Subscription,
    SubscriptionStatus,
    Tenant,
    TenantConfig,
    TenantPage,
    TenantStatus,
)
from storefront_core.tenants.repository import SQLAlchemyTenantRepository, TenantRepository
from storefront_core.tenants.settings_schema import TenantSettings

__all__ = [
    "TenantDirectory",
    "tenant_tag",
    "UNLIMITED",
    "LimitCheck",
    "Plan",
    "Subscription",
    "SubscriptionStatus",
    "Tenant",
    "TenantConfig",
    "TenantPage",
    "TenantStatus",
    "SQLAlchemyTenantRepository",
    "TenantRepository",
    "TenantSettings",
]
