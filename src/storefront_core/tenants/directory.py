"""
Tenant directory: host resolution, tenant lifecycle and plan limits.

Reads are cache-first through the tagged cache and fall back to the shared
schema whenever the cache store is unavailable. Writes go to the relational
store and then invalidate the tenant's cache tag.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Optional
from uuid import UUID, uuid4

from sqlalchemy import func, select
import structlog

from storefront_core.cache.tagged_cache import CacheOptions, TaggedCache
from storefront_core.config import Settings, get_settings
from storefront_core.coordination.locks import LockManager
from storefront_core.database.namespaces import TenantId, coerce_tenant_id, derive_namespace
from storefront_core.database.sessions import TenantDatabase
from storefront_core.database.tenant_tables import product_variants, products
from storefront_core.exceptions import (
    ConflictError,
    DomainError,
    InternalServerError,
    NotFoundError,
    PlanLimitExceededError,
    StoreUnavailableError,
    TenantNotFoundError,
    TenantSuspendedError,
    ValidationError,
)
from storefront_core.logging import time_block
from storefront_core.tenants.entities import (
    UNLIMITED,
    LimitCheck,
    Subscription,
    SubscriptionStatus,
    Tenant,
    TenantConfig,
    TenantPage,
    TenantStatus,
)
from storefront_core.tenants.hosts import (
    extract_slug,
    is_custom_domain,
    is_valid_custom_domain,
    is_valid_slug,
    normalize_host,
)
from storefront_core.tenants.repository import TenantRepository
from storefront_core.tenants.settings_schema import TenantSettings

logger = structlog.get_logger(__name__)

EVENTS_CHANNEL = "tenants:events"
SUBSCRIPTION_PERIOD = timedelta(days=30)
MAX_PAGE_SIZE = 100

_MUTABLE_FIELDS = frozenset({"name", "custom_domain", "status", "region", "settings"})


def tenant_tag(tenant_id: TenantId) -> str:
    return f"tenant:{coerce_tenant_id(tenant_id).hex}"


class TenantDirectory:
    def __init__(
        self,
        repository: TenantRepository,
        database: TenantDatabase,
        cache: TaggedCache,
        *,
        settings: Optional[Settings] = None,
    ) -> None:
        self.repository = repository
        self.database = database
        self.cache = cache
        self.locks = LockManager(cache.store)
        settings = settings or get_settings()
        self.base_domain = settings.base_domain
        self.default_region = settings.default_region
        self.cache_ttl = settings.tenant_cache_ttl

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_tenant_by_id(self, tenant_id: TenantId) -> Optional[Tenant]:
        tid = coerce_tenant_id(tenant_id)

        async def load() -> Optional[dict[str, Any]]:
            tenant = await self.repository.get_by_id(tid)
            return tenant.to_dict() if tenant else None

        data = await self.cache.get_or_set(
            f"tenant:{tid.hex}",
            load,
            CacheOptions(ttl=self.cache_ttl, tags=(tenant_tag(tid),)),
        )
        return Tenant.from_dict(data) if data else None

    async def get_tenant_by_slug(self, slug: str) -> Optional[Tenant]:
        return await self.repository.get_by_slug(slug)

    async def get_tenant_by_domain(self, domain: str) -> Optional[Tenant]:
        host = normalize_host(domain)
        return await self.repository.get_by_domain(host) if host else None

    async def resolve_host(self, host: Optional[str]) -> Optional[Tenant]:
        """
        Map a request host to its tenant: custom domain first, then the
        ``<slug>.<base domain>`` form. Deleted tenants do not resolve.
        """
        normalized = normalize_host(host)
        if normalized is None:
            return None

        cache_key = f"host:{normalized}"
        try:
            cached_id = await self.cache.get(cache_key)
        except StoreUnavailableError:
            logger.warning("Host cache unavailable, resolving from directory", host=normalized)
            cached_id = None
        if cached_id:
            tenant = await self.get_tenant_by_id(cached_id)
            if tenant is not None and not tenant.is_deleted():
                return tenant

        if is_custom_domain(normalized, self.base_domain):
            tenant = await self.repository.get_by_domain(normalized)
        else:
            slug = extract_slug(normalized, self.base_domain)
            tenant = await self.repository.get_by_slug(slug) if slug else None

        if tenant is None or tenant.is_deleted():
            logger.debug("Host did not resolve to a tenant", host=normalized)
            return None

        try:
            await self.cache.set(
                cache_key,
                str(tenant.id),
                CacheOptions(ttl=self.cache_ttl, tags=(tenant_tag(tenant.id),)),
            )
        except StoreUnavailableError:
            logger.warning("Host cache write skipped", host=normalized)
        return tenant

    async def resolve_tenant_id(self, host: Optional[str]) -> UUID:
        tenant = await self.resolve_host(host)
        if tenant is None:
            raise TenantNotFoundError("No tenant for host", details={"host": host})
        return tenant.id

    async def require_active_tenant(self, host: Optional[str]) -> Tenant:
        tenant = await self.resolve_host(host)
        if tenant is None:
            raise TenantNotFoundError("No tenant for host", details={"host": host})
        if tenant.status is TenantStatus.SUSPENDED:
            raise TenantSuspendedError("Tenant is suspended", details={"tenant_id": str(tenant.id)})
        return tenant

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_tenant(
        self,
        *,
        name: str,
        slug: str,
        email: str,
        plan_id: str,
        region: Optional[str] = None,
    ) -> Tenant:
        """
        Create tenant row, subscription row and namespace as one unit.

        If anything fails after the insert, or the caller is cancelled while the
        namespace is being provisioned, the rows are removed and the namespace
        dropped before the error propagates.
        """
        if not is_valid_slug(slug):
            raise ValidationError("Invalid tenant slug", code="invalid_slug", details={"slug": slug})
        if not name.strip():
            raise ValidationError("Tenant name must not be empty", details={"field": "name"})

        async with self._creation_guard(slug):
            if await self.repository.get_by_slug(slug) is not None:
                raise ConflictError("Tenant slug already exists", code="slug_taken", details={"slug": slug})

            plan = await self.repository.get_plan(plan_id)
            if plan is None:
                raise NotFoundError("Plan not found", code="plan_not_found", details={"plan_id": plan_id})

            now = datetime.now(timezone.utc)
            tenant = Tenant(
                id=uuid4(),
                name=name.strip(),
                slug=slug,
                domain=f"{slug}.{self.base_domain}",
                status=TenantStatus.ACTIVE,
                region=region or self.default_region,
                settings=TenantSettings.defaults_for(name.strip(), email),
            )
            subscription = Subscription(
                id=uuid4(),
                plan=plan,
                status=SubscriptionStatus.ACTIVE,
                current_period_start=now,
                current_period_end=now + SUBSCRIPTION_PERIOD,
            )

            # rows may be committed from here on until the namespace exists
            rollback = True
            try:
                try:
                    created = await self.repository.create(tenant, subscription)
                except ConflictError:
                    rollback = False
                    raise
                with time_block("tenant.provision_namespace", labels={"tenant_id": str(tenant.id)}):
                    await self.database.provision_namespace(tenant.id)
                rollback = False
            except Exception as e:
                if isinstance(e, DomainError):
                    raise
                raise InternalServerError(
                    "Tenant provisioning failed",
                    details={"tenant_id": str(tenant.id)},
                ) from e
            finally:
                if rollback:
                    logger.error("Tenant creation did not complete, rolling back", tenant_id=str(tenant.id))
                    # cancellation of the caller must not abort the cleanup
                    await asyncio.shield(self._compensate_creation(tenant.id))

        await self._invalidate(created.id)
        await self._publish("tenant.created", created)
        logger.info("Tenant created", tenant_id=str(created.id), slug=created.slug, namespace=derive_namespace(created.id))
        return created

    async def update_tenant(self, tenant_id: TenantId, **changes: Any) -> Tenant:
        tid = coerce_tenant_id(tenant_id)
        immutable = set(changes) - _MUTABLE_FIELDS
        if immutable:
            raise ValidationError("Fields cannot be changed", details={"fields": sorted(immutable)})

        if "status" in changes:
            try:
                changes["status"] = TenantStatus(changes["status"])
            except ValueError:
                raise ValidationError("Unknown tenant status", details={"status": changes["status"]}) from None
        if "settings" in changes and not isinstance(changes["settings"], TenantSettings):
            changes["settings"] = TenantSettings.load(changes["settings"])
        if changes.get("custom_domain") is not None:
            domain = str(changes["custom_domain"]).strip().lower()
            if not is_valid_custom_domain(domain, self.base_domain):
                raise ValidationError("Invalid custom domain", details={"custom_domain": domain})
            changes["custom_domain"] = domain
        if "name" in changes and not str(changes["name"]).strip():
            raise ValidationError("Tenant name must not be empty", details={"field": "name"})

        updated = await self.repository.update(tid, changes)
        if updated is None:
            raise TenantNotFoundError("Tenant not found", details={"tenant_id": str(tid)})

        await self._invalidate(tid)
        await self._publish("tenant.updated", updated)
        return updated

    async def suspend_tenant(self, tenant_id: TenantId) -> Tenant:
        return await self.update_tenant(tenant_id, status=TenantStatus.SUSPENDED)

    async def reactivate_tenant(self, tenant_id: TenantId) -> Tenant:
        return await self.update_tenant(tenant_id, status=TenantStatus.ACTIVE)

    async def delete_tenant(self, tenant_id: TenantId) -> Tenant:
        """Soft delete. Data and namespace stay in place."""
        tenant = await self.update_tenant(tenant_id, status=TenantStatus.DELETED)
        logger.info("Tenant soft-deleted", tenant_id=str(tenant.id))
        return tenant

    async def purge_tenant(self, tenant_id: TenantId) -> None:
        """Administrative, irreversible: drop the namespace and the directory rows."""
        tid = coerce_tenant_id(tenant_id)
        tenant = await self.repository.get_by_id(tid)
        if tenant is None:
            raise TenantNotFoundError("Tenant not found", details={"tenant_id": str(tid)})
        if not tenant.is_deleted():
            raise ConflictError("Only deleted tenants can be purged", details={"status": tenant.status.value})

        await self.database.drop_namespace(tid)
        await self.repository.hard_delete(tid)
        await self._invalidate(tid)
        try:
            await self.cache.clear_tenant_cache(tid)
        except StoreUnavailableError:
            logger.warning("Tenant cache not cleared, entries will expire", tenant_id=str(tid))
        await self._publish("tenant.purged", tenant)
        logger.warning("Tenant purged", tenant_id=str(tid), slug=tenant.slug)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def is_tenant_active(self, tenant_id: TenantId) -> bool:
        tenant = await self.get_tenant_by_id(tenant_id)
        return tenant is not None and tenant.is_active()

    async def get_tenant_config(self, tenant_id: TenantId) -> TenantConfig:
        tenant = await self.get_tenant_by_id(tenant_id)
        if tenant is None:
            raise TenantNotFoundError("Tenant not found", details={"tenant_id": str(tenant_id)})
        return TenantConfig(
            tenant_id=tenant.id,
            schema_name=derive_namespace(tenant.id),
            domain=tenant.domain,
            custom_domain=tenant.custom_domain,
            region=tenant.region,
            currency=tenant.settings.general.currency,
            locale=tenant.settings.general.locale,
        )

    async def check_tenant_limit(self, tenant_id: TenantId, resource: str, current: int) -> LimitCheck:
        tenant = await self.get_tenant_by_id(tenant_id)
        if tenant is None or tenant.subscription is None:
            return LimitCheck(allowed=False, limit=0)

        limit = tenant.subscription.plan.limit_for(resource)
        if limit == UNLIMITED:
            return LimitCheck(allowed=True, limit=UNLIMITED)
        if not isinstance(limit, int):
            logger.warning("Malformed plan limit", plan_id=tenant.subscription.plan.id, resource=resource)
            return LimitCheck(allowed=False, limit=0)
        return LimitCheck(allowed=current < limit, limit=limit)

    async def enforce_tenant_limit(self, tenant_id: TenantId, resource: str, current: int) -> LimitCheck:
        check = await self.check_tenant_limit(tenant_id, resource, current)
        if not check.allowed:
            raise PlanLimitExceededError(
                "Plan limit reached",
                details={"resource": resource, "limit": check.limit, "current": current},
            )
        return check

    async def list_tenants(
        self,
        *,
        page: int = 1,
        limit: int = 20,
        status: Optional[str] = None,
    ) -> TenantPage:
        page = max(1, page)
        limit = min(max(1, limit), MAX_PAGE_SIZE)
        status_filter = None
        if status is not None:
            try:
                status_filter = TenantStatus(status)
            except ValueError:
                raise ValidationError("Unknown tenant status", details={"status": status}) from None
        tenants, total = await self.repository.list_tenants((page - 1) * limit, limit, status_filter)
        return TenantPage(tenants=tenants, total=total, page=page, limit=limit)

    async def get_tenant_stats(self, tenant_id: TenantId) -> dict[str, int]:
        """Counts read from the tenant's own namespace."""
        tenant = await self.get_tenant_by_id(tenant_id)
        if tenant is None:
            raise TenantNotFoundError("Tenant not found", details={"tenant_id": str(coerce_tenant_id(tenant_id))})

        async def _count(conn) -> dict[str, int]:
            product_count = (await conn.execute(select(func.count()).select_from(products))).scalar_one()
            variant_count = (await conn.execute(select(func.count()).select_from(product_variants))).scalar_one()
            return {"products": int(product_count), "variants": int(variant_count)}

        return await self.database.run_in_tenant(tenant.id, _count)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _creation_guard(self, slug: str) -> AsyncGenerator[None, None]:
        """Serialize creation per slug across instances; the unique constraint still has the last word."""
        lock = self.locks.lock(f"tenant-create:{slug}", ttl=120)
        try:
            acquired = await lock.acquire()
        except StoreUnavailableError:
            logger.warning("Creation lock unavailable, relying on unique constraint", slug=slug)
            yield
            return
        if not acquired:
            raise ConflictError("Tenant creation already in progress", code="slug_taken", details={"slug": slug})
        try:
            yield
        finally:
            try:
                await lock.release()
            except StoreUnavailableError:
                logger.warning("Creation lock not released, it will expire", slug=slug)

    async def _compensate_creation(self, tenant_id: UUID) -> None:
        try:
            await self.repository.hard_delete(tenant_id)
        except Exception as e:
            logger.error("Compensation failed: tenant rows left behind", tenant_id=str(tenant_id), error=str(e))
        try:
            await self.database.drop_namespace(tenant_id)
        except Exception as e:
            logger.error("Compensation failed: namespace left behind", tenant_id=str(tenant_id), error=str(e))

    async def _invalidate(self, tenant_id: UUID) -> None:
        try:
            await self.cache.invalidate_tag(tenant_tag(tenant_id))
        except StoreUnavailableError:
            logger.warning("Tenant cache invalidation skipped", tenant_id=str(tenant_id))

    async def _publish(self, event: str, tenant: Tenant) -> None:
        try:
            await self.cache.store.publish(
                self.cache.store.key(EVENTS_CHANNEL),
                {"event": event, "tenant_id": str(tenant.id), "slug": tenant.slug, "status": tenant.status.value},
            )
        except StoreUnavailableError:
            logger.warning("Tenant event not published", tenant_event=event, tenant_id=str(tenant.id))
