"""
Tenant directory persistence (shared schema).
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional
from uuid import UUID

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import structlog

from storefront_core.database.engine import get_session_factory
from storefront_core.exceptions import ConflictError, InternalServerError, StoreUnavailableError
from storefront_core.tenants.entities import (
    Plan,
    Subscription,
    SubscriptionStatus,
    Tenant,
    TenantStatus,
)
from storefront_core.tenants.models import PlanModel, SubscriptionModel, TenantModel
from storefront_core.tenants.settings_schema import TenantSettings

logger = structlog.get_logger(__name__)


class TenantRepository(ABC):
    @abstractmethod
    async def get_by_id(self, tenant_id: UUID) -> Optional[Tenant]: ...

    @abstractmethod
    async def get_by_slug(self, slug: str) -> Optional[Tenant]: ...

    @abstractmethod
    async def get_by_domain(self, domain: str) -> Optional[Tenant]:
        """Match on the platform domain or the custom domain."""

    @abstractmethod
    async def get_plan(self, plan_id: str) -> Optional[Plan]: ...

    @abstractmethod
    async def create(self, tenant: Tenant, subscription: Subscription) -> Tenant:
        """Insert tenant + subscription in one transaction. Raises ConflictError on a taken slug/domain."""

    @abstractmethod
    async def update(self, tenant_id: UUID, changes: dict[str, Any]) -> Optional[Tenant]: ...

    @abstractmethod
    async def hard_delete(self, tenant_id: UUID) -> bool: ...

    @abstractmethod
    async def list_tenants(
        self,
        offset: int,
        limit: int,
        status: Optional[TenantStatus] = None,
    ) -> tuple[list[Tenant], int]: ...


def _plan_to_entity(model: PlanModel) -> Plan:
    return Plan(id=model.id, name=model.name, limits=dict(model.limits or {}))


def _to_entity(model: TenantModel) -> Tenant:
    sub = model.subscription
    return Tenant(
        id=model.id,
        name=model.name,
        slug=model.slug,
        domain=model.domain,
        custom_domain=model.custom_domain,
        status=TenantStatus(model.status),
        region=model.region,
        settings=TenantSettings.load(model.settings),
        subscription=None if sub is None else Subscription(
            id=sub.id,
            plan=_plan_to_entity(sub.plan),
            status=SubscriptionStatus(sub.status),
            current_period_start=sub.current_period_start,
            current_period_end=sub.current_period_end,
        ),
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


class SQLAlchemyTenantRepository(TenantRepository):
    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        factory = self._session_factory or get_session_factory()
        try:
            async with factory() as session:
                yield session
        except (OperationalError, InterfaceError) as e:
            logger.warning("Tenant directory store unavailable", error=str(e))
            raise StoreUnavailableError("Relational store unavailable") from e

    async def _one(self, *criteria: Any) -> Optional[Tenant]:
        async with self._session() as session:
            result = await session.execute(select(TenantModel).where(*criteria))
            model = result.scalar_one_or_none()
            return _to_entity(model) if model else None

    async def get_by_id(self, tenant_id: UUID) -> Optional[Tenant]:
        return await self._one(TenantModel.id == tenant_id)

    async def get_by_slug(self, slug: str) -> Optional[Tenant]:
        return await self._one(TenantModel.slug == slug)

    async def get_by_domain(self, domain: str) -> Optional[Tenant]:
        return await self._one(or_(TenantModel.domain == domain, TenantModel.custom_domain == domain))

    async def get_plan(self, plan_id: str) -> Optional[Plan]:
        async with self._session() as session:
            model = await session.get(PlanModel, plan_id)
            return _plan_to_entity(model) if model else None

    async def create(self, tenant: Tenant, subscription: Subscription) -> Tenant:
        async with self._session() as session:
            try:
                async with session.begin():
                    session.add(
                        TenantModel(
                            id=tenant.id,
                            name=tenant.name,
                            slug=tenant.slug,
                            domain=tenant.domain,
                            custom_domain=tenant.custom_domain,
                            status=tenant.status.value,
                            region=tenant.region,
                            settings=tenant.settings.dump(),
                        )
                    )
                    # flush the parent first; the subscription FK points at it
                    await session.flush()
                    session.add(
                        SubscriptionModel(
                            id=subscription.id,
                            tenant_id=tenant.id,
                            plan_id=subscription.plan.id,
                            status=subscription.status.value,
                            current_period_start=subscription.current_period_start,
                            current_period_end=subscription.current_period_end,
                        )
                    )
            except IntegrityError as e:
                logger.info("Tenant insert rejected by unique constraint", slug=tenant.slug)
                raise ConflictError(
                    "Tenant slug or domain already exists",
                    code="slug_taken",
                    details={"slug": tenant.slug},
                ) from e
        created = await self.get_by_id(tenant.id)
        if created is None:
            raise InternalServerError("Tenant row missing after commit", details={"tenant_id": str(tenant.id)})
        return created

    async def update(self, tenant_id: UUID, changes: dict[str, Any]) -> Optional[Tenant]:
        async with self._session() as session:
            try:
                async with session.begin():
                    model = await session.get(TenantModel, tenant_id)
                    if model is None:
                        return None
                    for name, value in changes.items():
                        if isinstance(value, TenantStatus):
                            value = value.value
                        elif isinstance(value, TenantSettings):
                            value = value.dump()
                        setattr(model, name, value)
            except IntegrityError as e:
                raise ConflictError(
                    "Domain already in use by another tenant",
                    details={"fields": sorted(changes)},
                ) from e
        return await self.get_by_id(tenant_id)

    async def hard_delete(self, tenant_id: UUID) -> bool:
        async with self._session() as session:
            async with session.begin():
                await session.execute(delete(SubscriptionModel).where(SubscriptionModel.tenant_id == tenant_id))
                result = await session.execute(delete(TenantModel).where(TenantModel.id == tenant_id))
                return (result.rowcount or 0) > 0

    async def list_tenants(
        self,
        offset: int,
        limit: int,
        status: Optional[TenantStatus] = None,
    ) -> tuple[list[Tenant], int]:
        async with self._session() as session:
            stmt = select(TenantModel)
            count_stmt = select(func.count()).select_from(TenantModel)
            if status is not None:
                stmt = stmt.where(TenantModel.status == status.value)
                count_stmt = count_stmt.where(TenantModel.status == status.value)
            stmt = stmt.order_by(TenantModel.created_at.desc()).offset(offset).limit(limit)
            models = (await session.execute(stmt)).scalars().all()
            total = int((await session.execute(count_stmt)).scalar() or 0)
            return [_to_entity(m) for m in models], total
