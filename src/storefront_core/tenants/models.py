"""
Tenant directory ORM models.

Live in the shared schema, next to (never inside) the per-tenant namespaces.
Uniqueness of slug, domain and custom_domain is enforced here.
"""
from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String
from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront_core.database.base_model import SHARED_SCHEMA, Base


class PlanModel(Base):
    __tablename__ = "plans"
    __table_args__ = {"schema": SHARED_SCHEMA}

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # {"products": 100, "staff": 2, "orders_per_month": "unlimited"}
    limits: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict, server_default="{}")


class TenantModel(Base):
    __tablename__ = "tenants"
    __table_args__ = (
        CheckConstraint("status IN ('active', 'suspended', 'deleted')", name="ck_tenants_status"),
        Index("ix_tenants_status", "status"),
        {"schema": SHARED_SCHEMA},
    )

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(63), unique=True, nullable=False, index=True)
    domain: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    custom_domain: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active", server_default="active")
    region: Mapped[str] = mapped_column(String(16), nullable=False)
    settings: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict, server_default="{}")

    subscription: Mapped["SubscriptionModel | None"] = relationship(
        "SubscriptionModel",
        back_populates="tenant",
        uselist=False,
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class SubscriptionModel(Base):
    __tablename__ = "subscriptions"
    __table_args__ = {"schema": SHARED_SCHEMA}

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True)
    tenant_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey(f"{SHARED_SCHEMA}.tenants.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    plan_id: Mapped[str] = mapped_column(String(64), ForeignKey(f"{SHARED_SCHEMA}.plans.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active", server_default="active")
    current_period_start: Mapped[datetime] = mapped_column(nullable=False)
    current_period_end: Mapped[datetime] = mapped_column(nullable=False)

    tenant: Mapped[TenantModel] = relationship("TenantModel", back_populates="subscription")
    plan: Mapped[PlanModel] = relationship("PlanModel", lazy="selectin")
