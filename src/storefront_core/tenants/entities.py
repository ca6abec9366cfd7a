from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union
from uuid import UUID

from storefront_core.tenants.settings_schema import TenantSettings

UNLIMITED = "unlimited"

LimitValue = Union[int, str]


class TenantStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    DELETED = "deleted"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass(frozen=True, slots=True)
class Plan:
    id: str
    name: str
    limits: dict[str, LimitValue] = field(default_factory=dict)

    def limit_for(self, resource: str) -> LimitValue:
        return self.limits.get(resource, 0)


@dataclass(frozen=True, slots=True)
class Subscription:
    id: UUID
    plan: Plan
    status: SubscriptionStatus
    current_period_start: datetime
    current_period_end: datetime

    def is_active(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.status is SubscriptionStatus.ACTIVE and self.current_period_end > now


@dataclass(frozen=True, slots=True)
class Tenant:
    """Directory record of a storefront. ``slug`` and ``id`` never change after creation."""
    id: UUID
    name: str
    slug: str
    domain: str
    status: TenantStatus
    region: str
    settings: TenantSettings
    custom_domain: Optional[str] = None
    subscription: Optional[Subscription] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_deleted(self) -> bool:
        return self.status is TenantStatus.DELETED

    def is_active(self) -> bool:
        return self.status is TenantStatus.ACTIVE and self.subscription is not None and self.subscription.is_active()

    # JSON-friendly form for the cache layer
    def to_dict(self) -> dict[str, Any]:
        sub = self.subscription
        return {
            "id": str(self.id),
            "name": self.name,
            "slug": self.slug,
            "domain": self.domain,
            "custom_domain": self.custom_domain,
            "status": self.status.value,
            "region": self.region,
            "settings": self.settings.dump(),
            "subscription": None if sub is None else {
                "id": str(sub.id),
                "plan": {"id": sub.plan.id, "name": sub.plan.name, "limits": dict(sub.plan.limits)},
                "status": sub.status.value,
                "current_period_start": sub.current_period_start.isoformat(),
                "current_period_end": sub.current_period_end.isoformat(),
            },
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Tenant":
        sub = data.get("subscription")
        return cls(
            id=UUID(data["id"]),
            name=data["name"],
            slug=data["slug"],
            domain=data["domain"],
            custom_domain=data.get("custom_domain"),
            status=TenantStatus(data["status"]),
            region=data["region"],
            settings=TenantSettings.load(data.get("settings")),
            subscription=None if not sub else Subscription(
                id=UUID(sub["id"]),
                plan=Plan(id=sub["plan"]["id"], name=sub["plan"]["name"], limits=dict(sub["plan"]["limits"])),
                status=SubscriptionStatus(sub["status"]),
                current_period_start=datetime.fromisoformat(sub["current_period_start"]),
                current_period_end=datetime.fromisoformat(sub["current_period_end"]),
            ),
            created_at=_dt(data.get("created_at")),
            updated_at=_dt(data.get("updated_at")),
        )


@dataclass(frozen=True, slots=True)
class TenantConfig:
    """Tenant-scoped configuration handed to collaborators (payment adapters, workers)."""
    tenant_id: UUID
    schema_name: str
    domain: str
    custom_domain: Optional[str]
    region: str
    currency: str
    locale: str


@dataclass(frozen=True, slots=True)
class LimitCheck:
    allowed: bool
    limit: LimitValue


@dataclass(frozen=True, slots=True)
class TenantPage:
    tenants: list[Tenant]
    total: int
    page: int
    limit: int
