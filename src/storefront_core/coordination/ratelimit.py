from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from typing import Callable

import structlog

from storefront_core.cache.cache_protocol import ICacheStore
from storefront_core.database.namespaces import TenantId, tenant_cache_prefix
from storefront_core.exceptions import RateLimitedError, StoreUnavailableError, ValidationError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float  # epoch seconds
    count: int
    limit: int

    def to_dict(self) -> dict:
        return asdict(self)


class RateLimiter:
    """
    Fixed-window counter shared by all service instances.

    The counter expiry is armed only when a window opens, so a burst of hits
    cannot stretch the window. Bursts straddling a boundary may briefly see up
    to 2x ``limit``; that is the accepted cost of the fixed window.
    """

    def __init__(self, store: ICacheStore, *, clock: Callable[[], float] = time.time) -> None:
        self.store = store
        self._clock = clock

    def _key(self, key: str) -> str:
        return self.store.key(f"rate_limit:{key}")

    @staticmethod
    def tenant_key(tenant_id: TenantId, scope: str) -> str:
        return f"{tenant_cache_prefix(tenant_id)}{scope}"

    async def check_rate_limit(self, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        if limit < 1 or window_seconds < 1:
            raise ValidationError(
                "Rate limit and window must be positive",
                details={"limit": limit, "window_seconds": window_seconds},
            )
        count, ttl = await self.store.incr_window(self._key(key), window_seconds)
        if ttl < 0:
            # key vanished between INCR and TTL; report a full window
            ttl = window_seconds
        return RateLimitResult(
            allowed=count <= limit,
            remaining=max(0, limit - count),
            reset_at=self._clock() + ttl,
            count=count,
            limit=limit,
        )

    async def enforce(self, key: str, limit: int, window_seconds: int, *, fail_open: bool = True) -> RateLimitResult:
        """Raise ``RateLimitedError`` when over the limit. Store outages allow the call unless ``fail_open`` is False."""
        try:
            result = await self.check_rate_limit(key, limit, window_seconds)
        except StoreUnavailableError:
            if not fail_open:
                raise
            logger.warning("Rate limiter unavailable, allowing request", key=key)
            return RateLimitResult(
                allowed=True,
                remaining=limit,
                reset_at=self._clock() + window_seconds,
                count=0,
                limit=limit,
            )
        if not result.allowed:
            raise RateLimitedError(
                "Too many requests",
                details={
                    "key": key,
                    "limit": limit,
                    "window_seconds": window_seconds,
                    "retry_after": max(0, int(result.reset_at - self._clock())),
                },
            )
        return result

    async def reset(self, key: str) -> bool:
        return await self.store.delete(self._key(key)) > 0
