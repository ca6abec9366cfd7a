from __future__ import annotations

import asyncio
import time
from typing import Optional
from uuid import uuid4

import structlog

from storefront_core.cache.cache_protocol import ICacheStore
from storefront_core.exceptions import LockNotAcquiredError, ValidationError

logger = structlog.get_logger(__name__)


class DistributedLock:
    """
    Single-owner lock shared across service instances.

    ``acquire`` is SET NX EX with a freshly generated owner token; ``release``
    and ``extend`` only act while the stored token is still ours, so a holder
    whose lock expired and was taken by someone else cannot release it.
    """

    def __init__(self, store: ICacheStore, name: str, ttl: int = 30) -> None:
        if ttl < 1:
            raise ValidationError("Lock ttl must be at least one second", details={"ttl": ttl})
        self.store = store
        self.name = name
        self.key = store.key(f"lock:{name}")
        self.ttl = ttl
        self.token: Optional[str] = None

    @property
    def held(self) -> bool:
        return self.token is not None

    async def acquire(self) -> bool:
        token = uuid4().hex
        if await self.store.set_if_absent(self.key, token, self.ttl):
            self.token = token
            return True
        return False

    async def acquire_blocking(self, timeout: float, poll_interval: float = 0.1) -> bool:
        deadline = time.monotonic() + timeout
        while True:
            if await self.acquire():
                return True
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(poll_interval)

    async def release(self) -> bool:
        if self.token is None:
            return False
        token, self.token = self.token, None
        released = await self.store.compare_and_delete(self.key, token)
        if not released:
            logger.warning("Lock expired before release", lock=self.name)
        return released

    async def extend(self, ttl: Optional[int] = None) -> bool:
        if self.token is None:
            return False
        return await self.store.compare_and_expire(self.key, self.token, ttl or self.ttl)

    async def __aenter__(self) -> "DistributedLock":
        if not await self.acquire():
            raise LockNotAcquiredError(f"Lock {self.name!r} is held by another owner", details={"lock": self.name})
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.release()


class LockManager:
    def __init__(self, store: ICacheStore, default_ttl: int = 30) -> None:
        self.store = store
        self.default_ttl = default_ttl

    def lock(self, name: str, ttl: Optional[int] = None) -> DistributedLock:
        return DistributedLock(self.store, name, ttl or self.default_ttl)

    async def acquire_lock(self, name: str, ttl: Optional[int] = None) -> Optional[DistributedLock]:
        """Return the held lock, or None when another owner holds it."""
        lock = self.lock(name, ttl)
        return lock if await lock.acquire() else None

    async def release_lock(self, lock: DistributedLock) -> bool:
        return await lock.release()
