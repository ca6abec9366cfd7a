"""
Auth-side persistence on top of the tagged cache: login sessions, refresh
tokens and one-time codes (email verification, password reset).
"""
from __future__ import annotations

from typing import Any, Optional

import structlog

from storefront_core.cache.tagged_cache import CacheOptions, CacheTTL, TaggedCache

logger = structlog.get_logger(__name__)

SESSION_TTL = CacheTTL.DAY
REFRESH_TOKEN_TTL = CacheTTL.WEEK
CODE_TTL = CacheTTL.MEDIUM


class SessionStore:
    def __init__(self, cache: TaggedCache) -> None:
        self.cache = cache

    # sessions
    async def set_session(self, session_id: str, data: dict[str, Any], ttl: int = SESSION_TTL) -> None:
        await self.cache.set(f"session:{session_id}", data, CacheOptions(ttl=ttl))

    async def get_session(self, session_id: str) -> Optional[dict[str, Any]]:
        return await self.cache.get(f"session:{session_id}")

    async def delete_session(self, session_id: str) -> bool:
        return await self.cache.delete(f"session:{session_id}")

    # refresh tokens, one per user
    async def store_refresh_token(self, user_id: str, token: str, ttl: int = REFRESH_TOKEN_TTL) -> None:
        await self.cache.set(f"refresh_token:{user_id}", token, CacheOptions(ttl=ttl))

    async def get_refresh_token(self, user_id: str) -> Optional[str]:
        return await self.cache.get(f"refresh_token:{user_id}")

    async def revoke_refresh_token(self, user_id: str) -> bool:
        return await self.cache.delete(f"refresh_token:{user_id}")

    # one-time codes
    async def store_code(self, purpose: str, subject: str, code: str, ttl: int = CODE_TTL) -> None:
        await self.cache.set(f"code:{purpose}:{subject}", code, CacheOptions(ttl=ttl))

    async def consume_code(self, purpose: str, subject: str, code: str) -> bool:
        """
        True exactly once for a matching code. The code is removed on success;
        a wrong code leaves it in place until it expires.
        """
        key = f"code:{purpose}:{subject}"
        stored = await self.cache.get(key)
        if stored is None or stored != code:
            return False
        # the delete decides the winner between concurrent consumers
        if not await self.cache.delete(key):
            logger.info("One-time code already consumed", purpose=purpose)
            return False
        return True
