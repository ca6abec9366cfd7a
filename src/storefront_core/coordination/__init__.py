from .locks import DistributedLock, LockManager
from .ratelimit import RateLimiter, RateLimitResult

__all__ = ["DistributedLock", "LockManager", "RateLimiter", "RateLimitResult"]
