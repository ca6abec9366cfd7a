import asyncio

import pytest

from storefront_core.coordination.ratelimit import RateLimiter
from storefront_core.exceptions import RateLimitedError, StoreUnavailableError, ValidationError


async def test_fixed_window_allows_limit_then_blocks(store):
    limiter = RateLimiter(store)
    results = [await limiter.check_rate_limit("x", 3, 60) for _ in range(4)]

    assert [r.allowed for r in results] == [True, True, True, False]
    assert [r.remaining for r in results] == [2, 1, 0, 0]
    assert results[-1].count == 4


async def test_new_window_starts_fresh(store):
    limiter = RateLimiter(store)
    for _ in range(2):
        await limiter.check_rate_limit("burst", 2, 1)
    assert not (await limiter.check_rate_limit("burst", 2, 1)).allowed

    await asyncio.sleep(1.2)
    result = await limiter.check_rate_limit("burst", 2, 1)
    assert result.allowed
    assert result.count == 1


async def test_expiry_is_armed_on_first_increment_only(store):
    limiter = RateLimiter(store, clock=lambda: 1000.0)
    first = await limiter.check_rate_limit("w", 10, 60)
    ttl_after_first = await store.ttl(store.key("rate_limit:w"))
    await limiter.check_rate_limit("w", 10, 60)

    assert 0 < ttl_after_first <= 60
    assert await store.ttl(store.key("rate_limit:w")) <= ttl_after_first
    assert 1000.0 < first.reset_at <= 1060.0


async def test_counter_without_expiry_is_repaired(store):
    await store.set(store.key("rate_limit:stuck"), "5")
    await RateLimiter(store).check_rate_limit("stuck", 10, 30)
    assert 0 < await store.ttl(store.key("rate_limit:stuck")) <= 30


async def test_enforce_raises_with_retry_after(store):
    limiter = RateLimiter(store)
    await limiter.enforce("login:alice", 1, 60)
    with pytest.raises(RateLimitedError) as exc:
        await limiter.enforce("login:alice", 1, 60)
    assert exc.value.status_code == 429
    assert 0 <= exc.value.details["retry_after"] <= 60


async def test_reset_clears_window(store):
    limiter = RateLimiter(store)
    await limiter.check_rate_limit("r", 1, 60)
    assert await limiter.reset("r")
    assert (await limiter.check_rate_limit("r", 1, 60)).allowed


@pytest.mark.parametrize("limit,window", [(0, 60), (5, 0)])
async def test_rejects_non_positive_arguments(store, limit, window):
    with pytest.raises(ValidationError):
        await RateLimiter(store).check_rate_limit("x", limit, window)


class _DownStore:
    def key(self, *parts):
        return ":".join(parts)

    async def incr_window(self, key, window_seconds):
        raise StoreUnavailableError("down")


async def test_enforce_fails_open_by_default():
    limiter = RateLimiter(_DownStore())
    assert (await limiter.enforce("x", 1, 60)).allowed
    with pytest.raises(StoreUnavailableError):
        await limiter.enforce("x", 1, 60, fail_open=False)


def test_tenant_key_is_scoped():
    from uuid import uuid4

    tid = uuid4()
    assert RateLimiter.tenant_key(tid, "checkout") == f"t:{tid.hex}:checkout"
