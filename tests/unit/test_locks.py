import asyncio

import pytest

from storefront_core.coordination.locks import DistributedLock, LockManager
from storefront_core.exceptions import ConflictError, LockNotAcquiredError


async def test_second_acquire_fails_until_ttl_expires(store):
    locks = LockManager(store)
    first = await locks.acquire_lock("l", 1)
    assert first is not None
    assert await locks.acquire_lock("l", 1) is None

    await asyncio.sleep(1.2)
    assert await locks.acquire_lock("l", 1) is not None


async def test_release_frees_the_lock(store):
    locks = LockManager(store)
    lock = await locks.acquire_lock("job", 30)
    assert await locks.release_lock(lock)
    assert await locks.acquire_lock("job", 30) is not None


async def test_stale_owner_cannot_release_new_owner(store):
    stale = DistributedLock(store, "shared", ttl=1)
    assert await stale.acquire()
    await asyncio.sleep(1.2)

    current = DistributedLock(store, "shared", ttl=30)
    assert await current.acquire()

    assert not await stale.release()
    assert not await DistributedLock(store, "shared").acquire()
    assert await current.release()


async def test_tokens_differ_between_acquisitions(store):
    lock = DistributedLock(store, "t", ttl=30)
    await lock.acquire()
    first = lock.token
    await lock.release()
    await lock.acquire()
    assert lock.token != first


async def test_extend_only_while_owned(store):
    lock = DistributedLock(store, "ext", ttl=5)
    assert not await lock.extend()
    await lock.acquire()
    assert await lock.extend(60)
    assert await store.ttl(lock.key) > 5


async def test_context_manager_raises_when_busy(store):
    async with DistributedLock(store, "cm", ttl=30):
        with pytest.raises(LockNotAcquiredError) as exc:
            async with DistributedLock(store, "cm", ttl=30):
                pass
        assert isinstance(exc.value, ConflictError)
    assert await DistributedLock(store, "cm").acquire()


async def test_acquire_blocking_waits_for_expiry(store):
    assert await DistributedLock(store, "b", ttl=1).acquire()
    assert not await DistributedLock(store, "b").acquire_blocking(timeout=0.2, poll_interval=0.05)
    assert await DistributedLock(store, "b").acquire_blocking(timeout=2, poll_interval=0.1)
