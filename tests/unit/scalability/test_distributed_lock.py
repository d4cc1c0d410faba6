"""DistributedLock: acquire/release, holder-only release, bounded retry in hold()."""

import asyncio

import pytest

from vaultguard.scalability.distributed_lock import DistributedLock
from vaultguard.scalability.exceptions import LockUnavailableError
from vaultguard.scalability.store import InMemorySharedStore


@pytest.fixture
def backend():
    return InMemorySharedStore()


@pytest.fixture
def lock(backend):
    return DistributedLock(backend=backend, attempts=3, retry_delay=0.001)


@pytest.mark.asyncio
async def test_acquire_release(lock):
    token = await lock.acquire("session:u1", ttl=60)
    assert token is not None
    assert await lock.release("session:u1", token) is True
    # Can acquire again after release
    assert await lock.acquire("session:u1", ttl=60) is not None


@pytest.mark.asyncio
async def test_acquire_fails_when_held(lock):
    await lock.acquire("key1", ttl=60)
    assert await lock.acquire("key1", ttl=60) is None


@pytest.mark.asyncio
async def test_release_only_holder(backend, lock):
    token = await lock.acquire("key1", ttl=60)
    assert await lock.release("key1", "not-the-holder") is False
    assert await backend.get("lock:key1") == token
    assert await lock.release("key1", token) is True
    assert await backend.get("lock:key1") is None


@pytest.mark.asyncio
async def test_expired_holder_cannot_release_successor(clock):
    backend = InMemorySharedStore(clock=clock)
    lock = DistributedLock(backend=backend)
    first = await lock.acquire("session:u1", ttl=5)
    clock.advance(6)
    second = await lock.acquire("session:u1", ttl=5)
    assert second is not None

    assert await lock.release("session:u1", first) is False
    assert await backend.get("lock:session:u1") == second
    assert await lock.acquire("session:u1", ttl=5) is None


@pytest.mark.asyncio
async def test_hold_raises_when_retry_budget_spent(backend, lock):
    await backend.set_nx_ex("lock:session:u1", "someone-else", 60)
    with pytest.raises(LockUnavailableError):
        async with lock.hold("session:u1"):
            pass


@pytest.mark.asyncio
async def test_hold_serializes_concurrent_sections(backend):
    lock = DistributedLock(backend=backend, attempts=200, retry_delay=0.001)
    inside = 0
    peak = 0

    async def critical_section():
        nonlocal inside, peak
        async with lock.hold("session:u1"):
            inside += 1
            peak = max(peak, inside)
            await asyncio.sleep(0.002)
            inside -= 1

    await asyncio.gather(*(critical_section() for _ in range(5)))
    assert peak == 1
    assert await backend.get("lock:session:u1") is None
