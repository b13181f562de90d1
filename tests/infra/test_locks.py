# tests/infra/test_locks.py
"""
Tests for the Redis distributed lock.
"""

from __future__ import annotations

import pytest

from src.infra.locks import DistributedLock, LockNotAcquired


class TestDistributedLock:

    @pytest.mark.asyncio
    async def test_single_owner(self, fake_redis) -> None:
        first = DistributedLock(fake_redis, "saga:b1:rematch")
        second = DistributedLock(fake_redis, "saga:b1:rematch")

        assert await first.acquire() is True
        assert await second.acquire() is False
        assert await fake_redis.get("lock:saga:b1:rematch") == first.token

    @pytest.mark.asyncio
    async def test_release_only_by_owner(self, fake_redis) -> None:
        owner = DistributedLock(fake_redis, "k")
        other = DistributedLock(fake_redis, "k")
        await owner.acquire()

        await other.release()
        assert await fake_redis.exists("lock:k")

        await owner.release()
        assert not await fake_redis.exists("lock:k")

    @pytest.mark.asyncio
    async def test_expired_lock_can_be_taken(self, fake_redis) -> None:
        stale = DistributedLock(fake_redis, "k", ttl_seconds=5)
        await stale.acquire()
        fake_redis.advance(6)

        assert await DistributedLock(fake_redis, "k").acquire() is True

    @pytest.mark.asyncio
    async def test_context_manager_releases(self, fake_redis) -> None:
        async with DistributedLock(fake_redis, "k"):
            assert await fake_redis.exists("lock:k")

        assert not await fake_redis.exists("lock:k")

    @pytest.mark.asyncio
    async def test_busy_lock_raises_after_wait(self, fake_redis) -> None:
        await DistributedLock(fake_redis, "k").acquire()

        with pytest.raises(LockNotAcquired):
            async with DistributedLock(fake_redis, "k", wait_timeout=0.05, poll_interval=0.01):
                pass
