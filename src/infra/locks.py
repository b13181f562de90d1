# src/infra/locks.py
"""
Redis distributed lock.
SET NX EX to acquire, owner-checked delete (Lua) to release.
Serializes saga handling per booking across worker instances.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.infra.redis_client import RedisClient


class LockNotAcquired(RuntimeError):
    """Raised when the lock stays busy for the whole wait budget."""


class DistributedLock:
    def __init__(
        self,
        redis: RedisClient,
        key: str,
        ttl_seconds: int = 30,
        wait_timeout: float = 10.0,
        poll_interval: float = 0.05,
    ) -> None:
        self.redis = redis
        self.key = f"lock:{key}"
        self.ttl = ttl_seconds
        self.wait_timeout = wait_timeout
        self.poll_interval = poll_interval
        self.token = str(uuid.uuid4())

    async def acquire(self) -> bool:
        """Single attempt. True on success."""
        return await self.redis.set(self.key, self.token, ttl=self.ttl, nx=True)

    async def acquire_wait(self) -> bool:
        """Polls until acquired or wait_timeout elapses."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.wait_timeout
        while True:
            if await self.acquire():
                return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(self.poll_interval)

    async def release(self) -> None:
        """Releases only if we still own the lock."""
        await self.redis.delete_if_equals(self.key, self.token)

    async def __aenter__(self) -> DistributedLock:
        if not await self.acquire_wait():
            raise LockNotAcquired(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, *args) -> None:
        await self.release()
