# src/infra/redis_client.py
"""
Redis client for dispatch state: eligibility sets, caches, saga state and locks.
Supports typed operations with Pydantic models.
"""

from __future__ import annotations

import json
from typing import Type, TypeVar

import redis.asyncio as redis
from pydantic import BaseModel

from src.common.logger import get_logger, log_error, log_info
from src.common.constants import TypeMsg

logger = get_logger("redis")

T = TypeVar("T", bound=BaseModel)

# Deletes the key only if it still holds the caller's token
_RELEASE_IF_OWNER_LUA = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class RedisClient:
    """
    Async Redis client.
    Supports:
    - typed get/set with Pydantic models
    - set operations with atomic TTL (MULTI/EXEC)
    - owner-checked delete for distributed locks
    """

    _instance: RedisClient | None = None
    _client: redis.Redis | None = None

    def __new__(cls) -> RedisClient:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        """Runs once thanks to the singleton."""
        if hasattr(self, "_initialized"):
            return
        self._initialized = True
        self._client = None
        self._namespace = "dispatch"

    @property
    def client(self) -> redis.Redis:
        """Underlying redis.asyncio client."""
        if self._client is None:
            raise RuntimeError("Redis client is not initialized. Call connect() first.")
        return self._client

    def _make_key(self, key: str) -> str:
        """Prefixes the key with the namespace."""
        return f"{self._namespace}:{key}"

    async def connect(
        self,
        url: str | None = None,
        max_connections: int = 50,
        namespace: str | None = None,
    ) -> None:
        """
        Connects to Redis.

        Args:
            url: Redis URL (taken from config when None)
            max_connections: Pool size
            namespace: Key prefix
        """
        if self._client is not None:
            return

        if url is None:
            from src.config import settings
            url = settings.redis.url
            max_connections = settings.redis.REDIS_MAX_CONNECTIONS
            namespace = namespace or settings.redis.REDIS_NAMESPACE

        if namespace:
            self._namespace = namespace

        await log_info("Connecting to Redis...", type_msg=TypeMsg.INFO)

        self._client = redis.from_url(
            url,
            max_connections=max_connections,
            decode_responses=True,
        )

        await self._client.ping()

        await log_info("Redis connection established", type_msg=TypeMsg.INFO)

    async def disconnect(self) -> None:
        """Closes the Redis connection."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            await log_info("Redis connection closed", type_msg=TypeMsg.INFO)

    # =========================================================================
    # BASIC OPERATIONS
    # =========================================================================

    async def get(self, key: str) -> str | None:
        """Reads a string value."""
        return await self.client.get(self._make_key(key))

    async def set(
        self,
        key: str,
        value: str,
        ttl: int | None = None,
        nx: bool = False,
    ) -> bool:
        """
        Writes a string value.

        Args:
            key: Key
            value: Value
            ttl: Lifetime in seconds
            nx: Only write when the key does not exist

        Returns:
            True if the value was written
        """
        result = await self.client.set(
            self._make_key(key),
            value,
            ex=ttl,
            nx=nx,
        )
        return bool(result)

    async def delete(self, *keys: str) -> int:
        """Deletes keys."""
        return await self.client.delete(*(self._make_key(k) for k in keys))

    async def exists(self, key: str) -> bool:
        """Checks whether the key exists."""
        return await self.client.exists(self._make_key(key)) > 0

    async def expire(self, key: str, ttl: int) -> bool:
        """Sets a key TTL."""
        return await self.client.expire(self._make_key(key), ttl)

    async def ttl(self, key: str) -> int:
        """Remaining key lifetime."""
        return await self.client.ttl(self._make_key(key))

    async def delete_if_equals(self, key: str, value: str) -> bool:
        """Deletes the key only when it still holds `value`."""
        result = await self.client.eval(_RELEASE_IF_OWNER_LUA, 1, self._make_key(key), value)
        return bool(result)

    # =========================================================================
    # TYPED OPERATIONS (PYDANTIC)
    # =========================================================================

    async def get_model(self, key: str, model_class: Type[T]) -> T | None:
        """
        Reads and validates a Pydantic model.

        Args:
            key: Key
            model_class: Pydantic model class

        Returns:
            Model instance or None
        """
        data = await self.get(key)
        if data is None:
            return None

        try:
            return model_class.model_validate_json(data)
        except Exception as e:
            await log_error(f"Failed to deserialize {model_class.__name__}: {e}")
            return None

    async def set_model(
        self,
        key: str,
        model: BaseModel,
        ttl: int | None = None,
    ) -> bool:
        """Serializes and stores a Pydantic model."""
        return await self.set(key, model.model_dump_json(), ttl=ttl)

    # =========================================================================
    # JSON OPERATIONS
    # =========================================================================

    async def get_json(self, key: str) -> dict | list | None:
        """Reads and parses JSON."""
        data = await self.get(key)
        if data is None:
            return None

        try:
            return json.loads(data)
        except json.JSONDecodeError:
            return None

    async def set_json(
        self,
        key: str,
        data: dict | list,
        ttl: int | None = None,
    ) -> bool:
        """Serializes and stores JSON."""
        return await self.set(key, json.dumps(data, ensure_ascii=False, default=str), ttl=ttl)

    # =========================================================================
    # SET OPERATIONS
    # =========================================================================

    async def sadd(self, key: str, *members: str) -> int:
        """Adds members to a set."""
        return await self.client.sadd(self._make_key(key), *members)

    async def sadd_with_ttl(self, key: str, members: list[str], ttl: int) -> int:
        """
        Adds members and (re)sets the set TTL in one transaction.

        Returns:
            Number of newly added members
        """
        if not members:
            return 0
        full_key = self._make_key(key)
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.sadd(full_key, *members)
            pipe.expire(full_key, ttl)
            added, _ = await pipe.execute()
        return int(added)

    async def srem(self, key: str, *members: str) -> int:
        """Removes members from a set."""
        return await self.client.srem(self._make_key(key), *members)

    async def sismember(self, key: str, member: str) -> bool:
        """Set membership check."""
        return bool(await self.client.sismember(self._make_key(key), member))

    async def smembers(self, key: str) -> set[str]:
        """All members of a set."""
        return await self.client.smembers(self._make_key(key))

    async def spop_all(self, key: str) -> set[str]:
        """Reads every member and deletes the set in one transaction."""
        full_key = self._make_key(key)
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.smembers(full_key)
            pipe.delete(full_key)
            members, _ = await pipe.execute()
        return set(members or ())

    # =========================================================================
    # HEALTH CHECK
    # =========================================================================

    async def health_check(self) -> bool:
        """
        Checks the Redis connection.

        Returns:
            True if Redis answers PING
        """
        try:
            return await self.client.ping()
        except Exception as e:
            await log_error(f"Redis health check failed: {e}")
            return False


def get_redis() -> RedisClient:
    """Returns the global RedisClient."""
    return RedisClient()


async def init_redis() -> None:
    """Connects the global RedisClient using configuration."""
    from src.config import settings

    redis_client = get_redis()
    await redis_client.connect(
        url=settings.redis.url,
        max_connections=settings.redis.REDIS_MAX_CONNECTIONS,
        namespace=settings.redis.REDIS_NAMESPACE,
    )
    await log_info(
        f"Redis connected: {settings.redis.REDIS_HOST}:{settings.redis.REDIS_PORT}/{settings.redis.REDIS_DB}",
        type_msg=TypeMsg.INFO,
    )


async def close_redis() -> None:
    """Closes the global Redis connection."""
    redis_client = get_redis()
    await redis_client.disconnect()
    await log_info("Redis disconnected", type_msg=TypeMsg.INFO)
