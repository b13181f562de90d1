# tests/infra/test_redis_client.py
"""
Tests for RedisClient (redis.asyncio mocked).
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import BaseModel

from src.infra.redis_client import RedisClient


class Sample(BaseModel):
    name: str
    count: int = 0


@pytest.fixture
def raw():
    client = MagicMock()
    for name in ("get", "set", "delete", "exists", "expire", "ttl", "eval",
                 "sadd", "srem", "sismember", "smembers", "ping"):
        setattr(client, name, AsyncMock())
    return client


@pytest.fixture
def redis_client(raw):
    RedisClient._instance = None
    instance = RedisClient()
    instance._client = raw
    yield instance
    RedisClient._instance = None


def _pipeline(raw, results):
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=results)
    raw.pipeline.return_value.__aenter__ = AsyncMock(return_value=pipe)
    raw.pipeline.return_value.__aexit__ = AsyncMock(return_value=False)
    return pipe


class TestRedisClient:

    def test_requires_connect(self) -> None:
        RedisClient._instance = None
        try:
            with pytest.raises(RuntimeError):
                _ = RedisClient().client
        finally:
            RedisClient._instance = None

    @pytest.mark.asyncio
    async def test_keys_are_namespaced(self, redis_client, raw) -> None:
        raw.get.return_value = "v"

        assert await redis_client.get("saga:b1") == "v"
        raw.get.assert_awaited_once_with("dispatch:saga:b1")

    @pytest.mark.asyncio
    async def test_set_nx_with_ttl(self, redis_client, raw) -> None:
        raw.set.return_value = None

        assert await redis_client.set("lock:x", "token", ttl=30, nx=True) is False
        raw.set.assert_awaited_once_with("dispatch:lock:x", "token", ex=30, nx=True)

    @pytest.mark.asyncio
    async def test_delete_if_equals_uses_script(self, redis_client, raw) -> None:
        raw.eval.return_value = 1

        assert await redis_client.delete_if_equals("lock:x", "token") is True
        args = raw.eval.await_args.args
        assert args[1:] == (1, "dispatch:lock:x", "token")

    @pytest.mark.asyncio
    async def test_model_round_trip(self, redis_client, raw) -> None:
        await redis_client.set_model("sample", Sample(name="a", count=2), ttl=60)
        stored = raw.set.await_args.args[1]
        raw.get.return_value = stored

        assert await redis_client.get_model("sample", Sample) == Sample(name="a", count=2)

    @pytest.mark.asyncio
    async def test_invalid_model_returns_none(self, redis_client, raw) -> None:
        raw.get.return_value = '{"count": "many"}'

        assert await redis_client.get_model("sample", Sample) is None

    @pytest.mark.asyncio
    async def test_invalid_json_returns_none(self, redis_client, raw) -> None:
        raw.get.return_value = "{oops"

        assert await redis_client.get_json("search-cache:c1") is None

    @pytest.mark.asyncio
    async def test_sadd_with_ttl_is_transactional(self, redis_client, raw) -> None:
        pipe = _pipeline(raw, [2, True])

        assert await redis_client.sadd_with_ttl("eligible:b1", ["d1", "d2"], 7200) == 2
        raw.pipeline.assert_called_once_with(transaction=True)
        pipe.sadd.assert_called_once_with("dispatch:eligible:b1", "d1", "d2")
        pipe.expire.assert_called_once_with("dispatch:eligible:b1", 7200)

    @pytest.mark.asyncio
    async def test_sadd_with_ttl_empty(self, redis_client, raw) -> None:
        assert await redis_client.sadd_with_ttl("eligible:b1", [], 7200) == 0
        raw.pipeline.assert_not_called()

    @pytest.mark.asyncio
    async def test_spop_all(self, redis_client, raw) -> None:
        pipe = _pipeline(raw, [{"d1", "d2"}, 1])

        assert await redis_client.spop_all("eligible:b1") == {"d1", "d2"}
        pipe.smembers.assert_called_once_with("dispatch:eligible:b1")
        pipe.delete.assert_called_once_with("dispatch:eligible:b1")

    @pytest.mark.asyncio
    async def test_health_check(self, redis_client, raw) -> None:
        raw.ping.return_value = True
        assert await redis_client.health_check() is True

        raw.ping.side_effect = ConnectionError("down")
        assert await redis_client.health_check() is False
