# tests/core/test_eligibility_store.py
"""
Tests for eligible/rejected driver sets.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.core.eligibility.store import EligibilityStore, RejectionStore


class TestEligibilityStore:

    @pytest.mark.asyncio
    async def test_grant_and_check(self, eligibility: EligibilityStore) -> None:
        added = await eligibility.grant("b1", ["d2", "d1"])

        assert added == 2
        assert await eligibility.is_eligible("b1", "d1")
        assert not await eligibility.is_eligible("b1", "d3")
        assert not await eligibility.is_eligible("b2", "d1")

    @pytest.mark.asyncio
    async def test_grant_empty_is_noop(self, eligibility: EligibilityStore, fake_redis) -> None:
        assert await eligibility.grant("b1", []) == 0
        assert not await fake_redis.exists("eligible:b1")

    @pytest.mark.asyncio
    async def test_grant_is_idempotent(self, eligibility: EligibilityStore) -> None:
        await eligibility.grant("b1", ["d1"])
        assert await eligibility.grant("b1", ["d1"]) == 0
        assert await eligibility.list("b1") == ["d1"]

    @pytest.mark.asyncio
    async def test_set_expires(self, eligibility: EligibilityStore, fake_redis) -> None:
        await eligibility.grant("b1", ["d1"], ttl=60)

        fake_redis.advance(59)
        assert await eligibility.is_eligible("b1", "d1")

        fake_redis.advance(1)
        assert not await eligibility.is_eligible("b1", "d1")

    @pytest.mark.asyncio
    async def test_default_ttl_from_settings(self, eligibility: EligibilityStore, fake_redis) -> None:
        from src.config import settings

        await eligibility.grant("b1", ["d1"])

        assert await fake_redis.ttl("eligible:b1") == settings.redis_ttl.ELIGIBLE_TTL

    @pytest.mark.asyncio
    async def test_revoke_all_returns_previous_members(self, eligibility: EligibilityStore) -> None:
        await eligibility.grant("b1", ["d3", "d1", "d2"])

        revoked = await eligibility.revoke_all("b1")

        assert revoked == ["d1", "d2", "d3"]
        assert await eligibility.list("b1") == []
        assert await eligibility.revoke_all("b1") == []

    @pytest.mark.asyncio
    async def test_unreadable_set_means_ineligible(self) -> None:
        redis = AsyncMock()
        redis.sismember = AsyncMock(side_effect=ConnectionError("redis down"))
        store = EligibilityStore(redis)

        assert await store.is_eligible("b1", "d1") is False

    @pytest.mark.asyncio
    async def test_ready_marker_window(self, eligibility: EligibilityStore, fake_redis) -> None:
        await eligibility.mark_ready("b1", ttl=120)
        assert await eligibility.is_ready_fresh("b1")

        fake_redis.advance(120)
        assert not await eligibility.is_ready_fresh("b1")

    @pytest.mark.asyncio
    async def test_clear_ready(self, eligibility: EligibilityStore) -> None:
        await eligibility.mark_ready("b1")
        await eligibility.clear_ready("b1")

        assert not await eligibility.is_ready_fresh("b1")


class TestRejectionStore:

    @pytest.mark.asyncio
    async def test_add_list_clear(self, rejections: RejectionStore) -> None:
        await rejections.add("b1", "d2")
        await rejections.add("b1", "d1")
        await rejections.add("b1", "d1")

        assert await rejections.list("b1") == ["d1", "d2"]

        await rejections.clear("b1")
        assert await rejections.list("b1") == []

    @pytest.mark.asyncio
    async def test_rejections_expire(self, fake_redis) -> None:
        store = RejectionStore(fake_redis, ttl=10)
        await store.add("b1", "d1")

        fake_redis.advance(10)

        assert await store.list("b1") == []
