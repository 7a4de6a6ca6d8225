"""
Tests for ReservationLocks with the in-process fallback.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError

from app.core.booking.errors import LockTimeoutError
from app.infra.redis import ReservationLocks


class TestReservationLocks:
    """Test per-key locking without Redis."""

    @pytest.fixture
    def locks(self):
        return ReservationLocks(None, timeout=1, wait=1)

    @pytest.mark.asyncio
    async def test_lock_entry_removed_after_hold(self, locks):
        async with locks.hold("biz-1:t1:2026-03-03"):
            assert "biz-1:t1:2026-03-03" in locks._local

        assert locks._local == {}
        assert locks._local_users == {}

    @pytest.mark.asyncio
    async def test_contended_holds_run_in_turn(self, locks):
        order = []

        async def book(name):
            async with locks.hold("biz-1:t1:2026-03-03"):
                order.append(f"{name} in")
                await asyncio.sleep(0.01)
                order.append(f"{name} out")

        await asyncio.gather(book("a"), book("b"), book("c"))

        assert order == ["a in", "a out", "b in", "b out", "c in", "c out"]
        assert locks._local == {}

    @pytest.mark.asyncio
    async def test_timeout_leaves_no_entry(self):
        locks = ReservationLocks(None, timeout=1, wait=0.01)

        async with locks.hold("k"):
            with pytest.raises(LockTimeoutError) as exc_info:
                async with locks.hold("k"):
                    pass
            assert exc_info.value.details == {"lock": "k"}

        assert locks._local == {}

    @pytest.mark.asyncio
    async def test_entry_removed_when_block_raises(self, locks):
        with pytest.raises(RuntimeError):
            async with locks.hold("k"):
                raise RuntimeError("boom")

        assert locks._local == {}

    @pytest.mark.asyncio
    async def test_hold_all_takes_every_key(self, locks):
        async with locks.hold_all(["b", "a", "b"]):
            assert sorted(locks._local) == ["a", "b"]
            with pytest.raises(LockTimeoutError):
                async with _quick(locks).hold("a"):
                    pass

        assert locks._local == {}

    @pytest.mark.asyncio
    async def test_redis_failure_falls_back_to_local(self):
        lock = MagicMock()
        lock.acquire = AsyncMock(side_effect=ConnectionError("down"))
        client = MagicMock()
        client.lock.return_value = lock
        locks = ReservationLocks(client, timeout=1, wait=1)

        async with locks.hold("k"):
            assert "k" in locks._local

        assert locks._local == {}


def _quick(locks: ReservationLocks) -> ReservationLocks:
    """Same local lock map, with a short wait."""
    other = ReservationLocks(None, timeout=1, wait=0.01)
    other._local = locks._local
    other._local_users = locks._local_users
    return other
