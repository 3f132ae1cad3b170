"""Tests for per-user locks."""

import asyncio
import gc
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from commitstreak.services.streak.locks import (
    InProcessUserLocks,
    RedisUserLocks,
    build_user_locks,
)


@pytest.mark.asyncio
async def test_in_process_lock_serializes_same_user():
    locks = InProcessUserLocks()
    order = []

    async def critical(name):
        async with locks.hold("u1"):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(critical("a"), critical("b"))

    assert order == ["a-in", "a-out", "b-in", "b-out"]


@pytest.mark.asyncio
async def test_in_process_locks_are_released_with_their_users():
    locks = InProcessUserLocks()

    async with locks.hold("u1"):
        assert len(locks._locks) == 1
    gc.collect()

    assert len(locks._locks) == 0


@pytest.mark.asyncio
async def test_in_process_lock_does_not_block_other_users():
    locks = InProcessUserLocks()

    async with locks.hold("u1"):
        await asyncio.wait_for(_enter(locks, "u2"), timeout=1)


async def _enter(locks, user_id):
    async with locks.hold(user_id):
        return True


def _redis_with_lock(acquired=True):
    lock = MagicMock()
    lock.acquire = AsyncMock(return_value=acquired)
    lock.release = AsyncMock()
    client = MagicMock()
    client.lock.return_value = lock
    return client, lock


@pytest.mark.asyncio
async def test_redis_lock_uses_user_key():
    client, lock = _redis_with_lock()
    locks = RedisUserLocks(timeout=60, client=client)

    async with locks.hold("u1"):
        pass

    client.lock.assert_called_once_with("lock:streak:u1", timeout=60, blocking_timeout=60)
    lock.acquire.assert_awaited_once()
    lock.release.assert_awaited_once()


@pytest.mark.asyncio
async def test_redis_lock_timeout():
    client, _ = _redis_with_lock(acquired=False)
    locks = RedisUserLocks(timeout=5, client=client)

    with pytest.raises(TimeoutError):
        async with locks.hold("u1"):
            pass


def test_build_user_locks_follows_settings():
    with patch("commitstreak.services.streak.locks.settings") as mock_settings:
        mock_settings.STREAK_LOCK_BACKEND = "redis"
        mock_settings.STREAK_LOCK_TIMEOUT = 30
        assert isinstance(build_user_locks(), RedisUserLocks)

        mock_settings.STREAK_LOCK_BACKEND = "memory"
        assert isinstance(build_user_locks(), InProcessUserLocks)
