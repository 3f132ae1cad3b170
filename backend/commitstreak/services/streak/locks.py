"""
Per-user single-writer locks.

Streaks are serial per user, so every write to a user's buckets and streak
record happens under that user's lock. Different users never contend.
"""

from __future__ import annotations

import asyncio
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator, Protocol

from commitstreak.config import settings
from commitstreak.core.redis import AsyncRedisLock


class UserLocks(Protocol):
    def hold(self, user_id: str) -> "AsyncIterator[None]":
        ...


class InProcessUserLocks:
    """
    asyncio locks keyed by user id; enough for a single worker process.

    A lock lives only while some caller holds or waits on it.
    """

    def __init__(self) -> None:
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        async with lock:
            yield


class RedisUserLocks:
    """Redis locks so API and Celery workers serialize on the same user."""

    def __init__(self, timeout: int | None = None, client=None) -> None:
        self._timeout = timeout or settings.STREAK_LOCK_TIMEOUT
        self._client = client

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        async with AsyncRedisLock(
            f"streak:{user_id}",
            timeout=self._timeout,
            blocking_timeout=self._timeout,
            client=self._client,
        ):
            yield


def build_user_locks() -> UserLocks:
    if settings.STREAK_LOCK_BACKEND == "redis":
        return RedisUserLocks()
    return InProcessUserLocks()
