"""
Freshness layer in front of single-day queries.

Complete buckets are served straight from the store. Incomplete ones
trigger a fetch-and-aggregate cycle for that day, and concurrent callers
asking for the same (user, day) share the one in-flight cycle.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import Awaitable, Callable, Dict, List, Tuple

from pydantic import BaseModel, Field

from commitstreak.services.commits.models import DayBucket, RepositoryFailure
from commitstreak.services.protocols import DayBucketStore
from commitstreak.utils.prometheus_metrics import record_day_lookup

logger = logging.getLogger(__name__)


class DayLoad(BaseModel):
    """A bucket plus how it was obtained."""

    bucket: DayBucket
    from_cache: bool = False
    partial: bool = False
    failures: List[RepositoryFailure] = Field(default_factory=list)


DayLoader = Callable[[], Awaitable[DayLoad]]


class DayCache:
    def __init__(self, store: DayBucketStore):
        self._store = store
        self._inflight: Dict[Tuple[str, date], asyncio.Task] = {}

    async def get_day(self, user_id: str, day: date, loader: DayLoader) -> DayLoad:
        cached = self._store.get(user_id, day)
        if cached is not None and cached.is_complete:
            record_day_lookup("hit")
            return DayLoad(bucket=cached, from_cache=True)

        key = (user_id, day)
        task = self._inflight.get(key)
        if task is None:
            record_day_lookup("miss")
            task = asyncio.create_task(self._load(user_id, day, loader))
            self._inflight[key] = task
            task.add_done_callback(lambda done, key=key: self._forget(key, done))
        else:
            logger.debug(f"Joining in-flight fetch for {user_id} on {day}")
            record_day_lookup("coalesced")

        # One caller giving up must not cancel the fetch others are waiting on.
        return await asyncio.shield(task)

    def put(self, user_id: str, bucket: DayBucket) -> DayBucket:
        """Merge a freshly aggregated bucket into the stored one and persist it."""
        stored = self._store.get(user_id, bucket.day)
        merged = stored.merge(bucket) if stored is not None else bucket
        if merged is not stored:
            self._store.save(user_id, merged)
        return merged

    def in_flight(self) -> int:
        return len(self._inflight)

    async def _load(self, user_id: str, day: date, loader: DayLoader) -> DayLoad:
        load = await loader()
        merged = self.put(user_id, load.bucket)
        return load.model_copy(update={"bucket": merged})

    def _forget(self, key: Tuple[str, date], task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled() and task.exception() is not None:
            logger.info(f"Fetch for {key[1]} failed: {task.exception()}")
