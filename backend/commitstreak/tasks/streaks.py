"""
Periodic streak refresh.

Beat runs refresh_all_streaks, which fans out one refresh_user_streak per
linked user so day rollover is settled without a user request.
"""

import asyncio
import logging
from typing import Any, Dict

from commitstreak.celery_app import celery_app
from commitstreak.config import settings
from commitstreak.core.redis import create_async_client
from commitstreak.repositories.day_bucket import DayBucketRepository
from commitstreak.repositories.user import StreakStateRepository
from commitstreak.services.exceptions import CredentialMissingError
from commitstreak.services.github.exceptions import CredentialInvalidError
from commitstreak.services.streak.locks import InProcessUserLocks, RedisUserLocks
from commitstreak.services.streak_service import StreakEngine
from commitstreak.services.user_directory import MongoUserDirectory
from commitstreak.tasks.base import StreakTask
from commitstreak.utils.clock import Deadline

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    base=StreakTask,
    name="commitstreak.tasks.streaks.refresh_all_streaks",
    queue=settings.CELERY_DEFAULT_QUEUE,
)
def refresh_all_streaks(self: StreakTask) -> Dict[str, Any]:
    user_ids = MongoUserDirectory(self.db).list_linked_user_ids()
    for user_id in user_ids:
        refresh_user_streak.delay(user_id)
    logger.info(f"Queued streak refresh for {len(user_ids)} users")
    return {"status": "queued", "users": len(user_ids)}


@celery_app.task(
    bind=True,
    base=StreakTask,
    name="commitstreak.tasks.streaks.refresh_user_streak",
    queue="streaks.refresh",
)
def refresh_user_streak(self: StreakTask, user_id: str) -> Dict[str, Any]:
    try:
        report = asyncio.run(_refresh(self.db, user_id))
    except (CredentialInvalidError, CredentialMissingError) as exc:
        logger.info(f"Skipping streak refresh for {user_id}: {exc}")
        return {"status": "skipped", "user_id": user_id, "reason": str(exc)}

    return {
        "status": "completed",
        "user_id": user_id,
        "current_streak": report.display_streak,
        "streak_status": report.status.value,
        "partial": report.partial,
    }


async def _refresh(db, user_id: str):
    """
    One refresh on a fresh event loop.

    asyncio.run gives each task its own loop, so the Redis client used for
    the user lock is created and closed inside it.
    """
    redis_client = None
    if settings.STREAK_LOCK_BACKEND == "redis":
        redis_client = create_async_client()
        locks = RedisUserLocks(client=redis_client)
    else:
        locks = InProcessUserLocks()

    engine = StreakEngine(
        users=MongoUserDirectory(db),
        buckets=DayBucketRepository(db),
        streaks=StreakStateRepository(db),
        locks=locks,
    )
    try:
        deadline = Deadline.after(engine.clock, settings.STREAK_DEADLINE_SECONDS)
        return await engine.refresh_streak(user_id, deadline, raise_upstream_errors=True)
    finally:
        if redis_client is not None:
            await redis_client.aclose()

