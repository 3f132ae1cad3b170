"""Shared dependencies for the API routers."""

from __future__ import annotations

from commitstreak.database.mongo import get_database
from commitstreak.repositories.day_bucket import DayBucketRepository
from commitstreak.repositories.user import StreakStateRepository
from commitstreak.services.streak.locks import build_user_locks
from commitstreak.services.streak_service import StreakEngine
from commitstreak.services.user_directory import MongoUserDirectory

_engine: StreakEngine | None = None


def build_engine() -> StreakEngine:
    db = get_database()
    return StreakEngine(
        users=MongoUserDirectory(db),
        buckets=DayBucketRepository(db),
        streaks=StreakStateRepository(db),
        locks=build_user_locks(),
    )


def get_streak_engine() -> StreakEngine:
    """
    Process-wide engine.

    Quota trackers and in-flight day fetches live on the engine, so every
    request in the process must share one instance.
    """
    global _engine
    if _engine is None:
        _engine = build_engine()
    return _engine
