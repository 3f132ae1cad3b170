"""User repository: time zone and the embedded streak record"""

from datetime import date, datetime, timezone
from typing import Optional

from pymongo.database import Database

from commitstreak.entities.user import EmbeddedStreak, User
from commitstreak.services.streak.models import StreakState

from .base import BaseRepository


class UserRepository(BaseRepository[User]):
    def __init__(self, db: Database):
        super().__init__(db, "users", User)


class StreakStateRepository:
    """
    Streak records embedded in the users collection under `streak`.

    The engine is the only writer of this field.
    """

    def __init__(self, db: Database):
        self.users = UserRepository(db)

    def get(self, user_id: str) -> Optional[StreakState]:
        user = self.users.find_by_id(user_id)
        if user is None or user.streak is None:
            return None
        stored = user.streak
        return StreakState(
            current_streak=stored.current_streak,
            last_active_day=(
                date.fromisoformat(stored.last_active_day) if stored.last_active_day else None
            ),
            updated_at=_as_utc(stored.updated_at),
        )

    def save(self, user_id: str, state: StreakState) -> None:
        embedded = EmbeddedStreak.from_day(
            state.current_streak, state.last_active_day, state.updated_at
        )
        self.users.update_one(user_id, {"streak": embedded.model_dump()})


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # pymongo returns naive datetimes in UTC unless the client is tz_aware
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
