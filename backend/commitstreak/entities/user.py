from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field

from .base import BaseEntity


class EmbeddedStreak(BaseModel):
    """Streak counter stored on the user document."""

    current_streak: int = Field(default=0, ge=0)
    last_active_day: Optional[str] = None  # ISO date, local to the user
    updated_at: Optional[datetime] = None

    @classmethod
    def from_day(cls, current_streak: int, day: Optional[date], updated_at):
        return cls(
            current_streak=current_streak,
            last_active_day=day.isoformat() if day else None,
            updated_at=updated_at,
        )


class User(BaseEntity):
    """User entity with the streak embedded."""

    email: str
    name: Optional[str] = None
    utc_offset_minutes: Optional[int] = Field(
        default=None, ge=-14 * 60, le=14 * 60, description="Fixed offset for day boundaries"
    )
    streak: Optional[EmbeddedStreak] = None

    class Config:
        collection = "users"
