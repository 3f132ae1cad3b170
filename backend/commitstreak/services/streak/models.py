from __future__ import annotations

from datetime import date, datetime, timedelta
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from commitstreak.services.commits.models import RepositoryFailure


class StreakStatus(str, Enum):
    NONE = "none"  # no active day recorded yet
    ACTIVE = "active"  # committed today
    PENDING = "pending"  # last active day is in the past, no confirmed gap yet
    BROKEN = "broken"  # a complete, empty day follows the last active day


class StreakState(BaseModel):
    """
    Persisted streak counter.

    current_streak is the length of the consecutive active run ending at
    last_active_day; zero (with no last_active_day) means Empty.
    """

    model_config = ConfigDict(frozen=True)

    current_streak: int = Field(default=0, ge=0)
    last_active_day: Optional[date] = None
    updated_at: Optional[datetime] = None

    @property
    def is_empty(self) -> bool:
        return self.last_active_day is None

    @property
    def run_start(self) -> Optional[date]:
        if self.last_active_day is None:
            return None
        return self.last_active_day - timedelta(days=max(self.current_streak, 1) - 1)


class StreakReport(BaseModel):
    """What get_streak returns: the state plus freshness annotations."""

    state: StreakState
    status: StreakStatus = StreakStatus.NONE
    stale: bool = False
    partial: bool = False
    failures: List[RepositoryFailure] = Field(default_factory=list)

    @property
    def broken(self) -> bool:
        return self.status == StreakStatus.BROKEN

    @property
    def display_streak(self) -> int:
        return 0 if self.broken else self.state.current_streak
