"""Streak DTOs"""

from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from .commit import FailedRepository


class StreakResponse(BaseModel):
    current_streak: int = Field(..., description="Consecutive active days, 0 once broken")
    stored_streak: int = Field(..., description="Length of the last recorded run")
    last_active_day: Optional[date] = None
    status: Literal["none", "active", "pending", "broken"] = "none"
    broken: bool = False
    stale: bool = False
    partial: bool = False
    updated_at: Optional[datetime] = None
    failed_repositories: List[FailedRepository] = Field(default_factory=list)
