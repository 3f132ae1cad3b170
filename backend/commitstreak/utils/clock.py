"""Time sources for the engine.

Everything that reads the current time or sleeps goes through a Clock so
quota waits and day boundaries can be driven by a fake clock in tests.
"""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta, timezone
from typing import Optional


class Clock:
    """Wall clock in UTC with cooperative sleeping."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)


class Deadline:
    """An absolute point in time, measured on a Clock, that work must finish by."""

    def __init__(self, clock: Clock, expires_at: datetime):
        self._clock = clock
        self.expires_at = expires_at

    @classmethod
    def after(cls, clock: Clock, seconds: float) -> "Deadline":
        return cls(clock, clock.now() + timedelta(seconds=seconds))

    def remaining(self) -> float:
        return (self.expires_at - self._clock.now()).total_seconds()

    def expired(self) -> bool:
        return self.remaining() <= 0

    def allows_wait(self, seconds: float) -> bool:
        """Return True if waiting `seconds` still ends before the deadline."""
        return seconds <= self.remaining()


def remaining_seconds(deadline: Optional[Deadline]) -> Optional[float]:
    if deadline is None:
        return None
    return max(deadline.remaining(), 0.0)


def user_timezone(offset_minutes: int) -> timezone:
    """Fixed-offset timezone for a user; never the server's local zone."""
    return timezone(timedelta(minutes=offset_minutes))


def local_today(clock: Clock, tz: timezone) -> date:
    return clock.now().astimezone(tz).date()


def day_bounds(day: date, tz: timezone) -> tuple[datetime, datetime]:
    """Return the UTC [start, end) instants of a local calendar day."""
    start = datetime(day.year, day.month, day.day, tzinfo=tz)
    end = start + timedelta(days=1)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)
