"""
Incremental streak state machine.

States are Empty (no active day) and Active(n, day). Each newly active day
moves the machine; history is never replayed in full.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Iterable, Mapping

from commitstreak.services.commits.models import DayBucket
from commitstreak.services.streak.models import StreakState, StreakStatus

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)


class StreakCalculator:
    def on_active_day(self, state: StreakState, day: date, now: datetime) -> StreakState:
        """Apply one newly active day."""
        if state.is_empty:
            return StreakState(current_streak=1, last_active_day=day, updated_at=now)

        last = state.last_active_day
        if day == last:
            return state
        if day == last + ONE_DAY:
            return StreakState(
                current_streak=state.current_streak + 1,
                last_active_day=day,
                updated_at=now,
            )
        if day > last + ONE_DAY:
            logger.info(f"Streak of {state.current_streak} broken, restarting at {day}")
            return StreakState(current_streak=1, last_active_day=day, updated_at=now)

        # Backfilled day before the last active day.
        run_start = state.run_start
        if run_start <= day:
            return state
        if day == run_start - ONE_DAY:
            return StreakState(
                current_streak=state.current_streak + 1,
                last_active_day=last,
                updated_at=now,
            )
        return state

    def apply(
        self, state: StreakState, active_days: Iterable[date], now: datetime
    ) -> StreakState:
        """
        Apply a batch of active days.

        Days after the last active day go in ascending order, backfilled days
        in descending order so a run can grow backwards one day at a time.
        """
        days = set(active_days)
        if state.is_empty:
            forward, backward = sorted(days), []
        else:
            forward = sorted(d for d in days if d >= state.last_active_day)
            backward = sorted((d for d in days if d < state.last_active_day), reverse=True)

        for day in forward:
            state = self.on_active_day(state, day, now)
        for day in backward:
            state = self.on_active_day(state, day, now)
        return state

    def advance(
        self,
        state: StreakState,
        buckets: Mapping[date, DayBucket],
        today: date,
        now: datetime,
    ) -> StreakState:
        """
        Apply the fetched active days after the last active day, in order.

        An active day past a gap restarts the run even when the gap days
        were only partially fetched. Quiet days never move the state: a
        break without new activity is only reported by status().
        """
        accepted = [
            day
            for day, bucket in buckets.items()
            if bucket.is_active
            and day <= today
            and (state.is_empty or day > state.last_active_day)
        ]
        return self.apply(state, accepted, now)

    def status(
        self,
        state: StreakState,
        buckets: Mapping[date, DayBucket],
        today: date,
    ) -> StreakStatus:
        """
        Classify the streak as of `today`.

        A streak is only broken once a day after the last active day is
        confirmed complete and empty; a day that is simply not fetched yet
        (or today) never breaks it.
        """
        if state.is_empty:
            return StreakStatus.NONE
        last = state.last_active_day
        if last >= today:
            return StreakStatus.ACTIVE
        day = last + ONE_DAY
        while day < today:
            bucket = buckets.get(day)
            if bucket is not None and bucket.is_complete and not bucket.is_active:
                return StreakStatus.BROKEN
            day += ONE_DAY
        return StreakStatus.PENDING
