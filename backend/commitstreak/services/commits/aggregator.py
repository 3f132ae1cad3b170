"""Buckets canonical commits by the user's local calendar day."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, Mapping

from commitstreak.services.commits.models import CommitRecord, DayBucket


def iter_days(since_day: date, until_day: date) -> Iterable[date]:
    current = since_day
    while current <= until_day:
        yield current
        current += timedelta(days=1)


class DailyAggregator:
    """
    Day bucketing with a fixed UTC offset.

    The offset is explicit so results never depend on the server's local
    timezone; the same commits always land in the same buckets.
    """

    def __init__(self, tz: timezone):
        self.tz = tz

    def local_day(self, authored_at: datetime) -> date:
        if authored_at.tzinfo is None:
            authored_at = authored_at.replace(tzinfo=timezone.utc)
        return authored_at.astimezone(self.tz).date()

    def aggregate(self, commits: Iterable[CommitRecord]) -> Dict[date, DayBucket]:
        """
        Group commits by local day, dropping repeated source_ids.

        Idempotent and independent of arrival order: a source_id seen twice
        keeps the record with the smallest (repository, url) so duplicates
        from mirrors resolve the same way on every run.
        """
        by_day: Dict[date, Dict[str, CommitRecord]] = {}
        for commit in commits:
            day = self.local_day(commit.authored_at)
            bucket = by_day.setdefault(day, {})
            existing = bucket.get(commit.source_id)
            if existing is None or _sort_key(commit) < _sort_key(existing):
                bucket[commit.source_id] = commit
        return {
            day: DayBucket(day=day, commits=records)
            for day, records in sorted(by_day.items())
        }

    def finalize(
        self,
        buckets: Mapping[date, DayBucket],
        since_day: date,
        until_day: date,
        today: date,
        fully_fetched: bool,
    ) -> Dict[date, DayBucket]:
        """
        Fill the window with a bucket per day and settle completeness.

        A day is complete only when it is strictly before `today` and the
        fetch covering it succeeded for every enumerated repository.
        Commits outside the window are dropped.
        """
        finalized: Dict[date, DayBucket] = {}
        for day in iter_days(since_day, until_day):
            bucket = buckets.get(day) or DayBucket(day=day)
            complete = fully_fetched and day < today
            finalized[day] = bucket.model_copy(update={"is_complete": complete})
        return finalized


def _sort_key(commit: CommitRecord) -> tuple[str, str]:
    return (commit.repository.full_name, commit.url)
