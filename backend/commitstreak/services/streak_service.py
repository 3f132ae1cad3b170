"""
Commit aggregation and streak engine.

Ties the pipeline together for the two operations the presentation layer
uses: commits for one local day, and the user's current streak.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta, timezone
from typing import Callable, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from commitstreak.config import settings
from commitstreak.services.commits.aggregator import DailyAggregator
from commitstreak.services.commits.commit_fetcher import FATAL_ERRORS, CommitFetcher
from commitstreak.services.commits.day_cache import DayCache, DayLoad
from commitstreak.services.commits.models import (
    CommitRecord,
    Credential,
    DayBucket,
    FetchResult,
    RepositoryFailure,
)
from commitstreak.services.commits.repository_enumerator import RepositoryEnumerator
from commitstreak.services.exceptions import InvalidDateError
from commitstreak.services.github.exceptions import CredentialInvalidError, GithubError
from commitstreak.services.github.github_client import GitHubClient, token_key
from commitstreak.services.github.quota import QuotaRegistry, QuotaTracker
from commitstreak.services.protocols import (
    DayBucketStore,
    StreakStateStore,
    UserDirectory,
)
from commitstreak.services.streak.calculator import StreakCalculator
from commitstreak.services.streak.locks import InProcessUserLocks, UserLocks
from commitstreak.services.streak.models import StreakReport, StreakState
from commitstreak.utils.clock import Clock, Deadline, local_today, user_timezone
from commitstreak.utils.prometheus_metrics import record_streak_refresh

logger = logging.getLogger(__name__)

ClientFactory = Callable[[Credential, QuotaTracker], GitHubClient]

# Earliest day a GitHub commit can be attributed to.
MIN_QUERY_DAY = date(2008, 1, 1)


class DayCommits(BaseModel):
    """Result of get_commits_for_day."""

    day: date
    commits: List[CommitRecord] = Field(default_factory=list)
    is_complete: bool = False
    partial: bool = False
    failures: List[RepositoryFailure] = Field(default_factory=list)


class WindowLoad(BaseModel):
    """Aggregated buckets for a day range plus the fetch annotations."""

    buckets: Dict[date, DayBucket] = Field(default_factory=dict)
    fetch: FetchResult = Field(default_factory=FetchResult)

    @property
    def partial(self) -> bool:
        return self.fetch.partial


class StreakEngine:
    def __init__(
        self,
        users: UserDirectory,
        buckets: DayBucketStore,
        streaks: StreakStateStore,
        clock: Optional[Clock] = None,
        quotas: Optional[QuotaRegistry] = None,
        client_factory: Optional[ClientFactory] = None,
        locks: Optional[UserLocks] = None,
        calculator: Optional[StreakCalculator] = None,
    ):
        self._users = users
        self._buckets = buckets
        self._streaks = streaks
        self._clock = clock or Clock()
        self._quotas = quotas or QuotaRegistry(self._clock)
        self._client_factory = client_factory or self._default_client
        self._locks = locks or InProcessUserLocks()
        self._calculator = calculator or StreakCalculator()
        self.day_cache = DayCache(buckets)

    @property
    def clock(self) -> Clock:
        return self._clock

    def _default_client(self, credential: Credential, quota: QuotaTracker) -> GitHubClient:
        return GitHubClient(credential, quota, clock=self._clock)

    def _timezone(self, user_id: str) -> timezone:
        return user_timezone(self._users.get_utc_offset_minutes(user_id))

    # Exposed operations -------------------------------------------------
    async def get_commits_for_day(
        self, user_id: str, day: Union[date, str]
    ) -> DayCommits:
        """
        Commits the user authored on one local calendar day.

        Raises:
            InvalidDateError: malformed date, before 2008 or after today
            CredentialMissingError / CredentialInvalidError
            UpstreamUnavailableError / RateLimitExceededError
            GithubError: any other upstream failure with no repository listed
        """
        tz = self._timezone(user_id)
        target = self._parse_day(day, local_today(self._clock, tz))
        credential = self._users.get_credential(user_id)
        deadline = Deadline.after(self._clock, settings.DAY_QUERY_DEADLINE_SECONDS)

        async def load_day() -> DayLoad:
            window = await self._load_window(credential, tz, target, target, deadline)
            return DayLoad(
                bucket=window.buckets[target],
                partial=window.partial,
                failures=window.fetch.failures,
            )

        load = await self.day_cache.get_day(user_id, target, load_day)
        if load.bucket.is_active and not load.from_cache:
            await self._absorb_day(user_id, target)

        return DayCommits(
            day=target,
            commits=load.bucket.sorted_commits(),
            is_complete=load.bucket.is_complete,
            partial=load.partial,
            failures=load.failures,
        )

    async def get_streak(self, user_id: str) -> StreakReport:
        """
        Current streak, refreshed incrementally unless refreshed recently.

        Upstream failures never raise here: the last stored state comes back
        with stale=True.
        """
        state = self._streaks.get(user_id)
        now = self._clock.now()
        if (
            state is not None
            and state.updated_at is not None
            and (now - state.updated_at).total_seconds() < settings.STREAK_REFRESH_TTL_SECONDS
        ):
            return self._report(user_id, state)

        deadline = Deadline.after(self._clock, settings.STREAK_DEADLINE_SECONDS)
        return await self.refresh_streak(user_id, deadline)

    async def refresh_streak(
        self,
        user_id: str,
        deadline: Optional[Deadline] = None,
        raise_upstream_errors: bool = False,
    ) -> StreakReport:
        """
        Fetch the days after the last active day and advance the streak.

        By default any upstream failure other than a rejected token yields
        the stored state marked stale; background callers pass
        raise_upstream_errors to retry instead.
        """
        tz = self._timezone(user_id)
        credential = self._users.get_credential(user_id)

        async with self._locks.hold(user_id):
            state = self._streaks.get(user_id) or StreakState()
            today = local_today(self._clock, tz)
            since = self._window_start(state, today)

            known = self._buckets.get_range(user_id, since, today)
            fetch_since = next(
                (d for d in _days(since, today) if not _complete(known.get(d))), today
            )

            try:
                window = await self._load_window(credential, tz, fetch_since, today, deadline)
            except CredentialInvalidError:
                raise
            except GithubError as exc:
                if raise_upstream_errors:
                    raise
                logger.warning(f"Streak refresh for {user_id} left stale: {exc}")
                record_streak_refresh("stale")
                return self._report(user_id, state, stale=True)

            for day, bucket in window.buckets.items():
                known[day] = self.day_cache.put(user_id, bucket)

            now = self._clock.now()
            new_state = self._calculator.advance(state, known, today, now)
            partial = window.partial
            if state.is_empty and new_state.run_start == since and not partial:
                new_state, partial = await self._extend_backwards(
                    user_id, credential, tz, new_state, deadline
                )

            changed = new_state != state
            if changed:
                logger.info(
                    f"Streak for {user_id}: {state.current_streak}@{state.last_active_day} "
                    f"-> {new_state.current_streak}@{new_state.last_active_day}"
                )
            new_state = new_state.model_copy(update={"updated_at": now})
            self._streaks.save(user_id, new_state)
            record_streak_refresh("partial" if partial else "updated" if changed else "unchanged")

            return self._report(
                user_id,
                new_state,
                partial=partial,
                failures=window.fetch.failures,
            )

    # Pipeline -------------------------------------------------------------
    async def _load_window(
        self,
        credential: Credential,
        tz: timezone,
        since_day: date,
        until_day: date,
        deadline: Optional[Deadline],
    ) -> WindowLoad:
        """Enumerate, fetch and aggregate one day range for a credential."""
        quota = self._quotas.for_token(token_key(credential.token))
        async with self._client_factory(credential, quota) as client:
            enumeration = await RepositoryEnumerator(client).collect(deadline)
            if enumeration.error is not None and (
                isinstance(enumeration.error, FATAL_ERRORS) or not enumeration.repositories
            ):
                raise enumeration.error

            fetch = await CommitFetcher(client).fetch_all(
                enumeration.repositories,
                since_day,
                until_day,
                credential.identity,
                tz,
                deadline,
            )
            fetch.enumeration_complete = enumeration.complete

        if fetch.partial:
            logger.info(
                f"Partial fetch for {credential.identity} {since_day}..{until_day}: "
                f"{len(fetch.failures)} failed repos, cancelled={fetch.cancelled}"
            )

        aggregator = DailyAggregator(tz)
        buckets = aggregator.finalize(
            aggregator.aggregate(fetch.commits),
            since_day,
            until_day,
            today=local_today(self._clock, tz),
            fully_fetched=not fetch.partial,
        )
        return WindowLoad(buckets=buckets, fetch=fetch)

    async def _extend_backwards(
        self,
        user_id: str,
        credential: Credential,
        tz: timezone,
        state: StreakState,
        deadline: Optional[Deadline],
    ) -> tuple[StreakState, bool]:
        """
        Walk a freshly bootstrapped run back in chunks until its start is found.

        Only runs while the run begins exactly at the fetched window's first
        day, and never further back than STREAK_MAX_LOOKBACK_DAYS.
        """
        chunk = max(settings.STREAK_BOOTSTRAP_DAYS, 1)
        oldest = state.last_active_day - timedelta(days=settings.STREAK_MAX_LOOKBACK_DAYS)
        window_start = state.run_start
        while window_start > oldest:
            until_day = window_start - timedelta(days=1)
            since_day = max(until_day - timedelta(days=chunk - 1), oldest)
            try:
                window = await self._load_window(credential, tz, since_day, until_day, deadline)
            except CredentialInvalidError:
                raise
            except GithubError as exc:
                logger.warning(f"Stopped extending streak for {user_id}: {exc}")
                return state, True

            active = []
            for day, bucket in window.buckets.items():
                merged = self.day_cache.put(user_id, bucket)
                if merged.is_active:
                    active.append(day)
            state = self._calculator.apply(state, active, self._clock.now())
            if window.partial:
                return state, True
            if state.run_start != since_day:
                break
            window_start = since_day
        return state, False

    async def _absorb_day(self, user_id: str, day: date) -> None:
        """
        Fold a newly active day from a single-day query into the streak.

        Only days that cannot skip unknown history are applied: backfills
        at or before the last active day, and the day right after it.
        """
        async with self._locks.hold(user_id):
            state = self._streaks.get(user_id)
            if state is None or state.is_empty:
                return
            if day > state.last_active_day + timedelta(days=1):
                return
            new_state = self._calculator.apply(state, [day], self._clock.now())
            if new_state != state:
                logger.info(
                    f"Backfilled {day} for {user_id}: streak now {new_state.current_streak}"
                )
                self._streaks.save(user_id, new_state)

    # Helpers --------------------------------------------------------------
    def _window_start(self, state: StreakState, today: date) -> date:
        if state.is_empty:
            return today - timedelta(days=max(settings.STREAK_BOOTSTRAP_DAYS, 1) - 1)
        oldest = today - timedelta(days=settings.STREAK_MAX_LOOKBACK_DAYS)
        return max(min(state.last_active_day + timedelta(days=1), today), oldest)

    def _report(
        self,
        user_id: str,
        state: StreakState,
        stale: bool = False,
        partial: bool = False,
        failures: Optional[List[RepositoryFailure]] = None,
    ) -> StreakReport:
        tz = self._timezone(user_id)
        today = local_today(self._clock, tz)
        buckets: Dict[date, DayBucket] = {}
        if not state.is_empty and state.last_active_day < today:
            buckets = self._buckets.get_range(
                user_id, state.last_active_day + timedelta(days=1), today
            )
        return StreakReport(
            state=state,
            status=self._calculator.status(state, buckets, today),
            stale=stale,
            partial=partial,
            failures=failures or [],
        )

    @staticmethod
    def _parse_day(day: Union[date, str], today: date) -> date:
        if isinstance(day, str):
            try:
                day = date.fromisoformat(day)
            except ValueError as exc:
                raise InvalidDateError(f"Invalid date '{day}', expected YYYY-MM-DD") from exc
        if day > today:
            raise InvalidDateError(f"{day.isoformat()} is in the future")
        if day < MIN_QUERY_DAY:
            raise InvalidDateError(f"{day.isoformat()} is before {MIN_QUERY_DAY.isoformat()}")
        return day


def _days(since_day: date, until_day: date):
    day = since_day
    while day <= until_day:
        yield day
        day += timedelta(days=1)


def _complete(bucket: Optional[DayBucket]) -> bool:
    return bucket is not None and bucket.is_complete
