"""End-to-end tests for the streak engine over a fake GitHub."""

import asyncio
from datetime import date, timedelta

import httpx
import pytest

from commitstreak.config import settings
from commitstreak.services.exceptions import CredentialMissingError, InvalidDateError
from commitstreak.services.github.exceptions import (
    CredentialInvalidError,
    RateLimitExceededError,
    UpstreamUnavailableError,
)
from commitstreak.services.streak.models import StreakState, StreakStatus
from commitstreak.utils.clock import Deadline
from conftest import USER_ID
from fakes import commit_payload

TODAY = date(2024, 3, 10)


def on(day: date, hour: int = 10) -> str:
    return f"{day.isoformat()}T{hour:02d}:00:00Z"


def days_ago(n: int) -> date:
    return TODAY - timedelta(days=n)


class TestGetCommitsForDay:
    @pytest.mark.asyncio
    async def test_returns_commits_across_repositories_in_time_order(self, engine, github):
        day = days_ago(1)
        github.add_repo("octocat/api", commit_payload("b2", on(day, 15), repo="octocat/api"))
        github.add_repo(
            "octocat/web",
            commit_payload("a1", on(day, 9), repo="octocat/web", message="Add login\n\nDetails"),
            commit_payload("old", on(days_ago(3)), repo="octocat/web"),
        )

        result = await engine.get_commits_for_day(USER_ID, day.isoformat())

        assert [c.source_id for c in result.commits] == ["a1", "b2"]
        assert result.commits[0].summary == "Add login"
        assert result.is_complete is True
        assert result.partial is False

    @pytest.mark.asyncio
    async def test_complete_day_is_served_from_cache(self, engine, github):
        day = days_ago(2)
        github.add_repo("octocat/api", commit_payload("c1", on(day), repo="octocat/api"))

        await engine.get_commits_for_day(USER_ID, day)
        calls = len(github.calls)
        again = await engine.get_commits_for_day(USER_ID, day)

        assert len(github.calls) == calls
        assert [c.source_id for c in again.commits] == ["c1"]

    @pytest.mark.asyncio
    async def test_today_is_never_complete(self, engine, github):
        github.add_repo("octocat/api", commit_payload("c1", on(TODAY, 8), repo="octocat/api"))

        first = await engine.get_commits_for_day(USER_ID, TODAY)
        await engine.get_commits_for_day(USER_ID, TODAY)

        assert first.is_complete is False
        assert github.count("/user/repos") == 2

    @pytest.mark.asyncio
    async def test_concurrent_queries_share_one_fetch(self, engine, github):
        day = days_ago(1)
        github.add_repo("octocat/api", commit_payload("c1", on(day), repo="octocat/api"))

        results = await asyncio.gather(
            *(engine.get_commits_for_day(USER_ID, day) for _ in range(8))
        )

        assert github.count("/user/repos") == 1
        assert all([c.source_id for c in r.commits] == ["c1"] for r in results)

    @pytest.mark.asyncio
    async def test_local_day_follows_user_offset(self, engine, github, users):
        users.offsets[USER_ID] = -300
        # 02:00 UTC on the 9th is the evening of the 8th in UTC-5
        github.add_repo("octocat/api", commit_payload("late", "2024-03-09T02:00:00Z", repo="octocat/api"))

        result = await engine.get_commits_for_day(USER_ID, date(2024, 3, 8))

        assert [c.source_id for c in result.commits] == ["late"]

    @pytest.mark.asyncio
    async def test_commit_amended_a_day_later_is_counted_once(self, engine, github):
        github.add_repo(
            "octocat/api",
            commit_payload(
                "amended", on(days_ago(2), 22), repo="octocat/api", committed=on(days_ago(1), 9)
            ),
        )

        authored = await engine.get_commits_for_day(USER_ID, days_ago(2))
        committed = await engine.get_commits_for_day(USER_ID, days_ago(1))

        assert [c.source_id for c in authored.commits] == ["amended"]
        assert committed.commits == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", ["2024-13-01", "yesterday", "2024-03-11", "2001-01-01"])
    async def test_rejects_invalid_dates(self, engine, value):
        with pytest.raises(InvalidDateError):
            await engine.get_commits_for_day(USER_ID, value)

    @pytest.mark.asyncio
    async def test_unlinked_user(self, engine):
        with pytest.raises(CredentialMissingError):
            await engine.get_commits_for_day("nobody", TODAY)

    @pytest.mark.asyncio
    async def test_revoked_token(self, engine, github):
        github.fail("/user/repos", 401)

        with pytest.raises(CredentialInvalidError):
            await engine.get_commits_for_day(USER_ID, days_ago(1))

    @pytest.mark.asyncio
    async def test_github_down(self, engine, github):
        github.fail("/user/repos", 503)

        with pytest.raises(UpstreamUnavailableError):
            await engine.get_commits_for_day(USER_ID, days_ago(1))

    @pytest.mark.asyncio
    async def test_rate_limit_beyond_deadline(self, engine, github):
        github.queue("/user/repos", httpx.Response(429, headers={"Retry-After": "3600"}))

        with pytest.raises(RateLimitExceededError) as exc_info:
            await engine.get_commits_for_day(USER_ID, days_ago(1))

        assert exc_info.value.retry_after == pytest.approx(3600)

    @pytest.mark.asyncio
    async def test_failed_repository_marks_day_partial(self, engine, github):
        day = days_ago(1)
        github.add_repo("octocat/api", commit_payload("c1", on(day), repo="octocat/api"))
        github.add_repo("octocat/private")
        github.fail("/repos/octocat/private/commits", 403)

        result = await engine.get_commits_for_day(USER_ID, day)

        assert [c.source_id for c in result.commits] == ["c1"]
        assert result.partial is True
        assert result.is_complete is False
        assert [f.full_name for f in result.failures] == ["octocat/private"]

    @pytest.mark.asyncio
    async def test_backfilled_day_extends_streak(self, engine, github, streaks):
        streaks.save(USER_ID, StreakState(current_streak=2, last_active_day=days_ago(1)))
        github.add_repo("octocat/api", commit_payload("c1", on(days_ago(3)), repo="octocat/api"))

        await engine.get_commits_for_day(USER_ID, days_ago(3))

        state = streaks.get(USER_ID)
        assert (state.current_streak, state.last_active_day) == (3, days_ago(1))


class TestStreak:
    @pytest.mark.asyncio
    async def test_bootstrap_counts_recent_run(self, engine, github, streaks):
        github.add_repo(
            "octocat/api",
            *(commit_payload(f"c{n}", on(days_ago(n)), repo="octocat/api") for n in range(3)),
            commit_payload("older", on(days_ago(6)), repo="octocat/api"),
        )

        report = await engine.get_streak(USER_ID)

        assert report.state.current_streak == 3
        assert report.state.last_active_day == TODAY
        assert report.status == StreakStatus.ACTIVE
        assert report.stale is False
        assert streaks.get(USER_ID).current_streak == 3

    @pytest.mark.asyncio
    async def test_bootstrap_walks_back_past_the_first_window(self, engine, github, monkeypatch):
        monkeypatch.setattr(settings, "STREAK_BOOTSTRAP_DAYS", 5)
        github.add_repo(
            "octocat/api",
            *(commit_payload(f"c{n}", on(days_ago(n)), repo="octocat/api") for n in range(1, 13)),
        )

        report = await engine.get_streak(USER_ID)

        assert report.state.current_streak == 12
        assert report.state.last_active_day == days_ago(1)
        assert report.status == StreakStatus.PENDING

    @pytest.mark.asyncio
    async def test_incremental_refresh_only_fetches_new_days(self, engine, github, streaks, clock):
        streaks.save(USER_ID, StreakState(current_streak=4, last_active_day=days_ago(1)))
        github.add_repo("octocat/api", commit_payload("c1", on(TODAY, 9), repo="octocat/api"))
        windows = []
        original = github.handler

        def spy(request):
            if request.url.path.endswith("/commits"):
                windows.append(request.url.params["since"])
            return original(request)

        github.handler = spy
        report = await engine.refresh_streak(USER_ID, Deadline.after(clock, 30))

        assert windows == ["2024-03-10T00:00:00Z"]
        assert report.state.current_streak == 5

    @pytest.mark.asyncio
    async def test_missed_day_breaks_streak(self, engine, github, streaks):
        streaks.save(USER_ID, StreakState(current_streak=7, last_active_day=days_ago(3)))
        github.add_repo("octocat/api")

        report = await engine.get_streak(USER_ID)

        assert report.status == StreakStatus.BROKEN
        assert report.broken
        assert report.display_streak == 0
        assert report.state.current_streak == 7

    @pytest.mark.asyncio
    async def test_no_commit_yet_today_keeps_streak_pending(self, engine, github, streaks):
        streaks.save(USER_ID, StreakState(current_streak=7, last_active_day=days_ago(1)))
        github.add_repo("octocat/api")

        report = await engine.get_streak(USER_ID)

        assert report.status == StreakStatus.PENDING
        assert report.display_streak == 7

    @pytest.mark.asyncio
    async def test_new_run_after_gap_restarts_count(self, engine, github, streaks):
        streaks.save(USER_ID, StreakState(current_streak=7, last_active_day=days_ago(5)))
        github.add_repo(
            "octocat/api",
            commit_payload("c1", on(days_ago(1)), repo="octocat/api"),
            commit_payload("c2", on(TODAY), repo="octocat/api"),
        )

        report = await engine.get_streak(USER_ID)

        assert (report.state.current_streak, report.state.last_active_day) == (2, TODAY)
        assert report.status == StreakStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_always_failing_repository_does_not_freeze_streak(self, engine, github, streaks):
        streaks.save(USER_ID, StreakState(current_streak=2, last_active_day=days_ago(3)))
        github.add_repo("octocat/api", commit_payload("c1", on(TODAY), repo="octocat/api"))
        github.add_repo("org/sso")
        github.fail("/repos/org/sso/commits", 403)

        report = await engine.get_streak(USER_ID)

        assert (report.state.current_streak, report.state.last_active_day) == (1, TODAY)
        assert report.status == StreakStatus.ACTIVE
        assert report.partial is True
        assert [f.full_name for f in report.failures] == ["org/sso"]

    @pytest.mark.asyncio
    async def test_partial_fetch_without_new_commits_keeps_streak(self, engine, github, streaks):
        streaks.save(USER_ID, StreakState(current_streak=7, last_active_day=days_ago(3)))
        github.add_repo("octocat/api")
        github.add_repo("octocat/flaky")
        github.fail("/repos/octocat/flaky/commits", 404)

        report = await engine.get_streak(USER_ID)

        assert (report.state.current_streak, report.state.last_active_day) == (7, days_ago(3))
        assert report.partial is True
        assert report.status == StreakStatus.PENDING

    @pytest.mark.asyncio
    async def test_new_commit_after_lookback_gap_starts_new_streak(
        self, engine, github, streaks, monkeypatch
    ):
        monkeypatch.setattr(settings, "STREAK_MAX_LOOKBACK_DAYS", 5)
        streaks.save(USER_ID, StreakState(current_streak=4, last_active_day=days_ago(20)))
        github.add_repo("octocat/api", commit_payload("c1", on(TODAY), repo="octocat/api"))

        report = await engine.get_streak(USER_ID)

        assert (report.state.current_streak, report.state.last_active_day) == (1, TODAY)
        assert report.status == StreakStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_malformed_repository_listing_returns_stale_state(self, engine, github, streaks):
        stored = StreakState(current_streak=4, last_active_day=days_ago(1))
        streaks.save(USER_ID, stored)
        github.queue("/user/repos", httpx.Response(200, json=[{"bogus": 1}]))

        report = await engine.get_streak(USER_ID)

        assert report.stale is True
        assert report.state == stored

    @pytest.mark.asyncio
    async def test_revoked_token_is_not_reported_as_stale(self, engine, github, streaks):
        streaks.save(USER_ID, StreakState(current_streak=4, last_active_day=days_ago(1)))
        github.fail("/user/repos", 401)

        with pytest.raises(CredentialInvalidError):
            await engine.get_streak(USER_ID)

    @pytest.mark.asyncio
    async def test_upstream_failure_returns_stale_state(self, engine, github, streaks):
        stored = StreakState(current_streak=4, last_active_day=days_ago(1))
        streaks.save(USER_ID, stored)
        github.fail("/user/repos", 502)

        report = await engine.get_streak(USER_ID)

        assert report.stale is True
        assert report.state == stored
        assert streaks.get(USER_ID) == stored

    @pytest.mark.asyncio
    async def test_background_refresh_can_raise_upstream_errors(self, engine, github, streaks):
        streaks.save(USER_ID, StreakState(current_streak=4, last_active_day=days_ago(1)))
        github.fail("/user/repos", 502)

        with pytest.raises(UpstreamUnavailableError):
            await engine.refresh_streak(USER_ID, raise_upstream_errors=True)

    @pytest.mark.asyncio
    async def test_recent_refresh_skips_upstream(self, engine, github, clock):
        github.add_repo("octocat/api", commit_payload("c1", on(TODAY), repo="octocat/api"))

        await engine.get_streak(USER_ID)
        calls = len(github.calls)
        clock.advance(60)
        report = await engine.get_streak(USER_ID)

        assert len(github.calls) == calls
        assert report.state.current_streak == 1

        clock.advance(settings.STREAK_REFRESH_TTL_SECONDS)
        await engine.get_streak(USER_ID)
        assert len(github.calls) > calls

    @pytest.mark.asyncio
    async def test_refresh_is_idempotent(self, engine, github, clock):
        github.add_repo(
            "octocat/api",
            *(commit_payload(f"c{n}", on(days_ago(n)), repo="octocat/api") for n in range(4)),
        )

        first = await engine.refresh_streak(USER_ID, Deadline.after(clock, 30))
        second = await engine.refresh_streak(USER_ID, Deadline.after(clock, 30))

        assert first.state.current_streak == second.state.current_streak == 4
        assert first.state.last_active_day == second.state.last_active_day

    @pytest.mark.asyncio
    async def test_user_without_commits(self, engine, github, streaks):
        github.add_repo("octocat/api")

        report = await engine.get_streak(USER_ID)

        assert report.status == StreakStatus.NONE
        assert report.display_streak == 0
        assert streaks.get(USER_ID).updated_at is not None
