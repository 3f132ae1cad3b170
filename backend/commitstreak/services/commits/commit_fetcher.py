"""
Per-repository commit retrieval with a bounded worker pool.

Every worker shares the same GitHubClient (and so the same QuotaTracker);
the semaphore caps how many repositories are in flight at once so one user
with hundreds of repositories cannot drain the quota in a burst.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple, Union

from commitstreak.config import settings
from commitstreak.services.commits.models import (
    CommitRecord,
    FetchResult,
    Repository,
    RepositoryFailure,
)
from commitstreak.services.github.exceptions import (
    CredentialInvalidError,
    GithubError,
    RateLimitExceededError,
)
from commitstreak.services.github.github_client import GitHubClient
from commitstreak.services.github.parsers import parse_commit, with_stats
from commitstreak.utils.clock import Deadline, day_bounds, remaining_seconds
from commitstreak.utils.prometheus_metrics import record_repository_failure

logger = logging.getLogger(__name__)

# Errors that affect every later call; they abort the whole run.
FATAL_ERRORS = (CredentialInvalidError, RateLimitExceededError)

RepoOutcome = Union[List[CommitRecord], RepositoryFailure]


class CommitFetcher:
    def __init__(
        self,
        client: GitHubClient,
        max_concurrency: int | None = None,
        fetch_stats: bool | None = None,
        per_page: int | None = None,
    ):
        self._client = client
        self._max_concurrency = max(1, max_concurrency or settings.FETCH_MAX_CONCURRENCY)
        self._fetch_stats = (
            settings.GITHUB_FETCH_COMMIT_STATS if fetch_stats is None else fetch_stats
        )
        self._per_page = per_page or settings.GITHUB_PER_PAGE

    async def fetch_commits(
        self,
        repository: Repository,
        since_day: date,
        until_day: date,
        author: str,
        tz: timezone,
        deadline: Optional[Deadline] = None,
    ) -> List[CommitRecord]:
        """
        Fetch commits by `author` authored in local days [since_day, until_day].

        Commits are returned in upstream order.
        """
        since, _ = day_bounds(since_day, tz)
        _, until = day_bounds(until_day, tz)
        # GitHub filters on commit date, which can trail the author date
        # after a rebase or amend.
        commit_until = until + timedelta(hours=settings.GITHUB_COMMIT_DATE_SLACK_HOURS)
        params = {
            "author": author,
            "since": since.isoformat().replace("+00:00", "Z"),
            "until": commit_until.isoformat().replace("+00:00", "Z"),
            "per_page": self._per_page,
        }
        path = f"/repos/{repository.full_name}/commits"

        records: List[CommitRecord] = []
        async for page in self._client.paginate(path, params, deadline):
            for item in page.items:
                record = parse_commit(repository, item)
                # Buckets use the author date.
                if not since <= record.authored_at < until:
                    logger.debug(
                        f"Skipping {record.source_id[:7]} in {repository.full_name}: "
                        f"authored outside window"
                    )
                    continue
                if self._fetch_stats:
                    detail = await self._client.get_object(
                        f"{path}/{record.source_id}", deadline
                    )
                    record = with_stats(record, detail)
                records.append(record)
        return records

    async def fetch_all(
        self,
        repositories: Sequence[Repository],
        since_day: date,
        until_day: date,
        author: str,
        tz: timezone,
        deadline: Optional[Deadline] = None,
    ) -> FetchResult:
        """
        Fetch every repository concurrently and merge the results.

        A failing repository becomes a RepositoryFailure entry. When the
        deadline passes, unfinished repositories are cancelled and whatever
        finished is kept, with the result marked cancelled.

        Raises:
            CredentialInvalidError, RateLimitExceededError: remaining
                repositories are cancelled first.
        """
        result = FetchResult(repositories=list(repositories))
        if not repositories:
            return result

        semaphore = asyncio.Semaphore(self._max_concurrency)
        tasks: Dict[asyncio.Task, Repository] = {}
        for repository in repositories:
            task = asyncio.create_task(
                self._fetch_one(
                    semaphore, repository, since_day, until_day, author, tz, deadline
                ),
                name=f"fetch:{repository.full_name}",
            )
            tasks[task] = repository

        done, pending = await asyncio.wait(
            tasks.keys(),
            timeout=remaining_seconds(deadline),
            return_when=asyncio.FIRST_EXCEPTION,
        )

        fatal = next(
            (t.exception() for t in done if not t.cancelled() and t.exception()), None
        )
        if pending:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        if fatal is not None:
            raise fatal
        if pending:
            result.cancelled = True
            logger.warning(
                f"Deadline reached with {len(pending)}/{len(tasks)} repositories unfinished"
            )

        outcomes: Dict[str, RepoOutcome] = {}
        for task in done:
            repo_name, outcome = task.result()
            outcomes[repo_name] = outcome

        result.commits, result.failures = self._merge(repositories, outcomes)
        return result

    async def _fetch_one(
        self,
        semaphore: asyncio.Semaphore,
        repository: Repository,
        since_day: date,
        until_day: date,
        author: str,
        tz: timezone,
        deadline: Optional[Deadline],
    ) -> Tuple[str, RepoOutcome]:
        async with semaphore:
            try:
                commits = await self.fetch_commits(
                    repository, since_day, until_day, author, tz, deadline
                )
            except FATAL_ERRORS:
                raise
            except GithubError as exc:
                logger.warning(f"Skipping {repository.full_name}: {exc}")
                record_repository_failure(type(exc).__name__)
                return repository.full_name, RepositoryFailure(
                    full_name=repository.full_name,
                    error_type=type(exc).__name__,
                    message=str(exc),
                )
            return repository.full_name, commits

    @staticmethod
    def _merge(
        repositories: Sequence[Repository], outcomes: Dict[str, RepoOutcome]
    ) -> Tuple[List[CommitRecord], List[RepositoryFailure]]:
        """Merge in enumeration order; the first repository to report a SHA keeps it."""
        commits: List[CommitRecord] = []
        failures: List[RepositoryFailure] = []
        seen: set[str] = set()
        for repository in repositories:
            outcome = outcomes.get(repository.full_name)
            if outcome is None:
                continue
            if isinstance(outcome, RepositoryFailure):
                failures.append(outcome)
                continue
            for record in outcome:
                if record.source_id in seen:
                    continue
                seen.add(record.source_id)
                commits.append(record)
        return commits, failures
