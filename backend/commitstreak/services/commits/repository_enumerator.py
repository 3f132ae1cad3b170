"""Lists every repository a credential can see (owned, collaborator, org)."""

from __future__ import annotations

import logging
from typing import AsyncIterator, Optional

from commitstreak.config import settings
from commitstreak.services.commits.models import EnumerationResult, Repository
from commitstreak.services.github.exceptions import GithubError
from commitstreak.services.github.github_client import GitHubClient
from commitstreak.services.github.parsers import parse_repository
from commitstreak.utils.clock import Deadline

logger = logging.getLogger(__name__)

REPOS_PATH = "/user/repos"
AFFILIATION = "owner,collaborator,organization_member"


class RepositoryEnumerator:
    def __init__(self, client: GitHubClient, per_page: int | None = None):
        self._client = client
        self._per_page = per_page or settings.GITHUB_PER_PAGE

    async def list_repositories(
        self, deadline: Optional[Deadline] = None
    ) -> AsyncIterator[Repository]:
        """
        Lazily yield repositories page by page.

        Each call starts again from the first page. Listing stops at the
        first empty page.
        """
        params = {
            "per_page": self._per_page,
            "affiliation": AFFILIATION,
            "sort": "full_name",
        }
        async for page in self._client.paginate(REPOS_PATH, params, deadline):
            for item in page.items:
                yield parse_repository(item)

    async def collect(self, deadline: Optional[Deadline] = None) -> EnumerationResult:
        """
        Gather all repositories, keeping what was listed before a failure.

        The error is returned, not raised, so callers decide whether a
        partial listing is good enough.
        """
        result = EnumerationResult()
        seen: set[str] = set()
        try:
            async for repository in self.list_repositories(deadline):
                if repository.full_name in seen:
                    continue
                seen.add(repository.full_name)
                result.repositories.append(repository)
        except GithubError as exc:
            logger.warning(
                f"Repository listing for {self._client.identity} stopped after "
                f"{len(result.repositories)} repos: {exc}"
            )
            result.error = exc
        return result
