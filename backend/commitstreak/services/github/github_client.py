from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from commitstreak.config import settings
from commitstreak.services.commits.models import Credential
from commitstreak.services.github.exceptions import (
    AccessDeniedError,
    CredentialInvalidError,
    GithubError,
    MalformedResponseError,
    RateLimitExceededError,
    RepositoryNotFoundError,
    RetryableUpstreamError,
    UpstreamUnavailableError,
)
from commitstreak.services.github.quota import QuotaTracker
from commitstreak.utils.clock import Clock, Deadline
from commitstreak.utils.prometheus_metrics import record_github_request, record_quota_wait

API_PREVIEW_HEADERS = {
    "Accept": "application/vnd.github+json",
}

logger = logging.getLogger(__name__)


def token_key(token: str) -> str:
    """SHA-256 of a token, used to key per-token state without keeping the token."""
    return hashlib.sha256(token.encode()).hexdigest()


@dataclass
class GitHubPage:
    """One page of a REST response plus the quota reported with it."""

    items: List[Any] = field(default_factory=list)
    next_url: Optional[str] = None
    quota_remaining: Optional[int] = None
    quota_reset_at: Optional[datetime] = None


class GitHubClient:
    def __init__(
        self,
        credential: Credential,
        quota: QuotaTracker,
        api_url: str | None = None,
        clock: Clock | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        max_retries: int | None = None,
        retry_base_delay: float | None = None,
        retry_max_delay: float | None = None,
        max_rate_limit_waits: int | None = None,
    ) -> None:
        """
        Initialize GitHubClient.

        Args:
            credential: Token and login used for every request
            quota: Quota tracker shared by all workers using this token
            api_url: GitHub API URL (defaults to api.github.com)
            clock: Time source for backoff and quota waits
            transport: Optional httpx transport (tests pass a MockTransport)
        """
        if not credential.token:
            raise CredentialInvalidError("GitHub token is required to call the API")

        self._credential = credential
        self._quota = quota
        self._clock = clock or Clock()
        self._api_url = (api_url or settings.GITHUB_API_URL).rstrip("/")
        self._max_retries = settings.GITHUB_MAX_RETRIES if max_retries is None else max_retries
        self._retry_base_delay = (
            settings.GITHUB_RETRY_BASE_DELAY if retry_base_delay is None else retry_base_delay
        )
        self._retry_max_delay = (
            settings.GITHUB_RETRY_MAX_DELAY if retry_max_delay is None else retry_max_delay
        )
        self._max_rate_limit_waits = (
            settings.GITHUB_RATE_LIMIT_MAX_WAITS
            if max_rate_limit_waits is None
            else max_rate_limit_waits
        )
        self._rest = httpx.AsyncClient(
            base_url=self._api_url,
            timeout=settings.GITHUB_REQUEST_TIMEOUT,
            transport=transport,
        )

    @property
    def identity(self) -> str:
        return self._credential.identity

    @property
    def quota(self) -> QuotaTracker:
        return self._quota

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._credential.token}",
            "X-GitHub-Api-Version": settings.GITHUB_API_VERSION,
        }
        headers.update(API_PREVIEW_HEADERS)
        return headers

    async def request(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        deadline: Optional[Deadline] = None,
    ) -> GitHubPage:
        """
        GET one page, waiting out the quota and retrying transient failures.

        Raises:
            CredentialInvalidError: token rejected (never retried)
            RateLimitExceededError: quota cannot reset before the deadline
            UpstreamUnavailableError: 5xx/network failures outlasted retries
            RepositoryNotFoundError / AccessDeniedError: 404/410 and plain 403
            MalformedResponseError: body is not JSON
        """
        rate_limit_waits = 0
        while True:
            record_quota_wait(await self._quota.acquire(deadline))
            response = await self._send_with_retries(path, params, deadline)
            await self._quota.update_from_headers(response.headers)

            if self._is_rate_limited(response):
                retry_after = self._retry_after(response)
                record_github_request("rate_limited")
                rate_limit_waits += 1
                if rate_limit_waits > self._max_rate_limit_waits:
                    raise RateLimitExceededError(
                        f"GitHub rate limit persisted after {self._max_rate_limit_waits} waits",
                        retry_after=retry_after,
                    )
                logger.warning(
                    f"GitHub rate limit hit on {path}, retry after {retry_after:.1f}s"
                )
                await self._quota.mark_exhausted(retry_after)
                continue

            record_github_request("answered")
            return self._to_page(response)

    async def paginate(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        deadline: Optional[Deadline] = None,
    ) -> AsyncIterator[GitHubPage]:
        """Yield pages until an empty page or no `next` link."""
        url: Optional[str] = path
        query = params
        while url:
            page = await self.request(url, query, deadline)
            if not page.items:
                return
            yield page
            url = page.next_url
            query = None  # GitHub link already contains query params

    async def get_object(
        self, path: str, deadline: Optional[Deadline] = None
    ) -> Dict[str, Any]:
        page = await self.request(path, deadline=deadline)
        if len(page.items) != 1 or not isinstance(page.items[0], dict):
            raise MalformedResponseError(f"Expected a single object from {path}")
        return page.items[0]

    async def _send_with_retries(
        self,
        path: str,
        params: Optional[Dict[str, Any]],
        deadline: Optional[Deadline],
    ) -> httpx.Response:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self._max_retries)),
            wait=wait_exponential(multiplier=self._retry_base_delay, max=self._retry_max_delay)
            + wait_random(0, self._retry_base_delay),
            retry=retry_if_exception_type(RetryableUpstreamError),
            sleep=self._clock.sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    if deadline is not None and deadline.expired():
                        raise UpstreamUnavailableError(
                            f"Deadline passed before GitHub answered {path}"
                        )
                    attempt_number = attempt.retry_state.attempt_number
                    if attempt_number > 1:
                        record_github_request("retried")
                        logger.info(
                            f"Retrying {path} (attempt {attempt_number}/{self._max_retries})"
                        )
                    return await self._send(path, params)
        except RetryableUpstreamError as exc:
            record_github_request("failed")
            raise UpstreamUnavailableError(
                f"GitHub unavailable after {self._max_retries} attempts: {exc}"
            ) from exc
        raise UpstreamUnavailableError(f"No attempt was made for {path}")  # pragma: no cover

    async def _send(
        self, path: str, params: Optional[Dict[str, Any]]
    ) -> httpx.Response:
        try:
            response = await self._rest.get(path, headers=self._headers(), params=params)
        except httpx.TransportError as exc:
            raise RetryableUpstreamError(f"{type(exc).__name__}: {exc}") from exc
        if response.status_code >= 500:
            raise RetryableUpstreamError(f"HTTP {response.status_code} from {path}")
        return response

    @staticmethod
    def _is_rate_limited(response: httpx.Response) -> bool:
        if response.status_code == 429:
            return True
        if response.status_code != 403:
            return False
        if response.headers.get("X-RateLimit-Remaining") == "0":
            return True
        if "Retry-After" in response.headers:
            return True
        return "rate limit" in response.text.lower()

    def _retry_after(self, response: httpx.Response) -> float:
        retry_after_header = response.headers.get("Retry-After")
        reset_header = response.headers.get("X-RateLimit-Reset")
        wait_seconds = 60.0

        if retry_after_header:
            try:
                wait_seconds = float(retry_after_header)
            except ValueError:
                logger.debug(f"Unparseable Retry-After header: {retry_after_header!r}")
        elif reset_header:
            try:
                reset_epoch = float(reset_header)
                now_epoch = self._clock.now().timestamp()
                wait_seconds = max(reset_epoch - now_epoch, 1.0)
            except ValueError:
                logger.debug(f"Unparseable X-RateLimit-Reset header: {reset_header!r}")
        return wait_seconds

    def _to_page(self, response: httpx.Response) -> GitHubPage:
        status = response.status_code
        if status == 401:
            raise CredentialInvalidError("GitHub rejected the access token")
        if status == 403:
            if "bad credentials" in response.text.lower():
                raise CredentialInvalidError("GitHub rejected the access token")
            raise AccessDeniedError(f"Access denied: {response.request.url.path}")
        if status in (404, 410):
            raise RepositoryNotFoundError(f"Not found: {response.request.url.path}")
        if status == 409:
            # Empty repository: the commits endpoint answers 409 instead of [].
            return self._empty_page(response)
        if status >= 400:
            raise GithubError(f"Unexpected HTTP {status} from {response.request.url.path}")

        try:
            data = response.json()
        except ValueError as exc:
            raise MalformedResponseError(
                f"Non-JSON body from {response.request.url.path}"
            ) from exc

        page = self._empty_page(response)
        page.items = data if isinstance(data, list) else [data]
        page.next_url = self._next_link(response)
        return page

    def _empty_page(self, response: httpx.Response) -> GitHubPage:
        page = GitHubPage()
        remaining = response.headers.get("X-RateLimit-Remaining")
        reset = response.headers.get("X-RateLimit-Reset")
        try:
            page.quota_remaining = int(remaining) if remaining is not None else None
            page.quota_reset_at = (
                datetime.fromtimestamp(int(reset), tz=timezone.utc) if reset else None
            )
        except ValueError:
            pass
        return page

    @staticmethod
    def _next_link(response: httpx.Response) -> Optional[str]:
        link_header = response.headers.get("Link")
        if not link_header:
            return None
        for part in link_header.split(","):
            segment = part.strip()
            if segment.endswith('rel="next"'):
                return segment[segment.find("<") + 1 : segment.find(">")]
        return None

    async def close(self) -> None:
        await self._rest.aclose()

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
