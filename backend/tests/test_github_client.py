"""Tests for the rate-limited GitHub client and quota tracker."""

import warnings
from datetime import timedelta

import httpx
import pytest

from commitstreak.services.commits.models import Credential
from commitstreak.services.github.exceptions import (
    AccessDeniedError,
    CredentialInvalidError,
    MalformedResponseError,
    RateLimitExceededError,
    RepositoryNotFoundError,
    UpstreamUnavailableError,
)
from commitstreak.services.github.github_client import GitHubClient, token_key
from commitstreak.services.github.quota import QuotaRegistry, QuotaTracker
from commitstreak.utils.clock import Deadline
from fakes import API_URL, FakeClock

CREDENTIAL = Credential(token="gho_test", identity="octocat")


def make_client(clock, handler, **options):
    options.setdefault("max_retries", 3)
    options.setdefault("retry_base_delay", 1.0)
    options.setdefault("retry_max_delay", 4.0)
    return GitHubClient(
        CREDENTIAL,
        QuotaTracker(clock),
        api_url=API_URL,
        clock=clock,
        transport=httpx.MockTransport(handler),
        **options,
    )


def scripted(*responses):
    """Handler answering with `responses` in order, repeating the last one."""
    calls = []

    def handler(request):
        calls.append(request)
        template = responses[min(len(calls), len(responses)) - 1]
        return httpx.Response(
            template.status_code, headers=template.headers, content=template.content
        )

    handler.calls = calls
    return handler


def rate_limited(clock, reset_in: int) -> httpx.Response:
    reset = int((clock.now() + timedelta(seconds=reset_in)).timestamp())
    return httpx.Response(
        403,
        json={"message": "API rate limit exceeded"},
        headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": str(reset)},
    )


class TestQuota:
    @pytest.mark.asyncio
    async def test_waits_for_reset_within_deadline(self):
        clock = FakeClock()
        handler = scripted(rate_limited(clock, 2), httpx.Response(200, json=[{"id": 1}]))
        client = make_client(clock, handler)

        page = await client.request("/user/repos", deadline=Deadline.after(clock, 5))

        assert page.items == [{"id": 1}]
        assert clock.sleeps == [2.0]
        assert len(handler.calls) == 2

    @pytest.mark.asyncio
    async def test_fails_fast_when_reset_is_past_deadline(self):
        clock = FakeClock()
        handler = scripted(rate_limited(clock, 2), httpx.Response(200, json=[]))
        client = make_client(clock, handler)

        with pytest.raises(RateLimitExceededError) as exc_info:
            await client.request("/user/repos", deadline=Deadline.after(clock, 1))

        assert exc_info.value.retry_after == pytest.approx(2.0)
        assert clock.sleeps == []
        assert len(handler.calls) == 1

    @pytest.mark.asyncio
    async def test_retry_after_header_on_429(self):
        clock = FakeClock()
        handler = scripted(
            httpx.Response(429, headers={"Retry-After": "3"}),
            httpx.Response(200, json={"sha": "abc"}),
        )
        client = make_client(clock, handler)

        obj = await client.get_object("/repos/o/r/commits/abc", deadline=Deadline.after(clock, 10))

        assert obj == {"sha": "abc"}
        assert clock.sleeps == [3.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_rate_limit_waits(self):
        clock = FakeClock()
        handler = scripted(httpx.Response(429, headers={"Retry-After": "1"}))
        client = make_client(clock, handler, max_rate_limit_waits=2)

        with pytest.raises(RateLimitExceededError):
            await client.request("/user/repos")

        assert len(handler.calls) == 3

    @pytest.mark.asyncio
    async def test_tracker_counts_down_and_blocks_at_zero(self):
        clock = FakeClock()
        tracker = QuotaTracker(clock)
        reset = int((clock.now() + timedelta(seconds=30)).timestamp())
        await tracker.update_from_headers(
            {"X-RateLimit-Remaining": "1", "X-RateLimit-Reset": str(reset)}
        )

        assert await tracker.acquire() == 0.0
        assert tracker.remaining == 0
        with pytest.raises(RateLimitExceededError):
            await tracker.acquire(Deadline.after(clock, 10))

        waited = await tracker.acquire(Deadline.after(clock, 60))
        assert waited == pytest.approx(30.0)

    def test_registry_shares_tracker_per_token(self):
        registry = QuotaRegistry(FakeClock())
        first = registry.for_token(token_key("a"))

        assert registry.for_token(token_key("a")) is first
        assert registry.for_token(token_key("b")) is not first


class TestRetries:
    @pytest.mark.asyncio
    async def test_transient_5xx_is_retried(self):
        clock = FakeClock()
        handler = scripted(
            httpx.Response(502),
            httpx.Response(503),
            httpx.Response(200, json=[{"id": 7}]),
        )
        client = make_client(clock, handler)

        page = await client.request("/user/repos")

        assert page.items == [{"id": 7}]
        assert len(handler.calls) == 3
        assert len(clock.sleeps) == 2

    @pytest.mark.asyncio
    async def test_backoff_is_exponential_capped_and_jittered(self):
        clock = FakeClock()
        handler = scripted(httpx.Response(503))
        client = make_client(clock, handler, max_retries=5, retry_base_delay=1.0, retry_max_delay=4.0)

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            with pytest.raises(UpstreamUnavailableError):
                await client.request("/user/repos")

        assert len(clock.sleeps) == 4
        for delay, floor in zip(clock.sleeps, [1.0, 2.0, 4.0, 4.0]):
            assert floor <= delay <= floor + 1.0
        assert not [w for w in caught if issubclass(w.category, DeprecationWarning)]

    @pytest.mark.asyncio
    async def test_zero_retries_means_a_single_attempt(self):
        clock = FakeClock()
        handler = scripted(httpx.Response(500))
        client = make_client(clock, handler, max_retries=0)

        with pytest.raises(UpstreamUnavailableError):
            await client.request("/user/repos")

        assert len(handler.calls) == 1
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_persistent_5xx_becomes_upstream_unavailable(self):
        clock = FakeClock()
        handler = scripted(httpx.Response(500))
        client = make_client(clock, handler)

        with pytest.raises(UpstreamUnavailableError):
            await client.request("/user/repos")

        assert len(handler.calls) == 3

    @pytest.mark.asyncio
    async def test_network_errors_are_retried(self):
        clock = FakeClock()
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ConnectError("connection reset", request=request)
            return httpx.Response(200, json=[])

        client = make_client(clock, handler)
        page = await client.request("/user/repos")

        assert page.items == []
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_expired_deadline_stops_retrying(self):
        clock = FakeClock()
        handler = scripted(httpx.Response(502))
        client = make_client(clock, handler, retry_base_delay=10.0, retry_max_delay=10.0)

        with pytest.raises(UpstreamUnavailableError):
            await client.request("/user/repos", deadline=Deadline.after(clock, 5))

        assert len(handler.calls) == 1


class TestErrorMapping:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response, error",
        [
            (httpx.Response(401, json={"message": "Bad credentials"}), CredentialInvalidError),
            (httpx.Response(403, json={"message": "Bad credentials"}), CredentialInvalidError),
            (httpx.Response(403, json={"message": "SAML enforcement"}), AccessDeniedError),
            (httpx.Response(404, json={"message": "Not Found"}), RepositoryNotFoundError),
            (httpx.Response(410, json={"message": "Gone"}), RepositoryNotFoundError),
            (httpx.Response(200, text="<html>"), MalformedResponseError),
        ],
    )
    async def test_status_mapping(self, response, error):
        clock = FakeClock()
        handler = scripted(response)
        client = make_client(clock, handler)

        with pytest.raises(error):
            await client.request("/repos/o/r/commits")

        assert len(handler.calls) == 1

    @pytest.mark.asyncio
    async def test_empty_repository_conflict_is_empty_page(self):
        clock = FakeClock()
        client = make_client(clock, scripted(httpx.Response(409, json={"message": "empty"})))

        page = await client.request("/repos/o/empty/commits")

        assert page.items == []
        assert page.next_url is None

    def test_missing_token_is_rejected(self):
        with pytest.raises(CredentialInvalidError):
            GitHubClient(Credential(token="", identity="x"), QuotaTracker(FakeClock()))

    @pytest.mark.asyncio
    async def test_sends_bearer_token_and_api_version(self):
        clock = FakeClock()
        handler = scripted(httpx.Response(200, json=[]))
        client = make_client(clock, handler)

        await client.request("/user/repos")

        headers = handler.calls[0].headers
        assert headers["Authorization"] == "Bearer gho_test"
        assert headers["Accept"] == "application/vnd.github+json"
        assert "X-GitHub-Api-Version" in headers


class TestPagination:
    @pytest.mark.asyncio
    async def test_follows_next_links_until_last_page(self):
        clock = FakeClock()
        pages = {
            "1": httpx.Response(
                200,
                json=[{"id": 1}, {"id": 2}],
                headers={"Link": f'<{API_URL}/user/repos?page=2>; rel="next", '
                                 f'<{API_URL}/user/repos?page=2>; rel="last"'},
            ),
            "2": httpx.Response(200, json=[{"id": 3}]),
        }

        def handler(request):
            return pages[request.url.params.get("page", "1")]

        client = make_client(clock, handler)
        items = []
        async for page in client.paginate("/user/repos", {"per_page": 2}):
            items.extend(page.items)

        assert [item["id"] for item in items] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_stops_on_empty_page(self):
        clock = FakeClock()
        handler = scripted(
            httpx.Response(
                200, json=[], headers={"Link": f'<{API_URL}/user/repos?page=2>; rel="next"'}
            )
        )
        client = make_client(clock, handler)

        pages = [page async for page in client.paginate("/user/repos")]

        assert pages == []
        assert len(handler.calls) == 1
