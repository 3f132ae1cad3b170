"""
Prometheus Metrics Integration

HTTP metrics for the FastAPI app plus counters for GitHub traffic, the day
cache and streak refreshes. Metrics are exposed at /api/metrics.
"""

from typing import Callable

from prometheus_client import Counter, Histogram
from prometheus_client import Info as PrometheusInfo
from prometheus_fastapi_instrumentator import Instrumentator, metrics
from prometheus_fastapi_instrumentator.metrics import Info

from commitstreak.config import settings

GITHUB_REQUESTS = Counter(
    "commitstreak_github_requests_total",
    "GitHub API requests by outcome",
    ["outcome"],  # answered, rate_limited, retried, failed
)

QUOTA_WAIT_SECONDS = Histogram(
    "commitstreak_quota_wait_seconds",
    "Time spent waiting for a GitHub quota reset",
    buckets=[0.5, 1, 5, 15, 60, 300, 900, 3600],
)

DAY_CACHE_LOOKUPS = Counter(
    "commitstreak_day_cache_lookups_total",
    "Single-day lookups by how they were served",
    ["result"],  # hit, miss, coalesced
)

STREAK_REFRESHES = Counter(
    "commitstreak_streak_refreshes_total",
    "Streak refreshes by result",
    ["result"],  # updated, unchanged, partial, stale
)

REPOSITORY_FAILURES = Counter(
    "commitstreak_repository_failures_total",
    "Repositories whose commits could not be fetched",
    ["error_type"],
)


def setup_prometheus(app):
    """Instrument the app and expose /api/metrics."""
    instrumentator = Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        excluded_handlers=["/api/metrics", "/api/health"],
    )
    instrumentator.add(
        metrics.latency(
            should_include_handler=True,
            should_include_method=True,
            should_include_status=True,
        )
    )
    instrumentator.add(
        metrics.requests(
            should_include_handler=True,
            should_include_method=True,
            should_include_status=True,
        )
    )
    instrumentator.add(build_info())

    instrumentator.instrument(app)
    instrumentator.expose(app, endpoint="/api/metrics", include_in_schema=False)
    return instrumentator


def build_info() -> Callable[[Info], None]:
    app_info_metric = PrometheusInfo("commitstreak_app", "Commit streak service info")
    app_info_metric.info({"version": settings.APP_VERSION, "app_name": settings.APP_NAME})

    def instrumentation(info: Info) -> None:
        pass  # set once at startup

    return instrumentation


def record_github_request(outcome: str):
    GITHUB_REQUESTS.labels(outcome=outcome).inc()


def record_quota_wait(seconds: float):
    if seconds > 0:
        QUOTA_WAIT_SECONDS.observe(seconds)


def record_day_lookup(result: str):
    DAY_CACHE_LOOKUPS.labels(result=result).inc()


def record_streak_refresh(result: str):
    STREAK_REFRESHES.labels(result=result).inc()


def record_repository_failure(error_type: str):
    REPOSITORY_FAILURES.labels(error_type=error_type).inc()
