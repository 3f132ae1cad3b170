"""
Base Celery task for streak refreshes.

StreakTask subclasses automatically:
1. Auto-retry on UpstreamUnavailableError with exponential backoff
2. Retry on RateLimitExceededError with the EXACT countdown from retry_after
3. Leave CredentialInvalidError / CredentialMissingError alone: a retry
   cannot fix a revoked or missing token
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from celery import Task
from pymongo.database import Database

from commitstreak.database.mongo import get_database
from commitstreak.services.github.exceptions import (
    RateLimitExceededError,
    UpstreamUnavailableError,
)

logger = logging.getLogger(__name__)


class StreakTask(Task):
    abstract = True
    autoretry_for = (UpstreamUnavailableError,)
    retry_backoff = True
    retry_backoff_max = 1800
    retry_kwargs = {"max_retries": 3}
    default_retry_delay = 30

    def __init__(self) -> None:
        self._db: Database | None = None

    def __call__(self, *args, **kwargs):
        try:
            return super().__call__(*args, **kwargs)
        except RateLimitExceededError as exc:
            countdown = self._calculate_countdown(exc)
            if countdown is None:
                countdown = self.default_retry_delay
                logger.warning(
                    f"Rate limited in task {self.name}, "
                    f"retrying with default delay (no retry_after available)"
                )
            else:
                logger.warning(f"Rate limited in task {self.name}, retrying in {countdown}s")
            raise self.retry(exc=exc, countdown=countdown) from exc

    def _calculate_countdown(self, exc: RateLimitExceededError) -> Optional[int]:
        """Countdown seconds from the exception's retry_after, plus a small margin."""
        retry_after = getattr(exc, "retry_after", None)

        if retry_after is None:
            return None
        if isinstance(retry_after, (int, float)):
            return max(1, int(retry_after) + 5)
        if isinstance(retry_after, datetime):
            delta = (retry_after - datetime.now(timezone.utc)).total_seconds()
            return max(1, int(delta) + 5)
        return None

    @property
    def db(self) -> Database:
        if self._db is None:
            self._db = get_database()
        return self._db

    def on_failure(
        self, exc: Exception, task_id: str, args: tuple, kwargs: dict, einfo
    ):  # pragma: no cover - logging only
        logger.error("Task %s failed: %s", self.name, exc, exc_info=exc)
