"""
Per-credential quota tracking for the GitHub REST API.

GitHub reports the remaining request budget and its reset time on every
response (X-RateLimit-Remaining / X-RateLimit-Reset). A QuotaTracker keeps
the latest values for one token and makes callers wait for the reset once
the budget is spent. One instance is shared by every worker of a fetch run
and passed in explicitly, so tests can drive it with a fake clock.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional

from commitstreak.services.github.exceptions import RateLimitExceededError
from commitstreak.utils.clock import Clock, Deadline

logger = logging.getLogger(__name__)


class QuotaTracker:
    """Remaining-request counter and reset time for a single token."""

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or Clock()
        self._lock = asyncio.Lock()
        self._remaining: Optional[int] = None  # None until the first response
        self._reset_at: Optional[datetime] = None

    @property
    def remaining(self) -> Optional[int]:
        return self._remaining

    @property
    def reset_at(self) -> Optional[datetime]:
        return self._reset_at

    async def acquire(self, deadline: Optional[Deadline] = None) -> float:
        """
        Reserve one request from the budget, suspending until reset if needed.

        Returns:
            Seconds spent waiting.

        Raises:
            RateLimitExceededError: if the reset lies beyond the deadline.
        """
        waited = 0.0
        while True:
            async with self._lock:
                wait_seconds = self._seconds_until_available()
                if wait_seconds <= 0:
                    if self._remaining is not None:
                        self._remaining -= 1
                    return waited

            if deadline is not None and not deadline.allows_wait(wait_seconds):
                raise RateLimitExceededError(
                    f"Rate limit resets in {wait_seconds:.1f}s, "
                    f"past the deadline ({deadline.remaining():.1f}s left)",
                    retry_after=wait_seconds,
                )

            logger.info(f"GitHub quota exhausted, waiting {wait_seconds:.1f}s for reset")
            await self._clock.sleep(wait_seconds)
            waited += wait_seconds

    def _seconds_until_available(self) -> float:
        if self._remaining is None or self._remaining > 0:
            return 0.0
        if self._reset_at is None:
            return 0.0
        wait = (self._reset_at - self._clock.now()).total_seconds()
        if wait <= 0:
            # The window rolled over; the next response will report the new budget.
            self._remaining = None
            self._reset_at = None
            return 0.0
        return wait

    async def update_from_headers(self, headers: Mapping[str, str]) -> None:
        remaining = headers.get("X-RateLimit-Remaining")
        reset = headers.get("X-RateLimit-Reset")
        if remaining is None:
            return
        try:
            remaining_value = int(remaining)
            reset_at = (
                datetime.fromtimestamp(int(reset), tz=timezone.utc) if reset else None
            )
        except (TypeError, ValueError):
            logger.warning(f"Ignoring unparseable quota headers: {remaining!r}/{reset!r}")
            return
        async with self._lock:
            self._remaining = remaining_value
            self._reset_at = reset_at

    async def mark_exhausted(self, retry_after: float) -> None:
        """Record a throttling response: no requests until `retry_after` elapses."""
        reset_at = self._clock.now() + timedelta(seconds=max(retry_after, 0.0))
        async with self._lock:
            self._remaining = 0
            if self._reset_at is None or reset_at > self._reset_at:
                self._reset_at = reset_at


class QuotaRegistry:
    """One QuotaTracker per token, so concurrent runs for a user share a budget."""

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or Clock()
        self._trackers: dict[str, QuotaTracker] = {}

    def for_token(self, token_key: str) -> QuotaTracker:
        tracker = self._trackers.get(token_key)
        if tracker is None:
            tracker = QuotaTracker(self._clock)
            self._trackers[token_key] = tracker
        return tracker
