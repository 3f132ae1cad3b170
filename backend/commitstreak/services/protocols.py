"""
Storage protocols the engine depends on.

Implementations:
- Mongo repositories in commitstreak.repositories (production)
- In-memory fakes in tests/fakes.py
"""

from datetime import date
from typing import Dict, List, Optional, Protocol, runtime_checkable

from commitstreak.services.commits.models import Credential, DayBucket
from commitstreak.services.streak.models import StreakState


@runtime_checkable
class DayBucketStore(Protocol):
    """Per-user-per-day serialized DayBucket records."""

    def get(self, user_id: str, day: date) -> Optional[DayBucket]:
        ...

    def get_range(self, user_id: str, since_day: date, until_day: date) -> Dict[date, DayBucket]:
        """Buckets stored for days in [since_day, until_day], keyed by day."""
        ...

    def save(self, user_id: str, bucket: DayBucket) -> None:
        ...


@runtime_checkable
class StreakStateStore(Protocol):
    """Per-user streak record. The engine is its only writer."""

    def get(self, user_id: str) -> Optional[StreakState]:
        ...

    def save(self, user_id: str, state: StreakState) -> None:
        ...


@runtime_checkable
class UserDirectory(Protocol):
    """Read-only view of the identity/credential store."""

    def get_credential(self, user_id: str) -> Credential:
        """Raises CredentialMissingError when no GitHub account is linked."""
        ...

    def get_utc_offset_minutes(self, user_id: str) -> int:
        ...

    def list_linked_user_ids(self) -> List[str]:
        ...
