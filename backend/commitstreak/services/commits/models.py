"""Canonical records shared by the fetch/aggregate pipeline."""

from __future__ import annotations

from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Credential(BaseModel):
    """Token plus the GitHub login it authenticates. Read-only to the engine."""

    model_config = ConfigDict(frozen=True)

    token: str = Field(..., repr=False)
    identity: str


class Repository(BaseModel):
    """A repository visible to a credential. Enumerated fresh per run."""

    model_config = ConfigDict(frozen=True)

    name: str
    full_name: str
    url: str
    is_private: bool = False


class CommitRecord(BaseModel):
    """Normalized commit, independent of the upstream payload shape."""

    model_config = ConfigDict(frozen=True)

    repository: Repository
    message: str
    url: str
    authored_at: datetime  # UTC
    additions: int = Field(default=0, ge=0)
    deletions: int = Field(default=0, ge=0)
    source_id: str  # commit SHA, dedup key

    @property
    def summary(self) -> str:
        return summarize_message(self.message)


def summarize_message(message: str, max_length: int = 80) -> str:
    """First line of a commit message, truncated for list views."""
    if not message:
        return ""
    first_line = message.split("\n")[0]
    if len(first_line) <= max_length:
        return first_line
    return f"{first_line[:max_length]}..."


class DayBucket(BaseModel):
    """Commits attributed to one local calendar day, keyed by source_id."""

    model_config = ConfigDict(frozen=True)

    day: date
    commits: Dict[str, CommitRecord] = Field(default_factory=dict)
    is_complete: bool = False

    @property
    def is_active(self) -> bool:
        return bool(self.commits)

    @property
    def additions(self) -> int:
        return sum(c.additions for c in self.commits.values())

    @property
    def deletions(self) -> int:
        return sum(c.deletions for c in self.commits.values())

    def sorted_commits(self) -> List[CommitRecord]:
        return sorted(self.commits.values(), key=lambda c: (c.authored_at, c.source_id))

    def merge(self, other: "DayBucket") -> "DayBucket":
        """
        Union two buckets for the same day.

        A complete bucket never changes. Commits already present win over
        incoming duplicates.
        """
        if other.day != self.day:
            raise ValueError(f"Cannot merge bucket {other.day} into {self.day}")
        if self.is_complete:
            return self
        merged = dict(other.commits)
        merged.update(self.commits)
        return DayBucket(
            day=self.day,
            commits=merged,
            is_complete=other.is_complete,
        )


class RepositoryFailure(BaseModel):
    """A repository whose fetch failed and was left out of the result."""

    full_name: str
    error_type: str
    message: str


class EnumerationResult(BaseModel):
    """Repositories listed so far, plus the error that stopped listing (if any)."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    repositories: List[Repository] = Field(default_factory=list)
    error: Optional[Exception] = None

    @property
    def complete(self) -> bool:
        return self.error is None


class FetchResult(BaseModel):
    """Commits gathered across repositories with partial-failure annotations."""

    commits: List[CommitRecord] = Field(default_factory=list)
    repositories: List[Repository] = Field(default_factory=list)
    failures: List[RepositoryFailure] = Field(default_factory=list)
    enumeration_complete: bool = True
    cancelled: bool = False

    @property
    def partial(self) -> bool:
        return bool(self.failures) or self.cancelled or not self.enumeration_complete
