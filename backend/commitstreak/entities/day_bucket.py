from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field

from .base import BaseEntity, PyObjectId


class StoredRepository(BaseModel):
    name: str
    full_name: str
    url: str
    is_private: bool = False


class StoredCommit(BaseModel):
    source_id: str
    repository: StoredRepository
    message: str
    url: str
    authored_at: str  # ISO-8601 UTC
    additions: int = 0
    deletions: int = 0


class DayBucketDocument(BaseEntity):
    """One user's commits for one local calendar day."""

    user_id: PyObjectId
    day: str  # YYYY-MM-DD, local to the user
    is_complete: bool = False
    commits: List[StoredCommit] = Field(default_factory=list)

    class Config:
        collection = "day_buckets"
