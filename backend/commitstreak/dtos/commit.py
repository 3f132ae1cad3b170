"""Commit list DTOs"""

from datetime import date, datetime
from typing import List

from pydantic import BaseModel, Field

from commitstreak.services.commits.models import CommitRecord


class RepositoryRef(BaseModel):
    name: str
    full_name: str
    url: str
    is_private: bool = False


class CommitResponse(BaseModel):
    sha: str
    repository: RepositoryRef
    message: str
    summary: str = Field(..., description="First line, truncated for list views")
    url: str
    authored_at: datetime
    additions: int = 0
    deletions: int = 0

    @classmethod
    def from_record(cls, record: CommitRecord) -> "CommitResponse":
        return cls(
            sha=record.source_id,
            repository=RepositoryRef(**record.repository.model_dump()),
            message=record.message,
            summary=record.summary,
            url=record.url,
            authored_at=record.authored_at,
            additions=record.additions,
            deletions=record.deletions,
        )


class FailedRepository(BaseModel):
    full_name: str
    error_type: str
    message: str


class DayCommitsResponse(BaseModel):
    date: date
    commits: List[CommitResponse] = Field(default_factory=list)
    total_commits: int = 0
    total_additions: int = 0
    total_deletions: int = 0
    is_complete: bool = False
    partial: bool = False
    failed_repositories: List[FailedRepository] = Field(default_factory=list)
