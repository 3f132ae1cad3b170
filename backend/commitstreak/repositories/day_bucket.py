"""Day bucket repository: the serialized per-user-per-day cache."""

from datetime import date, datetime, timezone
from typing import Dict, Optional

from pymongo.database import Database

from commitstreak.entities.day_bucket import (
    DayBucketDocument,
    StoredCommit,
    StoredRepository,
)
from commitstreak.services.commits.models import CommitRecord, DayBucket, Repository

from .base import BaseRepository


class DayBucketRepository(BaseRepository[DayBucketDocument]):
    def __init__(self, db: Database):
        super().__init__(db, "day_buckets", DayBucketDocument)

    def get(self, user_id: str, day: date) -> Optional[DayBucket]:
        doc = self.find_one({"user_id": self.ensure_object_id(user_id), "day": day.isoformat()})
        return to_bucket(doc) if doc else None

    def get_range(self, user_id: str, since_day: date, until_day: date) -> Dict[date, DayBucket]:
        # ISO dates sort lexicographically, so a string range query is a date range.
        docs = self.find_many(
            {
                "user_id": self.ensure_object_id(user_id),
                "day": {"$gte": since_day.isoformat(), "$lte": until_day.isoformat()},
            },
            sort=[("day", 1)],
        )
        buckets = (to_bucket(doc) for doc in docs)
        return {bucket.day: bucket for bucket in buckets}

    def save(self, user_id: str, bucket: DayBucket) -> None:
        document = to_document(user_id, bucket)
        self.collection.update_one(
            {"user_id": document.user_id, "day": document.day},
            {
                "$set": {
                    "is_complete": document.is_complete,
                    "commits": [c.model_dump() for c in document.commits],
                    "updated_at": datetime.now(timezone.utc),
                },
                "$setOnInsert": {"created_at": document.created_at},
            },
            upsert=True,
        )


def to_document(user_id: str, bucket: DayBucket) -> DayBucketDocument:
    return DayBucketDocument(
        user_id=user_id,
        day=bucket.day.isoformat(),
        is_complete=bucket.is_complete,
        commits=[
            StoredCommit(
                source_id=commit.source_id,
                repository=StoredRepository(**commit.repository.model_dump()),
                message=commit.message,
                url=commit.url,
                authored_at=commit.authored_at.isoformat(),
                additions=commit.additions,
                deletions=commit.deletions,
            )
            for commit in bucket.sorted_commits()
        ],
    )


def to_bucket(document: DayBucketDocument) -> DayBucket:
    commits = {}
    for stored in document.commits:
        commits[stored.source_id] = CommitRecord(
            repository=Repository(**stored.repository.model_dump()),
            message=stored.message,
            url=stored.url,
            authored_at=datetime.fromisoformat(stored.authored_at),
            additions=stored.additions,
            deletions=stored.deletions,
            source_id=stored.source_id,
        )
    return DayBucket(
        day=date.fromisoformat(document.day),
        commits=commits,
        is_complete=document.is_complete,
    )
