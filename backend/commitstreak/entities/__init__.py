from .base import BaseEntity, PyObjectId, PyObjectIdStr
from .day_bucket import DayBucketDocument, StoredCommit, StoredRepository
from .oauth_identity import OAuthIdentity
from .user import EmbeddedStreak, User

__all__ = [
    # Base
    "BaseEntity",
    "PyObjectId",
    "PyObjectIdStr",
    # Streak data
    "DayBucketDocument",
    "StoredCommit",
    "StoredRepository",
    "EmbeddedStreak",
    # Identity
    "OAuthIdentity",
    "User",
]
