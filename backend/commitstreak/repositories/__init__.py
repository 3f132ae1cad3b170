from .base import BaseRepository
from .day_bucket import DayBucketRepository
from .oauth_identity import OAuthIdentityRepository
from .user import StreakStateRepository, UserRepository

__all__ = [
    "BaseRepository",
    "DayBucketRepository",
    "OAuthIdentityRepository",
    "StreakStateRepository",
    "UserRepository",
]
