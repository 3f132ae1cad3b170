"""OAuth identity repository for database operations"""

from typing import List, Optional

from pymongo.database import Database

from commitstreak.entities.oauth_identity import OAuthIdentity

from .base import BaseRepository

GITHUB_PROVIDER = "github"


class OAuthIdentityRepository(BaseRepository[OAuthIdentity]):
    def __init__(self, db: Database):
        super().__init__(db, "oauth_identities", OAuthIdentity)

    def find_github_identity(self, user_id: str) -> Optional[OAuthIdentity]:
        return self.find_one(
            {"user_id": self.ensure_object_id(user_id), "provider": GITHUB_PROVIDER}
        )

    def list_linked_user_ids(self) -> List[str]:
        """Users with a stored GitHub access token"""
        user_ids = self.collection.distinct(
            "user_id",
            {"provider": GITHUB_PROVIDER, "access_token": {"$nin": [None, ""]}},
        )
        return sorted(str(user_id) for user_id in user_ids)
