"""Read-only view of linked GitHub accounts backed by MongoDB."""

import logging
from typing import List

from pymongo.database import Database

from commitstreak.config import settings
from commitstreak.repositories.oauth_identity import OAuthIdentityRepository
from commitstreak.repositories.user import UserRepository
from commitstreak.services.commits.models import Credential
from commitstreak.services.exceptions import CredentialMissingError

logger = logging.getLogger(__name__)


class MongoUserDirectory:
    def __init__(self, db: Database):
        self.identities = OAuthIdentityRepository(db)
        self.users = UserRepository(db)

    def get_credential(self, user_id: str) -> Credential:
        identity = self.identities.find_github_identity(user_id)
        if identity is None or not identity.access_token:
            raise CredentialMissingError(user_id)
        login = identity.account_login or identity.external_user_id
        return Credential(token=identity.access_token, identity=login)

    def get_utc_offset_minutes(self, user_id: str) -> int:
        user = self.users.find_by_id(user_id)
        if user is None or user.utc_offset_minutes is None:
            return settings.DEFAULT_UTC_OFFSET_MINUTES
        return user.utc_offset_minutes

    def list_linked_user_ids(self) -> List[str]:
        user_ids = self.identities.list_linked_user_ids()
        logger.debug(f"{len(user_ids)} users with a linked GitHub account")
        return user_ids
