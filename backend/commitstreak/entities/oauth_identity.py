from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import Field

from .base import BaseEntity, PyObjectId


class OAuthIdentity(BaseEntity):
    """Linked OAuth account. Written by the login flow, read here for tokens."""

    user_id: PyObjectId
    provider: str = "github"
    external_user_id: str
    access_token: Optional[str] = Field(default=None, repr=False)
    scopes: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    account_login: Optional[str] = None
    account_name: Optional[str] = None

    class Config:
        collection = "oauth_identities"
