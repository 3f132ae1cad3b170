"""Authentication dependencies for FastAPI."""
from __future__ import annotations

from typing import Optional

from fastapi import Cookie, Header, HTTPException, status

from commitstreak.services.auth import decode_access_token


async def get_current_user_id(
    access_token: Optional[str] = Cookie(None),
    authorization: Optional[str] = Header(None),
) -> str:
    """Extract and validate user ID from JWT token.

    Checks for token in:
    1. Cookie (access_token)
    2. Authorization header (Bearer token)

    Raises:
        HTTPException: If no valid token is found
    """
    token = None

    if access_token:
        token = access_token
    elif authorization and authorization.startswith("Bearer "):
        token = authorization.replace("Bearer ", "", 1)

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated. Please login.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_access_token(token)
    user_id: Optional[str] = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
        )
    return user_id
