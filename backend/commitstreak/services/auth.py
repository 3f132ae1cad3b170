"""Authentication utilities: decode the app's JWT session tokens."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import HTTPException, status
from jose import JWTError, jwt

from commitstreak.config import settings


def decode_access_token(token: str) -> dict[str, Any]:
    """Decode and validate a JWT access token.

    Tokens are issued by the login flow; this service only verifies them.

    Raises:
        HTTPException: If token is invalid, expired, or malformed
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Could not validate credentials: {str(e)}",
        )

    if payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
        )

    exp = payload.get("exp")
    if exp and datetime.now(timezone.utc) > datetime.fromtimestamp(exp, tz=timezone.utc):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
        )

    return payload
