"""
Identity token handling.
Session tokens are issued by the identity service as HS256 JWTs whose
"sub" claim is the user's UUID; this module verifies them.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from src.config import get_settings
from src.core.exceptions import AuthenticationError


__all__ = [
    "create_access_token",
    "verify_token",
    "user_id_from_token",
]


def create_access_token(
    user_id: uuid.UUID,
    expires_delta: timedelta = timedelta(minutes=15),
) -> str:
    """
    Creates a JWT access token for the given user.
    Used by local tooling and tests; production tokens come from the
    identity service signed with the same key.
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    to_encode = {
        "sub": str(user_id),
        "exp": now + expires_delta,
        "iat": now,
        "type": "access",
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict[str, Any]:
    """
    Verifies and decodes an access token.

    Raises:
        AuthenticationError: If token is invalid, expired or of the wrong type
    """
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        raise AuthenticationError(f"Invalid or expired token: {str(e)}")

    if "type" in payload and payload["type"] != "access":
        raise AuthenticationError("Invalid token type: expected access")
    return payload


def user_id_from_token(token: str) -> uuid.UUID:
    """Returns the authenticated user's id from a verified token."""
    payload = verify_token(token)
    subject = payload.get("sub")
    if not subject:
        raise AuthenticationError("Invalid token payload")
    try:
        return uuid.UUID(subject)
    except ValueError:
        raise AuthenticationError("Token subject is not a user id")
