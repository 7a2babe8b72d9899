"""Principal tokens — a subject carried across requests as a JWT.

- Access token: short-lived (60min by default), presented on each request
- Refresh token: long-lived (30 days), exchanged for a new access token

The "sub" claim is the bare user id, the same value the principal
collection carries. Anonymous subjects are never issued tokens.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from codehub.auth.principal import Subject, as_principal
from codehub.config import settings

ACCESS = "access"
REFRESH = "refresh"


class TokenError(Exception):
    """Raised when token creation/verification fails."""


def create_access_token(
    subject: Subject,
    expires_minutes: Optional[int] = None,
) -> str:
    """Create a JWT access token for subject."""
    return _encode(
        subject,
        ACCESS,
        timedelta(minutes=expires_minutes or settings.access_token_expire_minutes),
    )


def create_refresh_token(
    subject: Subject,
    expires_days: Optional[int] = None,
) -> str:
    """Create a JWT refresh token for subject."""
    return _encode(
        subject,
        REFRESH,
        timedelta(days=expires_days or settings.refresh_token_expire_days),
    )


def verify_token(token: str, expected_type: str = ACCESS) -> dict:
    """Verify and decode a JWT token.

    Returns the payload dict on success.
    Raises TokenError on failure or when the token is of another type.
    """
    try:
        payload = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid token: {e}")
    if payload.get("type") != expected_type:
        raise TokenError(f"Expected a {expected_type} token")
    return payload


def subject_from_token(token: str, expected_type: str = ACCESS) -> Subject:
    """Rebuild the authenticated subject a token was issued for."""
    payload = verify_token(token, expected_type)
    try:
        user_id = int(payload["sub"])
    except (KeyError, ValueError):
        raise TokenError("Token subject is not a user id")
    return Subject(principals=as_principal(user_id), authenticated=True)


def _encode(subject: Subject, token_type: str, lifetime: timedelta) -> str:
    if subject.is_anonymous:
        raise TokenError("Cannot issue a token for the anonymous user")
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(subject.user_id),
        "type": token_type,
        "exp": now + lifetime,
        "iat": now,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)
