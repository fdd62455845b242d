"""
Session tokens for the upstream user-management layer.

The API does not own user signup or login. The CRUD layer mints a short-lived
JWT for a user id, and the link endpoints trust that subject when they issue
authorization state.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from config import settings
from services.timeutils import utc_now


SESSION_TOKEN_TYPE = "lifeline_session"
SESSION_TOKEN_ISSUER = "lifeline-ingest"


class SessionTokenError(ValueError):
    """Token is malformed, expired, or not a lifeline session token."""


@dataclass(frozen=True)
class SessionToken:
    token: str
    user_id: str
    expires_at: datetime


@dataclass(frozen=True)
class SessionClaims:
    user_id: str
    email: Optional[str]
    expires_at: datetime


def create_session_token(
    user_id: str,
    email: Optional[str] = None,
    *,
    ttl: Optional[timedelta] = None,
    now: Optional[datetime] = None,
) -> SessionToken:
    if not str(user_id or "").strip():
        raise SessionTokenError("Session token requires a user id.")
    issued_at = now or utc_now()
    expires_at = issued_at + (ttl or timedelta(hours=max(int(settings.JWT_EXPIRATION_HOURS or 24), 1)))
    claims: Dict[str, Any] = {
        "sub": user_id,
        "iss": SESSION_TOKEN_ISSUER,
        "type": SESSION_TOKEN_TYPE,
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    if email:
        claims["email"] = email
    token = jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    return SessionToken(token=token, user_id=user_id, expires_at=expires_at)


def decode_session_token(token: str) -> SessionClaims:
    """Validate signature, expiry, issuer and token type."""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            issuer=SESSION_TOKEN_ISSUER,
        )
    except ExpiredSignatureError as exc:
        raise SessionTokenError("Session token has expired.") from exc
    except JWTError as exc:
        raise SessionTokenError("Invalid session token.") from exc

    if payload.get("type") != SESSION_TOKEN_TYPE:
        raise SessionTokenError("Invalid session token type.")
    subject = str(payload.get("sub") or "").strip()
    if not subject:
        raise SessionTokenError("Session token missing subject.")

    return SessionClaims(
        user_id=subject,
        email=payload.get("email") or None,
        expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
    )
