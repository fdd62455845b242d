"""Bearer session resolution shared by the link and media routers."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from services.session_token import SessionTokenError, decode_session_token


bearer_scheme = HTTPBearer(auto_error=False)

BEARER_CHALLENGE = {"WWW-Authenticate": "Bearer"}


@dataclass(frozen=True)
class AuthContext:
    user_id: str
    email: Optional[str] = None


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers=BEARER_CHALLENGE)


def ensure_user_scope(auth_user_id: str, supplied_user_id: Optional[str]) -> str:
    """A body or query ``user_id`` may only name the session's own user."""
    supplied = str(supplied_user_id or "").strip()
    if supplied and supplied != auth_user_id:
        raise HTTPException(status_code=403, detail="user_id does not match authenticated session.")
    return auth_user_id


async def get_auth_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> AuthContext:
    if credentials is None:
        raise _unauthorized("Missing Bearer session token.")
    try:
        claims = decode_session_token(credentials.credentials)
    except SessionTokenError as exc:
        raise _unauthorized(str(exc)) from exc
    return AuthContext(user_id=claims.user_id, email=claims.email)
