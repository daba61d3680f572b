"""
Token issuance: HS256 access JWTs and opaque, rotating refresh tokens.
Refresh tokens live in an in-memory registry; each one can be exchanged exactly once.
"""
import logging
import secrets
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt
from fastapi import HTTPException

from auth_api.config import ACCESS_TOKEN_EXPIRES, JWT_ALGORITHM, JWT_SECRET, REFRESH_TOKEN_EXPIRES

logger = logging.getLogger(__name__)


@dataclass
class RefreshTokenRecord:
    user_id: int
    expires_at: float

    def expired(self) -> bool:
        return time.time() >= self.expires_at


_refresh_tokens: dict[str, RefreshTokenRecord] = {}
_lock = threading.Lock()


def _unauthorized(description: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"error": "invalid_token", "error_description": description},
        headers={"WWW-Authenticate": "Bearer"},
    )


def issue_access_token(user_id: int, expires_in: int = ACCESS_TOKEN_EXPIRES) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=expires_in)).timestamp()),
        "typ": "access",
    }
    token = jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)
    if isinstance(token, bytes):
        token = token.decode("utf-8")
    return token


def verify_access_token(token: str) -> int:
    """Return the user id of a valid access token. Raises HTTPException(401) otherwise."""
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug("Access token invalid: %s", e)
        raise _unauthorized("Invalid token")
    if payload.get("typ") != "access":
        raise _unauthorized("Invalid token")
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise _unauthorized("Invalid token subject")


def _purge_expired() -> None:
    """Caller holds _lock."""
    expired = [t for t, r in _refresh_tokens.items() if r.expired()]
    for t in expired:
        del _refresh_tokens[t]


def issue_refresh_token(user_id: int, expires_in: int = REFRESH_TOKEN_EXPIRES) -> str:
    value = secrets.token_urlsafe(48)
    with _lock:
        _purge_expired()
        _refresh_tokens[value] = RefreshTokenRecord(user_id=user_id, expires_at=time.time() + expires_in)
    return value


def rotate_refresh_token(refresh_token: str) -> tuple[int, str]:
    """
    Consume refresh_token and issue its replacement. Returns (user_id, new_refresh_token).
    A presented token is removed from the registry whatever the outcome, so each one works at most once.
    Raises HTTPException(401) for unknown, already used or expired tokens.
    """
    with _lock:
        record = _refresh_tokens.pop(refresh_token, None)
    if record is None:
        raise _unauthorized("Refresh token not found or revoked")
    if record.expired():
        raise _unauthorized("Refresh token expired")
    return record.user_id, issue_refresh_token(record.user_id)
