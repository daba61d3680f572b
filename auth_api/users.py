"""
In-memory user registry with bcrypt password hashes. Seeded from env on startup.
"""
import logging
import threading
from dataclasses import dataclass

import bcrypt

from auth_api.config import SEED_PASSWORD, SEED_USER

logger = logging.getLogger(__name__)


@dataclass
class User:
    id: int
    username: str
    password_hash: str

    def public(self) -> dict:
        return {"id": self.id, "username": self.username}


_users: dict[str, User] = {}
_lock = threading.Lock()


def hash_password(password: str) -> str:
    # Bcrypt has a 72-byte limit
    raw = password.encode("utf-8")
    if len(raw) > 72:
        raw = raw[:72]
    return bcrypt.hashpw(raw, bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    raw = plain.encode("utf-8")[:72]
    return bcrypt.checkpw(raw, hashed.encode("utf-8"))


def create_user(username: str, password: str) -> User:
    """Add a user, or return the existing one with that username."""
    with _lock:
        existing = _users.get(username)
        if existing is not None:
            return existing
        user = User(id=len(_users) + 1, username=username, password_hash=hash_password(password))
        _users[username] = user
    logger.info("Created user: %s", username)
    return user


def get_user(user_id: int) -> User | None:
    with _lock:
        return next((u for u in _users.values() if u.id == user_id), None)


def authenticate(username: str, password: str) -> User | None:
    with _lock:
        user = _users.get(username)
    if user is None or not verify_password(password, user.password_hash):
        return None
    return user


def seed_from_env() -> None:
    if SEED_USER and SEED_PASSWORD:
        create_user(SEED_USER, SEED_PASSWORD)
