"""
Credential store: the single source of truth for "are we authenticated".
Holds the access/refresh pair in memory and mirrors it to two named slots in SQLite
(via SQLAlchemy) so it survives a restart. Never logs token values.
"""
import logging
from dataclasses import dataclass

from sqlalchemy import create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from session_client.config import ACCESS_TOKEN_SLOT, CREDENTIAL_DATABASE_URL, REFRESH_TOKEN_SLOT
from session_client.models import Base, CredentialSlot

logger = logging.getLogger(__name__)

_SLOTS = (ACCESS_TOKEN_SLOT, REFRESH_TOKEN_SLOT)


@dataclass(frozen=True)
class Credential:
    access_token: str | None = None
    refresh_token: str | None = None

    @property
    def authenticated(self) -> bool:
        return self.access_token is not None

    @property
    def empty(self) -> bool:
        return self.access_token is None and self.refresh_token is None


def _make_engine(database_url: str):
    # In-memory SQLite needs StaticPool so every session sees the same DB
    if database_url.startswith("sqlite:///:memory:"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    connect_args = {"check_same_thread": False} if "sqlite" in database_url else {}
    return create_engine(database_url, connect_args=connect_args)


class CredentialStore:
    """
    get/set/clear never raise. Writes replace the whole pair at once: the in-memory value first
    (so the next get() sees it), then both slots in one transaction.
    With database_url=None, or when the database is unusable, persistence is in-memory only.
    Persistence is a synchronous SQLite commit on the caller's thread, so on the event loop; it is a
    couple of rows, written only on login, refresh and logout.
    """

    def __init__(self, database_url: str | None = CREDENTIAL_DATABASE_URL):
        self._credential = Credential()
        self._session_factory = None
        if not database_url:
            return
        try:
            engine = _make_engine(database_url)
            Base.metadata.create_all(bind=engine)
            self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
            self._credential = self._load()
        except SQLAlchemyError as e:
            logger.warning("Credential storage unavailable (%s); keeping credentials in memory only", e)
            self._session_factory = None

    @property
    def persistent(self) -> bool:
        return self._session_factory is not None

    @property
    def is_authenticated(self) -> bool:
        return self._credential.authenticated

    def get(self) -> Credential:
        return self._credential

    def set(self, credential: Credential) -> None:
        self._credential = credential
        self._persist(credential)

    def clear(self) -> None:
        self._credential = Credential()
        self._persist(self._credential)

    def _load(self) -> Credential:
        db = self._session_factory()
        try:
            rows = db.execute(select(CredentialSlot).where(CredentialSlot.name.in_(_SLOTS))).scalars().all()
            values = {row.name: row.value for row in rows}
        finally:
            db.close()
        credential = Credential(
            access_token=values.get(ACCESS_TOKEN_SLOT),
            refresh_token=values.get(REFRESH_TOKEN_SLOT),
        )
        logger.debug("Loaded stored credential (authenticated=%s)", credential.authenticated)
        return credential

    def _persist(self, credential: Credential) -> None:
        if self._session_factory is None:
            return
        values = {ACCESS_TOKEN_SLOT: credential.access_token, REFRESH_TOKEN_SLOT: credential.refresh_token}
        db = self._session_factory()
        try:
            for name, value in values.items():
                if value is None:
                    slot = db.get(CredentialSlot, name)
                    if slot is not None:
                        db.delete(slot)
                else:
                    db.merge(CredentialSlot(name=name, value=value))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning("Could not persist credentials (%s); in-memory value still applies", e)
        finally:
            db.close()
