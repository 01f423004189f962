# filevault/core/security.py
"""
Session gate.

Sessions are created by the login service and stored server side; the browser
only holds the token in a cookie. Everything in this module turns that token
into an owner id, or refuses the request.
"""
import logging
import secrets
from abc import ABC, abstractmethod
from datetime import datetime, timedelta

from fastapi import Depends, Request, Response
from sqlalchemy.orm import Session

from filevault.core.config import Settings, get_settings
from filevault.core.errors import AuthenticationRequired
from filevault.models.database import get_db, utcnow
from filevault.models.session import UserSession

logger = logging.getLogger(__name__)


class SessionStore(ABC):
    @abstractmethod
    def lookup(self, token: str) -> tuple[int, datetime] | None:
        """Return ``(owner_id, expires_at)`` for a known token."""

    @abstractmethod
    def open(self, owner_id: int) -> str:
        ...

    @abstractmethod
    def close(self, token: str) -> None:
        ...

    @abstractmethod
    def purge_expired(self, now: datetime | None = None) -> int:
        ...


class DatabaseSessionStore(SessionStore):
    def __init__(self, db: Session, ttl_seconds: int = 24 * 60 * 60):
        self.db = db
        self.ttl = timedelta(seconds=ttl_seconds)

    def lookup(self, token):
        row = self.db.get(UserSession, token)
        if row is None:
            return None
        return row.user_id, row.expires_at

    def open(self, owner_id):
        token = secrets.token_urlsafe(32)
        now = utcnow()
        self.db.add(UserSession(token=token, user_id=owner_id, created_at=now, expires_at=now + self.ttl))
        self.db.commit()
        return token

    def close(self, token):
        self.db.query(UserSession).filter(UserSession.token == token).delete()
        self.db.commit()

    def purge_expired(self, now=None):
        now = now or utcnow()
        removed = self.db.query(UserSession).filter(UserSession.expires_at <= now).delete()
        self.db.commit()
        return removed


def resolve_owner(token: str | None, store: SessionStore, now: datetime | None = None) -> int | None:
    """Map a session token to the owner id behind it, or None."""
    if not token:
        return None
    found = store.lookup(token)
    if found is None:
        return None
    owner_id, expires_at = found
    if expires_at <= (now or utcnow()):
        return None
    return owner_id


# --- FastAPI dependencies ---
def get_session_store(db: Session = Depends(get_db), settings: Settings = Depends(get_settings)) -> SessionStore:
    return DatabaseSessionStore(db, ttl_seconds=settings.session_ttl_seconds)


def optional_owner(
    request: Request,
    store: SessionStore = Depends(get_session_store),
    settings: Settings = Depends(get_settings),
) -> int | None:
    return resolve_owner(request.cookies.get(settings.session_cookie_name), store)


def require_owner(owner_id: int | None = Depends(optional_owner)) -> int:
    if owner_id is None:
        raise AuthenticationRequired(detail="missing, unknown or expired session")
    return owner_id


# --- cookie helpers for the login service ---
def set_session_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        settings.session_cookie_name,
        token,
        max_age=settings.session_ttl_seconds,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(settings.session_cookie_name)
