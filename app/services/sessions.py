from datetime import datetime, timedelta, timezone
import logging
import secrets
from typing import Optional

from sqlalchemy import delete, select, update

from app.config import settings
from app.database import session_scope
from app.models.session import SessionEntry

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore:
    """Sign-in sessions kept in the database so sign-out can invalidate a cookie
    that is still cryptographically valid."""

    def __init__(self, ttl_seconds: int) -> None:
        self._ttl = timedelta(seconds=ttl_seconds)

    def open(self, user_id: int) -> str:
        now = _utcnow()
        session_id = secrets.token_urlsafe(32)
        with session_scope() as session:
            session.add(
                SessionEntry(
                    session_id=session_id,
                    user_id=user_id,
                    created_at=now,
                    expires_at=now + self._ttl,
                )
            )
        return session_id

    def close(self, session_id: str) -> bool:
        with session_scope() as session:
            result = session.execute(
                update(SessionEntry)
                .where(SessionEntry.session_id == session_id, SessionEntry.revoked_at.is_(None))
                .values(revoked_at=_utcnow())
            )
            closed = result.rowcount > 0
        if not closed:
            LOGGER.info("Sign-out for a session that was not open")
        return closed

    def owner_of(self, session_id: str) -> Optional[int]:
        """Account id of a live session, or None once it is closed or expired."""
        with session_scope() as session:
            return session.execute(
                select(SessionEntry.user_id).where(
                    SessionEntry.session_id == session_id,
                    SessionEntry.revoked_at.is_(None),
                    SessionEntry.expires_at > _utcnow(),
                )
            ).scalar_one_or_none()

    def purge_expired(self) -> int:
        with session_scope() as session:
            result = session.execute(
                delete(SessionEntry).where(SessionEntry.expires_at <= _utcnow())
            )
            return result.rowcount


session_store = SessionStore(settings.session_ttl_seconds)
