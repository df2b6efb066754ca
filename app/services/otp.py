from datetime import datetime, timedelta, timezone
import logging
import secrets
from typing import Any, Optional

from sqlalchemy import delete, select, update

from app.config import settings
from app.database import session_scope
from app.models.otp import OtpEntry
from app.schemas.otp import OtpRecord

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _to_record(entry: OtpEntry) -> OtpRecord:
    return OtpRecord(
        id=entry.id,
        email=entry.email,
        purpose=entry.purpose,
        code=entry.code,
        pending_payload=dict(entry.pending_payload) if entry.pending_payload else None,
        created_at=entry.created_at,
    )


class OtpStore:
    """Self-expiring one-time codes keyed by (email, purpose).

    Expiry is lazy: rows older than the TTL may still sit in the table until
    the next write purges them, so every read filters on ``created_at``.
    """

    def __init__(self, ttl_seconds: int, code_length: int) -> None:
        self._ttl_seconds = ttl_seconds
        self._code_length = code_length

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def generate_code(self) -> str:
        low = 10 ** (self._code_length - 1)
        return str(low + secrets.randbelow(10**self._code_length - low))

    def put(
        self,
        email: str,
        purpose: str,
        code: str,
        pending_payload: Optional[dict[str, Any]] = None,
    ) -> OtpRecord:
        now = _utcnow()
        entry = OtpEntry(
            email=normalize_email(email),
            purpose=purpose,
            code=code,
            pending_payload=pending_payload,
            created_at=now,
        )
        with session_scope() as session:
            session.execute(delete(OtpEntry).where(OtpEntry.created_at <= self._cutoff(now)))
            session.add(entry)
            session.flush()
            return _to_record(entry)

    def find_by_code(self, email: str, code: str, purpose: str) -> Optional[OtpRecord]:
        now = _utcnow()
        with session_scope() as session:
            entry = session.execute(
                select(OtpEntry)
                .where(
                    OtpEntry.email == normalize_email(email),
                    OtpEntry.code == code.strip(),
                    OtpEntry.purpose == purpose,
                    OtpEntry.created_at > self._cutoff(now),
                )
                .order_by(OtpEntry.created_at.desc(), OtpEntry.id.desc())
                .limit(1)
            ).scalar_one_or_none()
            return _to_record(entry) if entry is not None else None

    def find_latest(self, email: str, purpose: str) -> Optional[OtpRecord]:
        now = _utcnow()
        with session_scope() as session:
            entry = session.execute(
                select(OtpEntry)
                .where(
                    OtpEntry.email == normalize_email(email),
                    OtpEntry.purpose == purpose,
                    OtpEntry.created_at > self._cutoff(now),
                )
                .order_by(OtpEntry.created_at.desc(), OtpEntry.id.desc())
                .limit(1)
            ).scalar_one_or_none()
            return _to_record(entry) if entry is not None else None

    def regenerate(self, record_id: int, code: str) -> Optional[OtpRecord]:
        """Swap the code and restart the TTL window on an existing record."""
        now = _utcnow()
        with session_scope() as session:
            result = session.execute(
                update(OtpEntry)
                .where(OtpEntry.id == record_id)
                .values(code=code, created_at=now)
            )
            if result.rowcount == 0:
                return None
            entry = session.get(OtpEntry, record_id)
            return _to_record(entry) if entry is not None else None

    def delete_all(self, email: str, purpose: str) -> int:
        with session_scope() as session:
            result = session.execute(
                delete(OtpEntry).where(
                    OtpEntry.email == normalize_email(email),
                    OtpEntry.purpose == purpose,
                )
            )
            return result.rowcount

    def delete_by_id(self, record_id: int, code: Optional[str] = None) -> bool:
        """Delete one record. With ``code``, a record regenerated since it was read survives."""
        stmt = delete(OtpEntry).where(OtpEntry.id == record_id)
        if code is not None:
            stmt = stmt.where(OtpEntry.code == code)
        with session_scope() as session:
            result = session.execute(stmt)
            deleted = result.rowcount > 0
        if not deleted:
            LOGGER.info("OTP record %s was already gone", record_id)
        return deleted

    def purge_expired(self) -> int:
        with session_scope() as session:
            result = session.execute(
                delete(OtpEntry).where(OtpEntry.created_at <= self._cutoff(_utcnow()))
            )
            return result.rowcount

    def _cutoff(self, now: datetime) -> datetime:
        return now - timedelta(seconds=self._ttl_seconds)


otp_store = OtpStore(settings.otp_ttl_seconds, settings.otp_length)
