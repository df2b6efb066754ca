from datetime import datetime, timezone
import logging
import re
import secrets
from typing import Any, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError

from app.config import settings
from app.database import session_scope
from app.models.session import SessionEntry
from app.models.user import UserEntry
from app.schemas.errors import Conflict, InvalidCredential, InvalidInput, NotFound
from app.schemas.users import PublicAccount, UserUpdate
from app.services.passwords import hash_password, verify_password

LOGGER = logging.getLogger(__name__)

_USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9]+$")

# Client-facing payload key -> column. Anything else in a payload is ignored.
UPDATABLE_FIELDS = {
    "username": "username",
    "email": "email",
    "profilePicture": "profile_picture",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _conflict_from_integrity(exc: IntegrityError) -> Conflict:
    detail = str(exc.orig).lower() if exc.orig is not None else ""
    if "username" in detail:
        return Conflict("Username already exists")
    if "email" in detail:
        return Conflict("Email already exists")
    return Conflict("Username or email already exists")


def to_public_account(entry: UserEntry) -> PublicAccount:
    return PublicAccount(
        id=entry.id,
        username=entry.username,
        email=entry.email,
        profile_picture=entry.profile_picture,
        is_admin=bool(entry.is_admin),
        created_at=entry.created_at,
        updated_at=entry.updated_at,
    )


def validate_username(username: str) -> None:
    if len(username) < 3 or len(username) > 20:
        raise InvalidInput("Username must be between 3 and 20 characters")
    if " " in username:
        raise InvalidInput("Username cannot contain spaces")
    if username != username.lower():
        raise InvalidInput("Username must be lowercase")
    if not _USERNAME_PATTERN.match(username):
        raise InvalidInput("Username can only contain letters and numbers")


class UserStore:
    def get_entry(self, user_id: int) -> Optional[UserEntry]:
        with session_scope() as session:
            return session.get(UserEntry, user_id)

    def get_user(self, user_id: int) -> Optional[PublicAccount]:
        entry = self.get_entry(user_id)
        if entry is None:
            return None
        return to_public_account(entry)

    def get_by_email(self, email: str) -> Optional[UserEntry]:
        with session_scope() as session:
            return session.execute(
                select(UserEntry).where(UserEntry.email == _normalize_email(email))
            ).scalar_one_or_none()

    def get_by_username(self, username: str) -> Optional[UserEntry]:
        with session_scope() as session:
            return session.execute(
                select(UserEntry).where(UserEntry.username == username.strip())
            ).scalar_one_or_none()

    def username_taken(self, username: str, exclude_user_id: Optional[int] = None) -> bool:
        entry = self.get_by_username(username)
        if entry is None:
            return False
        return exclude_user_id is None or entry.id != exclude_user_id

    def email_taken(self, email: str, exclude_user_id: Optional[int] = None) -> bool:
        entry = self.get_by_email(email)
        if entry is None:
            return False
        return exclude_user_id is None or entry.id != exclude_user_id

    def create_user(
        self,
        username: str,
        email: str,
        hashed_password: str,
        profile_picture: Optional[str] = None,
    ) -> PublicAccount:
        now = _utcnow()
        entry = UserEntry(
            username=username.strip(),
            email=_normalize_email(email),
            password=hashed_password,
            profile_picture=profile_picture or settings.default_profile_picture,
            is_admin=False,
            created_at=now,
            updated_at=now,
        )
        try:
            with session_scope() as session:
                session.add(entry)
                session.flush()
                return to_public_account(entry)
        except IntegrityError as exc:
            raise _conflict_from_integrity(exc) from exc

    def apply_updates(self, user_id: int, updates: dict[str, Any]) -> PublicAccount:
        """Write whitelisted, non-empty fields; the unique indexes have the final say."""
        values = {
            column: updates[key]
            for key, column in UPDATABLE_FIELDS.items()
            if updates.get(key)
        }
        if "email" in values:
            values["email"] = _normalize_email(values["email"])
        if updates.get("password"):
            values["password"] = updates["password"]
        try:
            with session_scope() as session:
                entry = session.get(UserEntry, user_id)
                if entry is None:
                    raise NotFound()
                for column, value in values.items():
                    setattr(entry, column, value)
                entry.updated_at = _utcnow()
                session.flush()
                return to_public_account(entry)
        except IntegrityError as exc:
            raise _conflict_from_integrity(exc) from exc

    def update_profile(self, user_id: int, payload: UserUpdate) -> PublicAccount:
        """Immediate update path: username, profile picture and password only."""
        entry = self.get_entry(user_id)
        if entry is None:
            raise NotFound()

        updates: dict[str, Any] = {}
        if payload.new_password:
            if not payload.old_password:
                raise InvalidInput("Please provide your current password")
            if not verify_password(payload.old_password, entry.password):
                raise InvalidCredential("Current password is incorrect")
            if len(payload.new_password) < 6:
                raise InvalidInput("New password must be at least 6 characters")
            updates["password"] = hash_password(payload.new_password)

        if payload.username:
            validate_username(payload.username)
            if payload.username != entry.username and self.username_taken(
                payload.username, exclude_user_id=user_id
            ):
                raise Conflict("Username is already taken")
            updates["username"] = payload.username

        if payload.email and _normalize_email(payload.email) != entry.email:
            raise InvalidInput("Email changes must be verified with a one-time code")

        if payload.profile_picture:
            updates["profilePicture"] = payload.profile_picture

        return self.apply_updates(user_id, updates)

    def delete_user(self, user_id: int) -> bool:
        with session_scope() as session:
            session.execute(delete(SessionEntry).where(SessionEntry.user_id == user_id))
            result = session.execute(delete(UserEntry).where(UserEntry.id == user_id))
            return result.rowcount > 0

    def list_users(
        self, start_index: int = 0, limit: int = 9, ascending: bool = False
    ) -> list[PublicAccount]:
        order = UserEntry.created_at.asc() if ascending else UserEntry.created_at.desc()
        with session_scope() as session:
            entries = (
                session.execute(
                    select(UserEntry)
                    .order_by(order, UserEntry.id)
                    .offset(max(start_index, 0))
                    .limit(max(limit, 0))
                )
                .scalars()
                .all()
            )
            return [to_public_account(entry) for entry in entries]

    def count_users(self, since: Optional[datetime] = None) -> int:
        stmt = select(func.count(UserEntry.id))
        if since is not None:
            stmt = stmt.where(UserEntry.created_at >= since)
        with session_scope() as session:
            return session.execute(stmt).scalar_one()

    def find_or_create_google_user(
        self, email: str, name: str, photo_url: Optional[str]
    ) -> PublicAccount:
        existing = self.get_by_email(email)
        if existing is not None:
            return to_public_account(existing)

        base = re.sub(r"\s+", "", name.lower()) or _normalize_email(email).split("@")[0]
        hashed_password = hash_password(secrets.token_urlsafe(12))
        for _ in range(5):
            username = f"{base}{secrets.randbelow(10000):04d}"
            if self.username_taken(username):
                continue
            try:
                return self.create_user(
                    username=username,
                    email=email,
                    hashed_password=hashed_password,
                    profile_picture=photo_url,
                )
            except Conflict:
                existing = self.get_by_email(email)
                if existing is not None:
                    return to_public_account(existing)
                LOGGER.info("Generated username %s collided, retrying", username)
        raise Conflict("Could not generate a unique username")


user_store = UserStore()
