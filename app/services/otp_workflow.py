"""OTP-gated account mutations.

Each workflow keeps at most one live code per (email, purpose): a send wipes
the pair before inserting. A code is consumed by deleting its record after the
account mutation is written. Nothing counts failed attempts; a code stays
redeemable until it is consumed or ages out of the store's TTL.
"""

import logging
from typing import Any, Callable, Optional

from app.config import EmailConfig, settings
from app.schemas.email import EmailMessage, EmailSendError
from app.schemas.errors import (
    Conflict,
    Internal,
    InvalidCredential,
    InvalidInput,
    InvalidOrExpired,
    NoOp,
    NotFound,
)
from app.schemas.otp import EMAIL_CHANGE, PROFILE_UPDATE, SIGNUP, ProfileUpdates
from app.schemas.users import PublicAccount
from app.services.email import (
    BrevoNotifier,
    Notifier,
    email_change_otp_message,
    profile_update_otp_message,
    signup_otp_message,
    welcome_message,
)
from app.services.otp import OtpStore, normalize_email, otp_store
from app.services.passwords import hash_password, verify_password
from app.services.users import UPDATABLE_FIELDS, UserStore, user_store

LOGGER = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6

# Schedules a call after the response is sent, e.g. `BackgroundTasks.add_task`.
Defer = Callable[..., Any]


def _clean(value: Optional[str]) -> str:
    return value.strip() if value else ""


class OtpWorkflow:
    def __init__(
        self,
        otp_store: OtpStore,
        user_store: UserStore,
        email_config: EmailConfig,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self._otps = otp_store
        self._users = user_store
        self.email_config = email_config
        self.notifier = notifier or BrevoNotifier(email_config)

    @property
    def email_enabled(self) -> bool:
        return self.email_config.is_configured

    def _send_best_effort(self, message: EmailMessage, defer: Optional[Defer]) -> None:
        if defer is None:
            self.notifier.dispatch(message, critical=False)
        else:
            defer(self.notifier.dispatch, message, critical=False)

    # Signup

    def send_signup_otp(
        self,
        username: Optional[str],
        email: Optional[str],
        password: Optional[str],
        defer: Optional[Defer] = None,
    ) -> str:
        username = _clean(username)
        email = normalize_email(email or "")
        if not username or not email or not password:
            raise InvalidInput("All fields are required")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise InvalidInput("Password must be at least 6 characters")

        if self._users.username_taken(username):
            raise Conflict("Username already exists")
        if self._users.email_taken(email):
            raise Conflict("Email already exists")

        self._otps.delete_all(email, SIGNUP)
        code = self._otps.generate_code()
        self._otps.put(
            email,
            SIGNUP,
            code,
            pending_payload={
                "username": username,
                "hashed_password": hash_password(password),
            },
        )
        # The stored code stays redeemable even when delivery fails.
        self._send_best_effort(signup_otp_message(email, code, username), defer)
        LOGGER.info("Signup OTP issued for %s", email)
        return "OTP sent to your email. Please verify within 5 minutes."

    def verify_signup_otp(
        self, email: Optional[str], code: Optional[str], defer: Optional[Defer] = None
    ) -> str:
        email = normalize_email(email or "")
        code = _clean(code)
        if not email or not code:
            raise InvalidInput("Email and OTP are required")

        record = self._otps.find_by_code(email, code, SIGNUP)
        if record is None:
            raise InvalidOrExpired()

        payload = record.pending_payload or {}
        username = payload.get("username")
        hashed_password = payload.get("hashed_password")
        if not username or not hashed_password:
            LOGGER.error("Signup OTP record %s has no pending account data", record.id)
            self._otps.delete_by_id(record.id, code=record.code)
            raise InvalidOrExpired()

        account = self._users.create_user(
            username=username, email=record.email, hashed_password=hashed_password
        )
        self._otps.delete_by_id(record.id, code=record.code)
        self._send_best_effort(welcome_message(account.email, account.username), defer)
        LOGGER.info("Account %s created from signup OTP", account.id)
        return "Email verified successfully! You can now sign in."

    def resend_signup_otp(self, email: Optional[str]) -> str:
        email = normalize_email(email or "")
        if not email:
            raise InvalidInput("Email is required")

        record = self._otps.find_latest(email, SIGNUP)
        if record is None:
            raise NotFound(
                "No pending verification found. Please sign up again.",
                status_code=400,
            )

        refreshed = self._otps.regenerate(record.id, self._otps.generate_code())
        if refreshed is None:
            raise NotFound(
                "No pending verification found. Please sign up again.",
                status_code=400,
            )

        username = (refreshed.pending_payload or {}).get("username", "")
        # Unlike the first send, a failed resend is reported to the caller.
        try:
            self.notifier.dispatch(
                signup_otp_message(email, refreshed.code, username), critical=True
            )
        except EmailSendError as exc:
            LOGGER.error("Resend of signup OTP to %s failed: %s", email, exc)
            raise Internal("Failed to resend OTP. Please try again.") from exc
        return "New OTP sent to your email."

    # Email change

    def send_email_change_otp(
        self, account_id: int, new_email: Optional[str], defer: Optional[Defer] = None
    ) -> str:
        new_email = normalize_email(new_email or "")
        if not new_email:
            raise InvalidInput("New email is required")

        account = self._users.get_entry(account_id)
        if account is None:
            raise NotFound()
        if account.email == new_email:
            raise NoOp("New email is same as current email")
        if self._users.email_taken(new_email, exclude_user_id=account_id):
            raise Conflict("Email is already in use")

        self._otps.delete_all(new_email, EMAIL_CHANGE)
        code = self._otps.generate_code()
        self._otps.put(new_email, EMAIL_CHANGE, code)
        self._send_best_effort(
            email_change_otp_message(new_email, code, account.username), defer
        )
        return "OTP sent to your new email. Please verify within 5 minutes."

    def verify_email_change_otp(
        self, account_id: int, new_email: Optional[str], code: Optional[str]
    ) -> PublicAccount:
        new_email = normalize_email(new_email or "")
        code = _clean(code)
        if not new_email or not code:
            raise InvalidInput("Email and OTP are required")

        record = self._otps.find_by_code(new_email, code, EMAIL_CHANGE)
        if record is None:
            raise InvalidOrExpired()

        account = self._users.apply_updates(account_id, {"email": record.email})
        self._otps.delete_by_id(record.id, code=record.code)
        return account

    # Password gate

    def verify_password(self, account_id: int, password: Optional[str]) -> str:
        if not password:
            raise InvalidInput("Password is required")
        account = self._users.get_entry(account_id)
        if account is None:
            raise NotFound()
        if not verify_password(password, account.password):
            raise InvalidCredential("Invalid password")
        return "Password verified"

    # Profile update

    def send_profile_update_otp(
        self,
        account_id: int,
        current_email: Optional[str],
        updates: Optional[ProfileUpdates] = None,
        defer: Optional[Defer] = None,
    ) -> str:
        current_email = normalize_email(current_email or "")
        if not current_email:
            raise InvalidInput("Current email is required")

        account = self._users.get_entry(account_id)
        if account is None:
            raise NotFound()
        if account.email != current_email:
            raise InvalidInput("Email does not match")

        payload = (updates or ProfileUpdates()).to_payload()
        if "email" in payload:
            payload["email"] = normalize_email(payload["email"])
        self._check_profile_conflicts(account_id, account.username, account.email, payload)

        self._otps.delete_all(current_email, PROFILE_UPDATE)
        code = self._otps.generate_code()
        self._otps.put(current_email, PROFILE_UPDATE, code, pending_payload=payload)
        self._send_best_effort(
            profile_update_otp_message(current_email, code, account.username), defer
        )
        return "Verification code sent to your email."

    def verify_profile_update_otp(
        self,
        account_id: int,
        email: Optional[str],
        code: Optional[str],
        updates: Optional[ProfileUpdates] = None,
    ) -> PublicAccount:
        email = normalize_email(email or "")
        code = _clean(code)
        if not email or not code:
            raise InvalidInput("Email and OTP are required")

        record = self._otps.find_by_code(email, code, PROFILE_UPDATE)
        if record is None:
            raise InvalidOrExpired("Invalid or expired verification code")

        staged = record.pending_payload or (updates or ProfileUpdates()).to_payload()
        account = self.apply_profile_updates(account_id, staged)
        self._otps.delete_by_id(record.id, code=record.code)
        return account

    def apply_profile_updates(self, account_id: int, updates: dict[str, Any]) -> PublicAccount:
        """Write username/email/profilePicture changes without an OTP round trip."""
        fields = {key: value for key, value in updates.items() if key in UPDATABLE_FIELDS}
        return self._users.apply_updates(account_id, fields)

    def _check_profile_conflicts(
        self,
        account_id: int,
        current_username: str,
        current_email: str,
        payload: dict[str, Any],
    ) -> None:
        username = payload.get("username")
        if username and username != current_username:
            if self._users.username_taken(username, exclude_user_id=account_id):
                raise Conflict("Username already taken")
        new_email = payload.get("email")
        if new_email and new_email != current_email:
            if self._users.email_taken(new_email, exclude_user_id=account_id):
                raise Conflict("Email already in use")


otp_workflow = OtpWorkflow(otp_store, user_store, settings.email_config())
