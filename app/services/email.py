from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from html import escape
from typing import Protocol
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from app.config import EmailConfig
from app.schemas.email import EmailMessage, EmailSendError

LOGGER = logging.getLogger(__name__)

BREVO_SEND_ENDPOINT = "https://api.brevo.com/v3/smtp/email"
BRAND = "Z Blogs"


class Notifier(Protocol):
    def dispatch(self, message: EmailMessage, *, critical: bool) -> bool:
        ...


class BrevoNotifier:
    """Sends transactional email through the Brevo HTTP API.

    ``dispatch(critical=True)`` raises ``EmailSendError`` on any failure.
    With ``critical=False`` the failure is logged and ``False`` is returned,
    so the caller's primary operation still succeeds.
    """

    def __init__(self, config: EmailConfig, timeout: float = 10.0) -> None:
        self._config = config
        self._timeout = timeout

    def dispatch(self, message: EmailMessage, *, critical: bool) -> bool:
        try:
            self.send(message)
        except EmailSendError as exc:
            if critical:
                raise
            LOGGER.warning(
                "Best-effort email to %s failed: %s", message.to, exc
            )
            return False
        return True

    def send(self, message: EmailMessage) -> None:
        if not self._config.api_key:
            raise EmailSendError("BREVO_API_KEY is not configured")
        if not self._config.from_address:
            raise EmailSendError("BREVO_FROM_EMAIL is not configured")

        payload = json.dumps(
            {
                "sender": {
                    "name": self._config.from_name,
                    "email": self._config.from_address,
                },
                "to": [{"email": message.to}],
                "subject": message.subject,
                "htmlContent": message.html,
            }
        ).encode("utf-8")
        request = Request(
            BREVO_SEND_ENDPOINT,
            data=payload,
            headers={
                "accept": "application/json",
                "api-key": self._config.api_key,
                "content-type": "application/json",
            },
            method="POST",
        )
        try:
            with urlopen(request, timeout=self._timeout) as response:
                response.read()
        except HTTPError as exc:
            error_body = exc.read().decode("utf-8", errors="replace")
            LOGGER.error("Brevo API error status=%s body=%s", exc.code, error_body)
            raise EmailSendError(
                f"Failed to send email (status: {exc.code})"
            ) from exc
        except (URLError, TimeoutError) as exc:
            raise EmailSendError("Failed to reach Brevo API") from exc


def signup_otp_message(to_email: str, code: str, username: str) -> EmailMessage:
    body = _code_card(
        title="Email Verification",
        greeting=f"Welcome, {escape(username)}!",
        intro="Your verification code is:",
        code=code,
        footer="If you didn't request this code, please ignore this email.",
    )
    return EmailMessage(to=to_email, subject=f"Verify Your Email - {BRAND}", html=body)


def email_change_otp_message(to_email: str, code: str, username: str) -> EmailMessage:
    body = _code_card(
        title="Email Change Verification",
        greeting=f"Hi {escape(username)}!",
        intro="Your email change verification code is:",
        code=code,
        footer="If you didn't request this change, please secure your account immediately.",
    )
    return EmailMessage(
        to=to_email, subject=f"Verify Your New Email - {BRAND}", html=body
    )


def profile_update_otp_message(to_email: str, code: str, username: str) -> EmailMessage:
    body = _code_card(
        title="Profile Update Verification",
        greeting=f"Hi {escape(username)}!",
        intro="Someone is trying to update your profile. Your verification code is:",
        code=code,
        footer="If you didn't request this change, please secure your account immediately.",
    )
    return EmailMessage(
        to=to_email, subject=f"Verify Profile Update - {BRAND}", html=body
    )


def welcome_message(to_email: str, username: str) -> EmailMessage:
    body = (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">'
        f'<h1 style="color: #1a1a1a; text-align: center;">{BRAND}</h1>'
        f"<h2>Welcome to {BRAND}, {escape(username)}!</h2>"
        "<p>Your account has been successfully created and verified.</p>"
        "<p>Start exploring and sharing your thoughts with the world!</p>"
        f"{_copyright()}"
        "</div>"
    )
    return EmailMessage(to=to_email, subject=f"Welcome to {BRAND}!", html=body)


def _code_card(*, title: str, greeting: str, intro: str, code: str, footer: str) -> str:
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">'
        f'<div style="text-align: center;"><h1 style="color: #1a1a1a; margin: 0;">{BRAND}</h1>'
        f'<p style="color: #666;">{title}</p></div>'
        '<div style="padding: 30px; border-radius: 10px; text-align: center; background: #667eea;">'
        f'<h2 style="color: white;">{greeting}</h2>'
        f'<p style="color: white;">{intro}</p>'
        '<div style="background: white; border-radius: 8px; padding: 20px; display: inline-block;">'
        f'<span style="font-size: 32px; font-weight: bold; letter-spacing: 8px;">{code}</span>'
        "</div>"
        '<p style="color: white; font-size: 14px;">This code expires in 5 minutes</p>'
        "</div>"
        f'<div style="text-align: center; color: #666; font-size: 14px;"><p>{footer}</p>'
        f"{_copyright()}</div>"
        "</div>"
    )


def _copyright() -> str:
    year = datetime.now(timezone.utc).year
    return f'<p style="margin-top: 20px;">&copy; {year} {BRAND}. All rights reserved.</p>'
