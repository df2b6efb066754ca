"""Signed cookie tokens that name an account and its server-side session."""

from datetime import datetime, timedelta, timezone

import jwt

from app.config import settings
from app.schemas.tokens import AccessTokenData, TokenError

TOKEN_TYPE = "access"
REQUIRED_CLAIMS = ["exp", "sub", "sid"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _signing_key() -> str:
    if not settings.jwt_secret:
        raise TokenError("JWT secret is not configured")
    return settings.jwt_secret


def issue_access_token(user_id: int, session_id: str, is_admin: bool = False) -> str:
    issued_at = _utcnow()
    claims = {
        "sub": str(user_id),
        "sid": session_id,
        "adm": bool(is_admin),
        "type": TOKEN_TYPE,
        "iat": issued_at,
        "exp": issued_at + timedelta(minutes=settings.access_token_expire_minutes),
    }
    return jwt.encode(claims, _signing_key(), algorithm=settings.jwt_algorithm)


def read_access_token(token: str) -> AccessTokenData:
    if not token:
        raise TokenError("Token is missing")
    key = _signing_key()
    try:
        claims = jwt.decode(
            token,
            key,
            algorithms=[settings.jwt_algorithm],
            options={"require": REQUIRED_CLAIMS},
        )
    except jwt.ExpiredSignatureError as exc:
        raise TokenError("Token has expired") from exc
    except jwt.MissingRequiredClaimError as exc:
        raise TokenError(f"Token is missing the {exc.claim} claim") from exc
    except jwt.InvalidTokenError as exc:
        raise TokenError("Invalid token") from exc

    if claims.get("type") != TOKEN_TYPE:
        raise TokenError("Invalid token type")
    try:
        user_id = int(claims["sub"])
    except (TypeError, ValueError) as exc:
        raise TokenError("Invalid token subject") from exc
    return AccessTokenData(
        user_id=user_id,
        session_id=claims["sid"],
        is_admin=bool(claims.get("adm", False)),
    )
