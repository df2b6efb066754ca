from fastapi import APIRouter, Response, status

from app.config import settings
from app.schemas.errors import Internal, InvalidCredential, InvalidInput, NotFound
from app.schemas.tokens import TokenError
from app.schemas.users import GoogleAuthRequest, PublicAccount, SigninRequest, SignupRequest
from app.services.passwords import hash_password, verify_password
from app.services.sessions import session_store
from app.services.tokens import issue_access_token
from app.services.users import to_public_account, user_store

router = APIRouter(prefix="/auth", tags=["auth"])


def _start_session(response: Response, account: PublicAccount) -> None:
    session_id = session_store.open(account.id)
    try:
        token = issue_access_token(account.id, session_id, is_admin=account.is_admin)
    except TokenError as exc:
        session_store.close(session_id)
        raise Internal(str(exc)) from exc
    response.set_cookie(
        settings.cookie_name,
        token,
        max_age=settings.access_token_expire_minutes * 60,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="none" if settings.cookie_secure else "lax",
    )


@router.post("/signup", status_code=status.HTTP_201_CREATED)
def signup(payload: SignupRequest) -> dict:
    username = (payload.username or "").strip()
    email = (payload.email or "").strip()
    if not username or not email or not payload.password:
        raise InvalidInput("All fields are required")
    user_store.create_user(
        username=username,
        email=email,
        hashed_password=hash_password(payload.password),
    )
    return {"success": True, "message": "Signup successful! Please sign in."}


@router.post("/signin")
def signin(payload: SigninRequest, response: Response) -> dict:
    if not payload.email or not payload.password:
        raise InvalidInput("All fields are required")
    entry = user_store.get_by_email(payload.email)
    if entry is None:
        raise NotFound()
    if not verify_password(payload.password, entry.password):
        raise InvalidCredential("Invalid password")
    account = to_public_account(entry)
    _start_session(response, account)
    return {"success": True, **account.to_json()}


@router.post("/google")
def google(payload: GoogleAuthRequest, response: Response) -> dict:
    if not payload.email:
        raise InvalidInput("Email is required")
    account = user_store.find_or_create_google_user(
        payload.email, payload.name or "", payload.google_photo_url
    )
    _start_session(response, account)
    return {"success": True, **account.to_json()}
