from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Cookie, Depends, Query, Response

from app.config import settings
from app.schemas.errors import Forbidden, NotFound, Unauthorized
from app.schemas.tokens import AccessTokenData, TokenError
from app.schemas.users import UserListResponse, UserUpdate
from app.services.sessions import session_store
from app.services.tokens import read_access_token
from app.services.users import user_store

router = APIRouter(prefix="/user", tags=["users"])


def get_current_user(
    access_token: str | None = Cookie(default=None),
) -> AccessTokenData:
    if not access_token:
        raise Unauthorized()
    try:
        access_data = read_access_token(access_token)
    except TokenError as exc:
        raise Unauthorized(str(exc)) from exc
    user_id = session_store.owner_of(access_data.session_id)
    if user_id is None or user_id != access_data.user_id:
        raise Unauthorized("Invalid session token")
    return access_data


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(
        settings.cookie_name,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="none" if settings.cookie_secure else "lax",
    )


@router.put("/update/{user_id}")
def update_user(
    user_id: int,
    payload: UserUpdate,
    current: AccessTokenData = Depends(get_current_user),
) -> dict:
    if current.user_id != user_id:
        raise Forbidden("You are not allowed to update this user")
    account = user_store.update_profile(user_id, payload)
    return {
        "success": True,
        "message": "Profile updated successfully",
        **account.to_json(),
    }


@router.delete("/delete/{user_id}")
def delete_user(
    user_id: int,
    response: Response,
    current: AccessTokenData = Depends(get_current_user),
) -> dict:
    if not current.is_admin and current.user_id != user_id:
        raise Forbidden("You are not allowed to delete this user")
    if not user_store.delete_user(user_id):
        raise NotFound()
    if current.user_id == user_id:
        clear_session_cookie(response)
    return {"success": True, "message": "User has been deleted"}


@router.post("/signout")
def signout(
    response: Response,
    access_token: str | None = Cookie(default=None),
) -> dict:
    if access_token:
        try:
            session_store.close(read_access_token(access_token).session_id)
        except TokenError:
            pass
    clear_session_cookie(response)
    return {"success": True, "message": "User has been signed out"}


@router.get("/getusers")
def get_users(
    start_index: int = Query(default=0, alias="startIndex", ge=0),
    limit: int = Query(default=9, ge=0, le=100),
    sort: str = Query(default="desc"),
    current: AccessTokenData = Depends(get_current_user),
) -> dict:
    if not current.is_admin:
        raise Forbidden("You are not allowed to see all users")
    users = user_store.list_users(start_index, limit, ascending=sort == "asc")
    one_month_ago = datetime.now(timezone.utc) - timedelta(days=30)
    result = UserListResponse(
        users=[user.to_json() for user in users],
        total_users=user_store.count_users(),
        last_month_users=user_store.count_users(since=one_month_ago),
    )
    return result.model_dump(by_alias=True)


@router.get("/{user_id}")
def get_user(user_id: int) -> dict:
    account = user_store.get_user(user_id)
    if account is None:
        raise NotFound()
    return account.to_json()
