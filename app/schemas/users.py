from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class PublicAccount(BaseModel):
    """Account fields safe to return to clients; the password hash is never part of it."""

    model_config = ConfigDict(populate_by_name=True)

    id: int = Field(serialization_alias="_id")
    username: str
    email: str
    profile_picture: str = Field(serialization_alias="profilePicture")
    is_admin: bool = Field(default=False, serialization_alias="isAdmin")
    created_at: datetime = Field(serialization_alias="createdAt")
    updated_at: datetime = Field(serialization_alias="updatedAt")

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class SignupRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class SigninRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class GoogleAuthRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: Optional[str] = None
    name: Optional[str] = None
    google_photo_url: Optional[str] = Field(default=None, alias="googlePhotoUrl")


class UserUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    username: Optional[str] = None
    email: Optional[str] = None
    profile_picture: Optional[str] = Field(default=None, alias="profilePicture")
    old_password: Optional[str] = Field(default=None, alias="oldPassword")
    new_password: Optional[str] = Field(default=None, alias="newPassword")


class UserListResponse(BaseModel):
    users: list[dict]
    total_users: int = Field(serialization_alias="totalUsers")
    last_month_users: int = Field(serialization_alias="lastMonthUsers")
