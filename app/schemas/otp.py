from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

OtpPurpose = Literal["signup", "email-change", "profile-update", "password-reset"]

SIGNUP = "signup"
EMAIL_CHANGE = "email-change"
PROFILE_UPDATE = "profile-update"
# Declared for the record schema, no workflow issues it yet.
PASSWORD_RESET = "password-reset"


@dataclass(frozen=True)
class OtpRecord:
    id: int
    email: str
    purpose: str
    code: str
    pending_payload: Optional[dict[str, Any]]
    created_at: datetime


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SignupOtpRequest(_CamelModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class VerifySignupOtpRequest(_CamelModel):
    email: Optional[str] = None
    otp: Optional[str] = None


class ResendSignupOtpRequest(_CamelModel):
    email: Optional[str] = None


class EmailChangeOtpRequest(_CamelModel):
    new_email: Optional[str] = Field(default=None, alias="newEmail")


class VerifyEmailChangeOtpRequest(_CamelModel):
    new_email: Optional[str] = Field(default=None, alias="newEmail")
    otp: Optional[str] = None


class VerifyPasswordRequest(_CamelModel):
    password: Optional[str] = None


class ProfileUpdates(_CamelModel):
    username: Optional[str] = None
    email: Optional[str] = None
    profile_picture: Optional[str] = Field(default=None, alias="profilePicture")

    def to_payload(self) -> dict[str, str]:
        """Whitelisted, non-empty fields keyed the way clients send them."""
        payload = self.model_dump(by_alias=True, exclude_none=True)
        return {key: value for key, value in payload.items() if value}


class ProfileUpdateOtpRequest(_CamelModel):
    current_email: Optional[str] = Field(default=None, alias="currentEmail")
    updates: ProfileUpdates = Field(default_factory=ProfileUpdates)


class VerifyProfileUpdateOtpRequest(_CamelModel):
    email: Optional[str] = None
    otp: Optional[str] = None
    updates: ProfileUpdates = Field(default_factory=ProfileUpdates)


class MessageResponse(BaseModel):
    success: bool = True
    message: str
