from fastapi import APIRouter, BackgroundTasks, Depends, status

from app.schemas.otp import (
    EmailChangeOtpRequest,
    MessageResponse,
    ProfileUpdateOtpRequest,
    ResendSignupOtpRequest,
    SignupOtpRequest,
    VerifyEmailChangeOtpRequest,
    VerifyPasswordRequest,
    VerifyProfileUpdateOtpRequest,
    VerifySignupOtpRequest,
)
from app.schemas.tokens import AccessTokenData
from app.routers.users import get_current_user
from app.services.otp_workflow import otp_workflow

router = APIRouter(prefix="/otp", tags=["otp"])


@router.post("/send-signup-otp", response_model=MessageResponse)
def send_signup_otp(
    payload: SignupOtpRequest, background_tasks: BackgroundTasks
) -> MessageResponse:
    message = otp_workflow.send_signup_otp(
        payload.username,
        payload.email,
        payload.password,
        defer=background_tasks.add_task,
    )
    return MessageResponse(message=message)


@router.post(
    "/verify-signup-otp",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
def verify_signup_otp(
    payload: VerifySignupOtpRequest, background_tasks: BackgroundTasks
) -> MessageResponse:
    message = otp_workflow.verify_signup_otp(
        payload.email, payload.otp, defer=background_tasks.add_task
    )
    return MessageResponse(message=message)


@router.post("/resend-signup-otp", response_model=MessageResponse)
def resend_signup_otp(payload: ResendSignupOtpRequest) -> MessageResponse:
    return MessageResponse(message=otp_workflow.resend_signup_otp(payload.email))


@router.post("/send-email-change-otp", response_model=MessageResponse)
def send_email_change_otp(
    payload: EmailChangeOtpRequest,
    background_tasks: BackgroundTasks,
    current: AccessTokenData = Depends(get_current_user),
) -> MessageResponse:
    message = otp_workflow.send_email_change_otp(
        current.user_id, payload.new_email, defer=background_tasks.add_task
    )
    return MessageResponse(message=message)


@router.post("/verify-email-change-otp")
def verify_email_change_otp(
    payload: VerifyEmailChangeOtpRequest,
    current: AccessTokenData = Depends(get_current_user),
) -> dict:
    account = otp_workflow.verify_email_change_otp(
        current.user_id, payload.new_email, payload.otp
    )
    return {
        "success": True,
        "message": "Email updated successfully!",
        **account.to_json(),
    }


@router.post("/verify-password", response_model=MessageResponse)
def verify_password(
    payload: VerifyPasswordRequest,
    current: AccessTokenData = Depends(get_current_user),
) -> MessageResponse:
    message = otp_workflow.verify_password(current.user_id, payload.password)
    return MessageResponse(message=message)


@router.post("/send-profile-update-otp", response_model=MessageResponse)
def send_profile_update_otp(
    payload: ProfileUpdateOtpRequest,
    background_tasks: BackgroundTasks,
    current: AccessTokenData = Depends(get_current_user),
) -> MessageResponse:
    message = otp_workflow.send_profile_update_otp(
        current.user_id,
        payload.current_email,
        payload.updates,
        defer=background_tasks.add_task,
    )
    return MessageResponse(message=message)


@router.post("/verify-profile-update-otp")
def verify_profile_update_otp(
    payload: VerifyProfileUpdateOtpRequest,
    current: AccessTokenData = Depends(get_current_user),
) -> dict:
    account = otp_workflow.verify_profile_update_otp(
        current.user_id, payload.email, payload.otp, payload.updates
    )
    return {
        "success": True,
        "message": "Profile updated successfully!",
        **account.to_json(),
    }
