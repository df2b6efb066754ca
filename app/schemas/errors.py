from fastapi import status


class ApiError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    default_message: str = "Bad request"

    def __init__(self, message: str | None = None, status_code: int | None = None) -> None:
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class InvalidInput(ApiError):
    default_message = "All fields are required"


class Conflict(ApiError):
    default_message = "Already exists"


class InvalidOrExpired(ApiError):
    default_message = "Invalid or expired OTP"


class NotFound(ApiError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "User not found"


class InvalidCredential(ApiError):
    default_message = "Invalid password"


class NoOp(ApiError):
    default_message = "Nothing to change"


class Unauthorized(ApiError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Unauthorized"


class Forbidden(ApiError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden"


class Internal(ApiError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal Server Error"


class StorageError(Internal):
    default_message = "Database is unavailable. Please try again."
