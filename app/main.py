import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config import settings
from app.database import init_db
from app.routers import auth, health, otp, users
from app.schemas.errors import ApiError
from app.services.otp import otp_store
from app.services.otp_workflow import otp_workflow
from app.services.sessions import session_store

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
LOGGER = logging.getLogger(__name__)

app = FastAPI(title="Z Blogs API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

app.include_router(health.router, prefix="/api")
app.include_router(auth.router, prefix="/api")
app.include_router(users.router, prefix="/api")
app.include_router(otp.router, prefix="/api")


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "statusCode": status_code, "message": message},
    )


@app.middleware("http")
async def log_requests(request: Request, call_next):
    LOGGER.info("Incoming request: %s %s", request.method, request.url.path)
    return await call_next(request)


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        LOGGER.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return _error_response(exc.status_code, exc.message)


@app.exception_handler(RequestValidationError)
async def handle_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return _error_response(400, message)


@app.exception_handler(StarletteHTTPException)
async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error_response(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    LOGGER.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error_response(500, "Internal Server Error")


@app.on_event("startup")
def startup() -> None:
    init_db()
    purged = otp_store.purge_expired()
    if purged:
        LOGGER.info("Purged %s expired OTP records", purged)
    closed = session_store.purge_expired()
    if closed:
        LOGGER.info("Purged %s expired sessions", closed)
    if not otp_workflow.email_enabled:
        LOGGER.warning(
            "BREVO_API_KEY or BREVO_FROM_EMAIL is not set; email delivery will fail"
        )
    if not settings.jwt_secret:
        LOGGER.error("JWT_SECRET is not set; sign-in will fail")
