import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv(override=True)


def _env_bool(name: str, default: bool = False) -> bool:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_list(name: str, default: str) -> tuple[str, ...]:
    raw_value = os.getenv(name, default)
    return tuple(item.strip() for item in raw_value.split(",") if item.strip())


def _is_production() -> bool:
    environment = os.getenv("NODE_ENV") or os.getenv("ENVIRONMENT", "")
    return environment.strip().lower() == "production"


def _build_database_url() -> str:
    raw_url = os.getenv("DATABASE_URL", "")
    if not raw_url:
        return "sqlite:///./app.db"
    if raw_url.startswith("postgres://"):
        return raw_url.replace("postgres://", "postgresql+psycopg://", 1)
    if raw_url.startswith("postgresql://"):
        return raw_url.replace("postgresql://", "postgresql+psycopg://", 1)
    return raw_url


@dataclass(frozen=True)
class EmailConfig:
    api_key: str
    from_address: str
    from_name: str

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.from_address)


@dataclass(frozen=True)
class Settings:
    database_url: str = _build_database_url()
    jwt_secret: str = os.getenv("JWT_SECRET", "")
    jwt_algorithm: str = os.getenv("ALGORITHM", "HS256")
    access_token_expire_minutes: int = int(
        os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "1440")
    )
    session_ttl_seconds: int = int(os.getenv("SESSION_TTL_SECONDS", "604800"))
    otp_length: int = int(os.getenv("OTP_LENGTH", "6"))
    otp_ttl_seconds: int = int(os.getenv("OTP_TTL_SECONDS", "300"))
    bcrypt_rounds: int = int(os.getenv("BCRYPT_ROUNDS", "10"))
    cookie_name: str = "access_token"
    cookie_secure: bool = _env_bool("COOKIE_SECURE", _is_production())
    default_profile_picture: str = os.getenv(
        "DEFAULT_PROFILE_PICTURE",
        "https://cdn.pixabay.com/photo/2015/10/05/22/37/blank-profile-picture-973460_1280.png",
    )
    cors_origins: tuple[str, ...] = field(
        default_factory=lambda: _env_list(
            "CORS_ORIGINS",
            "http://localhost:5173,http://localhost:5174,http://127.0.0.1:5173",
        )
    )
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    brevo_api_key: str = os.getenv("BREVO_API_KEY", "")
    brevo_from_email: str = os.getenv("BREVO_FROM_EMAIL", "").strip()
    brevo_from_name: str = os.getenv("BREVO_FROM_NAME", "Z Blogs")

    def email_config(self) -> EmailConfig:
        return EmailConfig(
            api_key=self.brevo_api_key,
            from_address=self.brevo_from_email,
            from_name=self.brevo_from_name,
        )


settings = Settings()
