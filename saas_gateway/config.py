from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class AppSettings(BaseSettings):
    # Environment
    ENVIRONMENT: str = "development"

    # Server Configuration
    SERVICE_NAME: str = "saas-gateway"
    SERVICE_VERSION: str = "1.0.0"
    SERVICE_HOST: str = "0.0.0.0"
    SERVICE_PORT: int = 8000

    # Public URLs (frontend app + this API)
    APP_URL: str = "http://localhost:3000"
    API_BASE_URL: str = "http://localhost:8000"
    APP_NAME: str = "SaaS App"

    # Database connections
    MONGODB_URI: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "saas_app"

    # Security - JWT
    JWT_ALGORITHM: str = "RS256"
    JWT_PRIVATE_KEY_PATH: str = ""
    JWT_PUBLIC_KEY_PATH: str = ""
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 15

    # Sessions (refresh token) - 7 day lifetime, extended at most once a day
    SESSION_EXPIRE_DAYS: int = 7
    SESSION_UPDATE_AGE_HOURS: int = 24

    # Cookie settings
    COOKIE_SECURE: bool = False
    COOKIE_DOMAIN: Optional[str] = None
    COOKIE_SAMESITE: str = "lax"

    # JWT Token Configuration
    JWT_ACCESS_TOKEN_COOKIE_NAME: str = "access_token"
    JWT_REFRESH_TOKEN_COOKIE_NAME: str = "refresh_token"
    JWT_CSRF_COOKIE_NAME: str = "csrf_token"
    TWO_FACTOR_COOKIE_NAME: str = "two_factor_pending"

    # CORS settings
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: str = "GET,POST,PUT,PATCH,DELETE,OPTIONS"
    CORS_ALLOW_HEADERS: str = "Content-Type,Authorization,X-CSRF-Token"
    CORS_EXPOSE_HEADERS: str = "X-CSRF-Token"
    CORS_MAX_AGE: int = 600

    # OTP Configuration
    OTP_TTL: int = 10
    OTP_LENGTH: int = 6
    OTP_RATE_LIMIT_PER_HOUR: int = 5
    OTP_MAX_ATTEMPTS: int = 3

    # Two-factor
    TWO_FACTOR_ISSUER: Optional[str] = None
    TWO_FACTOR_PENDING_MINUTES: int = 10
    TWO_FACTOR_MAX_ATTEMPTS: int = 5
    TWO_FACTOR_BACKUP_CODES: int = 10

    # Social providers
    GOOGLE_CLIENT_ID: Optional[str] = None
    GOOGLE_CLIENT_SECRET: Optional[str] = None
    GITHUB_CLIENT_ID: Optional[str] = None
    GITHUB_CLIENT_SECRET: Optional[str] = None
    OAUTH_STATE_TTL_MINUTES: int = 10

    # Email
    EMAIL_PROVIDER: str = "none"
    EMAIL_FROM: str = "onboarding@resend.dev"
    EMAIL_FROM_NAME: Optional[str] = None
    RESEND_API_KEY: Optional[str] = None
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 465
    SMTP_USER: Optional[str] = None
    SMTP_PASS: Optional[str] = None

    # Profile image uploads
    UPLOADS_ROOT: str = "public/uploads"
    UPLOAD_DIR: str = "public/uploads/profiles"
    UPLOAD_URL_PREFIX: str = "/uploads/profiles"
    MAX_UPLOAD_BYTES: int = 5 * 1024 * 1024

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "allow"  # Allow extra fields from .env that this service doesn't use


@lru_cache()
def get_settings() -> AppSettings:
    return AppSettings()
