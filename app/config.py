"""Configuration settings for the catering backend."""

import os
import secrets
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./katering.db")

    # JWT
    JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY", secrets.token_urlsafe(64))
    JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS512")
    JWT_ISSUER: str = os.getenv("JWT_ISSUER", "azhur-katering")
    JWT_AUDIENCE: str = os.getenv("JWT_AUDIENCE", "azhur-katering-frontend")
    ACCESS_TOKEN_EXPIRE_SECONDS: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_SECONDS", "900"))
    REFRESH_TOKEN_EXPIRE_DAYS: int = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "7"))

    # Cookies
    COOKIE_SECURE: bool = os.getenv("COOKIE_SECURE", "true").lower() == "true"

    # Passwords and lockout
    BCRYPT_ROUNDS: int = int(os.getenv("BCRYPT_ROUNDS", "12"))
    MAX_FAILED_ATTEMPTS: int = int(os.getenv("MAX_FAILED_ATTEMPTS", "5"))
    LOCK_TIME_MINUTES: int = int(os.getenv("LOCK_TIME_MINUTES", "30"))

    # Email verification
    VERIFICATION_CODE_EXPIRE_MINUTES: int = int(os.getenv("VERIFICATION_CODE_EXPIRE_MINUTES", "15"))
    RESEND_API_KEY: str = os.getenv("RESEND_API_KEY", "")
    MAIL_FROM: str = os.getenv("MAIL_FROM", "Azhur Katering <noreply@example.com>")
    EMAIL_WORKERS: int = int(os.getenv("EMAIL_WORKERS", "2"))

    # Background cleanup
    TOKEN_CLEANUP_INTERVAL_SECONDS: int = int(os.getenv("TOKEN_CLEANUP_INTERVAL_SECONDS", str(24 * 60 * 60)))
    USED_CODE_CLEANUP_INTERVAL_SECONDS: int = int(os.getenv("USED_CODE_CLEANUP_INTERVAL_SECONDS", str(7 * 24 * 60 * 60)))

    # Application
    APP_ENV: str = os.getenv("APP_ENV", "development")
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    def validate(self) -> list[str]:
        """Validate settings and return list of warnings."""
        errors = []
        if not os.getenv("JWT_SECRET_KEY"):
            errors.append("JWT_SECRET_KEY is not set - using auto-generated key (not persistent across restarts)")
        if not self.RESEND_API_KEY:
            errors.append("RESEND_API_KEY is not set - verification emails will not be delivered")
        if not self.COOKIE_SECURE and self.APP_ENV == "production":
            errors.append("COOKIE_SECURE is disabled in production")
        return errors


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
