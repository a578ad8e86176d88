"""Logging setup."""

import logging

from app.config import get_settings

LOGGER_NAME = "katering"


def setup_logging() -> None:
    """Configure stdlib logging once for the whole application."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Quiet third-party chatter
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Child of the application logger, e.g. ``katering.auth``."""
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


def redact_email(email: str | None) -> str:
    """Redact email for logging: i***@x.com"""
    if not email:
        return "***"
    if "@" in email:
        local, domain = email.rsplit("@", 1)
        return f"{local[0]}***@{domain}" if local else f"***@{domain}"
    return "***"
