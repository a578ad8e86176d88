"""Database session management."""

from collections.abc import Generator
from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from app.config import get_settings
from app.errors import ConflictError

settings = get_settings()
engine = create_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    connect_args={"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {},
)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def utcnow() -> datetime:
    """Return timezone-naive UTC now (safe for SQLite comparison)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def commit(db: Session) -> None:
    """Commit the unit of work. A lost version check becomes a retryable ConflictError."""
    try:
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        raise ConflictError() from exc


def get_db() -> Generator[Session, None, None]:
    """Yield a database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
