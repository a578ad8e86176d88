"""Periodic removal of dead token and verification rows."""

import asyncio
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.database import SessionLocal, utcnow
from app.logging_config import get_logger
from app.repositories.email_verification import EmailVerificationRepository
from app.repositories.refresh_token import RefreshTokenRepository

logger = get_logger("cleanup")


class CleanupService:
    """Each purge commits on its own and returns the number of deleted rows."""

    def __init__(
        self,
        tokens: RefreshTokenRepository | None = None,
        codes: EmailVerificationRepository | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.tokens = tokens or RefreshTokenRepository()
        self.codes = codes or EmailVerificationRepository()
        self.clock = clock

    def purge_expired_refresh_tokens(self, db: Session) -> int:
        deleted = self.tokens.delete_expired(db, self.clock())
        db.commit()
        return deleted

    def purge_expired_verifications(self, db: Session) -> int:
        deleted = self.codes.delete_expired(db, self.clock())
        db.commit()
        return deleted

    def purge_used_verifications(self, db: Session) -> int:
        deleted = self.codes.delete_used(db)
        db.commit()
        return deleted


def run_job(job: Callable[[Session], int], session_factory: Callable[[], Session] = SessionLocal) -> int | None:
    """Run one purge on a fresh session. Database errors are logged and rolled back."""
    db = session_factory()
    try:
        deleted = job(db)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Cleanup job %s failed, will retry on the next run", getattr(job, "__name__", job))
        return None
    finally:
        db.close()
    logger.info("Cleanup job %s removed %d rows", getattr(job, "__name__", job), deleted)
    return deleted


async def run_periodically(job: Callable[[Session], int], interval_seconds: int) -> None:
    """Background loop for the application lifespan. Cancelled on shutdown."""
    while True:
        await asyncio.sleep(interval_seconds)
        await asyncio.to_thread(run_job, job)
