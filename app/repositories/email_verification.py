"""Verification ledger access."""

from datetime import datetime

from sqlalchemy.orm import Session

from app.models.email_verification import EmailVerification
from app.models.user import User


class EmailVerificationRepository:
    def create(
        self,
        db: Session,
        user: User,
        code: str,
        expires_at: datetime,
        ip_address: str | None,
    ) -> EmailVerification:
        row = EmailVerification(
            user_id=user.id,
            code=code,
            expires_at=expires_at,
            is_used=False,
            ip_address=ip_address,
        )
        db.add(row)
        db.flush()
        return row

    def find_latest_unused(self, db: Session, user_id: str) -> EmailVerification | None:
        """Newest unused code for the user. Older unused codes are superseded or expired."""
        return (
            db.query(EmailVerification)
            .filter(EmailVerification.user_id == user_id, EmailVerification.is_used.is_(False))
            .order_by(EmailVerification.expires_at.desc(), EmailVerification.created_at.desc())
            .first()
        )

    def supersede_valid(self, db: Session, user_id: str, now: datetime) -> int:
        """Mark every valid code of the user as used."""
        return (
            db.query(EmailVerification)
            .filter(
                EmailVerification.user_id == user_id,
                EmailVerification.is_used.is_(False),
                EmailVerification.expires_at > now,
            )
            .update(
                {
                    EmailVerification.is_used: True,
                    EmailVerification.used_at: now,
                    EmailVerification.updated_at: now,
                    EmailVerification.version: EmailVerification.version + 1,
                },
                synchronize_session=False,
            )
        )

    def delete_expired(self, db: Session, now: datetime) -> int:
        return (
            db.query(EmailVerification)
            .filter(EmailVerification.expires_at < now)
            .delete(synchronize_session=False)
        )

    def delete_used(self, db: Session) -> int:
        return db.query(EmailVerification).filter(EmailVerification.is_used.is_(True)).delete(synchronize_session=False)
