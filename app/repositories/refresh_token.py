"""Token ledger access."""

from datetime import datetime

from sqlalchemy.orm import Session

from app.models.refresh_token import RefreshToken
from app.models.user import User


class RefreshTokenRepository:
    """Persisted refresh tokens. Revocation is done with conditional UPDATEs."""

    def create(
        self,
        db: Session,
        user: User,
        token: str,
        expires_at: datetime,
        ip_address: str | None,
        user_agent: str | None,
    ) -> RefreshToken:
        row = RefreshToken(
            user_id=user.id,
            token=token,
            expires_at=expires_at,
            is_revoked=False,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        db.add(row)
        db.flush()
        return row

    def get_by_token(self, db: Session, token: str) -> RefreshToken | None:
        return db.query(RefreshToken).filter(RefreshToken.token == token).first()

    def revoke_if_active(self, db: Session, token_id: str, now: datetime) -> bool:
        """Compare-and-set revoke. Returns False when another caller revoked it first."""
        updated = (
            db.query(RefreshToken)
            .filter(RefreshToken.id == token_id, RefreshToken.is_revoked.is_(False))
            .update(
                {
                    RefreshToken.is_revoked: True,
                    RefreshToken.revoked_at: now,
                    RefreshToken.updated_at: now,
                    RefreshToken.version: RefreshToken.version + 1,
                },
                synchronize_session=False,
            )
        )
        return updated == 1

    def revoke_all_for_user(self, db: Session, user_id: str, now: datetime) -> int:
        return (
            db.query(RefreshToken)
            .filter(RefreshToken.user_id == user_id, RefreshToken.is_revoked.is_(False))
            .update(
                {
                    RefreshToken.is_revoked: True,
                    RefreshToken.revoked_at: now,
                    RefreshToken.updated_at: now,
                    RefreshToken.version: RefreshToken.version + 1,
                },
                synchronize_session=False,
            )
        )

    def count_valid_for_user(self, db: Session, user_id: str, now: datetime) -> int:
        return (
            db.query(RefreshToken)
            .filter(
                RefreshToken.user_id == user_id,
                RefreshToken.is_revoked.is_(False),
                RefreshToken.expires_at > now,
            )
            .count()
        )

    def delete_expired(self, db: Session, now: datetime) -> int:
        return db.query(RefreshToken).filter(RefreshToken.expires_at < now).delete(synchronize_session=False)
