"""Email verification code model."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String

from app.database import Base, utcnow
from app.models.base import EntityMixin


class EmailVerification(EntityMixin, Base):
    """One-time 6-digit code proving ownership of a user's email."""

    __tablename__ = "email_verifications"

    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    code = Column(String(10), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    is_used = Column(Boolean, nullable=False, default=False)
    used_at = Column(DateTime, nullable=True)
    ip_address = Column(String(45), nullable=True)

    def is_valid(self, now: datetime | None = None) -> bool:
        return not self.is_used and (now or utcnow()) < self.expires_at
