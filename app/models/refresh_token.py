"""Refresh token model."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, Text

from app.database import Base, utcnow
from app.models.base import EntityMixin


class RefreshToken(EntityMixin, Base):
    """Issued refresh token. Usable while not revoked and not expired."""

    __tablename__ = "refresh_tokens"

    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    token = Column(String(1000), unique=True, nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
    is_revoked = Column(Boolean, nullable=False, default=False)
    revoked_at = Column(DateTime, nullable=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def is_valid(self, now: datetime | None = None) -> bool:
        return not self.is_revoked and not self.is_expired(now)
