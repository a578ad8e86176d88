"""User model."""

import enum

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Enum, Integer, String

from app.database import Base, utcnow
from app.models.base import EntityMixin


class Role(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class User(EntityMixin, Base):
    """Application user."""

    __tablename__ = "users"

    email = Column(String(100), unique=True, nullable=False, index=True)
    username = Column(String(50), unique=True, nullable=False, index=True)
    password_hash = Column(String(256), nullable=False)
    role = Column(Enum(Role, name="user_role", native_enum=False), nullable=False, default=Role.USER)
    is_active = Column(Boolean, nullable=False, default=True)
    is_verified = Column(Boolean, nullable=False, default=False)
    locked_until = Column(DateTime, nullable=True)
    failed_attempts = Column(Integer, nullable=False, default=0)
    last_login_at = Column(DateTime, nullable=True)
    verified_at = Column(DateTime, nullable=True)
    password_changed_at = Column(DateTime, nullable=True)

    def is_locked(self, now: datetime | None = None) -> bool:
        return self.locked_until is not None and (now or utcnow()) < self.locked_until

    def __repr__(self) -> str:
        return f"<User {self.username}>"
