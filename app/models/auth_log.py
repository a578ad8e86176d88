"""Authentication audit log model."""

import enum

from sqlalchemy import Boolean, Column, Enum, ForeignKey, String, Text

from app.database import Base
from app.models.base import EntityMixin


class AuthAction(str, enum.Enum):
    LOGIN = "LOGIN"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGOUT = "LOGOUT"
    REGISTRATION = "REGISTRATION"
    REGISTRATION_FAILED = "REGISTRATION_FAILED"
    EMAIL_VERIFICATION = "EMAIL_VERIFICATION"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    REFRESH_TOKEN_REUSE = "REFRESH_TOKEN_REUSE"


class AuthLog(EntityMixin, Base):
    """Security-relevant history of authentication events."""

    __tablename__ = "auth_logs"

    user_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    action = Column(Enum(AuthAction, name="auth_action", native_enum=False, length=50), nullable=False)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    success = Column(Boolean, nullable=False, default=True)
    failure_reason = Column(String(500), nullable=True)
