"""Outcome of an auth operation."""

from dataclasses import dataclass

from app.errors import AuthError
from app.models.user import User


@dataclass
class AuthResult:
    """Result of an authentication operation."""

    success: bool
    error: AuthError | None = None
    message: str | None = None
    user_id: str | None = None
    email: str | None = None
    username: str | None = None
    role: str | None = None
    is_verified: bool | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    expires_in: int | None = None
    requires_verification: bool = False
    verification_message: str | None = None

    @classmethod
    def fail(cls, error: AuthError, message: str) -> "AuthResult":
        return cls(success=False, error=error, message=message)

    @classmethod
    def for_user(cls, user: User, **fields) -> "AuthResult":
        return cls(
            success=True,
            user_id=user.id,
            email=user.email,
            username=user.username,
            role=user.role.value if user.role else None,
            is_verified=user.is_verified,
            **fields,
        )
