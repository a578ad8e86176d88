"""Pydantic schemas for authentication endpoints."""

import re

from pydantic import EmailStr, Field, field_validator

from app.schemas.common import CamelModel

USERNAME_PATTERN = re.compile(r"^[a-zA-Zа-яА-ЯёЁ0-9\-_\s]+$")
PASSWORD_PATTERN = re.compile(r"^(?=.*[a-zA-Z])(?=.*\d).+$")


def _check_password_strength(value: str) -> str:
    if not PASSWORD_PATTERN.match(value):
        raise ValueError("Password must contain at least one letter and one digit")
    return value


class RegisterRequest(CamelModel):
    username: str = Field(min_length=3, max_length=30)
    email: EmailStr
    password: str = Field(min_length=8, max_length=100)

    @field_validator("email")
    @classmethod
    def email_length(cls, value: str) -> str:
        if len(value) > 100:
            raise ValueError("Email must be at most 100 characters")
        return value

    @field_validator("username")
    @classmethod
    def username_format(cls, value: str) -> str:
        if value != value.strip():
            raise ValueError("Username cannot start or end with whitespace")
        if not USERNAME_PATTERN.match(value):
            raise ValueError("Username may contain only letters, digits, dashes, underscores and spaces")
        return value

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return _check_password_strength(value)


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=100)


class ChangePasswordRequest(CamelModel):
    old_password: str = Field(min_length=1, max_length=100)
    new_password: str = Field(min_length=8, max_length=100)

    @field_validator("new_password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return _check_password_strength(value)


class AuthResponse(CamelModel):
    """Token pair plus a user summary. Token fields are nulled once they travel as cookies."""

    access_token: str | None = None
    refresh_token: str | None = None
    token_type: str = "Bearer"
    expires_in: int | None = None
    user_id: str | None = None
    email: str | None = None
    username: str | None = None
    role: str | None = None
    is_verified: bool | None = None
    requires_verification: bool = False
    verification_message: str | None = None


class UserSummary(CamelModel):
    id: str
    email: str
    username: str
    role: str
    is_verified: bool


class MeResponse(CamelModel):
    authenticated: bool
    user: UserSummary
    authorities: list[str]


class MessageResponse(CamelModel):
    message: str
