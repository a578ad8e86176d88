"""Domain error kinds and their HTTP mapping."""

import enum


class AuthError(str, enum.Enum):
    """Failure kinds returned by the auth services."""

    DUPLICATE_EMAIL = "DUPLICATE_EMAIL"
    DUPLICATE_USERNAME = "DUPLICATE_USERNAME"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    INCORRECT_PASSWORD = "INCORRECT_PASSWORD"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    ACCOUNT_DISABLED = "ACCOUNT_DISABLED"
    WRONG_TOKEN_KIND = "WRONG_TOKEN_KIND"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_NOT_FOUND = "TOKEN_NOT_FOUND"
    TOKEN_REVOKED_OR_EXPIRED = "TOKEN_REVOKED_OR_EXPIRED"
    ALREADY_VERIFIED = "ALREADY_VERIFIED"
    INVALID_OR_EXPIRED_CODE = "INVALID_OR_EXPIRED_CODE"
    NOT_AUTHENTICATED = "NOT_AUTHENTICATED"


# kind -> (HTTP status, errorCode)
ERROR_RESPONSES: dict[AuthError, tuple[int, str]] = {
    AuthError.DUPLICATE_EMAIL: (400, "EMAIL_ALREADY_EXISTS"),
    AuthError.DUPLICATE_USERNAME: (400, "USERNAME_ALREADY_EXISTS"),
    AuthError.USER_NOT_FOUND: (400, "USER_NOT_FOUND"),
    AuthError.INCORRECT_PASSWORD: (400, "INCORRECT_PASSWORD"),
    AuthError.ACCOUNT_LOCKED: (403, "ACCOUNT_LOCKED"),
    AuthError.ACCOUNT_DISABLED: (403, "ACCOUNT_DISABLED"),
    AuthError.WRONG_TOKEN_KIND: (400, "TOKEN_TYPE_ERROR"),
    AuthError.TOKEN_EXPIRED: (401, "TOKEN_EXPIRED"),
    AuthError.TOKEN_NOT_FOUND: (400, "TOKEN_NOT_FOUND"),
    AuthError.TOKEN_REVOKED_OR_EXPIRED: (401, "TOKEN_NOT_VALID"),
    AuthError.ALREADY_VERIFIED: (400, "ACCOUNT_ALREADY_VERIFIED"),
    AuthError.INVALID_OR_EXPIRED_CODE: (400, "VERIFICATION_CODE_ERROR"),
    AuthError.NOT_AUTHENTICATED: (401, "USER_NOT_AUTHENTICATED"),
}


class ApiError(Exception):
    """Raised at the HTTP boundary for a failed service result."""

    def __init__(self, kind: AuthError, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message

    @property
    def status_code(self) -> int:
        return ERROR_RESPONSES[self.kind][0]

    @property
    def error_code(self) -> str:
        return ERROR_RESPONSES[self.kind][1]


class ConflictError(Exception):
    """A concurrent update won the optimistic version check. Safe to retry."""

    def __init__(self, message: str = "The resource was modified concurrently, please retry") -> None:
        super().__init__(message)
        self.message = message
