"""Authentication dependencies for FastAPI routes."""

from dataclasses import dataclass

from fastapi import Depends, Request, Response

from app.config import get_settings
from app.errors import ApiError, AuthError
from app.rate_limit import get_real_ip
from app.services.jwt import ACCESS, JWTService, MalformedTokenError, get_jwt_service

ACCESS_COOKIE_NAME = "__Host-access-token"
REFRESH_COOKIE_NAME = "__Host-refresh-token"
ACCESS_COOKIE_MAX_AGE = 15 * 60  # 15 minutes
REFRESH_COOKIE_MAX_AGE = 7 * 24 * 60 * 60  # 7 days


@dataclass
class CurrentUser:
    """Authenticated user context, taken from the access token claims."""

    user_id: str
    email: str
    role: str

    @property
    def authorities(self) -> list[str]:
        return [f"ROLE_{self.role}"]


@dataclass
class RequestInfo:
    ip_address: str
    user_agent: str | None


def get_request_info(request: Request) -> RequestInfo:
    return RequestInfo(ip_address=get_real_ip(request), user_agent=request.headers.get("user-agent"))


def _access_token_from(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header[7:]
    return request.cookies.get(ACCESS_COOKIE_NAME)


def get_current_user(
    request: Request,
    jwt_service: JWTService = Depends(get_jwt_service),
) -> CurrentUser:
    """Extract and validate user from Bearer token or cookie. Raises 401 if invalid."""
    token = _access_token_from(request)
    if not token:
        raise ApiError(AuthError.NOT_AUTHENTICATED, "User is not authenticated")

    try:
        claims = jwt_service.parse_claims(token)
    except MalformedTokenError:
        raise ApiError(AuthError.NOT_AUTHENTICATED, "User is not authenticated")

    if claims.kind != ACCESS or jwt_service.is_token_expired(token):
        raise ApiError(AuthError.NOT_AUTHENTICATED, "User is not authenticated")

    return CurrentUser(user_id=claims.user_id, email=claims.subject, role=claims.role or "USER")


def get_refresh_token(request: Request) -> str | None:
    return request.cookies.get(REFRESH_COOKIE_NAME)


def set_auth_cookies(response: Response, access_token: str, refresh_token: str) -> None:
    """Set both token cookies. ``__Host-`` names require Secure, path / and no domain."""
    secure = get_settings().COOKIE_SECURE
    response.set_cookie(
        key=ACCESS_COOKIE_NAME,
        value=access_token,
        max_age=ACCESS_COOKIE_MAX_AGE,
        path="/",
        httponly=True,
        secure=secure,
        samesite="strict",
    )
    response.set_cookie(
        key=REFRESH_COOKIE_NAME,
        value=refresh_token,
        max_age=REFRESH_COOKIE_MAX_AGE,
        path="/",
        httponly=True,
        secure=secure,
        samesite="strict",
    )


def clear_auth_cookies(response: Response) -> None:
    """Clear both token cookies."""
    secure = get_settings().COOKIE_SECURE
    for name in (ACCESS_COOKIE_NAME, REFRESH_COOKIE_NAME):
        response.delete_cookie(key=name, path="/", secure=secure, httponly=True, samesite="strict")
