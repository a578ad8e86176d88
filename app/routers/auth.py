"""Authentication API endpoints."""

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.orm import Session

from app.database import get_db
from app.dependencies import (
    CurrentUser,
    clear_auth_cookies,
    get_current_user,
    get_refresh_token,
    get_request_info,
    set_auth_cookies,
)
from app.errors import ApiError, AuthError
from app.logging_config import get_logger, redact_email
from app.rate_limit import rate_limited
from app.repositories.user import UserRepository
from app.schemas.auth import (
    AuthResponse,
    ChangePasswordRequest,
    LoginRequest,
    MeResponse,
    MessageResponse,
    RegisterRequest,
    UserSummary,
)
from app.schemas.common import ApiResponse
from app.services.auth import AuthService, get_auth_service
from app.services.email_verification import EmailVerificationService, get_verification_service
from app.services.result import AuthResult

logger = get_logger("api.auth")

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


def _raise_on_failure(result: AuthResult) -> None:
    if not result.success:
        raise ApiError(result.error, result.message or result.error.value)


def _auth_response(result: AuthResult, tokens_in_cookies: bool) -> AuthResponse:
    return AuthResponse(
        access_token=None if tokens_in_cookies else result.access_token,
        refresh_token=None if tokens_in_cookies else result.refresh_token,
        expires_in=result.expires_in,
        user_id=result.user_id,
        email=result.email,
        username=result.username,
        role=result.role,
        is_verified=result.is_verified,
        requires_verification=result.requires_verification,
        verification_message=result.verification_message,
    )


@router.post("/register", response_model=ApiResponse[MessageResponse])
@rate_limited("auth")
def register(
    request: Request,
    body: RegisterRequest,
    db: Session = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
) -> ApiResponse[MessageResponse]:
    """Register a new account and email it a verification code."""
    info = get_request_info(request)
    logger.info("Registration attempt email=%s", redact_email(body.email))
    result = auth_service.register(db, body.username, body.email, body.password, info.ip_address, info.user_agent)
    _raise_on_failure(result)

    message = f"Verification code sent to {result.email}"
    return ApiResponse[MessageResponse](message=message, data=MessageResponse(message=message))


@router.post("/login", response_model=ApiResponse[AuthResponse])
@rate_limited("auth")
def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    db: Session = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
) -> ApiResponse[AuthResponse]:
    """Authenticate. Tokens are delivered as HttpOnly cookies."""
    info = get_request_info(request)
    result = auth_service.login(db, body.email, body.password, info.ip_address, info.user_agent)
    _raise_on_failure(result)

    if result.requires_verification:
        return ApiResponse[AuthResponse](
            message=result.verification_message,
            data=_auth_response(result, tokens_in_cookies=False),
        )

    set_auth_cookies(response, result.access_token, result.refresh_token)
    return ApiResponse[AuthResponse](message="Login successful", data=_auth_response(result, tokens_in_cookies=True))


@router.post("/refresh", response_model=ApiResponse[AuthResponse])
@rate_limited("refresh_token")
def refresh(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
) -> ApiResponse[AuthResponse]:
    """Rotate the refresh token from the cookie and set a fresh pair."""
    info = get_request_info(request)
    result = auth_service.refresh_token(db, get_refresh_token(request), info.ip_address, info.user_agent)
    _raise_on_failure(result)

    set_auth_cookies(response, result.access_token, result.refresh_token)
    return ApiResponse[AuthResponse](message="Tokens refreshed", data=_auth_response(result, tokens_in_cookies=True))


@router.post("/send-verification", response_model=ApiResponse[MessageResponse])
@rate_limited("email_verification")
def send_verification(
    request: Request,
    email: str = Query(..., max_length=100),
    db: Session = Depends(get_db),
    verification_service: EmailVerificationService = Depends(get_verification_service),
) -> ApiResponse[MessageResponse]:
    """Send a new verification code, superseding any earlier one."""
    info = get_request_info(request)
    result = verification_service.send_verification_code(db, email, info.ip_address)
    _raise_on_failure(result)

    message = f"Verification code sent again to {result.email}"
    return ApiResponse[MessageResponse](message=message, data=MessageResponse(message=message))


@router.post("/verify-email", response_model=ApiResponse[MessageResponse])
@rate_limited("email_verification")
def verify_email(
    request: Request,
    email: str = Query(..., max_length=100),
    code: str = Query(..., min_length=1, max_length=10),
    db: Session = Depends(get_db),
    verification_service: EmailVerificationService = Depends(get_verification_service),
) -> ApiResponse[MessageResponse]:
    """Confirm the email address with the emailed code."""
    info = get_request_info(request)
    result = verification_service.verify_email(db, email, code, info.ip_address, info.user_agent)
    _raise_on_failure(result)

    message = f"Account {result.email} verified"
    return ApiResponse[MessageResponse](message=message, data=MessageResponse(message=message))


@router.post("/logout", response_model=ApiResponse[MessageResponse])
def logout(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
) -> ApiResponse[MessageResponse]:
    """Revoke the refresh token (if any) and delete both cookies. Always succeeds."""
    info = get_request_info(request)
    auth_service.logout(db, get_refresh_token(request), info.ip_address, info.user_agent)
    clear_auth_cookies(response)

    return ApiResponse[MessageResponse](message="Logged out", data=MessageResponse(message="Logged out"))


@router.post("/change-password", response_model=ApiResponse[AuthResponse])
@rate_limited("password_change")
def change_password(
    request: Request,
    response: Response,
    body: ChangePasswordRequest,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
) -> ApiResponse[AuthResponse]:
    """Change the password. Every existing session is revoked and a new pair is issued."""
    info = get_request_info(request)
    result = auth_service.change_password(
        db, user.user_id, body.old_password, body.new_password, info.ip_address, info.user_agent
    )
    _raise_on_failure(result)

    set_auth_cookies(response, result.access_token, result.refresh_token)
    return ApiResponse[AuthResponse](message="Password changed", data=_auth_response(result, tokens_in_cookies=True))


@router.get("/me", response_model=ApiResponse[MeResponse])
def me(
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApiResponse[MeResponse]:
    """Return the authenticated user."""
    account = UserRepository().get_by_id(db, user.user_id)
    if account is None or not account.is_active:
        raise ApiError(AuthError.NOT_AUTHENTICATED, "User is not authenticated")

    return ApiResponse[MeResponse](
        data=MeResponse(
            authenticated=True,
            user=UserSummary(
                id=account.id,
                email=account.email,
                username=account.username,
                role=account.role.value,
                is_verified=account.is_verified,
            ),
            authorities=user.authorities,
        )
    )
