"""Authentication service."""

from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.database import commit, utcnow
from app.errors import AuthError
from app.logging_config import get_logger
from app.models.auth_log import AuthAction
from app.models.user import User
from app.repositories.refresh_token import RefreshTokenRepository
from app.repositories.user import UserRepository, normalize_email
from app.services.audit import AuthAuditService
from app.services.email_verification import EmailVerificationService, get_verification_service
from app.services.jwt import REFRESH, JWTService, MalformedTokenError, get_jwt_service
from app.services.notifier import Notifier, get_notifier
from app.services.password import PasswordHasher
from app.services.result import AuthResult

logger = get_logger("auth")

VERIFICATION_REQUIRED_MESSAGE = "Email is not verified. A new verification code has been sent to your inbox."


class AuthService:
    """Handles registration, login, token rotation, logout and password change.

    Each operation runs on the caller's session and commits once. Failures come
    back as an ``AuthResult`` carrying an ``AuthError`` kind; a lost optimistic
    version check raises ``ConflictError`` from the commit.
    """

    def __init__(
        self,
        jwt_service: JWTService | None = None,
        hasher: PasswordHasher | None = None,
        notifier: Notifier | None = None,
        verification: EmailVerificationService | None = None,
        users: UserRepository | None = None,
        tokens: RefreshTokenRepository | None = None,
        audit: AuthAuditService | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        settings = get_settings()
        self.jwt = jwt_service or get_jwt_service()
        self.hasher = hasher or PasswordHasher()
        self.notifier = notifier or get_notifier()
        self.verification = verification or get_verification_service()
        self.users = users or UserRepository()
        self.tokens = tokens or RefreshTokenRepository()
        self.audit = audit or AuthAuditService()
        self.clock = clock or self.jwt.clock or utcnow
        self.max_failed_attempts = settings.MAX_FAILED_ATTEMPTS
        self.lock_time = timedelta(minutes=settings.LOCK_TIME_MINUTES)

    def _issue_tokens(
        self, db: Session, user: User, ip_address: str | None, user_agent: str | None
    ) -> dict:
        """Mint an access/refresh pair and persist the refresh half."""
        access_token = self.jwt.create_access_token(user.email, user.id, user.role.value)
        refresh_token = self.jwt.create_refresh_token(user.email, user.id)
        self.tokens.create(
            db,
            user,
            refresh_token,
            expires_at=self.jwt.parse_claims(refresh_token).expires_at,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "expires_in": self.jwt.seconds_until_expiry(access_token),
        }

    def register(
        self,
        db: Session,
        username: str,
        email: str,
        password: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthResult:
        """Create an unverified account and send its first verification code. No tokens are issued."""
        email = normalize_email(email)
        if self.users.email_exists(db, email):
            return self._registration_failed(
                db, AuthError.DUPLICATE_EMAIL, "User with this email already exists", ip_address, user_agent
            )
        if self.users.username_exists(db, username):
            return self._registration_failed(
                db, AuthError.DUPLICATE_USERNAME, "User with this username already exists", ip_address, user_agent
            )

        try:
            user = self.users.create(db, username, email, self.hasher.hash(password))
            code = self.verification.issue_code(db, user, ip_address)
            self.audit.record(
                db, AuthAction.REGISTRATION, user_id=user.id, ip_address=ip_address, user_agent=user_agent
            )
            commit(db)
        except IntegrityError:
            # Lost a race against a concurrent registration of the same identity
            db.rollback()
            return AuthResult.fail(AuthError.DUPLICATE_EMAIL, "User with this email or username already exists")

        self.notifier.send_verification_code(user.email, code)
        logger.info("User registered user_id=%s", user.id)
        return AuthResult.for_user(
            user,
            requires_verification=True,
            verification_message=f"Verification code sent to {user.email}",
        )

    def _registration_failed(
        self, db: Session, error: AuthError, message: str, ip_address: str | None, user_agent: str | None
    ) -> AuthResult:
        self.audit.record(
            db,
            AuthAction.REGISTRATION_FAILED,
            ip_address=ip_address,
            user_agent=user_agent,
            success=False,
            failure_reason=error.value,
        )
        commit(db)
        logger.info("Registration rejected reason=%s", error.value)
        return AuthResult.fail(error, message)

    def login(
        self,
        db: Session,
        email: str,
        password: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthResult:
        """Authenticate by email and password.

        Unverified users get a fresh verification code and a successful result
        with ``requires_verification`` set and no tokens.
        """
        now = self.clock()
        user = self.users.get_by_email(db, email, for_update=True)
        if user is None:
            self.hasher.dummy_verify(password)
            self.audit.record(
                db,
                AuthAction.LOGIN_FAILED,
                ip_address=ip_address,
                user_agent=user_agent,
                success=False,
                failure_reason="Unknown email",
            )
            commit(db)
            logger.warning("Login attempt for unknown email ip=%s", ip_address)
            return AuthResult.fail(AuthError.USER_NOT_FOUND, "User with this email was not found")

        if user.is_locked(now):
            self.audit.record(
                db,
                AuthAction.LOGIN_FAILED,
                user_id=user.id,
                ip_address=ip_address,
                user_agent=user_agent,
                success=False,
                failure_reason="Account locked",
            )
            commit(db)
            logger.warning("Login attempt on locked account user_id=%s", user.id)
            return AuthResult.fail(AuthError.ACCOUNT_LOCKED, "Account is locked. Try again later.")

        if not user.is_active:
            self.audit.record(
                db,
                AuthAction.LOGIN_FAILED,
                user_id=user.id,
                ip_address=ip_address,
                user_agent=user_agent,
                success=False,
                failure_reason="Account deactivated",
            )
            commit(db)
            logger.warning("Login attempt on deactivated account user_id=%s", user.id)
            return AuthResult.fail(AuthError.ACCOUNT_DISABLED, "Account is deactivated")

        if user.locked_until is not None:
            # Lock window has lapsed: start counting from zero again
            user.locked_until = None
            user.failed_attempts = 0

        if not self.hasher.verify(password, user.password_hash):
            return self._login_failed(db, user, now, ip_address, user_agent)

        if not user.is_verified:
            code = self.verification.issue_code(db, user, ip_address)
            commit(db)
            self.notifier.send_verification_code(user.email, code)
            logger.info("Login by unverified user, new code issued user_id=%s", user.id)
            return AuthResult.for_user(
                user,
                requires_verification=True,
                verification_message=VERIFICATION_REQUIRED_MESSAGE,
            )

        user.failed_attempts = 0
        user.locked_until = None
        user.last_login_at = now
        tokens = self._issue_tokens(db, user, ip_address, user_agent)
        self.audit.record(db, AuthAction.LOGIN, user_id=user.id, ip_address=ip_address, user_agent=user_agent)
        commit(db)
        logger.info("Login succeeded user_id=%s", user.id)
        return AuthResult.for_user(user, **tokens)

    def _login_failed(
        self, db: Session, user: User, now: datetime, ip_address: str | None, user_agent: str | None
    ) -> AuthResult:
        user.failed_attempts = (user.failed_attempts or 0) + 1
        self.audit.record(
            db,
            AuthAction.LOGIN_FAILED,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
            success=False,
            failure_reason="Incorrect password",
        )
        if user.failed_attempts >= self.max_failed_attempts:
            user.locked_until = now + self.lock_time
            self.audit.record(
                db,
                AuthAction.ACCOUNT_LOCKED,
                user_id=user.id,
                ip_address=ip_address,
                user_agent=user_agent,
                success=False,
                failure_reason=f"{user.failed_attempts} failed login attempts",
            )
            logger.warning("Account locked after %d failed attempts user_id=%s", user.failed_attempts, user.id)
        commit(db)
        return AuthResult.fail(AuthError.INCORRECT_PASSWORD, "Incorrect password")

    def refresh_token(
        self,
        db: Session,
        raw_token: str | None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthResult:
        """Rotate a refresh token. Each refresh token can be used exactly once."""
        if not raw_token:
            return AuthResult.fail(AuthError.TOKEN_NOT_FOUND, "Refresh token is missing")
        if not self.jwt.is_token_kind(raw_token, REFRESH):
            return AuthResult.fail(AuthError.WRONG_TOKEN_KIND, "Invalid token type")
        if self.jwt.is_token_expired(raw_token):
            return AuthResult.fail(AuthError.TOKEN_EXPIRED, "Refresh token has expired")

        try:
            claims = self.jwt.parse_claims(raw_token)
        except MalformedTokenError:
            return AuthResult.fail(AuthError.WRONG_TOKEN_KIND, "Invalid token type")

        now = self.clock()
        user = self.users.get_by_email(db, claims.subject, for_update=True)
        if user is None:
            return AuthResult.fail(AuthError.USER_NOT_FOUND, "User with this email was not found")
        if not user.is_active:
            return AuthResult.fail(AuthError.ACCOUNT_DISABLED, "Account is deactivated")

        stored = self.tokens.get_by_token(db, raw_token)
        if stored is None or stored.user_id != user.id:
            return AuthResult.fail(AuthError.TOKEN_NOT_FOUND, "Refresh token was not found")

        if not stored.is_valid(now):
            if stored.is_revoked:
                self._reuse_detected(db, user, ip_address, user_agent)
            return AuthResult.fail(AuthError.TOKEN_REVOKED_OR_EXPIRED, "Refresh token is revoked or expired")

        if not self.tokens.revoke_if_active(db, stored.id, now):
            db.rollback()
            self._reuse_detected(db, user, ip_address, user_agent)
            return AuthResult.fail(AuthError.TOKEN_REVOKED_OR_EXPIRED, "Refresh token is revoked or expired")

        tokens = self._issue_tokens(db, user, ip_address, user_agent)
        self.audit.record(
            db, AuthAction.TOKEN_REFRESHED, user_id=user.id, ip_address=ip_address, user_agent=user_agent
        )
        commit(db)
        logger.info("Tokens refreshed user_id=%s", user.id)
        return AuthResult.for_user(user, **tokens)

    def _reuse_detected(self, db: Session, user: User, ip_address: str | None, user_agent: str | None) -> None:
        logger.warning("Revoked refresh token presented again user_id=%s ip=%s", user.id, ip_address)
        self.audit.record(
            db,
            AuthAction.REFRESH_TOKEN_REUSE,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
            success=False,
            failure_reason="Revoked refresh token presented",
        )
        commit(db)

    def logout(
        self,
        db: Session,
        raw_token: str | None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthResult:
        """Revoke the presented refresh token if it exists. Always succeeds."""
        if not raw_token:
            return AuthResult(success=True)
        try:
            stored = self.tokens.get_by_token(db, raw_token)
            if stored is not None:
                now = self.clock()
                self.tokens.revoke_if_active(db, stored.id, now)
                self.audit.record(
                    db, AuthAction.LOGOUT, user_id=stored.user_id, ip_address=ip_address, user_agent=user_agent
                )
                commit(db)
                logger.info(
                    "Logout user_id=%s remaining_sessions=%d",
                    stored.user_id,
                    self.tokens.count_valid_for_user(db, stored.user_id, now),
                )
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Logout could not revoke refresh token")
        return AuthResult(success=True)

    def change_password(
        self,
        db: Session,
        user_id: str,
        old_password: str,
        new_password: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthResult:
        """Replace the password, revoke every refresh token of the user and issue a new pair."""
        now = self.clock()
        user = self.users.get_by_id(db, user_id, for_update=True)
        if user is None:
            return AuthResult.fail(AuthError.USER_NOT_FOUND, "User was not found")

        if not self.hasher.verify(old_password, user.password_hash):
            self.audit.record(
                db,
                AuthAction.PASSWORD_CHANGED,
                user_id=user.id,
                ip_address=ip_address,
                user_agent=user_agent,
                success=False,
                failure_reason="Incorrect current password",
            )
            commit(db)
            return AuthResult.fail(AuthError.INCORRECT_PASSWORD, "Current password is incorrect")

        user.password_hash = self.hasher.hash(new_password)
        user.password_changed_at = now
        revoked = self.tokens.revoke_all_for_user(db, user.id, now)
        tokens = self._issue_tokens(db, user, ip_address, user_agent)
        self.audit.record(
            db, AuthAction.PASSWORD_CHANGED, user_id=user.id, ip_address=ip_address, user_agent=user_agent
        )
        commit(db)
        logger.info("Password changed user_id=%s revoked_tokens=%d", user.id, revoked)
        return AuthResult.for_user(user, **tokens)


_auth_service: AuthService | None = None


def get_auth_service() -> AuthService:
    """Get singleton auth service instance."""
    global _auth_service
    if _auth_service is None:
        _auth_service = AuthService()
    return _auth_service
