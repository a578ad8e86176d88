"""Email verification codes."""

import hmac
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from app.config import get_settings
from app.database import commit, utcnow
from app.errors import AuthError
from app.logging_config import get_logger, redact_email
from app.models.auth_log import AuthAction
from app.models.user import User
from app.repositories.email_verification import EmailVerificationRepository
from app.repositories.user import UserRepository
from app.services.audit import AuthAuditService
from app.services.notifier import Notifier, get_notifier
from app.services.result import AuthResult

logger = get_logger("verification")


def generate_code() -> str:
    """Uniform 6-digit code in 100000..999999."""
    return str(secrets.randbelow(900000) + 100000)


class EmailVerificationService:
    """Issues, delivers and checks one-time email codes.

    A user has at most one valid code: issuing a new one marks every earlier
    valid code as used.
    """

    def __init__(
        self,
        notifier: Notifier | None = None,
        users: UserRepository | None = None,
        codes: EmailVerificationRepository | None = None,
        audit: AuthAuditService | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.notifier = notifier or get_notifier()
        self.users = users or UserRepository()
        self.codes = codes or EmailVerificationRepository()
        self.audit = audit or AuthAuditService()
        self.clock = clock
        self.code_ttl = timedelta(minutes=get_settings().VERIFICATION_CODE_EXPIRE_MINUTES)

    def issue_code(self, db: Session, user: User, ip_address: str | None = None) -> str:
        """Persist a fresh code in the caller's transaction and return it.

        The caller hands the code to the notifier only after its commit.
        """
        now = self.clock()
        self.codes.supersede_valid(db, user.id, now)
        code = generate_code()
        self.codes.create(db, user, code, now + self.code_ttl, ip_address)
        return code

    def send_verification_code(self, db: Session, email: str, ip_address: str | None = None) -> AuthResult:
        user = self.users.get_by_email(db, email, for_update=True)
        if user is None:
            logger.warning("Verification code requested for unknown email=%s", redact_email(email))
            return AuthResult.fail(AuthError.USER_NOT_FOUND, "User with this email was not found")

        code = self.issue_code(db, user, ip_address)
        commit(db)
        self.notifier.send_verification_code(user.email, code)
        logger.info("Verification code issued user_id=%s", user.id)
        return AuthResult.for_user(user, verification_message=f"Verification code sent to {user.email}")

    def verify_email(
        self,
        db: Session,
        email: str,
        code: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthResult:
        now = self.clock()
        user = self.users.get_by_email(db, email, for_update=True)
        if user is None:
            return AuthResult.fail(AuthError.USER_NOT_FOUND, "User with this email was not found")
        if user.is_verified:
            return AuthResult.fail(AuthError.ALREADY_VERIFIED, "Account is already verified")

        current = self.codes.find_latest_unused(db, user.id)
        matches = current is not None and hmac.compare_digest(current.code, (code or "").strip())
        if not matches or not current.is_valid(now):
            self.audit.record(
                db,
                AuthAction.EMAIL_VERIFICATION,
                user_id=user.id,
                ip_address=ip_address,
                user_agent=user_agent,
                success=False,
                failure_reason="Invalid or expired verification code",
            )
            commit(db)
            logger.warning("Email verification failed user_id=%s", user.id)
            return AuthResult.fail(AuthError.INVALID_OR_EXPIRED_CODE, "Verification code is invalid or expired")

        user.is_verified = True
        user.verified_at = now
        self.codes.supersede_valid(db, user.id, now)
        self.audit.record(
            db, AuthAction.EMAIL_VERIFICATION, user_id=user.id, ip_address=ip_address, user_agent=user_agent
        )
        commit(db)
        logger.info("Email verified user_id=%s", user.id)
        return AuthResult.for_user(user, verification_message=f"Account {user.email} verified")


_verification_service: EmailVerificationService | None = None


def get_verification_service() -> EmailVerificationService:
    """Get singleton verification service instance."""
    global _verification_service
    if _verification_service is None:
        _verification_service = EmailVerificationService()
    return _verification_service
