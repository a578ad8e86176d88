"""Authentication audit trail."""

from sqlalchemy.orm import Session

from app.models.auth_log import AuthAction, AuthLog


class AuthAuditService:
    """Adds auth_logs rows to the caller's unit of work.

    Rows are committed together with the operation they describe. Callers must
    never pass passwords, hashes, tokens or codes as the failure reason.
    """

    def record(
        self,
        db: Session,
        action: AuthAction,
        user_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        success: bool = True,
        failure_reason: str | None = None,
    ) -> AuthLog:
        entry = AuthLog(
            user_id=user_id,
            action=action,
            ip_address=ip_address,
            user_agent=user_agent,
            success=success,
            failure_reason=failure_reason[:500] if failure_reason else None,
        )
        db.add(entry)
        return entry
