"""Verification email delivery off the request path."""

from concurrent.futures import Future, ThreadPoolExecutor
from html import escape
from threading import Lock

import resend

from app.config import get_settings
from app.logging_config import get_logger, redact_email

logger = get_logger("notifier")


class Notifier:
    """Sends verification codes through resend on a small worker pool.

    ``send_verification_code`` returns as soon as the job is queued. Delivery
    failures are logged and dropped; the user can request a new code.
    """

    def __init__(self, api_key: str | None = None, sender: str | None = None, workers: int | None = None) -> None:
        settings = get_settings()
        self.api_key = settings.RESEND_API_KEY if api_key is None else api_key
        self.sender = sender or settings.MAIL_FROM
        self.workers = workers or settings.EMAIL_WORKERS
        self.code_ttl_minutes = settings.VERIFICATION_CODE_EXPIRE_MINUTES
        self._executor: ThreadPoolExecutor | None = None
        self._lock = Lock()

    def _pool(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="mail")
            return self._executor

    def send_verification_code(self, email: str, code: str) -> Future:
        return self._pool().submit(self._deliver, email, code)

    def _deliver(self, email: str, code: str) -> bool:
        if not self.api_key:
            logger.warning("RESEND_API_KEY is not set, skipping verification email to=%s", redact_email(email))
            return False
        try:
            resend.api_key = self.api_key
            resend.Emails.send(
                {
                    "from": self.sender,
                    "to": [email],
                    "subject": "Your verification code",
                    "html": self._render(code),
                }
            )
        except Exception as exc:
            logger.error("Failed to send verification email to=%s: %s", redact_email(email), exc)
            return False
        logger.info("Verification email sent to=%s", redact_email(email))
        return True

    def _render(self, code: str) -> str:
        return f"""
            <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
                <p>Your verification code is:</p>
                <div style="font-size: 32px; font-weight: bold; letter-spacing: 8px;
                            background: #f5f5f5; padding: 20px; text-align: center;
                            border-radius: 8px; margin: 20px 0;">
                    {escape(code)}
                </div>
                <p>This code expires in {self.code_ttl_minutes} minutes.</p>
                <p>If you didn't create an account, you can ignore this email.</p>
            </div>
        """

    def shutdown(self, wait: bool = True) -> None:
        """Drain queued sends. The pool is recreated on the next send."""
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)


_notifier: Notifier | None = None


def get_notifier() -> Notifier:
    """Get singleton notifier instance."""
    global _notifier
    if _notifier is None:
        _notifier = Notifier()
    return _notifier
