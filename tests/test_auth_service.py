"""Tests for the auth orchestrator against a real session."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.database import commit
from app.errors import AuthError, ConflictError
from app.models.auth_log import AuthAction, AuthLog
from app.models.email_verification import EmailVerification
from app.models.refresh_token import RefreshToken
from app.models.user import Role, User
from app.repositories.refresh_token import RefreshTokenRepository
from app.services.auth import AuthService


def _audit_actions(db: Session) -> list[AuthAction]:
    return [row.action for row in db.query(AuthLog).order_by(AuthLog.created_at).all()]


class TestRegister:
    """Tests for account registration."""

    def test_register_creates_unverified_user(self, db_session: Session, auth_service: AuthService, notifier):
        result = auth_service.register(db_session, "ivan", "Ivan@X.com", "Pass123!")

        assert result.success
        assert result.requires_verification
        assert result.access_token is None

        user = db_session.query(User).one()
        assert user.email == "ivan@x.com"
        assert user.role == Role.USER
        assert user.is_active
        assert not user.is_verified
        assert user.failed_attempts == 0
        assert user.password_hash != "Pass123!"

        assert db_session.query(RefreshToken).count() == 0
        assert db_session.query(EmailVerification).filter_by(user_id=user.id, is_used=False).count() == 1
        assert notifier.sent == [("ivan@x.com", notifier.last_code_for("ivan@x.com"))]
        assert AuthAction.REGISTRATION in _audit_actions(db_session)

    def test_duplicate_email_ignores_case(self, db_session: Session, auth_service: AuthService, test_user: dict):
        result = auth_service.register(db_session, "another", "IVAN@x.com", "Pass123!")

        assert not result.success
        assert result.error == AuthError.DUPLICATE_EMAIL
        assert db_session.query(User).count() == 1
        assert AuthAction.REGISTRATION_FAILED in _audit_actions(db_session)

    def test_duplicate_username(self, db_session: Session, auth_service: AuthService, test_user: dict):
        result = auth_service.register(db_session, "ivan", "other@x.com", "Pass123!")

        assert not result.success
        assert result.error == AuthError.DUPLICATE_USERNAME


class TestLogin:
    """Tests for login, verification gating and lockout."""

    def test_unknown_email(self, db_session: Session, auth_service: AuthService):
        result = auth_service.login(db_session, "ghost@x.com", "Pass123!")

        assert result.error == AuthError.USER_NOT_FOUND
        log = db_session.query(AuthLog).one()
        assert log.action == AuthAction.LOGIN_FAILED
        assert log.user_id is None
        assert not log.success

    def test_success_issues_and_persists_tokens(
        self, db_session: Session, auth_service: AuthService, test_user: dict
    ):
        result = auth_service.login(db_session, "ivan@x.com", "Pass123!", "10.0.0.1", "pytest")

        assert result.success
        assert not result.requires_verification
        assert result.access_token and result.refresh_token
        assert result.expires_in == 900
        assert result.role == "USER"

        stored = db_session.query(RefreshToken).one()
        assert stored.token == result.refresh_token
        assert stored.ip_address == "10.0.0.1"
        assert stored.user_agent == "pytest"
        assert not stored.is_revoked
        # The ledger expiry matches the exp claim of the token it records
        assert stored.expires_at == auth_service.jwt.parse_claims(result.refresh_token).expires_at

        user = db_session.query(User).one()
        assert user.last_login_at is not None

    def test_unverified_login_requires_verification(
        self, db_session: Session, auth_service: AuthService, unverified_user: dict, notifier
    ):
        result = auth_service.login(db_session, "olga@x.com", "Secret456")

        assert result.success
        assert result.requires_verification
        assert result.access_token is None
        assert result.refresh_token is None
        assert result.verification_message
        assert db_session.query(RefreshToken).count() == 0
        # A fresh code was issued and the registration code superseded
        assert len(notifier.sent) == 2
        assert db_session.query(EmailVerification).filter_by(is_used=False).count() == 1

    def test_unverified_user_with_wrong_password(
        self, db_session: Session, auth_service: AuthService, unverified_user: dict, notifier
    ):
        result = auth_service.login(db_session, "olga@x.com", "wrong-password1")

        assert result.error == AuthError.INCORRECT_PASSWORD
        assert len(notifier.sent) == 1

    def test_deactivated_account_is_refused(self, db_session: Session, auth_service: AuthService, test_user: dict):
        user = db_session.query(User).one()
        user.is_active = False
        db_session.commit()

        result = auth_service.login(db_session, "ivan@x.com", "Pass123!")

        assert not result.success
        assert result.error == AuthError.ACCOUNT_DISABLED
        assert result.access_token is None
        assert db_session.query(RefreshToken).count() == 0
        assert db_session.query(User).one().failed_attempts == 0
        log = db_session.query(AuthLog).filter_by(action=AuthAction.LOGIN_FAILED).one()
        assert log.failure_reason == "Account deactivated"

    def test_deactivated_account_cannot_refresh(
        self, db_session: Session, auth_service: AuthService, test_user: dict
    ):
        login = auth_service.login(db_session, "ivan@x.com", "Pass123!")
        db_session.query(User).one().is_active = False
        db_session.commit()

        assert auth_service.refresh_token(db_session, login.refresh_token).error == AuthError.ACCOUNT_DISABLED

    def test_wrong_password_counts_attempts(self, db_session: Session, auth_service: AuthService, test_user: dict):
        result = auth_service.login(db_session, "ivan@x.com", "nope12345")

        assert result.error == AuthError.INCORRECT_PASSWORD
        assert db_session.query(User).one().failed_attempts == 1

    def test_lockout_after_five_failures(
        self, db_session: Session, auth_service: AuthService, test_user: dict, clock
    ):
        for _ in range(5):
            result = auth_service.login(db_session, "ivan@x.com", "nope12345")
            assert result.error == AuthError.INCORRECT_PASSWORD

        user = db_session.query(User).one()
        assert user.failed_attempts == 5
        assert user.locked_until is not None
        assert user.is_locked(clock())

        # Even the right password is refused while locked, and no attempt is consumed
        result = auth_service.login(db_session, "ivan@x.com", "Pass123!")
        assert result.error == AuthError.ACCOUNT_LOCKED
        assert db_session.query(User).one().failed_attempts == 5
        assert AuthAction.ACCOUNT_LOCKED in _audit_actions(db_session)

    def test_lock_lapses_after_window(self, db_session: Session, auth_service: AuthService, test_user: dict, clock):
        for _ in range(5):
            auth_service.login(db_session, "ivan@x.com", "nope12345")

        clock.advance(minutes=29)
        assert auth_service.login(db_session, "ivan@x.com", "Pass123!").error == AuthError.ACCOUNT_LOCKED

        clock.advance(minutes=2)
        result = auth_service.login(db_session, "ivan@x.com", "Pass123!")
        assert result.success

        user = db_session.query(User).one()
        assert user.failed_attempts == 0
        assert user.locked_until is None

    def test_failure_after_lapsed_lock_starts_a_new_count(
        self, db_session: Session, auth_service: AuthService, test_user: dict, clock
    ):
        for _ in range(5):
            auth_service.login(db_session, "ivan@x.com", "nope12345")
        clock.advance(minutes=31)

        result = auth_service.login(db_session, "ivan@x.com", "nope12345")

        assert result.error == AuthError.INCORRECT_PASSWORD
        user = db_session.query(User).one()
        assert user.failed_attempts == 1
        assert user.locked_until is None


class TestRefresh:
    """Tests for refresh-token rotation."""

    def test_rotation_is_single_use(self, db_session: Session, auth_service: AuthService, test_user: dict):
        login = auth_service.login(db_session, "ivan@x.com", "Pass123!")

        first = auth_service.refresh_token(db_session, login.refresh_token)
        second = auth_service.refresh_token(db_session, login.refresh_token)

        assert first.success
        assert first.refresh_token != login.refresh_token
        assert second.error == AuthError.TOKEN_REVOKED_OR_EXPIRED

        old = db_session.query(RefreshToken).filter_by(token=login.refresh_token).one()
        assert old.is_revoked
        assert old.revoked_at is not None
        assert AuthAction.REFRESH_TOKEN_REUSE in _audit_actions(db_session)

    def test_rotated_token_keeps_working(self, db_session: Session, auth_service: AuthService, test_user: dict):
        login = auth_service.login(db_session, "ivan@x.com", "Pass123!")
        first = auth_service.refresh_token(db_session, login.refresh_token)
        second = auth_service.refresh_token(db_session, first.refresh_token)

        assert second.success
        assert second.access_token

    def test_conditional_revoke_applies_once(self, db_session: Session, auth_service: AuthService, test_user: dict):
        """The conditional update revokes a row only while it is still active."""
        auth_service.login(db_session, "ivan@x.com", "Pass123!")
        stored = db_session.query(RefreshToken).one()
        repo = RefreshTokenRepository()

        outcomes = [repo.revoke_if_active(db_session, stored.id, auth_service.clock()) for _ in range(2)]
        db_session.commit()

        assert outcomes == [True, False]
        # One revoke applied, so the version moved exactly once
        assert db_session.query(RefreshToken).one().version == 2

    def test_access_token_is_wrong_kind(self, db_session: Session, auth_service: AuthService, test_user: dict):
        login = auth_service.login(db_session, "ivan@x.com", "Pass123!")
        result = auth_service.refresh_token(db_session, login.access_token)
        assert result.error == AuthError.WRONG_TOKEN_KIND

    def test_garbage_is_wrong_kind(self, db_session: Session, auth_service: AuthService):
        assert auth_service.refresh_token(db_session, "garbage").error == AuthError.WRONG_TOKEN_KIND

    def test_missing_token(self, db_session: Session, auth_service: AuthService):
        assert auth_service.refresh_token(db_session, None).error == AuthError.TOKEN_NOT_FOUND

    def test_expired_token(self, db_session: Session, auth_service: AuthService, test_user: dict, clock):
        login = auth_service.login(db_session, "ivan@x.com", "Pass123!")
        clock.advance(days=8)

        assert auth_service.refresh_token(db_session, login.refresh_token).error == AuthError.TOKEN_EXPIRED

    def test_unpersisted_token(self, db_session: Session, auth_service: AuthService, test_user: dict, jwt_service):
        token = jwt_service.create_refresh_token("ivan@x.com", test_user["user_id"])
        assert auth_service.refresh_token(db_session, token).error == AuthError.TOKEN_NOT_FOUND

    def test_subject_no_longer_exists(self, db_session: Session, auth_service: AuthService, jwt_service):
        token = jwt_service.create_refresh_token("ghost@x.com", "missing-id")
        assert auth_service.refresh_token(db_session, token).error == AuthError.USER_NOT_FOUND


class TestLogout:
    """Tests for logout."""

    def test_logout_revokes_token(self, db_session: Session, auth_service: AuthService, test_user: dict):
        login = auth_service.login(db_session, "ivan@x.com", "Pass123!")

        assert auth_service.logout(db_session, login.refresh_token).success

        assert db_session.query(RefreshToken).one().is_revoked
        assert auth_service.refresh_token(db_session, login.refresh_token).error == (
            AuthError.TOKEN_REVOKED_OR_EXPIRED
        )

    def test_logout_is_idempotent(self, db_session: Session, auth_service: AuthService, test_user: dict):
        login = auth_service.login(db_session, "ivan@x.com", "Pass123!")

        assert auth_service.logout(db_session, login.refresh_token).success
        assert auth_service.logout(db_session, login.refresh_token).success

    def test_logout_without_token(self, db_session: Session, auth_service: AuthService):
        assert auth_service.logout(db_session, None).success
        assert auth_service.logout(db_session, "unknown-token").success


class TestChangePassword:
    """Tests for password change."""

    def test_change_revokes_every_session(self, db_session: Session, auth_service: AuthService, test_user: dict):
        sessions = [auth_service.login(db_session, "ivan@x.com", "Pass123!") for _ in range(3)]

        result = auth_service.change_password(db_session, test_user["user_id"], "Pass123!", "NewPass456")

        assert result.success
        assert result.access_token and result.refresh_token
        for old in sessions:
            assert auth_service.refresh_token(db_session, old.refresh_token).error == (
                AuthError.TOKEN_REVOKED_OR_EXPIRED
            )
        assert auth_service.refresh_token(db_session, result.refresh_token).success

        user = db_session.query(User).one()
        assert user.password_changed_at is not None
        assert RefreshTokenRepository().count_valid_for_user(db_session, user.id, auth_service.clock()) == 1

    def test_new_password_is_used_for_login(self, db_session: Session, auth_service: AuthService, test_user: dict):
        auth_service.change_password(db_session, test_user["user_id"], "Pass123!", "NewPass456")

        assert auth_service.login(db_session, "ivan@x.com", "Pass123!").error == AuthError.INCORRECT_PASSWORD
        assert auth_service.login(db_session, "ivan@x.com", "NewPass456").success

    def test_wrong_old_password(self, db_session: Session, auth_service: AuthService, test_user: dict):
        login = auth_service.login(db_session, "ivan@x.com", "Pass123!")

        result = auth_service.change_password(db_session, test_user["user_id"], "not-it-1", "NewPass456")

        assert result.error == AuthError.INCORRECT_PASSWORD
        assert auth_service.refresh_token(db_session, login.refresh_token).success

    def test_unknown_user(self, db_session: Session, auth_service: AuthService):
        result = auth_service.change_password(db_session, "missing-id", "Pass123!", "NewPass456")
        assert result.error == AuthError.USER_NOT_FOUND


class TestOptimisticLocking:
    """A write based on a stale version is reported as a conflict."""

    def test_stale_write_raises_conflict(self, db_session: Session, test_user: dict):
        user = db_session.query(User).one()
        # Another writer bumps the version behind this session's back
        db_session.execute(text("UPDATE users SET version = version + 1 WHERE id = :id"), {"id": user.id})

        user.failed_attempts = 3
        with pytest.raises(ConflictError):
            commit(db_session)

        assert db_session.query(User).one().failed_attempts == 0


def _race(session_factory, action) -> list:
    """Run ``action(db)`` on two threads, each with its own session, released together."""
    barrier = threading.Barrier(2)

    def attempt():
        db = session_factory()
        try:
            barrier.wait(timeout=5)
            try:
                return action(db)
            except ConflictError:
                return "conflict"
        finally:
            db.close()

    with ThreadPoolExecutor(max_workers=2) as pool:
        futures = [pool.submit(attempt) for _ in range(2)]
        return [future.result(timeout=30) for future in futures]


def _verified_user(session_factory, auth_service: AuthService, failed_attempts: int = 0) -> None:
    with session_factory() as db:
        auth_service.register(db, "ivan", "ivan@x.com", "Pass123!")
        user = db.query(User).one()
        user.is_verified = True
        user.failed_attempts = failed_attempts
        db.commit()


class TestConcurrentSessions:
    """Two sessions on separate connections hitting the same account at once."""

    def test_same_refresh_token_rotates_once(self, session_factory, auth_service: AuthService):
        _verified_user(session_factory, auth_service)
        with session_factory() as db:
            token = auth_service.login(db, "ivan@x.com", "Pass123!").refresh_token

        results = _race(session_factory, lambda db: auth_service.refresh_token(db, token))

        assert sorted(result.success for result in results) == [False, True]
        loser = next(result for result in results if not result.success)
        assert loser.error == AuthError.TOKEN_REVOKED_OR_EXPIRED
        with session_factory() as db:
            assert db.query(RefreshToken).filter_by(token=token).one().is_revoked
            assert db.query(RefreshToken).filter_by(is_revoked=False).count() == 1

    def test_simultaneous_wrong_passwords_lose_no_update(self, session_factory, auth_service: AuthService):
        _verified_user(session_factory, auth_service, failed_attempts=3)

        results = _race(session_factory, lambda db: auth_service.login(db, "ivan@x.com", "nope12345"))

        # A loser of the version check is told to retry; every counted attempt is persisted
        counted = [result for result in results if result != "conflict"]
        assert counted
        assert all(result.error == AuthError.INCORRECT_PASSWORD for result in counted)
        with session_factory() as db:
            user = db.query(User).one()
            assert user.failed_attempts == 3 + len(counted)
            assert (user.locked_until is not None) == (user.failed_attempts >= 5)
