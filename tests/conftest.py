"""Pytest configuration and fixtures."""

import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-that-is-long-enough-for-hs512-signing")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ["RESEND_API_KEY"] = ""

from datetime import datetime, timedelta  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.database import Base, get_db, utcnow  # noqa: E402
from app.models.auth_log import AuthLog  # noqa: E402, F401
from app.models.email_verification import EmailVerification  # noqa: E402, F401
from app.models.refresh_token import RefreshToken  # noqa: E402, F401
from app.models.user import User  # noqa: E402, F401
from app.services.auth import AuthService, get_auth_service  # noqa: E402
from app.services.email_verification import EmailVerificationService, get_verification_service  # noqa: E402
from app.services.jwt import JWTService, get_jwt_service  # noqa: E402
from app.services.password import PasswordHasher  # noqa: E402


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or utcnow()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingNotifier:
    """Stands in for the mail pool; keeps every (email, code) it was asked to send."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    def send_verification_code(self, email: str, code: str) -> None:
        self.sent.append((email, code))

    def last_code_for(self, email: str) -> str:
        return [code for to, code in self.sent if to == email][-1]

    def shutdown(self, wait: bool = True) -> None:
        pass


@pytest.fixture(name="db_session")
def db_session_fixture():
    """Create an in-memory SQLite database for tests."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    testing_session_local = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(name="session_factory")
def session_factory_fixture(tmp_path):
    """File-backed SQLite, so each thread can hold its own connection."""
    engine = create_engine(f"sqlite:///{tmp_path / 'race.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    engine.dispose()


@pytest.fixture(name="clock")
def clock_fixture() -> FrozenClock:
    return FrozenClock()


@pytest.fixture(name="notifier")
def notifier_fixture() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture(name="jwt_service")
def jwt_service_fixture(clock: FrozenClock) -> JWTService:
    return JWTService(clock=clock)


@pytest.fixture(name="verification_service")
def verification_service_fixture(notifier: RecordingNotifier, clock: FrozenClock) -> EmailVerificationService:
    return EmailVerificationService(notifier=notifier, clock=clock)


@pytest.fixture(name="auth_service")
def auth_service_fixture(
    jwt_service: JWTService,
    notifier: RecordingNotifier,
    verification_service: EmailVerificationService,
    clock: FrozenClock,
) -> AuthService:
    return AuthService(
        jwt_service=jwt_service,
        hasher=PasswordHasher(rounds=4),
        notifier=notifier,
        verification=verification_service,
        clock=clock,
    )


@pytest.fixture(name="client")
def client_fixture(
    db_session: Session,
    auth_service: AuthService,
    verification_service: EmailVerificationService,
    jwt_service: JWTService,
):
    """Create a test client with overridden dependencies and disabled rate limiting.

    The base URL is https so the Secure token cookies round-trip through the cookie jar.
    """
    from app.rate_limit import limiter
    from main import app

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_auth_service] = lambda: auth_service
    app.dependency_overrides[get_verification_service] = lambda: verification_service
    app.dependency_overrides[get_jwt_service] = lambda: jwt_service
    limiter.enabled = False
    with TestClient(app, base_url="https://testserver") as c:
        yield c
    limiter.enabled = True
    app.dependency_overrides.clear()


@pytest.fixture(name="test_user")
def test_user_fixture(db_session: Session, auth_service: AuthService, verification_service, notifier) -> dict:
    """Register and verify a user; return its credentials."""
    result = auth_service.register(db_session, "ivan", "ivan@x.com", "Pass123!")
    verification_service.verify_email(db_session, "ivan@x.com", notifier.last_code_for("ivan@x.com"))
    return {
        "user_id": result.user_id,
        "username": "ivan",
        "email": "ivan@x.com",
        "password": "Pass123!",
    }


@pytest.fixture(name="unverified_user")
def unverified_user_fixture(db_session: Session, auth_service: AuthService) -> dict:
    result = auth_service.register(db_session, "olga", "olga@x.com", "Secret456")
    return {
        "user_id": result.user_id,
        "username": "olga",
        "email": "olga@x.com",
        "password": "Secret456",
    }
