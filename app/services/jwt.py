"""JWT Token Service."""

import calendar
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from app.config import get_settings
from app.database import utcnow

ACCESS = "access"
REFRESH = "refresh"


class MalformedTokenError(Exception):
    """Bad signature, wrong issuer or audience, or an unparseable token."""


@dataclass(frozen=True)
class TokenClaims:
    subject: str
    user_id: str
    role: str | None
    kind: str
    expires_at: datetime


def _timestamp(moment: datetime) -> int:
    return calendar.timegm(moment.utctimetuple())


class JWTService:
    """Mints and reads signed access and refresh tokens.

    Expiry is checked against the injected clock instead of the library's
    wall clock, so callers can simulate the passage of time.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        settings = get_settings()
        self.secret_key = settings.JWT_SECRET_KEY
        self.algorithm = settings.JWT_ALGORITHM
        self.issuer = settings.JWT_ISSUER
        self.audience = settings.JWT_AUDIENCE
        self.access_ttl = timedelta(seconds=settings.ACCESS_TOKEN_EXPIRE_SECONDS)
        self.refresh_ttl = timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)
        self.clock = clock

    def _now(self) -> datetime:
        # JWT timestamps have whole-second resolution
        return self.clock().replace(microsecond=0)

    def _encode(self, subject: str, claims: dict, ttl: timedelta) -> str:
        now = self._now()
        payload = {
            **claims,
            "sub": subject,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": _timestamp(now),
            "exp": _timestamp(now + ttl),
            "jti": str(uuid.uuid4()),
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def create_access_token(self, email: str, user_id: str, role: str) -> str:
        return self._encode(email, {"userId": user_id, "role": role, "type": ACCESS}, self.access_ttl)

    def create_refresh_token(self, email: str, user_id: str) -> str:
        return self._encode(email, {"userId": user_id, "type": REFRESH}, self.refresh_ttl)

    def parse_claims(self, token: str) -> TokenClaims:
        """Verify signature, issuer and audience. Does not check expiry."""
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise MalformedTokenError(str(exc)) from exc

        try:
            return TokenClaims(
                subject=payload["sub"],
                user_id=payload["userId"],
                role=payload.get("role"),
                kind=payload["type"],
                expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc).replace(tzinfo=None),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise MalformedTokenError("Token is missing required claims") from exc

    def is_token_expired(self, token: str) -> bool:
        """Unreadable tokens count as expired."""
        try:
            claims = self.parse_claims(token)
        except MalformedTokenError:
            return True
        return claims.expires_at <= self.clock()

    def is_token_kind(self, token: str, kind: str) -> bool:
        try:
            return self.parse_claims(token).kind == kind
        except MalformedTokenError:
            return False

    def validate_token(self, token: str, expected_subject: str) -> bool:
        try:
            claims = self.parse_claims(token)
        except MalformedTokenError:
            return False
        return claims.subject == expected_subject and claims.expires_at > self.clock()

    def seconds_until_expiry(self, token: str) -> int:
        try:
            claims = self.parse_claims(token)
        except MalformedTokenError:
            return 0
        return max(0, int((claims.expires_at - self._now()).total_seconds()))


_jwt_service: JWTService | None = None


def get_jwt_service() -> JWTService:
    """Get singleton JWT service instance."""
    global _jwt_service
    if _jwt_service is None:
        _jwt_service = JWTService()
    return _jwt_service
