"""Password hashing."""

import bcrypt

from app.config import get_settings

# bcrypt only reads the first 72 bytes
_MAX_BYTES = 72


def _encode(password: str) -> bytes:
    return password.encode("utf-8")[:_MAX_BYTES]


class PasswordHasher:
    """bcrypt hashing with a configurable work factor."""

    def __init__(self, rounds: int | None = None) -> None:
        self.rounds = rounds or get_settings().BCRYPT_ROUNDS
        self._dummy_hash: bytes | None = None

    def hash(self, password: str) -> str:
        return bcrypt.hashpw(_encode(password), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(_encode(password), password_hash.encode("utf-8"))
        except ValueError:
            return False

    def dummy_verify(self, password: str) -> None:
        """Spend the same time as a real check so unknown emails are not revealed by timing."""
        if self._dummy_hash is None:
            self._dummy_hash = bcrypt.hashpw(b"dummy-password", bcrypt.gensalt(rounds=self.rounds))
        bcrypt.checkpw(_encode(password), self._dummy_hash)
