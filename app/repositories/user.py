"""Credential store access."""

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.user import Role, User


def normalize_email(email: str) -> str:
    return email.strip().lower()


class UserRepository:
    """Reads and writes user rows. Row-locking reads are used for per-user mutations."""

    def get_by_email(self, db: Session, email: str, for_update: bool = False) -> User | None:
        query = db.query(User).filter(func.lower(User.email) == normalize_email(email))
        if for_update:
            query = query.with_for_update()
        return query.first()

    def get_by_id(self, db: Session, user_id: str, for_update: bool = False) -> User | None:
        query = db.query(User).filter(User.id == user_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def email_exists(self, db: Session, email: str) -> bool:
        return self.get_by_email(db, email) is not None

    def username_exists(self, db: Session, username: str) -> bool:
        return (
            db.query(User.id).filter(func.lower(User.username) == username.strip().lower()).first() is not None
        )

    def create(self, db: Session, username: str, email: str, password_hash: str) -> User:
        """Add an unverified, unlocked USER. Flushed so the id is available; not committed."""
        user = User(
            username=username.strip(),
            email=normalize_email(email),
            password_hash=password_hash,
            role=Role.USER,
            is_active=True,
            is_verified=False,
            failed_attempts=0,
        )
        db.add(user)
        db.flush()
        return user
