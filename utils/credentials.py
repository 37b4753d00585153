"""
Credential store backed by the users table.
It verifies email+password pairs and owns password changes; token code only
ever sees the resulting user id and email.
"""
from __future__ import annotations

from typing import Optional

from sqlalchemy.exc import IntegrityError

from models.user import User
from utils.exceptions import EmailAlreadyRegistered
from utils.security import hash_password, verify_password, utcnow


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class CredentialStore:
    def __init__(self, storage):
        self.storage = storage

    @property
    def session(self):
        return self.storage.get_session()

    def get_user(self, user_id: str) -> Optional[User]:
        return self.storage.get(User, user_id)

    def get_by_email(self, email: str) -> Optional[User]:
        return self.session.query(User).filter(User.email == normalize_email(email)).first()

    def register(self, email: str, password: str, name: Optional[str] = None) -> User:
        email = normalize_email(email)
        if self.get_by_email(email):
            raise EmailAlreadyRegistered()
        user = User(email=email, name=name, password_hash=hash_password(password), roles=["user"])
        self.storage.new(user)
        try:
            self.storage.save()
        except IntegrityError:
            # lost a race with a concurrent registration of the same email
            raise EmailAlreadyRegistered()
        return user

    def verify(self, email: str, password: str) -> Optional[User]:
        """Return the user when the credentials match, None otherwise."""
        user = self.get_by_email(email)
        if not verify_password(password, user.password_hash if user else None):
            return None
        return user

    def set_password(self, user_id: str, new_password: str, commit: bool = True) -> bool:
        """Store a new password hash. With commit=False the caller owns the transaction."""
        updated = (
            self.session.query(User)
            .filter(User.id == user_id)
            .update(
                {"password_hash": hash_password(new_password), "updated_at": utcnow()},
                synchronize_session="evaluate",
            )
        )
        if commit:
            self.storage.save()
        return updated == 1

    def list_users(self, page: int = 1, limit: int = 20):
        query = self.session.query(User)
        total = query.count()
        rows = query.order_by(User.created_at.asc()).offset((page - 1) * limit).limit(limit).all()
        return rows, total
