"""
Refresh token and password reset token persistence.

Every state transition that must happen at most once (retiring a refresh token,
consuming a reset token) is a single conditional UPDATE whose WHERE clause
includes the expected old state; the affected row count tells the caller
whether it won. Two requests racing on the same row therefore get exactly one
winner without any in-process lock.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func

from models.password_reset_token import PasswordResetToken
from models.refresh_token import RefreshToken
from utils.security import utcnow

logger = logging.getLogger(__name__)


class RefreshTokenStore:
    def __init__(self, storage):
        self.storage = storage

    @property
    def session(self):
        return self.storage.get_session()

    def create(
        self,
        user_id: str,
        token_hash: str,
        expires_at: datetime,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
        commit: bool = True,
    ) -> RefreshToken:
        record = RefreshToken(
            user_id=user_id,
            token_hash=token_hash,
            expires_at=expires_at,
            revoked=False,
            user_agent=(user_agent or "")[:512] or None,
            ip_address=ip_address,
        )
        self.storage.new(record)
        if commit:
            self.storage.save()
        return record

    def find_by_hash(self, token_hash: str) -> Optional[RefreshToken]:
        """Look a record up by digest, whatever its state."""
        return (
            self.session.query(RefreshToken)
            .populate_existing()
            .filter(RefreshToken.token_hash == token_hash)
            .first()
        )

    def _revoke_where(self, *criteria, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        return (
            self.session.query(RefreshToken)
            .filter(RefreshToken.revoked == False, *criteria)  # noqa: E712
            .update({"revoked": True, "revoked_at": now}, synchronize_session="evaluate")
        )

    def revoke(self, record_id: str, now: Optional[datetime] = None) -> bool:
        """Compare-and-swap revoked False -> True. True only for the caller that flipped it."""
        try:
            changed = self._revoke_where(RefreshToken.id == record_id, now=now)
            self.storage.save()
        except Exception:
            self.storage.rollback()
            raise
        return changed == 1

    def revoke_by_hash(self, token_hash: str, now: Optional[datetime] = None) -> bool:
        try:
            changed = self._revoke_where(RefreshToken.token_hash == token_hash, now=now)
            self.storage.save()
        except Exception:
            self.storage.rollback()
            raise
        return changed == 1

    def revoke_all_for_user(self, user_id: str, now: Optional[datetime] = None, commit: bool = True) -> int:
        try:
            count = self._revoke_where(RefreshToken.user_id == user_id, now=now)
            if commit:
                self.storage.save()
        except Exception:
            self.storage.rollback()
            raise
        if count:
            logger.warning("[SECURITY] TOKENS_REVOKED | userId=%s | count=%d", user_id, count)
        return count

    def rotate(
        self,
        old_record_id: str,
        user_id: str,
        token_hash: str,
        expires_at: datetime,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[RefreshToken]:
        """
        Retire `old_record_id` and insert its successor in one transaction.
        Returns None (and writes nothing) when the old record was already revoked.
        """
        try:
            if self._revoke_where(RefreshToken.id == old_record_id, now=now) != 1:
                self.storage.rollback()
                return None
            record = self.create(
                user_id=user_id,
                token_hash=token_hash,
                expires_at=expires_at,
                user_agent=user_agent,
                ip_address=ip_address,
                commit=False,
            )
            self.storage.save()
        except Exception:
            self.storage.rollback()
            raise
        return record

    def list_active(self, user_id: str, now: Optional[datetime] = None) -> List[RefreshToken]:
        now = now or utcnow()
        return (
            self.session.query(RefreshToken)
            .filter(
                RefreshToken.user_id == user_id,
                RefreshToken.revoked == False,  # noqa: E712
                RefreshToken.expires_at > now,
            )
            .order_by(RefreshToken.created_at.desc())
            .all()
        )

    def count_active_by_user(self, user_ids: List[str], now: Optional[datetime] = None) -> dict:
        if not user_ids:
            return {}
        now = now or utcnow()
        rows = (
            self.session.query(RefreshToken.user_id, func.count(RefreshToken.id))
            .filter(
                RefreshToken.user_id.in_(user_ids),
                RefreshToken.revoked == False,  # noqa: E712
                RefreshToken.expires_at > now,
            )
            .group_by(RefreshToken.user_id)
            .all()
        )
        return {user_id: count for user_id, count in rows}


class PasswordResetStore:
    def __init__(self, storage):
        self.storage = storage

    @property
    def session(self):
        return self.storage.get_session()

    def replace_for_user(self, user_id: str, token_hash: str, expires_at: datetime) -> PasswordResetToken:
        """Drop the user's pending reset tokens and store a new one."""
        try:
            (
                self.session.query(PasswordResetToken)
                .filter(PasswordResetToken.user_id == user_id, PasswordResetToken.used == False)  # noqa: E712
                .delete(synchronize_session=False)
            )
            record = PasswordResetToken(user_id=user_id, token_hash=token_hash, expires_at=expires_at, used=False)
            self.storage.new(record)
            self.storage.save()
        except Exception:
            self.storage.rollback()
            raise
        return record

    def find_by_hash(self, token_hash: str) -> Optional[PasswordResetToken]:
        return (
            self.session.query(PasswordResetToken)
            .populate_existing()
            .filter(PasswordResetToken.token_hash == token_hash)
            .first()
        )

    def consume(self, record_id: str, now: Optional[datetime] = None) -> bool:
        """
        Compare-and-swap used False -> True for an unexpired record.
        Does not commit: the caller commits together with the password change.
        """
        now = now or utcnow()
        changed = (
            self.session.query(PasswordResetToken)
            .filter(
                PasswordResetToken.id == record_id,
                PasswordResetToken.used == False,  # noqa: E712
                PasswordResetToken.expires_at > now,
            )
            .update({"used": True, "updated_at": now}, synchronize_session="evaluate")
        )
        return changed == 1
