"""
Refresh token rotation, logout and logout-all.

A legitimate client presents each refresh token exactly once and throws it
away after rotation. Seeing a retired token again means someone else holds a
copy, so every outstanding refresh token of the owner is revoked and the
caller gets the same opaque rejection as for an unknown token.
"""
from __future__ import annotations

import logging
from typing import Optional

from utils.exceptions import InvalidTokenError, ReuseDetected
from utils.security import hash_token
from utils.tokens import TokenIssuer, TokenPair

logger = logging.getLogger(__name__)


class RefreshRotator:
    def __init__(self, store, issuer: TokenIssuer, credentials):
        self.store = store
        self.issuer = issuer
        self.credentials = credentials

    def _reuse_detected(self, user_id: str) -> ReuseDetected:
        revoked = self.store.revoke_all_for_user(user_id)
        logger.warning(
            "[SECURITY] REFRESH_TOKEN_REUSE | userId=%s | revokedTokens=%d", user_id, revoked
        )
        return ReuseDetected(user_id, revoked)

    def rotate(
        self, refresh_token: str, user_agent: Optional[str] = None, ip_address: Optional[str] = None
    ) -> TokenPair:
        """
        Exchange a refresh token for a new pair.
        Raises InvalidTokenError (or its ReuseDetected subclass) on any rejection.
        """
        if not refresh_token:
            raise InvalidTokenError("missing")

        record = self.store.find_by_hash(hash_token(refresh_token))
        if record is None:
            raise InvalidTokenError("not_found")
        if record.revoked:
            raise self._reuse_detected(record.user_id)

        # one clock for the expiry decision and the successor expiry
        now = self.issuer.now()
        if record.is_expired(now):
            self.store.revoke(record.id, now=now)
            raise InvalidTokenError("expired")

        user = self.credentials.get_user(record.user_id)
        if user is None:
            self.store.revoke(record.id, now=now)
            raise InvalidTokenError("owner_missing")

        new_token, new_hash, expires_at = self.issuer.new_refresh_secret(now)
        successor = self.store.rotate(
            record.id,
            user_id=user.id,
            token_hash=new_hash,
            expires_at=expires_at,
            user_agent=user_agent,
            ip_address=ip_address,
            now=now,
        )
        if successor is None:
            # a concurrent request retired this token between lookup and update
            raise self._reuse_detected(record.user_id)

        access_token = self.issuer.issue_access_token(user.id, user.email)
        return TokenPair(access_token=access_token, refresh_token=new_token, expires_in=self.issuer.expires_in)

    def logout(self, refresh_token: Optional[str]) -> bool:
        """Revoke one refresh token. Unknown or already revoked tokens are a no-op."""
        if not refresh_token:
            return False
        return self.store.revoke_by_hash(hash_token(refresh_token))

    def logout_all(self, user_id: str) -> int:
        return self.store.revoke_all_for_user(user_id)
