"""
Password reset tokens: single use, time boxed, independent of sessions.

request_reset() never tells the caller whether the email exists and never
returns the raw token; the token only leaves through the mailer.
redeem_reset() fails with one generic error whether the token is unknown,
expired or already used.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from utils.exceptions import InvalidResetToken
from utils.mailer import redact_email
from utils.security import generate_secure_token, hash_token, utcnow

logger = logging.getLogger(__name__)


class PasswordResetManager:
    def __init__(self, store, credentials, refresh_store, mailer, ttl: timedelta = timedelta(hours=1)):
        self.store = store
        self.credentials = credentials
        self.refresh_store = refresh_store
        self.mailer = mailer
        self.ttl = ttl

    def request_reset(self, email: str) -> None:
        user = self.credentials.get_by_email(email)
        if user is None:
            logger.info("Password reset requested for unknown email | to=%s", redact_email(email))
            return None

        token = generate_secure_token()
        self.store.replace_for_user(user.id, hash_token(token), utcnow() + self.ttl)
        if not self.mailer.send_password_reset(user.email, user.name, token):
            logger.error("Password reset email could not be delivered | userId=%s", user.id)
        return None

    def redeem_reset(self, token: Optional[str], new_password: str) -> str:
        """
        Consume the token and change the password in one transaction.
        Also revokes every refresh token of the user. Returns the user id.
        """
        if not token:
            raise InvalidResetToken()
        record = self.store.find_by_hash(hash_token(token))
        if record is None:
            raise InvalidResetToken()

        now = utcnow()
        storage = self.store.storage
        try:
            if not self.store.consume(record.id, now=now):
                storage.rollback()
                raise InvalidResetToken()
            if not self.credentials.set_password(record.user_id, new_password, commit=False):
                storage.rollback()
                raise InvalidResetToken()
            self.refresh_store.revoke_all_for_user(record.user_id, now=now, commit=False)
            storage.save()
        except InvalidResetToken:
            raise
        except Exception:
            storage.rollback()
            raise
        return record.user_id
