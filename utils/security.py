"""
security helpers:
- Argon2 password hashing via argon2-cffi
- SHA-256 digests for opaque tokens (refresh and reset secrets are stored hashed)
- High entropy opaque token generation
"""
from __future__ import annotations

import hashlib
import secrets
from datetime import datetime, timezone

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

ph = PasswordHasher()

# Used to spend the same hashing time when the email is unknown.
_DUMMY_HASH = ph.hash("timing-equalizer-password")

# 256 bits of entropy
OPAQUE_TOKEN_BYTES = 32


def hash_password(password: str) -> str:
    """Hash a plaintext password using Argon2
    """
    return ph.hash(password)


def verify_password(password: str, password_hash: str | None) -> bool:
    """ Verify a plaintext password using argon2.
    A missing hash is still checked against a dummy one so both paths cost the same.
    """
    try:
        if password_hash is None:
            ph.verify(_DUMMY_HASH, password)
            return False
        return ph.verify(password_hash, password)
    except (VerifyMismatchError, VerificationError, InvalidHashError, UnicodeError):
        return False


def generate_secure_token() -> str:
    """Random opaque token, hex encoded."""
    return secrets.token_hex(OPAQUE_TOKEN_BYTES)


def hash_token(token: str) -> str:
    """One-way digest of an opaque token; only this value is ever persisted."""
    return hashlib.sha256(token.encode("utf-8", "surrogatepass")).hexdigest()


def utcnow() -> datetime:
    """Naive UTC now; all persisted timestamps are naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
