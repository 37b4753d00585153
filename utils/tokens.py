"""
Access/refresh token issuing and access token validation.

Both classes receive the signing secret at construction time; nothing here
reads application config at call time, so several instances with different
secrets can live side by side (tests rely on that).

Access tokens are JWTs (PyJWT) signed with a single HMAC algorithm.
Refresh tokens are opaque random strings; only their SHA-256 digest is
persisted by the refresh token store.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import jwt

from utils.exceptions import InvalidTokenError
from utils.security import generate_secure_token, hash_token

logger = logging.getLogger(__name__)

HMAC_ALGORITHMS = ("HS256", "HS384", "HS512")
ACCESS_TOKEN_TYPE = "access"


@dataclass(frozen=True)
class TokenClaims:
    user_id: str
    email: str
    issued_at: int
    expires_at: int


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "expiresIn": self.expires_in,
            "tokenType": "Bearer",
        }


def _check_algorithm(algorithm: str) -> str:
    if algorithm not in HMAC_ALGORITHMS:
        raise ValueError(f"Unsupported signing algorithm {algorithm!r}; expected one of {HMAC_ALGORITHMS}")
    return algorithm


class TokenIssuer:
    """Mints access tokens and, through the refresh token store, refresh tokens."""

    def __init__(
        self,
        secret: str,
        store=None,
        *,
        algorithm: str = "HS256",
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
        issuer: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        if not secret:
            raise ValueError("A signing secret is required")
        self._secret = secret
        self.store = store
        self.algorithm = _check_algorithm(algorithm)
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.issuer = issuer
        self._clock = clock

    @property
    def expires_in(self) -> int:
        return int(self.access_ttl.total_seconds())

    def issue_access_token(self, user_id: str, email: str, issued_at: Optional[int] = None) -> str:
        iat = int(self._clock()) if issued_at is None else int(issued_at)
        payload = {
            "sub": str(user_id),
            "email": email,
            "iat": iat,
            "exp": iat + self.expires_in,
            "type": ACCESS_TOKEN_TYPE,
        }
        if self.issuer:
            payload["iss"] = self.issuer
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def now(self) -> datetime:
        """Naive UTC reading of the issuer clock."""
        return datetime.fromtimestamp(self._clock(), timezone.utc).replace(tzinfo=None)

    def new_refresh_secret(self, now: Optional[datetime] = None) -> tuple[str, str, datetime]:
        """Return (plaintext, digest, expires_at) for a fresh refresh token."""
        token = generate_secure_token()
        expires_at = (now or self.now()) + self.refresh_ttl
        return token, hash_token(token), expires_at

    def issue_pair(
        self, user_id: str, email: str, user_agent: Optional[str] = None, ip_address: Optional[str] = None
    ) -> TokenPair:
        """
        Mint an access token and a refresh token for a verified identity and
        persist the refresh token digest. Any failure propagates.
        """
        if self.store is None:
            raise RuntimeError("TokenIssuer has no refresh token store")
        access_token = self.issue_access_token(user_id, email)
        refresh_token, token_hash, expires_at = self.new_refresh_secret()
        self.store.create(
            user_id=str(user_id),
            token_hash=token_hash,
            expires_at=expires_at,
            user_agent=user_agent,
            ip_address=ip_address,
        )
        logger.info("[SECURITY] REFRESH_TOKEN_CREATED | userId=%s | ip=%s", user_id, ip_address)
        return TokenPair(access_token=access_token, refresh_token=refresh_token, expires_in=self.expires_in)


class TokenValidator:
    """
    Stateless access token validation.
    Every failure raises InvalidTokenError; the reason is meant for logs, callers
    must answer with one opaque message whatever the reason was.
    """

    def __init__(
        self,
        secret: str,
        *,
        algorithm: str = "HS256",
        issuer: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        if not secret:
            raise ValueError("A signing secret is required")
        self._secret = secret
        self.algorithm = _check_algorithm(algorithm)
        self.issuer = issuer
        self._clock = clock

    def validate(self, token: str) -> TokenClaims:
        if not token:
            raise InvalidTokenError("empty")

        # 1. algorithm pinning, before any key is used
        try:
            header = jwt.get_unverified_header(token)
        except jwt.InvalidTokenError:
            raise InvalidTokenError("malformed")
        if header.get("alg") != self.algorithm:
            raise InvalidTokenError("unexpected_algorithm")

        # 2. signature (expiry is checked below against the injected clock)
        try:
            decoded = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                options={"verify_exp": False, "verify_iat": False, "require": ["sub", "exp", "iat"]},
            )
        except jwt.InvalidTokenError as exc:
            raise InvalidTokenError(f"bad_token:{exc.__class__.__name__}")

        if decoded.get("type") != ACCESS_TOKEN_TYPE:
            raise InvalidTokenError("wrong_type")

        # 3. expiry: rejected at or after exp
        try:
            exp = int(decoded["exp"])
            iat = int(decoded["iat"])
        except (TypeError, ValueError):
            raise InvalidTokenError("bad_claims")
        if self._clock() >= exp:
            raise InvalidTokenError("expired")

        return TokenClaims(
            user_id=str(decoded["sub"]),
            email=decoded.get("email") or "",
            issued_at=iat,
            expires_at=exp,
        )
