"""
Request gates.

Unauthenticated -> TokenPresented -> TokenValidated -> (AdminChecked) -> Admitted.
Any failing step raises Unauthorized (401) or Forbidden (403); the reason is
only written to the auth log. On success the validated identity is put on
flask.g for the view.
"""
from __future__ import annotations

import logging
from functools import wraps
from typing import Iterable, Optional

from flask import current_app, g, request

from utils.exceptions import Forbidden, InvalidTokenError, Unauthorized
from utils.tokens import TokenClaims, TokenValidator

logger = logging.getLogger("security")

BEARER_SCHEME = "Bearer"


def log_auth_event(event: str, reason: str) -> None:
    logger.warning(
        "[AUTH] %s | requestId=%s | ip=%s | path=%s | reason=%s",
        event, g.get("request_id", "unknown"), request.remote_addr, request.path, reason,
    )


def extract_bearer_token(header: Optional[str]) -> str:
    """
    Exactly "Bearer <token>": case-sensitive scheme, one space, no further spaces.
    Raises InvalidTokenError otherwise.
    """
    if not header:
        raise InvalidTokenError("missing_token")
    scheme, sep, token = header.partition(" ")
    if scheme != BEARER_SCHEME or not sep or not token or " " in token:
        raise InvalidTokenError("invalid_format")
    return token


class AdminPolicy:
    """
    Binary capability gate: an identity is an administrator when its email is
    on the configured allow-list. Comparison is case-insensitive.
    """

    def __init__(self, admin_emails: Iterable[str] = ()):
        self.admin_emails = frozenset(e.strip().lower() for e in admin_emails if e and e.strip())

    def is_admin(self, claims: TokenClaims) -> bool:
        return bool(claims.email) and claims.email.strip().lower() in self.admin_emails


def authenticate(validator: TokenValidator) -> TokenClaims:
    """Run the auth gate for the current request and attach the identity to g."""
    try:
        token = extract_bearer_token(request.headers.get("Authorization"))
        claims = validator.validate(token)
    except InvalidTokenError as exc:
        log_auth_event("UNAUTHORIZED", exc.reason)
        raise Unauthorized()

    g.current_identity = claims
    g.current_user_id = claims.user_id
    g.current_user_email = claims.email
    return claims


def jwt_required():
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            authenticate(current_app.extensions["auth"].validator)
            return fn(*args, **kwargs)

        return wrapper

    return decorator


def admin_required():
    """
    jwt_required plus the admin allow-list check. A valid token of any other
    identity is rejected with 403.
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            services = current_app.extensions["auth"]
            claims = authenticate(services.validator)
            if not services.admin_policy.is_admin(claims):
                log_auth_event("FORBIDDEN", "not_admin")
                raise Forbidden()
            return fn(*args, **kwargs)

        return wrapper

    return decorator
