"""
Error taxonomy for the auth subsystem.

Everything a client can see derives from AuthError and carries an HTTP status
plus a stable machine code; api/errors.py turns them into the JSON envelope.
InvalidTokenError and ReuseDetected are internal and never reach a response
verbatim: callers collapse them into Unauthorized.
"""
from __future__ import annotations

from typing import Optional


class AuthError(Exception):
    status = 400
    code = "BAD_REQUEST"
    message = "Bad request"

    def __init__(self, message: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.details = details


class Unauthorized(AuthError):
    status = 401
    code = "UNAUTHORIZED"
    message = "Invalid or expired token"


class InvalidCredentials(AuthError):
    status = 401
    code = "INVALID_CREDENTIALS"
    message = "Invalid email or password"


class Forbidden(AuthError):
    status = 403
    code = "FORBIDDEN"
    message = "Access restricted to administrators"


class EmailAlreadyRegistered(AuthError):
    status = 409
    code = "EMAIL_ALREADY_EXISTS"
    message = "Email already registered"


class InvalidInput(AuthError):
    status = 400
    code = "VALIDATION_ERROR"
    message = "Invalid input"


class InvalidResetToken(AuthError):
    status = 400
    code = "INVALID_TOKEN"
    message = "Invalid or expired token"


class RateLimited(AuthError):
    status = 429
    code = "RATE_LIMITED"
    message = "Too many requests. Try again later."

    def __init__(self, message: Optional[str] = None, retry_after: int = 1):
        super().__init__(message)
        self.retry_after = retry_after


class InvalidTokenError(Exception):
    """Token failed validation. The reason is for logs only."""

    def __init__(self, reason: str = "invalid"):
        super().__init__(reason)
        self.reason = reason


class ReuseDetected(InvalidTokenError):
    """A retired refresh token was presented again."""

    def __init__(self, user_id: str, revoked_count: int = 0):
        super().__init__("refresh_token_reuse")
        self.user_id = user_id
        self.revoked_count = revoked_count
