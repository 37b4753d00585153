"""
Authentication blueprint:
- POST /auth/register
- POST /auth/login
- POST /auth/refresh
- POST /auth/logout
- POST /auth/logout-all
- GET  /auth/me
- POST /auth/forgot-password
- POST /auth/reset-password

Credential paths answer with one opaque message whatever went wrong; the
precise reason only goes to the security log.
"""
from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from models.schemas.auth import (
    ForgotPasswordSchema,
    LogoutRequestSchema,
    RefreshRequestSchema,
    ResetPasswordSchema,
)
from models.schemas.user import UserCreateSchema, UserLoginSchema, UserOutSchema
from utils.audit import client_ip, log_security_event, user_agent
from utils.decorators import jwt_required
from utils.exceptions import (
    InvalidCredentials,
    InvalidResetToken,
    InvalidTokenError,
    ReuseDetected,
    Unauthorized,
)
from utils.rate_limit import rate_limit

bp = Blueprint("auth", __name__)

user_create_schema = UserCreateSchema()
user_login_schema = UserLoginSchema()
user_out_schema = UserOutSchema()
refresh_schema = RefreshRequestSchema()
logout_schema = LogoutRequestSchema()
forgot_password_schema = ForgotPasswordSchema()
reset_password_schema = ResetPasswordSchema()

FORGOT_PASSWORD_MESSAGE = "If an account exists for that email, a password reset link has been sent."


def _services():
    return current_app.extensions["auth"]


def _session_response(user, status: int = 200):
    pair = _services().issuer.issue_pair(user.id, user.email, user_agent(), client_ip())
    body = pair.to_dict()
    body["user"] = user_out_schema.dump(user)
    return jsonify(body), status


@bp.post("/register")
@rate_limit("auth")
def register():
    """
    Register a new user and open a session.
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      - in: body
        name: body
        schema:
          type: object
          required: [name, email, password]
          properties:
            name: { type: string }
            email: { type: string }
            password: { type: string, minLength: 8, maxLength: 128 }
    responses:
      201:
        description: Created (returns tokens and user)
      400:
        description: Validation error
      409:
        description: Email already registered
      429:
        description: Too many attempts
    """
    payload = request.get_json(silent=True) or {}
    data = user_create_schema.load(payload)

    user = _services().credentials.register(data["email"], data["password"], data["name"])
    log_security_event("REGISTER", user.email)
    return _session_response(user, 201)


@bp.post("/login")
@rate_limit("auth")
def login():
    """
    Login: return access and refresh tokens
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      -  in: body
         name: body
         schema:
           type: object
           properties:
             email: { type: string }
             password: { type: string }
    responses:
      200:
        description: OK (returns tokens and user)
      401:
        description: Invalid email or password
      429:
        description: Too many attempts
    """
    payload = request.get_json(silent=True) or {}
    data = user_login_schema.load(payload)

    user = _services().credentials.verify(data["email"], data["password"])
    if user is None:
        log_security_event("LOGIN", data["email"], result="failure")
        raise InvalidCredentials()

    log_security_event("LOGIN", user.email)
    return _session_response(user)


@bp.post("/refresh")
@rate_limit("auth")
def refresh():
    """
    Exchange a refresh token for a new token pair. The presented token is retired.
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      -  in: body
         name: body
         schema:
           type: object
           properties:
             refreshToken: { type: string }
    responses:
      200:
        description: OK (returns a new token pair)
      401:
        description: Invalid, expired or reused refresh token
    """
    payload = request.get_json(silent=True) or {}
    data = refresh_schema.load(payload)

    try:
        pair = _services().rotator.rotate(data["refresh_token"], user_agent(), client_ip())
    except ReuseDetected:
        log_security_event("REFRESH", result="reuse_detected")
        raise Unauthorized()
    except InvalidTokenError as exc:
        log_security_event("REFRESH", result=exc.reason)
        raise Unauthorized()

    log_security_event("REFRESH")
    return jsonify(pair.to_dict()), 200


@bp.post("/logout")
def logout():
    """
    Revoke one refresh token. Always succeeds.
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      -  in: body
         name: body
         schema:
           type: object
           properties:
             refreshToken: { type: string }
    responses:
      200:
        description: Logged out
    """
    payload = request.get_json(silent=True) or {}
    data = logout_schema.load(payload)

    if _services().rotator.logout(data.get("refresh_token")):
        log_security_event("LOGOUT")
    return jsonify({"message": "Logged out successfully"}), 200


@bp.post("/logout-all")
@jwt_required()
def logout_all():
    """
    Revoke every refresh token of the caller.
    ---
    tags:
      - Auth
    security:
      - Bearer: []
    responses:
      200:
        description: All sessions closed
      401:
        description: Unauthorized
    """
    revoked = _services().rotator.logout_all(g.current_user_id)
    log_security_event("LOGOUT_ALL", g.current_user_email)
    return jsonify({"message": "Logged out from all devices", "tokensRevoked": revoked}), 200


@bp.get("/me")
@jwt_required()
def me():
    """
    Get current user info.
    ---
    tags:
      - Auth
    security:
      - Bearer: []
    responses:
      200:
        description: OK
      401:
        description: Unauthorized
    """
    user = _services().credentials.get_user(g.current_user_id)
    if user is None:
        # token outlived its account
        raise Unauthorized()
    return jsonify({"data": user_out_schema.dump(user)}), 200


@bp.post("/forgot-password")
@rate_limit("auth")
def forgot_password():
    """
    Request a password reset link by email. The answer never reveals whether the account exists.
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      -  in: body
         name: body
         schema:
           type: object
           properties:
             email: { type: string }
    responses:
      200:
        description: Acknowledged
    """
    payload = request.get_json(silent=True) or {}
    data = forgot_password_schema.load(payload)

    _services().reset_manager.request_reset(data["email"])
    log_security_event("FORGOT_PASSWORD", data["email"])
    return jsonify({"message": FORGOT_PASSWORD_MESSAGE}), 200


@bp.post("/reset-password")
@rate_limit("auth")
def reset_password():
    """
    Set a new password with a reset token. Closes every session of the account.
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      -  in: body
         name: body
         schema:
           type: object
           properties:
             token: { type: string }
             newPassword: { type: string, minLength: 8, maxLength: 128 }
    responses:
      200:
        description: Password changed
      400:
        description: Invalid or expired token
    """
    payload = request.get_json(silent=True) or {}
    data = reset_password_schema.load(payload)

    try:
        user_id = _services().reset_manager.redeem_reset(data["token"], data["new_password"])
    except InvalidResetToken:
        log_security_event("RESET_PASSWORD", result="failure")
        raise

    user = _services().credentials.get_user(user_id)
    log_security_event("RESET_PASSWORD", user.email if user else "")
    return jsonify({"message": "Password has been reset successfully"}), 200
