from __future__ import annotations

from typing import Tuple

from flask import Blueprint, abort, current_app, g, jsonify, request

from models.schemas.user import UserOutSchema
from utils.audit import log_security_event
from utils.decorators import admin_required
from utils.rate_limit import rate_limit

MAX_LIMIT = 100

bp = Blueprint("admin", __name__)

user_out_schema = UserOutSchema()


def parse_pagination() -> Tuple[int, int]:
    try:
        page = int(request.args.get("page", "1"))
        limit = int(request.args.get("limit", "20"))
        page = max(page, 1)
        limit = max(1, min(limit, MAX_LIMIT))
        return page, limit
    except ValueError:
        abort(400, description="page and limit must be integers")


@bp.get("/users")
@admin_required()
def list_users():
    """
    Admin-only: list users with their number of active sessions
    ---
    tags:
      - Admin
    security:
      - Bearer: []
    parameters:
      - in: query
        name: page
        type: integer
      - in: query
        name: limit
        type: integer
    responses:
      200: { description: OK }
      401: { description: Unauthorized }
      403: { description: Forbidden }
    """
    services = current_app.extensions["auth"]
    page, limit = parse_pagination()
    rows, total = services.credentials.list_users(page, limit)
    sessions = services.refresh_store.count_active_by_user([u.id for u in rows])

    data = []
    for user in rows:
        item = user_out_schema.dump(user)
        item["activeSessions"] = sessions.get(user.id, 0)
        data.append(item)
    return jsonify({"data": data, "meta": {"page": page, "limit": limit, "total": total}}), 200


@bp.delete("/users/<user_id>/sessions")
@admin_required()
@rate_limit("strict")
def revoke_user_sessions(user_id: str):
    """
    Admin-only: revoke every refresh token of a user
    ---
    tags:
      - Admin
    security:
      - Bearer: []
    parameters:
      -  in: path
         name: user_id
         type: string
         required: true
    responses:
      200: { description: Sessions revoked }
      403: { description: Forbidden }
      404: { description: User not found }
      429: { description: Too many requests }
    """
    services = current_app.extensions["auth"]
    user = services.credentials.get_user(user_id)
    if user is None:
        abort(404)

    revoked = services.refresh_store.revoke_all_for_user(user.id)
    log_security_event("ADMIN_SESSIONS_REVOKED", g.current_user_email)
    return jsonify({"message": "Sessions revoked", "userId": user.id, "tokensRevoked": revoked}), 200
