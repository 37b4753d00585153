"""Security audit log: one line per authentication event."""
from __future__ import annotations

import logging

from flask import g, request

logger = logging.getLogger("security")


def client_ip() -> str:
    return request.remote_addr or "unknown"


def user_agent() -> str:
    return request.headers.get("User-Agent", "")


def log_security_event(event: str, email: str = "", result: str = "success") -> None:
    logger.info(
        "[SECURITY] %s | requestId=%s | email=%s | ip=%s | ua=%s | result=%s",
        event, g.get("request_id", "unknown"), email, client_ip(), user_agent(), result,
    )
