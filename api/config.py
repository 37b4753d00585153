"""
Environment-aware configuration.
Values come from the environment (and .env via python-dotenv). The signing
secret is resolved once by the app factory and injected into the token
services; nothing reads it from here at request time.
"""
import logging
import os
import secrets
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()  # Read .env if present

logger = logging.getLogger(__name__)

INSECURE_DEFAULT_SECRETS = {"", "dev-secret-change-me", "default_secret_key_change_me", "changeme"}


def _bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _list(name: str, default: str = "") -> list:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


class BaseConfig:
    DEBUG = False
    TESTING = False
    APP_ENV = os.getenv("APP_ENV", "dev")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    # CORS: in dev we usually allow '*', in prod supply a comma-separated list in env
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
    # number of proxies in front of the app whose X-Forwarded-For can be trusted
    PROXY_FIX_X_FOR = int(os.getenv("PROXY_FIX_X_FOR", "0"))

    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///auth-api.db")

    # Token settings; JWT_ALGORITHM must be an HMAC algorithm
    JWT_SECRET = os.getenv("JWT_SECRET", "")
    JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
    JWT_ISSUER = os.getenv("JWT_ISSUER", "auth-api")
    ACCESS_TOKEN_EXPIRES = timedelta(seconds=int(os.getenv("ACCESS_TOKEN_EXPIRES_SECONDS", "900")))
    REFRESH_TOKEN_EXPIRES = timedelta(seconds=int(os.getenv("REFRESH_TOKEN_EXPIRES_SECONDS", str(7 * 24 * 3600))))
    RESET_TOKEN_EXPIRES = timedelta(seconds=int(os.getenv("RESET_TOKEN_EXPIRES_SECONDS", "3600")))

    # Admin gate allow-list
    ADMIN_EMAILS = _list("ADMIN_EMAILS")

    # Rate limiting; empty storage URL keeps counters in process
    RATE_LIMIT_ENABLED = _bool("RATE_LIMIT_ENABLED", "true")
    RATE_LIMIT_STORAGE_URL = os.getenv("RATE_LIMIT_STORAGE_URL", "")
    # optional "max/window_seconds" overrides, e.g. RATE_LIMIT_AUTH=20/60
    RATE_LIMIT_STRICT = os.getenv("RATE_LIMIT_STRICT", "")
    RATE_LIMIT_MODERATE = os.getenv("RATE_LIMIT_MODERATE", "")
    RATE_LIMIT_HEAVY = os.getenv("RATE_LIMIT_HEAVY", "")
    RATE_LIMIT_AUTH = os.getenv("RATE_LIMIT_AUTH", "")
    RATE_LIMIT_GLOBAL = os.getenv("RATE_LIMIT_GLOBAL", "")

    # Password reset delivery
    FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
    SMTP_HOST = os.getenv("SMTP_HOST", "")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USER = os.getenv("SMTP_USER", "")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
    SMTP_USE_TLS = _bool("SMTP_USE_TLS", "true")
    MAIL_FROM = os.getenv("MAIL_FROM", "")


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    # In dev, propagate exceptions so our error handler has full context
    PROPAGATE_EXCEPTIONS = True
    LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG")


class TestingConfig(BaseConfig):
    TESTING = True
    DATABASE_URL = "sqlite:///:memory:"
    JWT_SECRET = "test-secret-key-with-at-least-32-bytes!"
    ADMIN_EMAILS = ["admin@example.com"]
    RATE_LIMIT_STORAGE_URL = ""
    SMTP_HOST = ""
    LOG_LEVEL = "WARNING"


class ProductionConfig(BaseConfig):
    DEBUG = False


def get_config(name: str | None):
    """
    Select config class.
    - If name is provided, choose by name.
    - Else choose based on APP_ENV (dev/test/prod).
    """
    env = (name or os.getenv("APP_ENV", "dev")).lower()
    if env in ["prod", "production"]:
        return ProductionConfig
    if env in ["test", "testing"]:
        return TestingConfig
    return DevelopmentConfig


def resolve_jwt_secret(configured: str | None) -> str:
    """
    Return the configured secret, or a random per-process one when it is unset
    or a known placeholder. Tokens signed with a random secret die with the process.
    """
    if configured and configured not in INSECURE_DEFAULT_SECRETS:
        logger.info("[SECURITY] JWT_SECRET loaded from configuration")
        return configured
    if configured:
        logger.warning("[SECURITY WARNING] Detected insecure default JWT_SECRET")
    logger.warning(
        "[SECURITY WARNING] JWT_SECRET not set; generated a random secret for this process. "
        "All tokens will be invalidated on restart. Set JWT_SECRET for production!"
    )
    return secrets.token_urlsafe(32)
