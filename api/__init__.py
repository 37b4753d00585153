import logging
import uuid
from dataclasses import dataclass
from typing import Dict

from flask import Flask, g, request
from flasgger import Swagger
from flask_cors import CORS
from werkzeug.middleware.proxy_fix import ProxyFix

from .config import get_config, resolve_jwt_secret
from .errors import register_error_handlers
from models import storage  # DBStorage singleton (scoped_session)
from models.token_store import PasswordResetStore, RefreshTokenStore
from utils.credentials import CredentialStore
from utils.decorators import AdminPolicy
from utils.mailer import ResetMailer
from utils.password_reset import PasswordResetManager
from utils.rate_limit import RateLimitBudget, RateLimiter, build_backend, build_budgets, enforce
from utils.sessions import RefreshRotator
from utils.tokens import TokenIssuer, TokenValidator

# Minimal Swagger config: exposes /swagger.json and UI at /apidocs
SWAGGER_TEMPLATE = {
    "swagger": "2.0.0",
    "info": {
        "title": "Auth API",
        "version": "1.0.0",
        "description": "Account registration, login, refresh token rotation, password reset and admin session control.",
    },
    "basePath": "/",  # blueprints are mounted under /api/v1
    "schemes": ["http"],
    "securityDefinitions": {
        "Bearer": {
            "type": "apiKey",
            "name": "Authorization",
            "in": "header",
            "description": "Enter the token with the `Bearer ` prefix, e.g. \"Bearer abcde12345\"."
        }
    }
}

SWAGGER_CONFIG = {
    "headers": [],
    "specs": [
        {
            "endpoint": "apispec_1",
            "route": "/swagger.json",
            "rule_filter": lambda rule: True,   # include all endpoints
            "model_filter": lambda tag: True,   # include all models
        }
    ],
    "static_url_path": "/flasgger_static",
    "swagger_ui": True,
    "specs_route": "/apidocs/",
}

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


@dataclass
class AuthServices:
    """Everything the auth views need, built once per app from its config."""
    credentials: CredentialStore
    refresh_store: RefreshTokenStore
    issuer: TokenIssuer
    validator: TokenValidator
    rotator: RefreshRotator
    mailer: ResetMailer
    reset_manager: PasswordResetManager
    limiter: RateLimiter
    budgets: Dict[str, RateLimitBudget]
    admin_policy: AdminPolicy


def configure_logging(level: str) -> None:
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    root.setLevel(level)
    logging.getLogger("security").setLevel(level)


def build_services(config) -> AuthServices:
    secret = resolve_jwt_secret(config.get("JWT_SECRET"))
    algorithm = config.get("JWT_ALGORITHM", "HS256")
    issuer_name = config.get("JWT_ISSUER") or None

    credentials = CredentialStore(storage)
    refresh_store = RefreshTokenStore(storage)
    issuer = TokenIssuer(
        secret,
        refresh_store,
        algorithm=algorithm,
        access_ttl=config["ACCESS_TOKEN_EXPIRES"],
        refresh_ttl=config["REFRESH_TOKEN_EXPIRES"],
        issuer=issuer_name,
    )
    validator = TokenValidator(secret, algorithm=algorithm, issuer=issuer_name)
    mailer = ResetMailer.from_config(config)
    reset_manager = PasswordResetManager(
        PasswordResetStore(storage),
        credentials,
        refresh_store,
        mailer,
        ttl=config["RESET_TOKEN_EXPIRES"],
    )
    return AuthServices(
        credentials=credentials,
        refresh_store=refresh_store,
        issuer=issuer,
        validator=validator,
        rotator=RefreshRotator(refresh_store, issuer, credentials),
        mailer=mailer,
        reset_manager=reset_manager,
        limiter=RateLimiter(build_backend(config)),
        budgets=build_budgets(config),
        admin_policy=AdminPolicy(config.get("ADMIN_EMAILS") or ()),
    )


def create_app(config_name: str | None = None) -> Flask:
    """
    Application factory: creates and configures the Flask app.
    Each call builds its own token services, so tests get an isolated app.
    """
    app = Flask(__name__)

    # Load configuration (reads .env via get_config)
    app.config.from_object(get_config(config_name))
    configure_logging(app.config.get("LOG_LEVEL", "INFO"))

    # Only trust X-Forwarded-For when explicitly told how many proxies sit in front
    if app.config.get("PROXY_FIX_X_FOR"):
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=app.config["PROXY_FIX_X_FOR"])

    storage.configure(app.config["DATABASE_URL"])
    storage.reload()

    app.extensions["auth"] = build_services(app.config)

    # Cross-Origin Resource Sharing: enable for dev, configurable for prod
    origins = app.config.get("CORS_ORIGINS", "*")
    if origins != "*":
        origins = [o.strip() for o in origins.split(",") if o.strip()]
    CORS(app, resources={r"/*": {"origins": origins}}, expose_headers=["Retry-After", "X-Request-ID"])

    # Swagger UI and JSON
    Swagger(app, template=SWAGGER_TEMPLATE, config=SWAGGER_CONFIG)

    # Register global error handlers that return the uniform error envelope
    register_error_handlers(app)

    @app.before_request
    def assign_request_id():
        g.request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

    @app.before_request
    def global_rate_limit():
        if request.method == "OPTIONS":
            return None
        enforce("global")
        return None

    @app.after_request
    def add_request_id(response):
        response.headers["X-Request-ID"] = g.get("request_id", "")
        return response

    from .health import bp as health_bp
    from .auth import bp as auth_bp
    from .admin import bp as admin_bp

    app.register_blueprint(health_bp, url_prefix="/api/v1")
    app.register_blueprint(auth_bp, url_prefix="/api/v1/auth")
    app.register_blueprint(admin_bp, url_prefix="/api/v1/admin")

    # Ensure the DB session is removed at the end of each request/app context
    @app.teardown_appcontext
    def remove_session(exception=None):
        # calls scoped_session.remove(), preventing connection leaks
        storage.close()

    @app.route("/")
    def root():
        return {
            "message": "Welcome to Auth API",
            "docs": "/apidocs/",
            "health": "/api/v1/health",
        }, 200

    return app
