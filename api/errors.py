from flask import jsonify, current_app
from werkzeug.exceptions import HTTPException
from marshmallow import ValidationError
from sqlalchemy.exc import SQLAlchemyError
import logging

from utils.exceptions import AuthError, InvalidInput, RateLimited

logger = logging.getLogger(__name__)


def error_response(error: str, message: str, status: int, details: dict | None = None):
    payload = {"error": error, "message": message, "status": status}
    if details:
        payload["details"] = details
    return jsonify(payload), status


def register_error_handlers(app):
    # Domain errors carry their own status and machine code
    @app.errorhandler(AuthError)
    def handle_auth_error(err: AuthError):
        response, status = error_response(err.code, err.message, err.status, details=err.details)
        if isinstance(err, RateLimited):
            response.headers["Retry-After"] = str(err.retry_after)
        if status == 401:
            response.headers["WWW-Authenticate"] = 'Bearer realm="api"'
        return response, status

    # Marshmallow validation errors map to 400 with field-level details
    @app.errorhandler(ValidationError)
    def handle_validation_error(err: ValidationError):
        if current_app and current_app.debug:
            logging.exception("Validation failed", exc_info=err)
        return handle_auth_error(InvalidInput(details=err.messages))

    # 404 Not Found
    @app.errorhandler(404)
    def not_found(e):
        return error_response("NOT_FOUND", "Resource not found", 404)

    # 405 Method Not Allowed
    @app.errorhandler(405)
    def method_not_allowed(e):
        return error_response("METHOD_NOT_ALLOWED", "Method not allowed", 405)

    # Werkzeug HTTPExceptions map to their status codes
    @app.errorhandler(HTTPException)
    def handle_http_exception(err: HTTPException):
        return error_response("BAD_REQUEST", err.description, err.code or 400)

    # Store failures are fatal for the request; never leak driver messages
    @app.errorhandler(SQLAlchemyError)
    def handle_db_error(err: SQLAlchemyError):
        logger.exception("Database error", exc_info=err)
        return error_response("INTERNAL_ERROR", "An unexpected error occurred", 500)

    # 500 Internal Error (catch-all)
    @app.errorhandler(Exception)
    def internal_error(err: Exception):
        logger.exception("Unhandled exception", exc_info=err)
        # In dev, include exception details to speed up debugging
        details = None
        if current_app and current_app.debug:
            details = {"type": err.__class__.__name__, "message": str(err)}
        return error_response("INTERNAL_ERROR", "An unexpected error occurred", 500, details=details)
