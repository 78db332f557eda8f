"""JSON error handlers for the application."""
from __future__ import annotations
import logging

from flask import g, jsonify, request
from werkzeug.exceptions import HTTPException

from identity_sync.core.exceptions import (
    AccountNotFoundError,
    InvalidAccountStateError,
    ProvisioningFailedError,
    ValidationError,
)
from identity_sync.core.keycloak import (
    IdentityProviderError,
    RoleNotFoundError,
    UserAlreadyExistsError,
    UserNotFoundError,
)

logger = logging.getLogger(__name__)

# Order matters: first match wins.
ERROR_STATUS = (
    (ValidationError, 400, "Bad Request"),
    (RoleNotFoundError, 400, "Invalid Role"),
    (UserNotFoundError, 404, "Not Found"),
    (AccountNotFoundError, 404, "Not Found"),
    (UserAlreadyExistsError, 409, "Conflict"),
    (InvalidAccountStateError, 409, "Conflict"),
    (ProvisioningFailedError, 502, "Provisioning Failed"),
    (IdentityProviderError, 502, "Identity Provider Error"),
)


def error_response(status: int, error: str, message: str):
    body = {
        "error": error,
        "message": message,
        "path": request.path,
        "correlation_id": g.get("correlation_id"),
    }
    return jsonify(body), status


def status_for(exc: Exception) -> tuple[int, str]:
    for exc_type, status, label in ERROR_STATUS:
        if isinstance(exc, exc_type):
            return status, label
    return 500, "Internal Server Error"


def register_error_handlers(app):
    """Register error handlers with the Flask app."""

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        return error_response(error.code or 500, error.name, error.description or error.name)

    @app.errorhandler(Exception)
    def handle_exception(error: Exception):
        status, label = status_for(error)
        if status >= 500:
            if status == 500:
                logger.error("Unhandled exception on %s: %s", request.path, error, exc_info=True)
                return error_response(500, label, "An unexpected error occurred")
            logger.error("%s on %s: %s", label, request.path, error)
        else:
            logger.info("%s on %s: %s", label, request.path, error)
        return error_response(status, label, str(error))
