import logging

from flask import jsonify
from pydantic import ValidationError
from werkzeug.exceptions import HTTPException

from .db import integrity_errors, is_unique_violation

logger = logging.getLogger(__name__)


class ApiError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message, details=None, **extra):
        super().__init__(message)
        self.message = message
        self.details = details
        self.extra = extra

    def to_dict(self):
        body = {"error": self.message, "code": self.code}
        if self.details is not None:
            body["details"] = self.details
        body.update(self.extra)
        return body


class UnauthorizedError(ApiError):
    status_code = 401
    code = "UNAUTHORIZED"

    def __init__(self, message="Unauthorized", **kwargs):
        super().__init__(message, **kwargs)


class ForbiddenError(ApiError):
    status_code = 403
    code = "FORBIDDEN"

    def __init__(self, message="Forbidden", **kwargs):
        super().__init__(message, **kwargs)


class NotFoundError(ApiError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource="Resource", **kwargs):
        super().__init__(f"{resource} not found", **kwargs)


class BadRequestError(ApiError):
    status_code = 400
    code = "BAD_REQUEST"


class ValidationFailedError(ApiError):
    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, details, message="Validation failed"):
        super().__init__(message, details=details)


class ConflictError(ApiError):
    status_code = 409
    code = "CONFLICT"


class UpstreamError(ApiError):
    status_code = 502
    code = "UPSTREAM_ERROR"


class ServiceUnavailableError(ApiError):
    status_code = 503
    code = "SERVICE_UNAVAILABLE"


def flatten_validation_error(exc):
    """Collapse a pydantic error into form-level and per-field messages."""
    form_errors = []
    field_errors = {}
    for error in exc.errors():
        message = error.get("msg", "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        loc = [str(part) for part in error.get("loc", ()) if part != "__root__"]
        if not loc:
            form_errors.append(message)
            continue
        field_errors.setdefault(loc[0], []).append(message)
    return {"formErrors": form_errors, "fieldErrors": field_errors}


def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def handle_api_error(exc):
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(ValidationError)
    def handle_validation_error(exc):
        body = ValidationFailedError(flatten_validation_error(exc)).to_dict()
        return jsonify(body), 400

    @app.errorhandler(HTTPException)
    def handle_http_exception(exc):
        return jsonify({"error": exc.description, "code": exc.name.upper().replace(" ", "_")}), exc.code

    for error_class in integrity_errors():
        app.register_error_handler(error_class, _handle_integrity_error)

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc):
        if isinstance(exc, HTTPException):
            return handle_http_exception(exc)
        logger.exception("Unhandled error: %s", exc)
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


def _handle_integrity_error(exc):
    if is_unique_violation(exc):
        return jsonify({"error": "A record with these values already exists", "code": "CONFLICT"}), 409
    logger.error("Integrity error: %s", exc)
    return jsonify({"error": "Request conflicts with existing data", "code": "BAD_REQUEST"}), 400
