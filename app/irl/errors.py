from __future__ import annotations

from flask import Flask, g, jsonify
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

from app.irl.db import rollback_db_session


class ApiError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(ApiError):
    status_code = 400


class InvariantViolation(ApiError):
    status_code = 400


class Unauthorized(ApiError):
    status_code = 401


class Forbidden(ApiError):
    status_code = 403


class NotFound(ApiError):
    status_code = 404


class Conflict(ApiError):
    status_code = 409


def error_response(status_code: int, error: str, message: str | None = None):
    return jsonify({"success": False, "error": error, "message": message or error}), status_code


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ApiError)
    def _api_error(e: ApiError):
        rollback_db_session()
        return error_response(e.status_code, e.message)

    @app.errorhandler(IntegrityError)
    def _integrity_error(e: IntegrityError):
        rollback_db_session()
        app.logger.warning("Integrity error (request_id=%s): %s", getattr(g, "request_id", None), e.orig)
        return error_response(409, "Resource already exists with this unique field", "Unique constraint violation")

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):
        rollback_db_session()
        return error_response(e.code or 500, e.name, e.description)

    @app.errorhandler(Exception)
    def _unhandled(e: Exception):
        rollback_db_session()
        # Ensure stack trace shows in logs.
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return error_response(500, "Internal server error", "Something went wrong")
