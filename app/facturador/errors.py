"""
Error types and the JSON envelope every handler returns.

Success: {"success": true, ...payload}
Failure: {"success": false, "message": str, "code": str, "errors": [...]?}
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, NoReturn

from flask import Flask, g, jsonify
from werkzeug.exceptions import HTTPException


class AppError(Exception):
    status = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, *, errors: list[str] | None = None, status: int | None = None, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.errors = errors
        if status is not None:
            self.status = status
        if code is not None:
            self.code = code


class ValidationError(AppError):
    status = 400
    code = "VALIDATION_ERROR"


class BadRequestError(AppError):
    status = 400
    code = "BAD_REQUEST"


class UnauthorizedError(AppError):
    status = 401
    code = "UNAUTHORIZED"


class ForbiddenError(AppError):
    status = 403
    code = "FORBIDDEN"


class NotFoundError(AppError):
    status = 404
    code = "NOT_FOUND"


class ConflictError(AppError):
    status = 409
    code = "CONFLICT"


class RateLimitedError(AppError):
    status = 429
    code = "RATE_LIMITED"


class ServiceUnavailableError(AppError):
    status = 503
    code = "SERVICE_UNAVAILABLE"


def ok(http_status: int = 200, /, **payload: Any):
    body: dict[str, Any] = {"success": True}
    body.update(payload)
    return jsonify(body), http_status


def created(**payload: Any):
    return ok(201, **payload)


def error_response(message: str, *, status: int, code: str, errors: list[str] | None = None):
    body: dict[str, Any] = {"success": False, "message": message, "code": code}
    if errors:
        body["errors"] = errors
    return jsonify(body), status


def ensure_valid(errors: list[str], message: str = "Datos inválidos") -> None:
    if errors:
        raise ValidationError(message, errors=errors)


def raise_for_business_error(
    exc: ValueError,
    *,
    conflict_markers: Iterable[str] = (),
    not_found_markers: Iterable[str] = ("no existe", "no encontrad"),
) -> NoReturn:
    """Translate a service ValueError into the matching AppError by message content."""
    message = str(exc) or "Solicitud inválida"
    lowered = message.lower()
    if any(marker.lower() in lowered for marker in conflict_markers):
        raise ConflictError(message) from exc
    if any(marker.lower() in lowered for marker in not_found_markers):
        raise NotFoundError(message) from exc
    raise BadRequestError(message) from exc


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(AppError)
    def _app_error(e: AppError):  # type: ignore[no-redef]
        if e.status == 403:
            app.logger.warning(
                "Forbidden: missing_permission=%s request_id=%s",
                getattr(g, "missing_permission", None),
                getattr(g, "request_id", None),
            )
        return error_response(e.message, status=e.status, code=e.code, errors=e.errors)

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return error_response("Recurso no encontrado", status=404, code="NOT_FOUND")

    @app.errorhandler(405)
    def _err_405(e):  # type: ignore[no-redef]
        return error_response("Método no permitido", status=405, code="BAD_REQUEST")

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):  # type: ignore[no-redef]
        return error_response(e.description or e.name, status=e.code or 500, code="BAD_REQUEST" if (e.code or 500) < 500 else "INTERNAL_ERROR")

    @app.errorhandler(Exception)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return error_response("Error interno del servidor", status=500, code="INTERNAL_ERROR")
