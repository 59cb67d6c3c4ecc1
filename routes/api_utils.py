"""Error responses and error logging for the JSON API routes."""

from __future__ import annotations

import json
from functools import wraps
from typing import Any, Callable, ParamSpec, TypeVar

from flask import current_app, jsonify, request, session
from werkzeug.exceptions import HTTPException

from catalog.forms import ValidationError
from importer.csv_preview import CsvImportError
from lookups.service import LookupNotFoundError
from media.service import MediaError
from media.storage import StorageError

P = ParamSpec("P")
R = TypeVar("R")

# Form fields never copied into error logs.
_REDACTED_FIELDS = frozenset({"password"})


class APIError(Exception):
    """An error with the HTTP status and message returned to the client."""

    status_code: int = 500
    message: str = "Internal server error"

    def __init__(self, message: str | None = None, *, status_code: int | None = None) -> None:
        self.message = message or self.message
        super().__init__(self.message)
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message}


class BadRequestError(APIError):
    status_code = 400
    message = "invalid request"


class UnauthorizedError(APIError):
    status_code = 401
    message = "Authentication required."


class NotFoundError(APIError):
    status_code = 404
    message = "not found"


class ConflictError(APIError):
    status_code = 409
    message = "conflict"


# Service exceptions that reach a JSON route unhandled, by response status.
_SERVICE_ERRORS: tuple[tuple[type[Exception], int], ...] = (
    (ValidationError, 400),
    (CsvImportError, 400),
    (MediaError, 400),
    (LookupNotFoundError, 404),
)


def as_api_error(exc: Exception) -> APIError | None:
    """Return the :class:`APIError` answering ``exc``; ``None`` when unexpected."""

    if isinstance(exc, APIError):
        return exc
    if isinstance(exc, HTTPException):
        return APIError(exc.description or exc.name, status_code=exc.code or 500)
    for error_type, status_code in _SERVICE_ERRORS:
        if isinstance(exc, error_type):
            return APIError(str(exc), status_code=status_code)
    if isinstance(exc, StorageError):
        return APIError("storage unavailable", status_code=503)
    return None


def _request_context() -> dict[str, Any]:
    context: dict[str, Any] = {
        "method": request.method,
        "route": request.path,
        "endpoint": request.endpoint,
        "user": session.get("user_id") or "anonymous",
    }
    if request.view_args:
        context["view_args"] = dict(request.view_args)
    if request.args:
        context["args"] = request.args.to_dict(flat=False)
    if request.form:
        context["form"] = {
            key: values
            for key, values in request.form.to_dict(flat=False).items()
            if key not in _REDACTED_FIELDS
        }
    if request.files:
        context["files"] = [upload.filename for upload in request.files.values()]
    payload = request.get_json(silent=True)
    if payload is not None:
        context["json"] = payload
    return context


def _log_api_error(exc: Exception, status_code: int, *, expected: bool) -> None:
    context = _request_context()
    context["status_code"] = status_code
    details = json.dumps(context, ensure_ascii=False, default=str)
    if not expected:
        current_app.logger.exception("Unhandled API error: %s | context=%s", exc, details)
    elif status_code >= 500:
        current_app.logger.error(
            "API error (%s): %s | context=%s", status_code, exc, details, exc_info=exc
        )
    else:
        current_app.logger.warning("API error (%s): %s | context=%s", status_code, exc, details)


def handle_api_errors(func: Callable[P, R]) -> Callable[P, R]:
    """Answer errors raised by ``func`` with ``{"error": message}`` JSON."""

    @wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs):  # type: ignore[misc]
        try:
            return func(*args, **kwargs)
        except Exception as exc:
            api_error = as_api_error(exc)
            if api_error is None:
                _log_api_error(exc, 500, expected=False)
                api_error = APIError()
            else:
                _log_api_error(exc, api_error.status_code, expected=True)
            return jsonify(api_error.to_dict()), api_error.status_code

    return wrapper


__all__ = [
    "APIError",
    "BadRequestError",
    "ConflictError",
    "NotFoundError",
    "UnauthorizedError",
    "as_api_error",
    "handle_api_errors",
]
