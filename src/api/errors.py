"""
Error taxonomy shared by the services and the HTTP layer.

Services raise these; `register_exception_handlers` turns them into the
`{"error": ...}` envelope with the matching status code.
"""

import logging
from typing import Dict, Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base class for errors that map onto an HTTP status."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AppError):
    """Missing or invalid request fields."""
    status_code = 400


class NotFoundError(AppError):
    """Lookup by id returned no row."""
    status_code = 404


class ConflictError(AppError):
    """Unique constraint violation."""
    status_code = 409


class UpstreamError(AppError):
    """Completion endpoint failure or unusable model reply."""
    status_code = 500


class StoreError(AppError):
    """Unexpected database failure. The message is never sent to clients."""
    status_code = 500
    public_message = "Database operation failed"


def require_fields(fields: Dict[str, Any]) -> None:
    """Raise ValidationError naming every field whose value is empty."""
    missing = [name for name, value in fields.items() if value is None or value == ""]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


async def _app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if isinstance(exc, StoreError):
        logger.error(f"Store error on {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"error": exc.public_message})
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        if loc:
            fields.append(".".join(loc))
    detail = f"Invalid request fields: {', '.join(fields)}" if fields else "Invalid request body"
    return JSONResponse(status_code=400, content={"error": detail})


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, _app_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
