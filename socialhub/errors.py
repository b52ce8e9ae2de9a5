"""
Centralized error handling.

Services raise AppError subclasses; the handlers registered here turn them
into the uniform {"success": false, "message": ...} body so routes stay thin.
Anything unexpected is logged and reported as a generic 500 without leaking
internals.
"""
from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# User-facing messages
# ---------------------------------------------------------------------------

MSG_NOT_AUTHENTICATED = "User is not authenticated"
MSG_NO_PERMISSION = "You don't have permission to perform this action"
MSG_NOT_FOUND = "Not found"
MSG_MISSING_FIELDS = "Missing required fields"
MSG_UPSTREAM = "Upstream service failed"
MSG_CONFLICT = "Conflicting update, please retry"
MSG_INTERNAL_ERROR = "Internal server error"


class AppError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = MSG_INTERNAL_ERROR

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = MSG_NOT_FOUND


class Unauthorized(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = MSG_NOT_AUTHENTICATED


class Forbidden(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = MSG_NO_PERMISSION


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = MSG_MISSING_FIELDS


class UpstreamFailure(AppError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = MSG_UPSTREAM


class Conflict(AppError):
    status_code = status.HTTP_409_CONFLICT
    default_message = MSG_CONFLICT


def _failure(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message, **extra},
    )


async def _app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        # One message for every identity failure
        return _failure(exc.status_code, MSG_NOT_AUTHENTICATED)
    return _failure(exc.status_code, exc.message)


async def _validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return _failure(
        ValidationError.status_code,
        MSG_MISSING_FIELDS,
        errors=jsonable_encoder(exc.errors(), exclude={"ctx", "input"}),
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _failure(status.HTTP_500_INTERNAL_SERVER_ERROR, MSG_INTERNAL_ERROR)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, _app_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
