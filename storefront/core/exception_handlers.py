"""Global exception handlers for consistent error responses.

Every error leaves the API in the same envelope::

    {"error": {"code": ..., "message": ..., "request_id": ..., "details": ...}}

- AppError subclasses map to a status through ``STATUS_BY_ERROR`` (400 by default)
- FastAPI request validation failures (bad query params/body) → 422
- Anything else → generic 500 with no internal detail

Rate limit denials never reach these handlers: the throttle wrapper builds
its own 429 response.
"""

import logging

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from storefront.core.errors import AppError, NotFoundAppError, ValidationAppError
from storefront.core.logging import get_request_id

logger = logging.getLogger(__name__)

STATUS_BY_ERROR: dict[type[AppError], int] = {
    NotFoundAppError: status.HTTP_404_NOT_FOUND,
    ValidationAppError: status.HTTP_400_BAD_REQUEST,
}


def _status_for(exc: AppError) -> int:
    for error_type, status_code in STATUS_BY_ERROR.items():
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_400_BAD_REQUEST


def _error_response(status_code: int, code: str, message: str, details=None) -> JSONResponse:
    error_content = {
        "code": code,
        "message": message,
        "request_id": get_request_id(),
    }
    if details:
        error_content["details"] = details
    return JSONResponse(status_code=status_code, content={"error": error_content})


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors.

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with the mapped status code and error details.
    """
    status_code = _status_for(exc)

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_path": request.url.path,
        },
    )
    return _error_response(status_code, exc.code, exc.message, exc.details)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report invalid query/path/body parameters in the common envelope."""
    fields = [".".join(str(part) for part in err.get("loc", ())) for err in exc.errors()]
    logger.info(
        "request_validation_failed",
        extra={"request_path": request.url.path, "fields": fields},
    )
    return _error_response(
        422,
        "invalid_request",
        "Request parameters failed validation",
        {"fields": fields},
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors.

    The exception type and message are logged; the client only gets a generic
    message.
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
        },
    )
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "internal_server_error",
        "An unexpected error occurred. Please try again later.",
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with FastAPI app.

    Args:
        app: FastAPI application instance.
    """
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(RequestValidationError)(request_validation_handler)
    app.exception_handler(Exception)(general_exception_handler)
