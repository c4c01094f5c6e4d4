"""Error handling middleware."""

import structlog
from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.exceptions import AppException, TransientException

logger = structlog.get_logger(__name__)

# Seconds a client should wait before retrying after a transient failure
RETRY_AFTER_SECONDS = 5


def _error_body(request: Request, error: str, message, **extra) -> dict:
    return {"error": error, "message": message, "path": str(request.url), **extra}


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """
    Map booking errors onto HTTP responses.

    Validation, not-found and conflict errors keep their own status codes.
    Transient errors become 503 with a ``Retry-After`` hint.
    """
    headers = None
    if isinstance(exc, TransientException):
        headers = {"Retry-After": str(RETRY_AFTER_SECONDS)}
        logger.warning("transient_error", path=request.url.path, message=exc.message)
    else:
        logger.info(
            "request_rejected",
            path=request.url.path,
            error=exc.__class__.__name__,
            message=exc.message,
        )

    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, exc.__class__.__name__, exc.message),
        headers=headers,
    )


async def http_exception_handler(
    request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    """Handle HTTP exceptions raised by routing and dependencies."""
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, "HTTPException", exc.detail),
    )


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """
    Handle request body and query validation errors.

    Args:
        request: Request object
        exc: Validation exception

    Returns:
        JSON error response with validation details
    """
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_error_body(
            request,
            "ValidationError",
            "Request validation failed",
            details=exc.errors(),
        ),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log and hide unexpected exceptions."""
    logger.exception("unhandled_error", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(request, "InternalServerError", "An unexpected error occurred"),
    )
