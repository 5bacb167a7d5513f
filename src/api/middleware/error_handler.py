"""Global error handling middleware for consistent error responses."""

import logging
import traceback
from typing import Any, Callable

from fastapi import HTTPException, Request, Response, status
from fastapi.responses import JSONResponse

from src.core.errors import ErrorKind, OrderEngineError
from src.schemas.common import ErrorResponse

logger = logging.getLogger(__name__)

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.EXTERNAL_PROVIDER: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.PERSISTENCE: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
}


def create_error_response(
    error_type: str,
    message: str,
    status_code: int,
    details: list[dict[str, Any]] | None = None,
    request_id: str | None = None,
) -> JSONResponse:
    """Create a standardized JSON error response.

    Args:
        error_type: Error category for client handling.
        message: Human-readable error description.
        status_code: HTTP status code.
        details: Optional error details.
        request_id: Optional request ID for tracing.

    Returns:
        JSONResponse: Formatted error response.
    """
    error_response = ErrorResponse.from_exception(
        error_type=error_type,
        message=message,
        details=details,
        request_id=request_id,
    )
    return JSONResponse(
        status_code=status_code,
        content=error_response.model_dump(mode="json", exclude_none=True),
    )


def response_for_engine_error(error: OrderEngineError, request_id: str | None = None) -> JSONResponse:
    """Map an engine error to its HTTP response by kind."""
    status_code = STATUS_BY_KIND.get(error.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    # Provider and persistence internals are only logged.
    if error.kind == ErrorKind.EXTERNAL_PROVIDER:
        message = "Payment provider unavailable"
    elif status_code >= 500:
        message = "Internal server error"
    else:
        message = error.message
    details = error.details if status_code < 500 else None
    return create_error_response(
        error_type=error.kind.value,
        message=message,
        status_code=status_code,
        details=details,
        request_id=request_id,
    )


async def error_handler_middleware(request: Request, call_next: Callable[[Request], Any]) -> Response:
    """Middleware to catch and format all exceptions.

    Ensures consistent error response format across the application.
    Logs full stack traces for debugging while returning safe messages to clients.

    Args:
        request: The incoming request.
        call_next: Next middleware or route handler.

    Returns:
        Response: Either the successful response or formatted error response.
    """
    request_id = request.headers.get("X-Request-ID")

    try:
        response = await call_next(request)
        return response

    except OrderEngineError as e:
        log = logger.error if STATUS_BY_KIND.get(e.kind, 500) >= 500 else logger.warning
        log(
            "Engine error: %s - %s",
            e.kind.value,
            e.message,
            extra={"request_id": request_id, "path": request.url.path},
        )
        return response_for_engine_error(e, request_id)

    except HTTPException as e:
        logger.warning(
            "HTTP exception: %s - %s",
            e.status_code,
            e.detail,
            extra={"request_id": request_id},
        )
        return create_error_response(
            error_type="http_error",
            message=str(e.detail),
            status_code=e.status_code,
            request_id=request_id,
        )

    except Exception as e:
        logger.error(
            "Unhandled exception: %s\n%s",
            str(e),
            traceback.format_exc(),
            extra={"request_id": request_id},
        )
        return create_error_response(
            error_type="internal_error",
            message="Internal server error",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            request_id=request_id,
        )


async def engine_error_handler(request: Request, exc: OrderEngineError) -> JSONResponse:
    """Exception handler registered on the app for errors raised inside route handlers."""
    request_id = request.headers.get("X-Request-ID")
    logger.warning(
        "Engine error: %s - %s",
        exc.kind.value,
        exc.message,
        extra={"request_id": request_id, "path": request.url.path},
    )
    return response_for_engine_error(exc, request_id)
