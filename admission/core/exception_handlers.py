"""Global exception handlers for consistent error responses.

Design:
- RateLimitExceededError -> 429 with the public rejection body and headers
- AppError subclasses -> appropriate HTTP status (400, 403, 503)
- Unexpected Exception -> generic 500 (safety net)
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from admission.core.errors import (
    AppError,
    AuthenticationAppError,
    RateLimitExceededError,
    StoreUnavailableError,
)
from admission.core.logging import get_request_id
from admission.core.rate_limit import build_rejection_response

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[AppError], int], ...] = (
    (AuthenticationAppError, 403),
    (StoreUnavailableError, 503),
)


async def rate_limit_exceeded_handler(
    request: Request, exc: RateLimitExceededError
) -> JSONResponse:
    """Render a denied admission check as HTTP 429.

    The body is the public rejection contract (``error``, ``message``,
    ``retryAfter``, ``resetAt``); quota headers and ``Retry-After`` are
    attached as well.
    """
    limiter = getattr(request.app.state, "rate_limiter", None)
    now_ms = limiter.now_ms() if limiter is not None else exc.decision.reset_at_ms
    return build_rejection_response(exc.decision, now_ms)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    Routes domain errors to HTTP status codes:
    - ValidationAppError -> 400 Bad Request
    - AuthenticationAppError -> 403 Forbidden
    - StoreUnavailableError -> 503 Service Unavailable

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code and error details.
    """
    status_code = next(
        (status for error_type, status in _STATUS_BY_ERROR if isinstance(exc, error_type)),
        400,
    )

    logger.warning(
        "http.app_error",
        extra={
            "error_code": exc.code,
            "error_msg": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_id": get_request_id(),
        },
    )

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }
    if exc.details:
        error_content["details"] = exc.details

    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs detailed information for debugging while returning a generic
    message, so no stack traces or internals reach the client.
    """
    logger.error(
        "http.unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with FastAPI app.

    Args:
        app: FastAPI application instance.
    """
    app.exception_handler(RateLimitExceededError)(rate_limit_exceeded_handler)
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
