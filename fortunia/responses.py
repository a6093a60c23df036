"""API response envelope helpers and exception handlers.

All API responses carry a top-level success flag that mobile clients branch on:
- Success: { "success": true, ...payload fields... }
- Error: { "success": false, "error": "...", "code": "E_...", "request_id": "..." }

The request_id is included in error responses for debugging and support.
Internal exception text is never placed in "error".
"""

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from fortunia.errors import ApiError, ApiErrorCode
from fortunia.logging import get_logger, get_request_id

logger = get_logger(__name__)


def success_response(**payload: Any) -> dict[str, Any]:
    """Create a success response envelope.

    Args:
        **payload: Top-level response fields.

    Returns:
        Dict with "success": True followed by the payload fields.
    """
    return {"success": True, **payload}


def error_response(
    code: ApiErrorCode,
    message: str,
    request_id: str | None = None,
    **details: Any,
) -> dict[str, Any]:
    """Create an error response envelope.

    Args:
        code: The error code enum value.
        message: Human-readable error message.
        request_id: Optional request ID for correlation (auto-populated from context if None).
        **details: Extra top-level fields (e.g. processing_time).

    Returns:
        Dict with success=False, error message, code, and request_id.
    """
    if request_id is None:
        request_id = get_request_id()

    body: dict[str, Any] = {"success": False, "error": message, "code": code.value}
    if request_id:
        body["request_id"] = request_id
    body.update(details)
    return body


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    """Handle ApiError exceptions and return proper JSON response."""
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(exc.code, exc.message, **exc.details),
    )


async def http_exception_handler(request: Request, exc: Any) -> JSONResponse:
    """Handle Starlette HTTPException (404 on unknown routes, 405, ...)."""
    status_to_code = {
        400: ApiErrorCode.E_INVALID_REQUEST,
        401: ApiErrorCode.E_UNAUTHENTICATED,
        403: ApiErrorCode.E_FORBIDDEN,
        404: ApiErrorCode.E_NOT_FOUND,
        405: ApiErrorCode.E_INVALID_REQUEST,
        422: ApiErrorCode.E_INVALID_REQUEST,
    }
    code = status_to_code.get(exc.status_code, ApiErrorCode.E_INTERNAL)
    message = str(exc.detail) if exc.detail else "An error occurred"
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(code, message),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions and return 500 with E_INTERNAL.

    Logs the exception server-side but never leaks details to client.
    """
    logger.exception("unhandled_exception", error_type=type(exc).__name__)

    return JSONResponse(
        status_code=500,
        content=error_response(ApiErrorCode.E_INTERNAL, "Internal server error"),
    )
