"""API error definitions.

All API errors are defined here with their corresponding HTTP status codes.
Domain failures raised below the API layer (quota, media, inference, storage)
live next to the services that raise them and are mapped onto these codes at
the orchestration or route boundary.
"""

from enum import Enum
from typing import Any


class ApiErrorCode(str, Enum):
    """Standardized error codes for the API.

    Format: E_CATEGORY_NAME
    """

    # Authentication errors (401)
    E_UNAUTHENTICATED = "E_UNAUTHENTICATED"

    # Authorization errors (403)
    E_FORBIDDEN = "E_FORBIDDEN"
    E_IDENTITY_MISMATCH = "E_IDENTITY_MISMATCH"
    E_INTERNAL_ONLY = "E_INTERNAL_ONLY"

    # Not found errors (404)
    E_NOT_FOUND = "E_NOT_FOUND"

    # Validation errors (400)
    E_INVALID_REQUEST = "E_INVALID_REQUEST"

    # Entitlement errors (429)
    E_QUOTA_EXHAUSTED = "E_QUOTA_EXHAUSTED"

    # Server errors (500); backend failures keep distinct codes
    E_MEDIA_FETCH_FAILED = "E_MEDIA_FETCH_FAILED"
    E_INFERENCE_FAILED = "E_INFERENCE_FAILED"
    E_AUTH_UNAVAILABLE = "E_AUTH_UNAVAILABLE"
    E_ENTITLEMENT_UNAVAILABLE = "E_ENTITLEMENT_UNAVAILABLE"
    E_PERSISTENCE_FAILED = "E_PERSISTENCE_FAILED"
    E_STORAGE_ERROR = "E_STORAGE_ERROR"
    E_INTERNAL = "E_INTERNAL"


# Error code to HTTP status mapping
ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    ApiErrorCode.E_UNAUTHENTICATED: 401,
    ApiErrorCode.E_FORBIDDEN: 403,
    ApiErrorCode.E_IDENTITY_MISMATCH: 403,
    ApiErrorCode.E_INTERNAL_ONLY: 403,
    ApiErrorCode.E_NOT_FOUND: 404,
    ApiErrorCode.E_INVALID_REQUEST: 400,
    ApiErrorCode.E_QUOTA_EXHAUSTED: 429,
    ApiErrorCode.E_MEDIA_FETCH_FAILED: 500,
    ApiErrorCode.E_INFERENCE_FAILED: 500,
    ApiErrorCode.E_AUTH_UNAVAILABLE: 500,
    ApiErrorCode.E_ENTITLEMENT_UNAVAILABLE: 500,
    ApiErrorCode.E_PERSISTENCE_FAILED: 500,
    ApiErrorCode.E_STORAGE_ERROR: 500,
    ApiErrorCode.E_INTERNAL: 500,
}


class ApiError(Exception):
    """Base exception for API errors.

    Attributes:
        code: The error code enum value
        message: Human-readable error message
        status_code: HTTP status code (derived from code)
        details: Extra top-level fields merged into the error body
    """

    def __init__(self, code: ApiErrorCode, message: str, details: dict[str, Any] | None = None):
        self.code = code
        self.message = message
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)
        self.details = details or {}
        super().__init__(message)


class UnauthenticatedError(ApiError):
    """Missing or invalid credentials."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_UNAUTHENTICATED, message: str = "Unauthorized"
    ):
        super().__init__(code, message)


class ForbiddenError(ApiError):
    """Authorization failure error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_FORBIDDEN, message: str = "Forbidden"):
        super().__init__(code, message)


class InvalidRequestError(ApiError):
    """Invalid request error."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_INVALID_REQUEST, message: str = "Invalid request"
    ):
        super().__init__(code, message)
