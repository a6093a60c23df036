"""FastAPI dependencies for route handlers.

Services come from the composition root stored on app.state.services.
"""

import hmac

from fastapi import Request

from fortunia.auth.identity import extract_bearer_token
from fortunia.container import Services
from fortunia.errors import ApiErrorCode, ForbiddenError
from fortunia.logging import get_logger

logger = get_logger(__name__)

INTERNAL_HEADER = "x-fortunia-internal"

__all__ = ["INTERNAL_HEADER", "get_bearer_token", "get_services", "require_internal_secret"]


def get_services(request: Request) -> Services:
    """Get the shared service container from app state."""
    return request.app.state.services


def get_bearer_token(request: Request) -> str | None:
    """Bearer token from the Authorization header, or None."""
    return extract_bearer_token(request.headers.get("authorization"))


def require_internal_secret(request: Request) -> None:
    """Guard operator endpoints with the X-Fortunia-Internal header.

    Enforced whenever a secret is configured (always in staging/prod).
    Uses a constant-time comparison.

    Raises:
        ForbiddenError(E_INTERNAL_ONLY): Header missing or wrong.
    """
    settings = get_services(request).settings
    secret = settings.fortunia_internal_secret
    if not secret and not settings.requires_internal_header:
        return

    header_value = request.headers.get(INTERNAL_HEADER)
    if not header_value:
        logger.warning("internal_header_missing", path=request.url.path)
        raise ForbiddenError(ApiErrorCode.E_INTERNAL_ONLY, "Internal access required")

    if not secret or not hmac.compare_digest(header_value.encode(), secret.encode()):
        logger.warning("internal_header_mismatch", path=request.url.path)
        raise ForbiddenError(ApiErrorCode.E_INTERNAL_ONLY, "Internal access required")
