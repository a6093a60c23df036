"""API route definitions.

Uses a factory pattern to avoid import-time settings loading.
This allows tests to import modules without requiring all environment
variables to be configured upfront.
"""

from fastapi import APIRouter

from fortunia.api.routes.entitlements import router as entitlements_router
from fortunia.api.routes.health import router as health_router
from fortunia.api.routes.horoscopes import router as horoscopes_router
from fortunia.api.routes.internal_retention import router as internal_retention_router
from fortunia.api.routes.readings import router as readings_router
from fortunia.api.routes.share_cards import router as share_cards_router


def create_api_router() -> APIRouter:
    """Create and configure the API router.

    Returns:
        Configured APIRouter with all routes registered.
    """
    api_router = APIRouter()
    api_router.include_router(health_router, tags=["health"])
    api_router.include_router(readings_router, tags=["readings"])
    api_router.include_router(entitlements_router, tags=["entitlements"])
    api_router.include_router(share_cards_router, tags=["share-cards"])
    api_router.include_router(horoscopes_router, tags=["horoscopes"])
    api_router.include_router(internal_retention_router, tags=["internal"])
    return api_router


__all__ = ["create_api_router"]
