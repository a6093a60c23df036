"""FastAPI application creation and configuration.

This module creates and configures the FastAPI application instance.
It registers exception handlers, request-id middleware, and routes.

Identity:
- There is no global auth middleware: guests are first-class callers
- Each route resolves its Principal once through the IdentityResolver
- Token verification uses SupabaseJwksVerifier in every environment

Middleware Ordering:
- Middleware runs in reverse order of registration
- RequestIDMiddleware is added LAST so it runs FIRST (outermost)
- This ensures all responses (including JSON decode failures) get X-Request-ID

Client Lifecycle:
- httpx.AsyncClient (Gemini + media fetches) is created at startup, stored in app.state
- Redis (advisory quota cache) is optional; startup continues without it
- Both are closed gracefully at shutdown
"""

import json
from contextlib import asynccontextmanager

import httpx
import redis
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from fortunia.api.routes import create_api_router
from fortunia.auth.verifier import TokenVerifier
from fortunia.config import get_settings
from fortunia.container import Services, build_services
from fortunia.errors import ApiError, ApiErrorCode
from fortunia.logging import configure_logging, get_logger
from fortunia.middleware.request_id import RequestIDMiddleware
from fortunia.responses import (
    api_error_handler,
    error_response,
    http_exception_handler,
    unhandled_exception_handler,
)

# Configure structured logging at import time
configure_logging()

logger = get_logger(__name__)


def create_redis_client(redis_url: str | None) -> redis.Redis | None:
    """Connect to Redis, or return None when unset or unreachable."""
    if not redis_url:
        return None
    try:
        client = redis.Redis.from_url(redis_url, decode_responses=True, socket_timeout=5)
        client.ping()
    except redis.RedisError as e:
        logger.warning("redis_client_init_failed", error=str(e))
        return None
    logger.info("redis_client_initialized")
    return client


def create_lifespan(services: Services | None, token_verifier: TokenVerifier | None):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Build shared clients and the service container; close them on shutdown."""
        if services is not None:
            app.state.services = services
            yield
            return

        settings = get_settings()
        http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(60.0, connect=10.0),
            limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
        )
        redis_client = create_redis_client(settings.redis_url)

        app.state.http_client = http_client
        app.state.services = build_services(
            settings,
            http_client=http_client,
            redis_client=redis_client,
            token_verifier=token_verifier,
        )
        logger.info(
            "services_initialized",
            env=settings.fortunia_env.value,
            model=settings.gemini_model,
            quota_cache_enabled=redis_client is not None,
        )

        yield

        await http_client.aclose()
        if redis_client is not None:
            try:
                redis_client.close()
            except redis.RedisError as e:
                logger.warning("redis_client_close_failed", error=str(e))
        logger.info("http_client_closed")

    return lifespan


def create_app(
    *,
    services: Services | None = None,
    token_verifier: TokenVerifier | None = None,
    log_requests: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        services: Prebuilt service container (for testing). When None the
            container is built at startup from settings.
        token_verifier: Optional custom token verifier (for testing).
        log_requests: Whether to log access entries for each request.

    Returns:
        Configured FastAPI application instance.
    """
    app = FastAPI(
        title="Fortunia API",
        description="Backend API for Fortunia - AI fortune readings",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=create_lifespan(services, token_verifier),
    )

    # Register exception handlers
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Handle request validation errors (including malformed JSON)."""
        return JSONResponse(
            status_code=400,
            content=error_response(ApiErrorCode.E_INVALID_REQUEST, "Invalid request body"),
        )

    @app.middleware("http")
    async def catch_json_decode_errors(request: Request, call_next):
        """Catch JSON decode errors before they reach route handlers."""
        if request.method in ("POST", "PUT", "PATCH"):
            content_type = request.headers.get("content-type", "")
            if "application/json" in content_type:
                body = await request.body()
                if body:
                    try:
                        json.loads(body)
                    except json.JSONDecodeError:
                        return JSONResponse(
                            status_code=400,
                            content=error_response(
                                ApiErrorCode.E_INVALID_REQUEST, "Malformed JSON body"
                            ),
                        )
        return await call_next(request)

    app.include_router(create_api_router())

    # Added last so it runs first
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)

    return app
