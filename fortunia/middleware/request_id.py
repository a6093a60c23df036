"""X-Request-ID correlation and access logging.

Mobile clients may send their own X-Request-ID so a support ticket can be
matched to server logs. A usable incoming value is kept (UUIDs are
lowercased); anything else is replaced by a fresh UUID4. The chosen ID is
echoed on every response, error envelopes included.

Registered last in create_app so it wraps every other middleware.
"""

import re
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from fortunia.logging import clear_request_context, get_logger, set_request_context

REQUEST_ID_HEADER = "X-Request-ID"

# Same alphabet as guest device ids
REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,128}$")

logger = get_logger(__name__)


def resolve_request_id(incoming: str | None) -> str:
    """Return the request ID to use for a request.

    Args:
        incoming: Raw X-Request-ID header value, if any.

    Returns:
        The incoming ID (lowercased if it is a UUID) when it is at most 128
        characters of [A-Za-z0-9._-], otherwise a new UUID4 string.
    """
    if incoming and REQUEST_ID_PATTERN.match(incoming):
        try:
            return str(uuid.UUID(incoming)) if len(incoming) == 36 else incoming
        except ValueError:
            return incoming
    return str(uuid.uuid4())


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Attach a request ID and write one access log entry per request."""

    def __init__(self, app, log_requests: bool = True):
        super().__init__(app)
        self.log_requests = log_requests

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start_time = time.monotonic()
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))

        request.state.request_id = request_id
        set_request_context(request_id, path=request.url.path, method=request.method)

        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id

            if self.log_requests:
                logger.info(
                    "request_completed",
                    status_code=response.status_code,
                    duration_ms=round((time.monotonic() - start_time) * 1000, 2),
                    principal_id=getattr(request.state, "principal_id", None),
                )
            return response
        except Exception:
            # Re-raised for unhandled_exception_handler
            logger.exception("request_failed")
            raise
        finally:
            clear_request_context()
