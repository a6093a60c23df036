"""LLM error classification and normalization.

Error classes:
- E_LLM_INVALID_KEY: Authentication failure (401/403)
- E_LLM_RATE_LIMIT: Rate limit exceeded (429)
- E_LLM_CONTEXT_TOO_LARGE: Input exceeds model limits
- E_LLM_TIMEOUT: Attempt timed out
- E_LLM_PROVIDER_DOWN: Provider unavailable (5xx, network error)
- E_MODEL_NOT_AVAILABLE: Model not found or disabled
- E_LLM_BAD_REQUEST: Other rejected request (4xx)
- E_LLM_MALFORMED_RESPONSE: 2xx response without usable text

Only RATE_LIMIT, TIMEOUT and PROVIDER_DOWN are retried.
"""

from enum import Enum

import httpx


class LLMErrorClass(str, Enum):
    """Normalized LLM error classifications."""

    INVALID_KEY = "E_LLM_INVALID_KEY"
    RATE_LIMIT = "E_LLM_RATE_LIMIT"
    CONTEXT_TOO_LARGE = "E_LLM_CONTEXT_TOO_LARGE"
    TIMEOUT = "E_LLM_TIMEOUT"
    PROVIDER_DOWN = "E_LLM_PROVIDER_DOWN"
    MODEL_NOT_AVAILABLE = "E_MODEL_NOT_AVAILABLE"
    BAD_REQUEST = "E_LLM_BAD_REQUEST"
    MALFORMED_RESPONSE = "E_LLM_MALFORMED_RESPONSE"


RETRYABLE_ERROR_CLASSES = frozenset(
    {LLMErrorClass.RATE_LIMIT, LLMErrorClass.TIMEOUT, LLMErrorClass.PROVIDER_DOWN}
)


class LLMError(Exception):
    """Exception for LLM-related errors.

    Attributes:
        error_class: The normalized error classification
        message: Human-readable error message
        provider: The provider that returned the error (if known)
        status_code: Upstream HTTP status (if any)
    """

    def __init__(
        self,
        error_class: LLMErrorClass,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
    ):
        self.error_class = error_class
        self.message = message
        self.provider = provider
        self.status_code = status_code
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.error_class in RETRYABLE_ERROR_CLASSES


def classify_gemini_error(
    status_code: int | None,
    json_body: dict | None,
    exception: Exception | None = None,
) -> LLMErrorClass:
    """Classify a Gemini failure into a normalized error class.

    - timeout exception → TIMEOUT
    - network exception or no status → PROVIDER_DOWN
    - 5xx → PROVIDER_DOWN
    - 429 or "RESOURCE_EXHAUSTED" → RATE_LIMIT
    - 401/403 or "API_KEY_INVALID" → INVALID_KEY
    - 404 or "model not found" → MODEL_NOT_AVAILABLE
    - "exceeds the maximum" in body → CONTEXT_TOO_LARGE
    - other 4xx → BAD_REQUEST
    """
    if isinstance(exception, httpx.TimeoutException):
        return LLMErrorClass.TIMEOUT
    if isinstance(exception, httpx.TransportError):
        return LLMErrorClass.PROVIDER_DOWN

    if status_code is None:
        return LLMErrorClass.PROVIDER_DOWN

    if status_code >= 500:
        return LLMErrorClass.PROVIDER_DOWN

    body_str = str(json_body).lower() if json_body else ""

    if status_code == 429 or "resource_exhausted" in body_str:
        return LLMErrorClass.RATE_LIMIT

    if status_code in (401, 403) or "api_key_invalid" in body_str:
        return LLMErrorClass.INVALID_KEY

    if status_code == 404 or "model not found" in body_str:
        return LLMErrorClass.MODEL_NOT_AVAILABLE

    if "exceeds the maximum" in body_str:
        return LLMErrorClass.CONTEXT_TOO_LARGE

    return LLMErrorClass.BAD_REQUEST


def error_from_exception(exc: Exception, provider: str = "gemini") -> LLMError:
    """Normalize an httpx failure raised by an adapter."""
    if isinstance(exc, LLMError):
        return exc

    if isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code
        try:
            body = exc.response.json()
        except ValueError:
            body = None
        error_class = classify_gemini_error(status_code, body if isinstance(body, dict) else None)
        return LLMError(
            error_class,
            f"{provider} returned HTTP {status_code}",
            provider=provider,
            status_code=status_code,
        )

    error_class = classify_gemini_error(None, None, exc)
    return LLMError(error_class, f"{provider} request failed: {type(exc).__name__}", provider)
