"""Inference client: one logical generation call with bounded retries.

Each attempt is bounded by its own timeout. Transient failures
(rate limit, timeout, provider down) are retried with exponential backoff;
everything else fails immediately. Prompt text and image bytes are never logged.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable

from fortunia.logging import get_logger
from fortunia.services.llm.adapter import LLMAdapter
from fortunia.services.llm.errors import LLMError, LLMErrorClass, error_from_exception
from fortunia.services.llm.types import ImagePart, LLMRequest, LLMResponse
from fortunia.services.redact import safe_kv
from fortunia.services.retry import RetryError, exponential_backoff, with_retry

logger = get_logger(__name__)


class InferenceError(Exception):
    """Generation failed after the retry policy gave up.

    Attributes:
        attempts: Number of attempts made.
        last_error: Normalized error from the final attempt.
    """

    def __init__(self, attempts: int, last_error: LLMError):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Inference failed after {attempts} attempt(s): {last_error.error_class.value}"
        )

    @property
    def error_class(self) -> LLMErrorClass:
        return self.last_error.error_class


class InferenceClient:
    """Calls the model through an adapter under a per-attempt timeout and retry policy."""

    def __init__(
        self,
        adapter: LLMAdapter,
        *,
        api_key: str | None,
        model_name: str,
        max_attempts: int = 3,
        attempt_timeout_s: float = 30.0,
        backoff_base_s: float = 1.0,
        backoff_max_s: float = 8.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._adapter = adapter
        self._api_key = api_key
        self.model_name = model_name
        self.max_attempts = max_attempts
        self.attempt_timeout_s = attempt_timeout_s
        self._backoff = exponential_backoff(backoff_base_s, backoff_max_s)
        self._sleep = sleep

    async def generate(self, prompt: str, image: ImagePart | None = None) -> LLMResponse:
        """Generate text for prompt, optionally with an inline image.

        Raises:
            InferenceError: Non-retryable failure, or retries exhausted.
        """
        if not self._api_key:
            raise InferenceError(
                0,
                LLMError(
                    LLMErrorClass.INVALID_KEY,
                    "Inference API key is not configured",
                    provider=self._adapter.provider,
                ),
            )

        req = LLMRequest(model_name=self.model_name, prompt=prompt, image=image)
        attempt_count = 0

        async def attempt() -> LLMResponse:
            nonlocal attempt_count
            attempt_count += 1
            try:
                return await asyncio.wait_for(
                    self._adapter.generate(
                        req, api_key=self._api_key, timeout_s=self.attempt_timeout_s
                    ),
                    timeout=self.attempt_timeout_s,
                )
            except TimeoutError as e:
                raise LLMError(
                    LLMErrorClass.TIMEOUT,
                    f"Attempt exceeded {self.attempt_timeout_s}s",
                    provider=self._adapter.provider,
                ) from e
            except LLMError:
                raise
            except Exception as e:
                raise error_from_exception(e, self._adapter.provider) from e

        def on_retry(attempt_number: int, error: Exception, delay: float) -> None:
            error_class = error.error_class.value if isinstance(error, LLMError) else "unknown"
            logger.warning(
                "inference.retry",
                **safe_kv(
                    attempt=attempt_number,
                    error_class=error_class,
                    delay_s=delay,
                    model=self.model_name,
                ),
            )

        start = time.monotonic()
        try:
            response = await with_retry(
                attempt,
                max_attempts=self.max_attempts,
                backoff=self._backoff,
                is_retryable=lambda e: isinstance(e, LLMError) and e.retryable,
                sleep=self._sleep,
                on_retry=on_retry,
            )
        except RetryError as e:
            last_error = e.last_error
            if not isinstance(last_error, LLMError):
                last_error = error_from_exception(last_error, self._adapter.provider)
            logger.error(
                "inference.failed",
                **safe_kv(
                    attempts=e.attempts,
                    exhausted=e.exhausted,
                    error_class=last_error.error_class.value,
                    status_code=last_error.status_code,
                    model=self.model_name,
                ),
            )
            raise InferenceError(e.attempts, last_error) from last_error

        usage = response.usage
        logger.info(
            "inference.completed",
            **safe_kv(
                attempts=attempt_count,
                latency_ms=int((time.monotonic() - start) * 1000),
                model=self.model_name,
                has_image=image is not None,
                completion_tokens=usage.completion_tokens if usage else None,
            ),
        )
        return response
