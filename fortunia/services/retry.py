"""Bounded retry with exponential backoff for async operations."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

T = TypeVar("T")

Backoff = Callable[[int], float]


class RetryError(Exception):
    """All attempts failed, or a non-retryable failure stopped the loop.

    Attributes:
        attempts: Number of attempts made.
        last_error: Exception raised by the final attempt.
        exhausted: True when the attempt budget ran out.
    """

    def __init__(self, attempts: int, last_error: Exception, exhausted: bool):
        self.attempts = attempts
        self.last_error = last_error
        self.exhausted = exhausted
        super().__init__(f"Operation failed after {attempts} attempt(s): {last_error}")


def exponential_backoff(base_s: float, max_s: float) -> Backoff:
    """Delay before retry n (1-based): min(base * 2**(n-1), max)."""

    def delay(retry_number: int) -> float:
        return min(base_s * (2 ** (retry_number - 1)), max_s)

    return delay


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int,
    backoff: Backoff,
    is_retryable: Callable[[Exception], bool],
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_retry: Callable[[int, Exception, float], None] | None = None,
) -> T:
    """Run operation until it succeeds or the attempt budget is spent.

    A failure for which is_retryable returns False ends the loop at once.
    on_retry(attempt, error, delay) runs before each backoff sleep.

    Raises:
        RetryError: Wrapping the last failure.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as exc:
            if not is_retryable(exc):
                raise RetryError(attempt, exc, exhausted=False) from exc
            if attempt >= max_attempts:
                raise RetryError(attempt, exc, exhausted=True) from exc
            delay = backoff(attempt)
            if on_retry is not None:
                on_retry(attempt, exc, delay)
            await sleep(delay)
