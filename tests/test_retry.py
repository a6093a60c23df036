"""Tests for the bounded retry loop."""

import pytest

from fortunia.services.retry import RetryError, exponential_backoff, with_retry


class Transient(Exception):
    pass


class Fatal(Exception):
    pass


class Recorder:
    def __init__(self):
        self.sleeps: list[float] = []

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)


def failing(*errors, result="ok"):
    remaining = list(errors)
    calls = []

    async def operation():
        calls.append(1)
        if remaining:
            raise remaining.pop(0)
        return result

    operation.calls = calls
    return operation


class TestExponentialBackoff:
    def test_doubles_and_caps(self):
        delay = exponential_backoff(1.0, 5.0)
        assert [delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]


class TestWithRetry:
    @pytest.mark.asyncio
    async def test_success_after_transient_failures(self):
        recorder = Recorder()
        operation = failing(Transient(), Transient())

        result = await with_retry(
            operation,
            max_attempts=3,
            backoff=exponential_backoff(0.5, 4.0),
            is_retryable=lambda e: isinstance(e, Transient),
            sleep=recorder.sleep,
        )

        assert result == "ok"
        assert len(operation.calls) == 3
        assert recorder.sleeps == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_budget_exhausted(self):
        recorder = Recorder()
        operation = failing(Transient(), Transient(), Transient(), Transient())

        with pytest.raises(RetryError) as exc_info:
            await with_retry(
                operation,
                max_attempts=3,
                backoff=exponential_backoff(1.0, 8.0),
                is_retryable=lambda e: isinstance(e, Transient),
                sleep=recorder.sleep,
            )

        assert exc_info.value.attempts == 3
        assert exc_info.value.exhausted is True
        assert isinstance(exc_info.value.last_error, Transient)
        assert len(recorder.sleeps) == 2

    @pytest.mark.asyncio
    async def test_non_retryable_stops_immediately(self):
        recorder = Recorder()
        operation = failing(Fatal())

        with pytest.raises(RetryError) as exc_info:
            await with_retry(
                operation,
                max_attempts=5,
                backoff=exponential_backoff(1.0, 8.0),
                is_retryable=lambda e: isinstance(e, Transient),
                sleep=recorder.sleep,
            )

        assert exc_info.value.attempts == 1
        assert exc_info.value.exhausted is False
        assert recorder.sleeps == []

    @pytest.mark.asyncio
    async def test_on_retry_hook(self):
        seen = []
        await with_retry(
            failing(Transient()),
            max_attempts=2,
            backoff=lambda n: 0.25,
            is_retryable=lambda e: True,
            sleep=Recorder().sleep,
            on_retry=lambda attempt, exc, delay: seen.append((attempt, type(exc), delay)),
        )
        assert seen == [(1, Transient, 0.25)]

    @pytest.mark.asyncio
    async def test_invalid_budget(self):
        with pytest.raises(ValueError):
            await with_retry(
                failing(), max_attempts=0, backoff=lambda n: 0, is_retryable=lambda e: True
            )
