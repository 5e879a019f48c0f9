# tests/unit/test_retry.py
"""
Unit Tests for the retry policy, execute_with_retry and error helpers
"""

import asyncio

import pytest

from src.services.exceptions import (
    ExternalServiceError,
    RateLimitExceededError,
    TransactionError,
    ValidationError,
    get_retry_delay,
    is_rate_limit_error,
    is_retryable_error,
)
from src.services.retry import RetryExhaustedError, RetryPolicy, execute_with_retry


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FlakyOperation:
    """Fails with the queued errors, then returns `result`"""

    def __init__(self, errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class TestErrorClassification:
    def test_rate_limit_by_type_and_message(self):
        assert is_rate_limit_error(RateLimitExceededError("gemini"))
        assert is_rate_limit_error(RuntimeError("Quota exhausted for project"))
        assert not is_rate_limit_error(RuntimeError("boom"))

    def test_retryable_errors(self):
        assert is_retryable_error(ExternalServiceError("gemini", "503", status_code=503))
        assert is_retryable_error(asyncio.TimeoutError())
        assert is_retryable_error(ValueError("bad json"))
        assert is_retryable_error(RuntimeError("Quota exceeded, rate limit hit"))

    def test_non_retryable_errors(self):
        assert not is_retryable_error(
            ExternalServiceError("gemini", "bad request", status_code=400, retryable=False)
        )
        assert not is_retryable_error(ValidationError("nope"))
        assert not is_retryable_error(TransactionError("db"))

    def test_retry_delay_backoff(self):
        error = ValueError("x")
        assert get_retry_delay(error, 1, base_delay=1.0) == 1.0
        assert get_retry_delay(error, 2, base_delay=1.0) == 2.0
        assert get_retry_delay(error, 3, base_delay=1.0) == 4.0

    def test_rate_limit_multiplier_applied(self):
        error = RateLimitExceededError("gemini")
        assert get_retry_delay(error, 1, base_delay=1.0, rate_limit_multiplier=5.0) == 5.0
        assert get_retry_delay(error, 2, base_delay=1.0, rate_limit_multiplier=5.0) == 10.0


class TestExecuteWithRetry:
    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self):
        # Setup
        sleep = SleepRecorder()
        operation = FlakyOperation([ValueError("a"), ValueError("b")])
        policy = RetryPolicy(max_attempts=3, base_delay=1.0, jitter=0.0)

        # Test
        result = await execute_with_retry(operation, policy, sleep=sleep, random_fn=lambda: 0.0)

        # Assert
        assert result == "ok"
        assert operation.calls == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_sleep_sequence_includes_jitter(self):
        sleep = SleepRecorder()
        operation = FlakyOperation([ValueError("a")])
        policy = RetryPolicy(max_attempts=2, base_delay=1.0, jitter=1.0)

        await execute_with_retry(operation, policy, sleep=sleep, random_fn=lambda: 0.5)

        assert sleep.delays == [1.5]

    @pytest.mark.asyncio
    async def test_rate_limited_attempts_wait_longer(self):
        sleep = SleepRecorder()
        operation = FlakyOperation([RateLimitExceededError("gemini")])
        policy = RetryPolicy(max_attempts=2, base_delay=1.0, rate_limit_multiplier=5.0, jitter=0.0)

        await execute_with_retry(operation, policy, sleep=sleep, random_fn=lambda: 0.0)

        assert sleep.delays == [5.0]

    @pytest.mark.asyncio
    async def test_exhaustion_wraps_last_error(self):
        sleep = SleepRecorder()
        last = ValueError("final")
        operation = FlakyOperation([ValueError("a"), ValueError("b"), last])
        policy = RetryPolicy(max_attempts=3, base_delay=1.0, jitter=0.0)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await execute_with_retry(operation, policy, sleep=sleep, random_fn=lambda: 0.0)

        assert exc_info.value.attempts == 3
        assert exc_info.value.last_error is last
        assert len(sleep.delays) == 2

    @pytest.mark.asyncio
    async def test_non_retryable_error_stops_immediately(self):
        sleep = SleepRecorder()
        operation = FlakyOperation([ValidationError("bad input")])

        with pytest.raises(RetryExhaustedError) as exc_info:
            await execute_with_retry(operation, RetryPolicy(), sleep=sleep)

        assert operation.calls == 1
        assert exc_info.value.attempts == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failed_attempt(self):
        sleep = SleepRecorder()
        calls = []

        async def slow():
            calls.append(1)
            if len(calls) == 1:
                await asyncio.sleep(1)
            return "late"

        policy = RetryPolicy(max_attempts=2, base_delay=0.0, jitter=0.0, timeout=0.01)
        result = await execute_with_retry(slow, policy, sleep=sleep, random_fn=lambda: 0.0)

        assert result == "late"
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_on_retry_callback(self):
        seen = []
        operation = FlakyOperation([ValueError("a")])
        policy = RetryPolicy(max_attempts=2, base_delay=1.0, jitter=0.0)

        await execute_with_retry(
            operation,
            policy,
            sleep=SleepRecorder(),
            random_fn=lambda: 0.0,
            on_retry=lambda attempt, error, delay: seen.append((attempt, str(error), delay)),
        )

        assert seen == [(1, "a", 1.0)]
