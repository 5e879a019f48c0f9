# src/services/retry.py
"""
Retry Policy
Declarative retry-with-backoff for calls to flaky external services.

Usage:
    policy = RetryPolicy(max_attempts=3, base_delay=1.0)
    text = await execute_with_retry(lambda: client.generate(prompt), policy)

Sleep and jitter are injectable so tests never wait on real delays.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

from src.services.exceptions import get_retry_delay, is_retryable_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry settings for one kind of external call

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Delay before the second attempt, in seconds
        backoff_factor: Delay growth per attempt
        rate_limit_multiplier: Base delay multiplier when rate limited
        jitter: Upper bound of the random delay added to each wait
        timeout: Per-attempt timeout in seconds (None disables it)
        retry_predicate: Decides whether an error is worth retrying
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    backoff_factor: float = 2.0
    rate_limit_multiplier: float = 5.0
    jitter: float = 1.0
    timeout: Optional[float] = 30.0
    retry_predicate: Callable[[BaseException], bool] = field(
        default=is_retryable_error, compare=False
    )

    def delay_for(self, error: BaseException, attempt: int, random_value: float = 0.0) -> float:
        """Delay after the given 1-based failed attempt"""
        delay = get_retry_delay(
            error,
            attempt,
            base_delay=self.base_delay,
            backoff_factor=self.backoff_factor,
            rate_limit_multiplier=self.rate_limit_multiplier,
        )
        return delay + random_value * self.jitter


class RetryExhaustedError(Exception):
    """All attempts failed; wraps the last error"""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"Failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    sleep: SleepFn = asyncio.sleep,
    random_fn: Callable[[], float] = random.random,
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
) -> T:
    """
    Run an async operation under a retry policy

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        policy: Retry settings
        sleep: Awaitable sleep used between attempts
        random_fn: Jitter source returning a float in [0, 1)
        on_retry: Callback(attempt, error, delay) before each wait

    Returns:
        Result of the first successful attempt

    Raises:
        RetryExhaustedError: When every attempt failed or the error was not retryable
    """
    last_error: Optional[BaseException] = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            if policy.timeout is not None:
                return await asyncio.wait_for(operation(), timeout=policy.timeout)
            return await operation()

        except asyncio.CancelledError:
            raise

        except Exception as e:
            last_error = e

            if not policy.retry_predicate(e):
                logger.error(f"❌ Non-retryable error on attempt {attempt}: {e}")
                raise RetryExhaustedError(attempt, e) from e

            if attempt >= policy.max_attempts:
                logger.error(f"❌ All {policy.max_attempts} attempts failed. Last error: {e}")
                break

            delay = policy.delay_for(e, attempt, random_fn())
            logger.warning(
                f"⚠️ Attempt {attempt}/{policy.max_attempts} failed: {e}, "
                f"retrying in {delay:.2f}s"
            )
            if on_retry is not None:
                on_retry(attempt, e, delay)
            await sleep(delay)

    raise RetryExhaustedError(policy.max_attempts, last_error)
