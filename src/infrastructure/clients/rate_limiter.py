# src/infrastructure/clients/rate_limiter.py
"""
Rate Limiting and Attempt Tracking
Token bucket throttling for outbound generation calls, plus a TTL attempt
store keyed by client identity for inbound submission throttling.

Features:
- Async-friendly token bucket with injectable clock and sleep
- Adaptive rate reduction on 429 responses
- Attempt store with TTL eviction (in-memory or Redis backed)
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


# ============================================================================
# Token Bucket Algorithm Implementation
# ============================================================================


@dataclass
class TokenBucket:
    """
    Token bucket for rate limiting

    Attributes:
        capacity: Maximum tokens (burst capacity)
        refill_rate: Tokens added per second
        tokens: Current available tokens
        last_refill: Last refill timestamp
        clock: Monotonic time source
    """

    capacity: float
    refill_rate: float
    tokens: float
    last_refill: float
    clock: Clock = field(default=time.monotonic, repr=False)

    def _refill(self) -> None:
        """Refill tokens based on elapsed time"""
        now = self.clock()
        elapsed = max(0.0, now - self.last_refill)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    def consume(self, tokens: float = 1.0) -> bool:
        """
        Try to consume tokens

        Returns:
            True if tokens consumed, False if insufficient
        """
        self._refill()
        if self.tokens >= tokens:
            self.tokens -= tokens
            return True
        return False

    def wait_time(self, tokens: float = 1.0) -> float:
        """Seconds until the requested tokens are available"""
        self._refill()
        deficit = tokens - self.tokens
        if deficit <= 0:
            return 0.0
        return deficit / self.refill_rate


class RateLimiter:
    """
    Async rate limiter for outbound API calls

    Automatically reduces rate when receiving 429 responses and gradually
    recovers after consecutive successes.
    """

    def __init__(
        self,
        calls_per_second: float,
        burst_capacity: Optional[int] = None,
        min_calls_per_second: float = 0.2,
        backoff_factor: float = 0.5,
        recovery_factor: float = 1.1,
        clock: Clock = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize rate limiter

        Args:
            calls_per_second: Maximum calls per second
            burst_capacity: Burst capacity (defaults to calls_per_second * 2)
            min_calls_per_second: Floor for adaptive backoff
            backoff_factor: Rate multiplier on a 429
            recovery_factor: Rate multiplier after 10 consecutive successes
        """
        self.max_rate = calls_per_second
        self.current_rate = calls_per_second
        self.min_rate = min_calls_per_second
        self.burst_capacity = burst_capacity or max(1, int(calls_per_second * 2))
        self.backoff_factor = backoff_factor
        self.recovery_factor = recovery_factor
        self.consecutive_successes = 0
        self._sleep = sleep
        self._lock = asyncio.Lock()

        self.bucket = TokenBucket(
            capacity=float(self.burst_capacity),
            refill_rate=calls_per_second,
            tokens=float(self.burst_capacity),
            last_refill=clock(),
            clock=clock,
        )

        logger.info(
            f"🕐 Rate limiter initialized: {calls_per_second} calls/sec, "
            f"burst={self.burst_capacity}"
        )

    async def acquire(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for permission to make a call

        Args:
            timeout: Maximum total wait in seconds (None = wait indefinitely)

        Returns:
            True if permission acquired, False on timeout
        """
        waited = 0.0
        async with self._lock:
            while not self.bucket.consume():
                delay = min(self.bucket.wait_time(), 1.0)
                if timeout is not None and waited + delay > timeout:
                    return False
                await self._sleep(delay)
                waited += delay
        return True

    def report_error(self, status_code: int) -> None:
        """Report API error to adjust rate"""
        if status_code != 429:
            return

        old_rate = self.current_rate
        self.current_rate = max(self.min_rate, self.current_rate * self.backoff_factor)
        self.bucket.refill_rate = self.current_rate
        self.consecutive_successes = 0

        logger.warning(
            f"⚠️ Rate limit hit, reducing rate: "
            f"{old_rate:.2f} → {self.current_rate:.2f} calls/sec"
        )

    def report_success(self) -> None:
        """Report successful call to gradually increase rate"""
        self.consecutive_successes += 1

        if self.consecutive_successes >= 10:
            old_rate = self.current_rate
            self.current_rate = min(self.max_rate, self.current_rate * self.recovery_factor)
            self.bucket.refill_rate = self.current_rate
            self.consecutive_successes = 0

            if old_rate != self.current_rate:
                logger.info(
                    f"✅ Rate recovering: {old_rate:.2f} → {self.current_rate:.2f} calls/sec"
                )


# ============================================================================
# Attempt Tracking (per client identity)
# ============================================================================


class AttemptStore(Protocol):
    """Counts attempts per client key inside a TTL window"""

    def record(self, key: str) -> int:
        """Record one attempt and return the count inside the window"""
        ...

    def count(self, key: str) -> int: ...

    def reset(self, key: str) -> None: ...

    def ttl(self, key: str) -> Optional[float]:
        """Seconds until the window for key expires (None if untracked)"""
        ...


class InMemoryAttemptStore:
    """
    Process-local attempt store with TTL eviction

    Each key owns a fixed window that starts at its first attempt. Expired
    windows are dropped lazily on access and in bulk by cleanup().
    """

    def __init__(self, ttl_seconds: float = 3600.0, clock: Clock = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()

    def _live_entry(self, key: str) -> Optional[Tuple[int, float]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry[1]:
            del self._entries[key]
            return None
        return entry

    def record(self, key: str) -> int:
        with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                entry = (0, self._clock() + self.ttl_seconds)
            count = entry[0] + 1
            self._entries[key] = (count, entry[1])
            return count

    def count(self, key: str) -> int:
        with self._lock:
            entry = self._live_entry(key)
            return entry[0] if entry else 0

    def reset(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def ttl(self, key: str) -> Optional[float]:
        with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                return None
            return max(0.0, entry[1] - self._clock())

    def cleanup(self) -> int:
        """
        Drop expired windows

        Returns:
            Number of keys removed
        """
        with self._lock:
            now = self._clock()
            expired = [key for key, (_, expires) in self._entries.items() if now >= expires]
            for key in expired:
                del self._entries[key]

        if expired:
            logger.info(f"🧹 Evicted {len(expired)} expired attempt windows")
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


class RedisAttemptStore:
    """
    Redis-backed attempt store shared across worker processes

    SET NX EX and INCR run in one MULTI/EXEC transaction, so the window
    starts at the first attempt and a key never outlives it without a TTL.
    """

    def __init__(self, redis_client, ttl_seconds: int = 3600, key_prefix: str = "attempts"):
        """
        Args:
            redis_client: Synchronous redis client (redis.Redis or compatible)
            ttl_seconds: Window length
            key_prefix: Namespace for keys
        """
        self.redis_client = redis_client
        self.ttl_seconds = int(ttl_seconds)
        self.key_prefix = key_prefix

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}:{key}"

    def record(self, key: str) -> int:
        redis_key = self._key(key)
        pipe = self.redis_client.pipeline(transaction=True)
        pipe.set(redis_key, 0, ex=self.ttl_seconds, nx=True)
        pipe.incr(redis_key)
        _, count = pipe.execute()
        return int(count)

    def count(self, key: str) -> int:
        value = self.redis_client.get(self._key(key))
        return int(value) if value is not None else 0

    def reset(self, key: str) -> None:
        self.redis_client.delete(self._key(key))

    def ttl(self, key: str) -> Optional[float]:
        remaining = self.redis_client.ttl(self._key(key))
        if remaining is None or remaining < 0:
            return None
        return float(remaining)


def create_attempt_store(cache_config, ttl_seconds: int) -> AttemptStore:
    """
    Build the attempt store configured for this deployment

    Args:
        cache_config: CacheConfig section
        ttl_seconds: Tracking window

    Returns:
        RedisAttemptStore when Redis is enabled, else InMemoryAttemptStore
    """
    if cache_config.redis_enable:
        import redis

        client = redis.Redis.from_url(cache_config.redis_url)
        logger.info(f"📡 Attempt store using Redis: {cache_config.redis_url}")
        return RedisAttemptStore(client, ttl_seconds, cache_config.key_prefix)

    return InMemoryAttemptStore(ttl_seconds=ttl_seconds)
