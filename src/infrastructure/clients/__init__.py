# src/infrastructure/clients/__init__.py
"""API Clients"""

from .gemini_client import GeminiClient, create_text_generator
from .rate_limiter import (
    RateLimiter,
    TokenBucket,
    AttemptStore,
    InMemoryAttemptStore,
    RedisAttemptStore,
    create_attempt_store,
)

__all__ = [
    "GeminiClient",
    "create_text_generator",
    "RateLimiter",
    "TokenBucket",
    "AttemptStore",
    "InMemoryAttemptStore",
    "RedisAttemptStore",
    "create_attempt_store",
]
