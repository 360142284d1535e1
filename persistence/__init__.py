"""
Challenge Persistence Layer

Public exports for session stores, rate limiters and the Redis connection.
"""

from .connection import get_redis_client
from .session_store import (
    ChallengeSession,
    InMemorySessionStore,
    ResourceLoadTracker,
    SessionStore,
)
from .redis_session_store import RedisSessionStore
from .rate_limiter import InMemoryRateLimiter, RateLimitResult, RedisRateLimiter

__all__ = [
    "get_redis_client",
    "SessionStore",
    "InMemorySessionStore",
    "RedisSessionStore",
    "ChallengeSession",
    "ResourceLoadTracker",
    "InMemoryRateLimiter",
    "RedisRateLimiter",
    "RateLimitResult",
]
