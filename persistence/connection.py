"""
Redis Connection for the Challenge Store

Shared client behind RedisSessionStore and RedisRateLimiter. Only built
when CAPTCHA_STORE_BACKEND=redis; the in-memory backend never imports it.

Environment:
- REDIS_HOST: Hostname (default: localhost)
- REDIS_PORT: Port (default: 6379)
- REDIS_DB: Database index (default: 0)
- REDIS_PASSWORD: Password (required)

Any failure surfaces as StoreUnavailableError so startup reports one
error type whichever backend problem occurred.
"""

import logging
import os
from functools import lru_cache
from typing import Any, Dict

import redis
from redis.exceptions import AuthenticationError, RedisError

from core.errors import StoreUnavailableError


logger = logging.getLogger(__name__)

# Sessions and rate-limit counters are small keys; fail fast on a stalled server
MAX_CONNECTIONS = 50
SOCKET_TIMEOUT_SECONDS = 5.0


def _redis_options() -> Dict[str, Any]:
    password = os.getenv("REDIS_PASSWORD")
    if not password:
        logger.critical("REDIS_PASSWORD is not set; the redis challenge store cannot start.")
        raise StoreUnavailableError("REDIS_PASSWORD is required when CAPTCHA_STORE_BACKEND=redis")

    return {
        "host": os.getenv("REDIS_HOST", "localhost"),
        "port": int(os.getenv("REDIS_PORT", 6379)),
        "db": int(os.getenv("REDIS_DB", 0)),
        "password": password,
    }


@lru_cache(maxsize=1)
def get_redis_client() -> redis.Redis:
    """
    Pooled client for challenge sessions and rate-limit counters.

    Pings once so a bad address or password stops the service at startup
    instead of degrading every dispatch. Call `get_redis_client.cache_clear()`
    to rebuild after changing the environment.

    Raises:
        StoreUnavailableError: password missing, authentication refused or
            server unreachable.
    """
    options = _redis_options()
    location = f"{options['host']}:{options['port']}/{options['db']}"

    pool = redis.ConnectionPool(
        **options,
        decode_responses=True,
        max_connections=MAX_CONNECTIONS,
        socket_timeout=SOCKET_TIMEOUT_SECONDS,
    )
    client = redis.Redis(connection_pool=pool)

    try:
        client.ping()
    except AuthenticationError as e:
        logger.critical(f"Challenge store rejected credentials at {location}")
        raise StoreUnavailableError(f"Redis authentication failed at {location}") from e
    except RedisError as e:
        logger.critical(f"Challenge store unreachable at {location}: {e}")
        raise StoreUnavailableError(f"Redis unavailable at {location}: {e}") from e

    logger.info(f"Challenge store connected to Redis at {location}")
    return client
