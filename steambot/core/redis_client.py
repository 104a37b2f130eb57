"""
Redis Client - synchronous singleton for the shared flood store.

The guardrail chain has no suspension points, so the flood store talks to
Redis with the blocking client. Uses REDIS_URL from the configuration.
"""
import threading
from urllib.parse import urlparse

import redis

from steambot.core.config import settings
from steambot.core.logging import get_logger

logger = get_logger(__name__)

_redis_client: redis.Redis | None = None
_init_lock = threading.Lock()


def _mask_redis_url(url: str) -> str:
    """Hide the password in REDIS_URL for logs (redis://:****@host:6379)"""
    try:
        parsed = urlparse(url)
    except ValueError:
        return "redis://****"
    if parsed.password:
        return url.replace(f":{parsed.password}@", ":****@")
    return url


def get_redis() -> redis.Redis:
    """Return the Redis client singleton (connection pool)"""
    global _redis_client
    if _redis_client is not None:
        return _redis_client

    with _init_lock:
        if _redis_client is not None:
            return _redis_client

        client = redis.Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_timeout=2,
        )
        client.ping()
        _redis_client = client
        logger.info("Redis client initialized", extra_data={
            "url": _mask_redis_url(settings.REDIS_URL),
        })
    return _redis_client


def close_redis() -> None:
    """Close the Redis connection pool; called on app shutdown"""
    global _redis_client
    if _redis_client is not None:
        _redis_client.close()
        _redis_client = None
        logger.info("Redis connection closed")
