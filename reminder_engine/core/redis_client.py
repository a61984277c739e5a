"""Redis client configuration and utilities."""

from uuid import uuid4

import redis
import structlog

from reminder_engine.config import settings

logger = structlog.get_logger(__name__)

# Global Redis client instance
_redis_client: redis.Redis | None = None


def get_redis_client() -> redis.Redis:
    """
    Get or create Redis client instance.

    Returns:
        Redis client instance
    """
    global _redis_client

    if _redis_client is None:
        _redis_client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            username=settings.redis_username,
            password=settings.redis_password,
            decode_responses=settings.redis_decode_responses,
            socket_connect_timeout=5,
            socket_keepalive=True,
            health_check_interval=30,
        )

    return _redis_client


async def check_redis_connection() -> bool:
    """
    Check if Redis connection is healthy.

    Returns:
        True if connection is healthy, False otherwise
    """
    try:
        client = get_redis_client()
        client.ping()
        return True
    except Exception:
        return False


def close_redis_connection() -> None:
    """Close Redis connection."""
    global _redis_client

    if _redis_client is not None:
        _redis_client.close()
        _redis_client = None


# Deletes the key only while it still holds our token
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class TickLock:
    """Redis lock that keeps queue ticks from several processes from overlapping."""

    def __init__(self, redis_client: redis.Redis, key: str):
        """Initialize lock with Redis client and lock key."""
        self.redis = redis_client
        self.key = key

    def acquire(self, ttl_seconds: float) -> str | None:
        """
        Try to take the lock.

        Args:
            ttl_seconds: Lock expiry, so a crashed holder cannot block forever

        Returns:
            Token to release the lock with, or None if another process holds it.
            When Redis is unreachable a token is returned anyway (fail open);
            notification claims still keep deliveries apart.
        """
        token = str(uuid4())
        try:
            acquired = self.redis.set(self.key, token, nx=True, px=int(ttl_seconds * 1000))
        except redis.RedisError as e:
            logger.warning("tick_lock_unavailable", key=self.key, error=str(e))
            return token
        return token if acquired else None

    def release(self, token: str) -> bool:
        """Release the lock if it is still held with this token."""
        try:
            return bool(self.redis.eval(_RELEASE_SCRIPT, 1, self.key, token))
        except redis.RedisError as e:
            logger.warning("tick_lock_release_failed", key=self.key, error=str(e))
            return False
