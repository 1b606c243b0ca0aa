"""Redis client and the public-endpoint rate limiter built on it."""

import redis
import structlog

from clinic_booking.config import settings

logger = structlog.get_logger(__name__)

# Process-wide client, created on first use
_redis_client: redis.Redis | None = None


def get_redis_client() -> redis.Redis:
    """
    Get or create the Redis client.

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
            socket_connect_timeout=2,
            socket_timeout=2,
            health_check_interval=30,
        )

    return _redis_client


async def check_redis_connection() -> bool:
    """Return True if Redis answers a ping."""
    try:
        return bool(get_redis_client().ping())
    except redis.RedisError as e:
        logger.warning("redis_ping_failed", error=str(e))
        return False


def close_redis_connection() -> None:
    """Close the Redis client if one was created."""
    global _redis_client

    if _redis_client is not None:
        _redis_client.close()
        _redis_client = None


class RateLimiter:
    """
    Fixed-window request counter.

    The first hit of a window creates the counter with its expiry; later hits
    increment it. Bookings must keep working when Redis is down, so any Redis
    error lets the request through.
    """

    def __init__(self, redis_client: redis.Redis):
        """Initialize rate limiter with Redis client."""
        self.redis = redis_client

    def check_rate_limit(
        self,
        key: str,
        limit: int,
        window: int = 60,
    ) -> bool:
        """
        Count a hit and report whether it is within the limit.

        Args:
            key: Counter key, e.g. ``rate_limit:public:<client ip>``
            limit: Maximum hits per window
            window: Window length in seconds

        Returns:
            True if within limit, False if exceeded
        """
        try:
            hits = int(self.redis.incr(key))
            if hits == 1:
                self.redis.expire(key, window)
            return hits <= limit
        except redis.RedisError as e:
            logger.warning("rate_limit_unavailable", key=key, error=str(e))
            return True
