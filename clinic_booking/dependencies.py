"""FastAPI dependencies."""

from collections.abc import Callable
from typing import Annotated

import redis
import structlog
from fastapi import BackgroundTasks, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinic_booking.config import settings
from clinic_booking.core.exceptions import RateLimitException
from clinic_booking.core.redis_client import RateLimiter, get_redis_client
from clinic_booking.database import AsyncSessionLocal, get_db
from clinic_booking.services.notification_service import LoggingNotifier, Notifier, drain_outbox

logger = structlog.get_logger(__name__)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for work that outlives the request session."""
    return AsyncSessionLocal


def get_notifier() -> Notifier:
    """Outbound notifier used by the outbox dispatcher."""
    return LoggingNotifier()


def get_outbox_drain(
    background_tasks: BackgroundTasks,
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
    notifier: Annotated[Notifier, Depends(get_notifier)],
) -> Callable[[], None]:
    """
    Get a callback that drains the outbox once the response is sent.

    Endpoints call it after a successful write so that notifications are
    delivered from committed events only.
    """

    def schedule() -> None:
        background_tasks.add_task(drain_outbox, session_factory, notifier)

    return schedule


def client_ip(request: Request) -> str:
    """Best-effort client address, honouring the first X-Forwarded-For hop."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def enforce_public_rate_limit(
    request: Request,
    redis_client: Annotated[redis.Redis, Depends(get_redis_client)],
) -> None:
    """
    Limit public booking and action-link requests per client IP.

    Raises:
        RateLimitException: If the client exceeded the configured limit
    """
    ip = client_ip(request)
    limiter = RateLimiter(redis_client)
    allowed = limiter.check_rate_limit(
        f"rate_limit:public:{ip}",
        limit=settings.booking_rate_limit,
        window=settings.booking_rate_window_seconds,
    )
    if not allowed:
        logger.warning("rate_limit_exceeded", client=ip, path=request.url.path)
        raise RateLimitException("Too many requests. Please try again later.")


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
OutboxDrain = Annotated[Callable[[], None], Depends(get_outbox_drain)]
PublicRateLimit = Depends(enforce_public_rate_limit)
