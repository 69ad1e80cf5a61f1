"""
Shared Redis client, used as the pub/sub transport for order events.
Subscriber connections stay open for as long as a board or tracker is mounted, so the client
pings idle connections every REDIS_HEALTH_CHECK_SECONDS to notice a dropped server.
"""
import redis.asyncio as redis
from orderline.config import settings

_redis: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    global _redis
    if _redis is None:
        _redis = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            health_check_interval=settings.redis_health_check_seconds,
        )
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None
