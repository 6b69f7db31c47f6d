from redis.asyncio import Redis

from imagegate.core.config import settings


def create_redis() -> Redis:
    """Redis client for usage counters. Connections are opened lazily."""
    return Redis.from_url(settings.redis_url, decode_responses=True)
