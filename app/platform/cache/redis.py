from typing import Optional

from redis import Redis

from app.platform.config import settings

_redis: Optional[Redis] = None


def get_redis() -> Redis:
    """Shared Redis client, created on first use in each worker process."""
    global _redis
    if _redis is None:
        _redis = Redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
        )
    return _redis
