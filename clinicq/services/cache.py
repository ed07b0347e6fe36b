"""Redis client utilities."""

import redis

from clinicq.utils.config import get_settings

settings = get_settings()

redis_client = redis.Redis.from_url(
    settings.redis_url,
    decode_responses=True,
    socket_connect_timeout=1,
    socket_timeout=1,
)


def cache_publish(channel: str, message: str) -> int:
    """Publish a message on a Redis channel; returns the receiver count."""

    return int(redis_client.publish(channel, message))
