from typing import Optional

import redis

from assistant.config import Settings
from assistant.logging_config import get_logger

logger = get_logger("cache")


def create_redis_pool(settings: Settings) -> redis.ConnectionPool:
    """Build the process-wide connection pool. Called once at startup."""
    return redis.ConnectionPool.from_url(
        settings.redis_url,
        decode_responses=True,
        max_connections=settings.redis_max_connections,
        socket_timeout=settings.redis_socket_timeout_seconds,
        socket_connect_timeout=settings.redis_socket_timeout_seconds,
    )


class RedisCache:
    """Key-value operations over a managed redis connection pool.

    Each call checks a connection out of the pool and returns it when the
    command completes, so there is no shared client to reconnect.
    """

    def __init__(self, pool: redis.ConnectionPool):
        self.pool = pool
        self.client = redis.Redis(connection_pool=pool)

    def get(self, key: str) -> Optional[str]:
        return self.client.get(key)

    def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        self.client.setex(key, ttl_seconds, value)

    def delete(self, key: str) -> None:
        self.client.delete(key)

    def exists(self, key: str) -> bool:
        return bool(self.client.exists(key))

    def expire(self, key: str, ttl_seconds: int) -> None:
        self.client.expire(key, ttl_seconds)

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as exc:
            logger.warning(f"Redis ping failed: {exc}")
            return False

    def close(self) -> None:
        self.client.close()
        self.pool.disconnect()
