"""
Redis access for the product enrichment cache.

Records live as fields of one hash per cache name. Reads and writes push the
hash expiry forward in the same round trip, so an idle cache ages out of
Redis as a whole.
"""

import logging
from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import ConnectionError, RedisError


logger = logging.getLogger(__name__)


class RedisClient:
    """
    Hash-field operations over a pooled async Redis connection.

    ``connect()`` must succeed before any field operation.
    """

    def __init__(
        self,
        url: str,
        max_connections: int = 10,
        socket_timeout: float = 5.0,
        socket_connect_timeout: float = 5.0,
        health_check_interval: int = 30
    ):
        self.url = url
        self._options = {
            "max_connections": max_connections,
            "socket_timeout": socket_timeout,
            "socket_connect_timeout": socket_connect_timeout,
            "health_check_interval": health_check_interval
        }
        self._redis: Optional[redis.Redis] = None

    @classmethod
    def from_config(cls, redis_config) -> "RedisClient":
        return cls(
            url=redis_config.url,
            max_connections=redis_config.max_connections,
            socket_timeout=redis_config.socket_timeout,
            socket_connect_timeout=redis_config.socket_connect_timeout,
            health_check_interval=redis_config.health_check_interval
        )

    @property
    def connected(self) -> bool:
        return self._redis is not None

    async def connect(self) -> None:
        """
        Open the pool and check that Redis answers.

        Raises:
            ConnectionError: If Redis cannot be reached
        """
        connection = redis.Redis.from_url(self.url, **self._options)
        try:
            await connection.ping()
        except RedisError as e:
            logger.error(f"Product cache Redis unreachable at {self.url}: {e}", extra={"component": "redis"})
            await connection.aclose()
            raise ConnectionError(f"Redis connection failed: {e}") from e

        self._redis = connection
        logger.info(f"Connected to product cache Redis: {self.url}", extra={"component": "redis"})

    async def close(self) -> None:
        if self._redis is None:
            return
        await self._redis.aclose()
        self._redis = None
        logger.info("Redis connection closed", extra={"component": "redis"})

    def _connection(self) -> redis.Redis:
        if self._redis is None:
            raise RuntimeError("Redis client not connected. Call connect() first.")
        return self._redis

    async def get_field(self, name: str, field: str, ttl_seconds: int) -> Optional[Any]:
        """
        Read one hash field and refresh the hash expiry.

        Args:
            name: Hash key
            field: Field within the hash
            ttl_seconds: New expiry for the whole hash

        Returns:
            The stored value, or None if the field is absent

        Raises:
            RedisError: If the round trip fails
        """
        async with self._connection().pipeline(transaction=False) as pipe:
            pipe.hget(name, field)
            pipe.expire(name, ttl_seconds)
            value, _ = await pipe.execute()
        return value

    async def set_field(self, name: str, field: str, value: str, ttl_seconds: int) -> None:
        """
        Raises:
            RedisError: If the round trip fails
        """
        async with self._connection().pipeline(transaction=False) as pipe:
            pipe.hset(name, field, value)
            pipe.expire(name, ttl_seconds)
            await pipe.execute()

    async def delete_field(self, name: str, field: str) -> bool:
        return bool(await self._connection().hdel(name, field))
