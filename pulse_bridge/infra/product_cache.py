"""
Product enrichment cache: product records by universal product code, held in
a Redis hash that expires when left untouched.
"""

import json
import logging
from typing import Any, Dict, Optional

from redis.exceptions import RedisError

from .redis_client import RedisClient


logger = logging.getLogger(__name__)


class ProductEnrichmentCache:
    """
    Redis hash ``cache_name`` mapping UPC -> JSON product record.

    Every read or write refreshes the hash TTL. Redis failures on read are
    logged and treated as cache misses so routes keep flowing without
    enrichment.
    """

    def __init__(self, redis_client: RedisClient, cache_name: str = "productEnrichmentCache", ttl_seconds: int = 86400):
        self.redis_client = redis_client
        self.cache_name = cache_name
        self.ttl_seconds = ttl_seconds

    async def get(self, upc: Any) -> Optional[Dict[str, Any]]:
        if upc is None:
            return None
        try:
            raw = await self.redis_client.get_field(self.cache_name, str(upc), self.ttl_seconds)
        except RedisError as e:
            logger.warning(
                f"Product cache read failed for upc {upc}: {e}",
                extra={"component": "product_cache", "cache_name": self.cache_name}
            )
            return None

        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Discarding malformed product cache entry for upc {upc}")
            return None

    async def put(self, upc: Any, record: Dict[str, Any]) -> None:
        """
        Raises:
            RedisError: If the write fails
        """
        await self.redis_client.set_field(self.cache_name, str(upc), json.dumps(record), self.ttl_seconds)

        logger.debug(
            f"Cached product record for upc {upc}",
            extra={"component": "product_cache", "cache_name": self.cache_name}
        )

    async def evict(self, upc: Any) -> bool:
        return await self.redis_client.delete_field(self.cache_name, str(upc))
