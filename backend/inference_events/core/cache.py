import json
import logging
from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from .config import settings

logger = logging.getLogger(__name__)


class ProductCache:
    """
    Explicit read cache for product lookups.

    Callers use get/put on the read path and invalidate on the write path.
    Redis failures are logged and behave like a miss, so the cache never fails
    a request.
    """

    ALL_PRODUCTS_KEY = "products:all"

    def __init__(self, client: Optional[redis.Redis], ttl_seconds: Optional[int] = None):
        self.client = client
        self.ttl_seconds = settings.PRODUCT_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        if self.ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {self.ttl_seconds}")

    @staticmethod
    def product_key(product_id) -> str:
        return f"products:by_id:{product_id}"

    async def get(self, key: str) -> Optional[Any]:
        if self.client is None:
            return None
        try:
            raw = await self.client.get(key)
        except RedisError as e:
            logger.warning(f"Cache get failed for {key}: {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            logger.warning(f"Dropping unreadable cache entry {key}: {e}")
            await self.invalidate(key)
            return None

    async def put(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        if self.client is None:
            return
        try:
            ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
            await self.client.set(key, json.dumps(value, default=str), ex=ttl)
        except RedisError as e:
            logger.warning(f"Cache put failed for {key}: {e}")

    async def invalidate(self, *keys: str) -> None:
        if self.client is None or not keys:
            return
        try:
            await self.client.delete(*keys)
        except RedisError as e:
            logger.warning(f"Cache invalidation failed for {keys}: {e}")


_redis_client: Optional[redis.Redis] = None

async def connect_redis() -> Optional[redis.Redis]:
    global _redis_client
    if _redis_client is None:
        try:
            client = redis.from_url(settings.REDIS_URL, decode_responses=True)
            await client.ping()
            _redis_client = client
            logger.info("Connected to Redis for product cache.")
        except RedisError as e:
            logger.error(f"Could not connect to Redis, product cache disabled: {e}")
    return _redis_client

async def disconnect_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None

def get_redis_client() -> Optional[redis.Redis]:
    return _redis_client
