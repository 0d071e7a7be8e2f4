"""
Shared Redis connection for the distributed rate limiter.
Only opened when RATE_LIMIT_BACKEND=redis.
"""

import logging
from typing import Optional

from redis import asyncio as aioredis
from redis.asyncio.client import Redis
from redis.exceptions import RedisError

from pitrace.config import settings

logger = logging.getLogger(__name__)


class RedisClient:
    """Process-wide async Redis client."""

    _client: Optional[Redis] = None

    @classmethod
    def get_client(cls, url: Optional[str] = None) -> Redis:
        """Lazily build the client. No connection is made until first use."""
        if cls._client is None:
            cls._client = aioredis.from_url(
                url or settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=5.0,
                health_check_interval=30,
            )
            logger.info("Redis client initialized")
        return cls._client

    @classmethod
    async def ping(cls) -> bool:
        if cls._client is None:
            return False
        try:
            return bool(await cls._client.ping())
        except RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    @classmethod
    async def close(cls) -> None:
        if cls._client:
            await cls._client.aclose()
            cls._client = None
            logger.info("Redis client closed")
