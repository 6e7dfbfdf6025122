from contextlib import asynccontextmanager
from typing import Optional
import uuid

import redis.asyncio as redis
import structlog

from app.core.config import settings
from app.core.errors import SyncInProgressError, UpstreamFailureError

logger = structlog.get_logger(__name__)


class RedisClient:
    """Redis client for short-lived coordination locks."""

    def __init__(self):
        self.redis_pool = None

    async def init_redis(self):
        """Initialize Redis connection pool."""
        try:
            self.redis_pool = redis.ConnectionPool.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                retry_on_timeout=True,
                socket_keepalive=True,
                socket_keepalive_options={},
            )

            # Test connection
            async with redis.Redis(connection_pool=self.redis_pool) as r:
                await r.ping()
                logger.info("Redis connection established")

        except Exception as e:
            logger.error("Failed to connect to Redis", exc_info=e)
            raise

    async def get_redis(self) -> redis.Redis:
        """Get Redis client instance."""
        if not self.redis_pool:
            await self.init_redis()
        return redis.Redis(connection_pool=self.redis_pool)

    async def close(self):
        if self.redis_pool:
            await self.redis_pool.disconnect()
            self.redis_pool = None

    async def acquire_lock(self, key: str, token: str, expire: int) -> bool:
        """Set ``key`` only if absent. Returns False when someone else holds it.

        An unreachable Redis raises ``UpstreamFailureError``; it is not reported
        as a held lock.
        """
        try:
            client = await self.get_redis()
            return bool(await client.set(key, token, nx=True, ex=expire))
        except (redis.RedisError, OSError) as e:
            logger.error("Redis lock acquire error", key=key, exc_info=e)
            raise UpstreamFailureError(f"Lock store unavailable: {e}") from e

    async def release_lock(self, key: str, token: str) -> bool:
        """Release ``key`` if it is still held with ``token``."""
        try:
            client = await self.get_redis()
            current = await client.get(key)
            if current != token:
                return False
            return await client.delete(key) > 0
        except Exception as e:
            logger.error("Redis lock release error", key=key, exc_info=e)
            return False

    @asynccontextmanager
    async def calendar_sync_lock(
        self, business_id: int, expire: Optional[int] = None
    ):
        """Hold the per-business calendar sync lock for the duration of the block."""
        lock_key = f"calendar_sync_lock:{business_id}"
        token = uuid.uuid4().hex
        acquired = await self.acquire_lock(
            lock_key, token, expire or settings.SYNC_LOCK_TTL_SECONDS
        )
        if not acquired:
            logger.warning("Calendar sync already in progress", business_id=business_id)
            raise SyncInProgressError()
        try:
            yield
        finally:
            await self.release_lock(lock_key, token)


# Global Redis client instance
redis_client = RedisClient()
