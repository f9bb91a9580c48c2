import logging
from typing import Optional

from redis.asyncio import Redis

logger = logging.getLogger(__name__)


class Cache:
    def __init__(self, redis_url) -> None:
        self._client = Redis.from_url(redis_url,
            decode_responses=True
        )

    async def ensure(self) -> bool:
        if not self._client:
            return False
        try:
            await self._client.ping()
            return True
        except Exception as err:
            logger.error("[Cache] Redis connection error: %s", err)
            return False

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    async def set(self, key: str, value: str, ttl_s: Optional[int] = None) -> None:
        await self._client.set(key, value, ex=ttl_s)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def close(self) -> None:
        await self._client.aclose()
