"""Redis-backed session store for sessions, challenges, codes and lockouts."""

import json
import logging
from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from voicegate.clients.base import SessionStore, StoreUnavailable
from voicegate.config import settings

logger = logging.getLogger(__name__)


class RedisSessionStore(SessionStore):
    """
    Session store on top of ``redis.asyncio``.

    Values are JSON-encoded. Every key is namespaced with ``key_prefix`` so
    the store can share a Redis database with other services.
    """

    def __init__(self, client: Optional[redis.Redis] = None, url: Optional[str] = None, key_prefix: Optional[str] = None):
        self._client = client
        self._url = url or settings.redis_url
        self.key_prefix = key_prefix if key_prefix is not None else settings.redis_key_prefix

    @property
    def client(self) -> redis.Redis:
        """Get or create the Redis client instance."""
        if self._client is None:
            self._client = redis.from_url(self._url, decode_responses=True)
        return self._client

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def put(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            await self.client.set(self._key(key), json.dumps(value), ex=ttl_seconds)
        except RedisError as e:
            logger.error(f"Redis SET failed for {key}: {e}")
            raise StoreUnavailable(f"Failed to write {key}: {e}")

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self.client.get(self._key(key))
        except RedisError as e:
            logger.error(f"Redis GET failed for {key}: {e}")
            raise StoreUnavailable(f"Failed to read {key}: {e}")
        return json.loads(raw) if raw is not None else None

    async def pop(self, key: str) -> Optional[Any]:
        try:
            raw = await self.client.getdel(self._key(key))
        except RedisError as e:
            logger.error(f"Redis GETDEL failed for {key}: {e}")
            raise StoreUnavailable(f"Failed to consume {key}: {e}")
        return json.loads(raw) if raw is not None else None

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(self._key(key))
        except RedisError as e:
            logger.error(f"Redis DEL failed for {key}: {e}")
            raise StoreUnavailable(f"Failed to delete {key}: {e}")

    async def incr(self, key: str, ttl_seconds: int) -> int:
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.incr(self._key(key))
                pipe.expire(self._key(key), ttl_seconds)
                count, _ = await pipe.execute()
            return int(count)
        except RedisError as e:
            logger.error(f"Redis INCR failed for {key}: {e}")
            raise StoreUnavailable(f"Failed to increment {key}: {e}")

    async def set_if_absent(self, key: str, value: Any, ttl_seconds: int) -> bool:
        try:
            created = await self.client.set(self._key(key), json.dumps(value), ex=ttl_seconds, nx=True)
        except RedisError as e:
            logger.error(f"Redis SET NX failed for {key}: {e}")
            raise StoreUnavailable(f"Failed to set {key}: {e}")
        return bool(created)

    async def health_check(self) -> bool:
        """Check if the Redis connection is healthy."""
        try:
            return bool(await self.client.ping())
        except RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
