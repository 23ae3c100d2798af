from __future__ import annotations

import math

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from authbridge.exceptions import (
    StoreConnectionError,
    StoreDeleteError,
    StoreError,
    StoreWriteError,
)
from authbridge.store.base import BaseStore
from authbridge.utilities.logging import get_logger

logger = get_logger(__name__)


class RedisStore(BaseStore):
    """Store backed by Redis. ``pop`` uses GETDEL."""

    def __init__(self, client: Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str, socket_timeout: float = 5.0) -> RedisStore:
        client = Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client)

    async def get(self, key: str) -> str | None:
        try:
            return await self.client.get(key)
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreConnectionError(str(e)) from e
        except RedisError as e:
            raise StoreError(f"Failed to read {key}: {e}") from e

    async def set(self, key: str, value: str, ttl: float | None = None) -> None:
        ex = max(1, math.ceil(ttl)) if ttl is not None else None
        try:
            await self.client.set(key, value, ex=ex)
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreConnectionError(str(e)) from e
        except RedisError as e:
            raise StoreWriteError(key, str(e)) from e

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return await self.client.delete(*keys)
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreConnectionError(str(e)) from e
        except RedisError as e:
            raise StoreDeleteError(keys, str(e)) from e

    async def pop(self, key: str) -> str | None:
        try:
            return await self.client.getdel(key)
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreConnectionError(str(e)) from e
        except RedisError as e:
            raise StoreDeleteError((key,), str(e)) from e

    async def aclose(self) -> None:
        logger.debug("Closing Redis connection pool")
        await self.client.aclose()
