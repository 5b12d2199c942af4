"""Redis store adapter for tierloader.

Provides async Redis operations for the loader's payloads.
Uses redis-py async client for connection pooling.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Sequence
from typing import TYPE_CHECKING, Any, TypeVar, cast

import redis.asyncio as redis
from redis.exceptions import RedisError

from tierloader.config import settings
from tierloader.errors import DecodeError, StoreError

if TYPE_CHECKING:
    from redis.asyncio import Redis

    from tierloader.store.base import Payload

T = TypeVar("T")

logger = logging.getLogger(__name__)

# Module-level connection pool
_redis_client: Redis | None = None


async def get_redis() -> Redis:
    """Get or create the shared Redis client.

    Uses connection pooling for efficient connection management.
    """
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(  # type: ignore[no-untyped-call]
            settings.redis_url,
            decode_responses=False,  # Text decoding happens per read
        )
    return _redis_client


async def close_redis() -> None:
    """Close Redis connections."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


def _text(value: bytes | str | None) -> str | None:
    if isinstance(value, bytes):
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"Payload is not valid UTF-8: {e}", value) from e
    return value


def _binary(value: bytes | str | None) -> bytes | None:
    if isinstance(value, str):
        return value.encode("utf-8")
    return value


class RedisStore:
    """KeyValueStore backed by redis-py's asyncio client.

    Every redis-py error is re-raised as StoreError with the original
    exception chained.
    """

    def __init__(self, client: Redis | None = None):
        self._client = client

    async def _get_client(self) -> Redis:
        if self._client is None:
            self._client = await get_redis()
        return self._client

    async def _call(self, operation: str, result: Awaitable[T] | T) -> T:
        try:
            return await cast(Awaitable[T], result)
        except RedisError as e:
            raise StoreError(operation, str(e)) from e

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get(self, key: str) -> str | None:
        return _text(await self.get_binary(key))

    async def mget(self, keys: Sequence[str]) -> list[str | None]:
        return [_text(value) for value in await self.mget_binary(keys)]

    async def get_binary(self, key: str) -> bytes | None:
        client = await self._get_client()
        return _binary(await self._call("GET", client.get(key)))

    async def mget_binary(self, keys: Sequence[str]) -> list[bytes | None]:
        if not keys:
            return []
        client = await self._get_client()
        values = await self._call("MGET", client.mget(list(keys)))
        return [_binary(value) for value in values]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def set(self, key: str, payload: Payload) -> None:
        client = await self._get_client()
        await self._call("SET", client.set(key, payload))

    async def expire(self, key: str, seconds: int) -> None:
        client = await self._get_client()
        await self._call("EXPIRE", client.expire(key, seconds))

    async def delete(self, key: str) -> None:
        client = await self._get_client()
        await self._call("DEL", client.delete(key))

    async def set_and_get(
        self,
        key: str,
        payload: Payload,
        *,
        expire: int | None = None,
        binary: bool = False,
    ) -> Payload | None:
        """SET, optional EXPIRE and GET in a single MULTI/EXEC transaction."""
        client = await self._get_client()
        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.set(key, payload)
                if expire:
                    pipe.expire(key, expire)
                pipe.get(key)
                results: list[Any] = await pipe.execute(raise_on_error=False)
        except RedisError as e:
            raise StoreError("SET", str(e)) from e

        set_result = results[0]
        value = results[-1]
        if isinstance(set_result, Exception):
            raise StoreError("SET", str(set_result)) from set_result
        if expire and isinstance(results[1], Exception):
            logger.warning(f"Failed to set TTL of {expire}s on {key}: {results[1]}")
        if isinstance(value, Exception):
            raise StoreError("GET", str(value)) from value

        return _binary(value) if binary else _text(value)

    async def health_check(self) -> bool:
        """Check Redis connectivity."""
        try:
            client = await self._get_client()
            await cast(Awaitable[bool], client.ping())
            return True
        except Exception:
            return False
