"""Tests for the Redis store adapter with a mocked client."""

from __future__ import annotations

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from tierloader.errors import DecodeError, StoreError
from tierloader.store import redis as redis_module
from tierloader.store.base import KeyValueStore
from tierloader.store.redis import RedisStore


def _pipeline(results: list[object]) -> MagicMock:
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=results)
    pipe.__aenter__ = AsyncMock(return_value=pipe)
    pipe.__aexit__ = AsyncMock(return_value=False)
    return pipe


class TestRedisStore:
    """Tests for RedisStore operations."""

    @pytest.fixture
    def mock_redis(self) -> AsyncMock:
        """Create mock Redis client."""
        mock = AsyncMock()
        mock.get = AsyncMock(return_value=None)
        mock.mget = AsyncMock(return_value=[])
        mock.set = AsyncMock(return_value=True)
        mock.expire = AsyncMock(return_value=True)
        mock.delete = AsyncMock(return_value=1)
        mock.ping = AsyncMock(return_value=True)
        mock.pipeline = MagicMock(return_value=_pipeline([True, b"{}"]))
        return mock

    @pytest.fixture
    def store(self, mock_redis: AsyncMock) -> RedisStore:
        return RedisStore(mock_redis)

    def test_satisfies_protocol(self, store: RedisStore) -> None:
        assert isinstance(store, KeyValueStore)

    @pytest.mark.asyncio
    async def test_get_decodes_text(self, store: RedisStore, mock_redis: AsyncMock) -> None:
        """Text reads decode UTF-8."""
        mock_redis.get.return_value = '{"name":"Zoë"}'.encode()

        assert await store.get("ks:a") == '{"name":"Zoë"}'
        mock_redis.get.assert_awaited_once_with("ks:a")

    @pytest.mark.asyncio
    async def test_get_binary_keeps_bytes(
        self, store: RedisStore, mock_redis: AsyncMock
    ) -> None:
        mock_redis.get.return_value = b"\xff\x00"

        assert await store.get_binary("ks:a") == b"\xff\x00"

    @pytest.mark.asyncio
    async def test_get_missing(self, store: RedisStore) -> None:
        assert await store.get("ks:a") is None

    @pytest.mark.asyncio
    async def test_mget_positional(self, store: RedisStore, mock_redis: AsyncMock) -> None:
        """MGET keeps positions, including absent and empty values."""
        mock_redis.mget.return_value = [b"{}", None, b""]

        assert await store.mget(["a", "b", "c"]) == ["{}", None, ""]
        mock_redis.mget.assert_awaited_once_with(["a", "b", "c"])

    @pytest.mark.asyncio
    async def test_mget_binary(self, store: RedisStore, mock_redis: AsyncMock) -> None:
        mock_redis.mget.return_value = [b"\x01", None]

        assert await store.mget_binary(["a", "b"]) == [b"\x01", None]

    @pytest.mark.asyncio
    async def test_mget_invalid_utf8(self, store: RedisStore, mock_redis: AsyncMock) -> None:
        """Text reads raise DecodeError; binary reads return the raw bytes."""
        mock_redis.mget.return_value = [b"\xff\xfe", b'{"a": 1}']

        with pytest.raises(DecodeError):
            await store.mget(["bad", "good"])
        assert await store.mget_binary(["bad", "good"]) == [b"\xff\xfe", b'{"a": 1}']

    @pytest.mark.asyncio
    async def test_mget_empty_skips_redis(
        self, store: RedisStore, mock_redis: AsyncMock
    ) -> None:
        assert await store.mget([]) == []
        mock_redis.mget.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_set_expire_delete(self, store: RedisStore, mock_redis: AsyncMock) -> None:
        await store.set("ks:a", "{}")
        await store.expire("ks:a", 10)
        await store.delete("ks:a")

        mock_redis.set.assert_awaited_once_with("ks:a", "{}")
        mock_redis.expire.assert_awaited_once_with("ks:a", 10)
        mock_redis.delete.assert_awaited_once_with("ks:a")

    @pytest.mark.asyncio
    async def test_redis_error_wrapped(self, store: RedisStore, mock_redis: AsyncMock) -> None:
        """redis-py errors surface as StoreError with the cause chained."""
        mock_redis.mget.side_effect = RedisConnectionError("connection refused")

        with pytest.raises(StoreError) as exc_info:
            await store.mget(["a"])

        assert exc_info.value.operation == "MGET"
        assert isinstance(exc_info.value.__cause__, RedisConnectionError)

    @pytest.mark.asyncio
    async def test_health_check(self, store: RedisStore, mock_redis: AsyncMock) -> None:
        assert await store.health_check() is True

        mock_redis.ping.side_effect = RedisConnectionError("down")
        assert await store.health_check() is False


class TestSetAndGet:
    """Tests for the write-then-read transaction."""

    @pytest.mark.asyncio
    async def test_set_and_get_without_expire(self) -> None:
        """SET and GET are queued in one transaction."""
        pipe = _pipeline([True, b'{"a":1}'])
        client = AsyncMock()
        client.pipeline = MagicMock(return_value=pipe)

        result = await RedisStore(client).set_and_get("ks:a", b'{"a":1}')

        assert result == '{"a":1}'
        client.pipeline.assert_called_once_with(transaction=True)
        pipe.set.assert_called_once_with("ks:a", b'{"a":1}')
        pipe.expire.assert_not_called()
        pipe.get.assert_called_once_with("ks:a")
        pipe.execute.assert_awaited_once_with(raise_on_error=False)

    @pytest.mark.asyncio
    async def test_set_and_get_with_expire(self) -> None:
        """EXPIRE is queued between SET and GET."""
        pipe = _pipeline([True, True, b""])
        client = AsyncMock()
        client.pipeline = MagicMock(return_value=pipe)

        result = await RedisStore(client).set_and_get("ks:a", "", expire=60)

        assert result == ""
        pipe.expire.assert_called_once_with("ks:a", 60)

    @pytest.mark.asyncio
    async def test_set_and_get_binary(self) -> None:
        pipe = _pipeline([True, b"\x00"])
        client = AsyncMock()
        client.pipeline = MagicMock(return_value=pipe)

        assert await RedisStore(client).set_and_get("k", b"\x00", binary=True) == b"\x00"

    @pytest.mark.asyncio
    async def test_expire_failure_is_logged_not_raised(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        """A TTL failure does not fail the fill."""
        pipe = _pipeline([True, ResponseError("ERR invalid expire time"), b"{}"])
        client = AsyncMock()
        client.pipeline = MagicMock(return_value=pipe)

        with caplog.at_level(logging.WARNING, logger="tierloader.store.redis"):
            result = await RedisStore(client).set_and_get("ks:a", b"{}", expire=5)

        assert result == "{}"
        assert "Failed to set TTL" in caplog.text

    @pytest.mark.asyncio
    async def test_set_failure_raises(self) -> None:
        pipe = _pipeline([ResponseError("OOM command not allowed"), b"{}"])
        client = AsyncMock()
        client.pipeline = MagicMock(return_value=pipe)

        with pytest.raises(StoreError, match="SET failed"):
            await RedisStore(client).set_and_get("ks:a", b"{}")

    @pytest.mark.asyncio
    async def test_transaction_failure_raises(self) -> None:
        pipe = _pipeline([])
        pipe.execute.side_effect = RedisConnectionError("reset by peer")
        client = AsyncMock()
        client.pipeline = MagicMock(return_value=pipe)

        with pytest.raises(StoreError):
            await RedisStore(client).set_and_get("ks:a", b"{}")


class TestConnectionPool:
    """Tests for the module-level client."""

    @pytest.mark.asyncio
    async def test_get_redis_reuses_client(self, monkeypatch: pytest.MonkeyPatch) -> None:
        client = AsyncMock()
        from_url = MagicMock(return_value=client)
        monkeypatch.setattr(redis_module.redis, "from_url", from_url)
        monkeypatch.setattr(redis_module, "_redis_client", None)

        first = await redis_module.get_redis()
        second = await redis_module.get_redis()

        assert first is second is client
        from_url.assert_called_once()
        assert from_url.call_args.kwargs["decode_responses"] is False

        await redis_module.close_redis()
        client.aclose.assert_awaited_once()
        assert redis_module._redis_client is None

    @pytest.mark.asyncio
    async def test_store_uses_shared_client(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A RedisStore without a client picks up the shared one lazily."""
        client = AsyncMock()
        client.get = AsyncMock(return_value=b"{}")
        monkeypatch.setattr(redis_module, "_redis_client", client)

        assert await RedisStore().get("k") == "{}"
