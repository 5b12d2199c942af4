"""Store adapters for tierloader."""

from tierloader.store.base import KeyValueStore, Payload
from tierloader.store.redis import RedisStore, close_redis, get_redis

__all__ = [
    "KeyValueStore",
    "Payload",
    "RedisStore",
    "close_redis",
    "get_redis",
]
