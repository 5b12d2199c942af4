"""tierloader: batched, two-tier cache-aside loading.

Provides a DataLoader-style API on top of Redis:
- Concurrent load() calls are coalesced into one MGET per batching window
- Misses are computed by a user-supplied bulk loader and written through
- Explicit None results are cached, distinct from keys never loaded
- Resolved values are memoized in-process per loader instance
"""

from tierloader.batching import BatchCoalescer, debounce, next_tick
from tierloader.codec import PayloadState, ValueCodec
from tierloader.config import Settings, settings
from tierloader.errors import (
    DecodeError,
    EncodeError,
    InvalidArgumentError,
    LoaderError,
    StoreError,
    TierLoaderError,
)
from tierloader.keys import KeyCodec, canonicalize
from tierloader.loader import UNSET, LoaderOptions, RedisDataLoader
from tierloader.metrics import LoaderMetrics
from tierloader.store import KeyValueStore, RedisStore, close_redis, get_redis

__all__ = [
    # Core loader
    "RedisDataLoader",
    "LoaderOptions",
    "LoaderMetrics",
    "UNSET",
    # Building blocks
    "BatchCoalescer",
    "KeyCodec",
    "PayloadState",
    "ValueCodec",
    "canonicalize",
    "debounce",
    "next_tick",
    # Store
    "KeyValueStore",
    "RedisStore",
    "close_redis",
    "get_redis",
    # Configuration
    "Settings",
    "settings",
    # Errors
    "DecodeError",
    "EncodeError",
    "InvalidArgumentError",
    "LoaderError",
    "StoreError",
    "TierLoaderError",
]
