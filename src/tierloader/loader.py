"""Two-tier cache-aside loader.

RedisDataLoader resolves keys through a fallback chain:

1. Local memo: futures memoized per canonical key for this instance
2. Redis: one MGET per batching window for every key not memoized
3. User loader: called once per batch with the keys Redis did not have
4. Write-back: SET (+ EXPIRE) + GET in one transaction, the read-back is returned

An explicit None from the user loader is stored as an empty payload, so later
reads (from any process) return None without asking the loader again.

Example:
    async def load_users(ids: list[int]) -> list[dict | None]:
        rows = await repo.get_users(ids)
        return [rows.get(i) for i in ids]

    users = RedisDataLoader("users", load_users, LoaderOptions(expire=300))
    alice, bob = await asyncio.gather(users.load(1), users.load(2))
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import math
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from tierloader.batching import BatchCoalescer, ScheduleFn
from tierloader.codec import DeserializeFn, PayloadState, SerializeFn, ValueCodec
from tierloader.config import Settings, settings
from tierloader.errors import DecodeError, InvalidArgumentError, LoaderError, StoreError
from tierloader.keys import CacheKeyFn, KeyCodec
from tierloader.metrics import LoaderMetrics
from tierloader.observability.logging import LogContext
from tierloader.store.redis import RedisStore

if TYPE_CHECKING:
    from tierloader.store.base import KeyValueStore

logger = logging.getLogger(__name__)

BatchLoadFn = Callable[[list[Any]], Awaitable[Sequence[Any]] | Sequence[Any]]


class _Unset:
    """Marker for an omitted argument, distinct from an explicit None."""

    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


@dataclass
class LoaderOptions:
    """Per-instance loader configuration."""

    # TTL applied after every write (seconds); None keeps entries forever
    expire: int | timedelta | None = None

    # Custom payload codec, supplied as a pair
    serialize: SerializeFn | None = None
    deserialize: DeserializeFn | None = None

    # Override for key canonicalization
    cache_key_fn: CacheKeyFn | None = None

    # In-process memoization of resolved keys
    local_cache: bool = True

    # Read payloads back as bytes instead of str
    binary_payload: bool = False

    # Maximum distinct keys per store round trip
    max_batch_size: int | None = None

    # Batching window hook (defaults to one event-loop iteration)
    schedule: ScheduleFn | None = None

    def __post_init__(self) -> None:
        if isinstance(self.expire, timedelta):
            self.expire = math.ceil(self.expire.total_seconds())
        if self.expire is not None and self.expire <= 0:
            raise InvalidArgumentError("expire must be a positive number of seconds")
        if (self.serialize is None) != (self.deserialize is None):
            raise InvalidArgumentError("serialize and deserialize must be supplied together")
        if self.max_batch_size is not None and self.max_batch_size < 1:
            raise InvalidArgumentError("max_batch_size must be at least 1")

    @classmethod
    def from_settings(cls, config: Settings | None = None, **overrides: Any) -> LoaderOptions:
        """Build options from Settings, with keyword overrides."""
        config = config or settings
        values: dict[str, Any] = {
            "expire": config.default_expire,
            "local_cache": config.local_cache,
            "binary_payload": config.binary_payload,
            "max_batch_size": config.max_batch_size,
        }
        values.update(overrides)
        return cls(**values)


def _as_batch_fn(loader: Any) -> Callable[[list[Any]], Awaitable[list[Any]]]:
    """Normalize a user loader into an async batch function.

    Accepts either a batch function or an object exposing load(key), such as
    a strawberry DataLoader. Per-key errors are returned, not raised.
    """
    load = getattr(loader, "load", None)
    if callable(load):

        async def load_each(keys: list[Any]) -> list[Any]:
            return list(await asyncio.gather(*(load(key) for key in keys), return_exceptions=True))

        return load_each

    if callable(loader):

        async def load_batch(keys: list[Any]) -> list[Any]:
            result = loader(keys)
            if inspect.isawaitable(result):
                result = await result
            return list(result)

        return load_batch

    raise InvalidArgumentError("loader must be a batch function or expose load(key)")


def _loader_error(key: Any, error: BaseException) -> LoaderError:
    if isinstance(error, LoaderError):
        return error
    wrapped = LoaderError(key, f"Loader failed for key {key!r}: {error}")
    wrapped.__cause__ = error
    return wrapped


class RedisDataLoader:
    """Batched loader backed by a local memo and a Redis store.

    Each instance owns its namespace, user loader and memo table.
    """

    def __init__(
        self,
        namespace: str | None,
        loader: BatchLoadFn | Any,
        options: LoaderOptions | None = None,
        *,
        store: KeyValueStore | None = None,
        metrics: LoaderMetrics | None = None,
    ):
        self.options = options or LoaderOptions()
        self.namespace = namespace or None
        self.keys = KeyCodec(self.namespace, self.options.cache_key_fn)
        self.codec = ValueCodec(
            self.options.serialize, self.options.deserialize, binary=self.options.binary_payload
        )
        self.store: KeyValueStore = store if store is not None else RedisStore()
        self.metrics = metrics or LoaderMetrics()

        self._batch_load = _as_batch_fn(loader)
        self._coalescer: BatchCoalescer[Any, Any] = BatchCoalescer(
            self._fetch,
            cache=self.options.local_cache,
            cache_key_fn=self.keys.canonicalize,
            max_batch_size=self.options.max_batch_size,
            schedule=self.options.schedule,
        )

    @classmethod
    def from_settings(
        cls,
        loader: BatchLoadFn | Any,
        namespace: str | None = None,
        *,
        store: KeyValueStore | None = None,
        config: Settings | None = None,
        **overrides: Any,
    ) -> RedisDataLoader:
        """Create a loader using Settings defaults for namespace and options."""
        config = config or settings
        return cls(
            namespace if namespace is not None else config.default_namespace,
            loader,
            LoaderOptions.from_settings(config, **overrides),
            store=store,
        )

    def __repr__(self) -> str:
        return f"RedisDataLoader(namespace={self.namespace!r}, memoized={len(self._coalescer)})"

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def load(self, key: Any = None) -> Awaitable[Any]:
        """Load one key.

        Returns an awaitable resolving to the cached or freshly loaded value.
        Cancelling it does not affect other callers waiting on the same key.

        Raises:
            InvalidArgumentError: If ``key`` is omitted or not a valid key.
        """
        if key is None:
            raise InvalidArgumentError("Key parameter is required")
        self.keys.canonicalize(key)
        return asyncio.shield(self._coalescer.load(key))

    def load_many(
        self, keys: Sequence[Any] | None = None, *, return_exceptions: bool = False
    ) -> Awaitable[list[Any]]:
        """Load several keys concurrently; results keep the input order.

        Raises:
            InvalidArgumentError: If ``keys`` is not a list/tuple or holds an invalid key.
        """
        if not isinstance(keys, (list, tuple)):
            raise InvalidArgumentError("Keys parameter must be a list or tuple")
        for key in keys:
            if key is None:
                raise InvalidArgumentError("Keys must not contain None")
            self.keys.canonicalize(key)

        if not keys:
            done: asyncio.Future[list[Any]] = asyncio.get_running_loop().create_future()
            done.set_result([])
            return done

        return asyncio.gather(
            *(self.load(key) for key in keys), return_exceptions=return_exceptions
        )

    async def _fetch(self, keys: list[Any]) -> list[Any]:
        """Resolve one batch of distinct keys against the store and the loader."""
        with LogContext(namespace=self.namespace, batch_id=uuid4().hex[:8]):
            self.metrics.record_batch(len(keys))
            store_keys = [self.keys.store_key(key) for key in keys]

            # Raw bytes; text decoding happens per key in the codec
            try:
                payloads = await self.store.mget_binary(store_keys)
            except StoreError:
                self.metrics.store_errors += 1
                raise

            results: list[Any] = [None] * len(keys)
            missing: list[int] = []
            for i, payload in enumerate(payloads):
                if self.codec.state(payload) is PayloadState.MISSING:
                    missing.append(i)
                    continue
                try:
                    results[i] = self.codec.decode(payload)
                except DecodeError as e:
                    self.metrics.decode_errors += 1
                    results[i] = e
                else:
                    self.metrics.store_hits += 1

            if missing:
                self.metrics.store_misses += len(missing)
                logger.debug(f"Filling {len(missing)} of {len(keys)} keys from loader")
                filled = await self._fill(
                    [keys[i] for i in missing], [store_keys[i] for i in missing]
                )
                for i, value in zip(missing, filled):
                    results[i] = value

            return results

    async def _fill(self, keys: list[Any], store_keys: list[str]) -> list[Any]:
        """Call the user loader for missing keys and write the results through."""
        self.metrics.loader_calls += 1
        try:
            values = await self._batch_load(keys)
        except Exception as e:
            self.metrics.loader_errors += len(keys)
            return [_loader_error(key, e) for key in keys]

        if len(values) != len(keys):
            self.metrics.loader_errors += len(keys)
            return [
                LoaderError(
                    key,
                    f"Loader must return one result per key: "
                    f"got {len(values)} results for {len(keys)} keys",
                )
                for key in keys
            ]

        results: list[Any] = [None] * len(keys)
        pending: list[int] = []
        writes = []
        for i, (key, store_key, value) in enumerate(zip(keys, store_keys, values)):
            if isinstance(value, BaseException):
                self.metrics.loader_errors += 1
                results[i] = _loader_error(key, value)
                continue
            pending.append(i)
            writes.append(self._write(store_key, value))

        outcomes = await asyncio.gather(*writes, return_exceptions=True)
        for i, outcome in zip(pending, outcomes):
            if isinstance(outcome, StoreError):
                self.metrics.store_errors += 1
            results[i] = outcome

        return results

    async def _write(self, store_key: str, value: Any) -> Any:
        """Encode and write through, returning the decoded read-back value."""
        payload = self.codec.encode(value)
        stored = await self.store.set_and_get(
            store_key,
            payload,
            expire=self.options.expire,  # type: ignore[arg-type]
            binary=True,
        )
        self.metrics.store_writes += 1
        return self.codec.decode(stored)

    # -------------------------------------------------------------------------
    # Priming and clearing
    # -------------------------------------------------------------------------

    async def prime(self, key: Any = None, value: Any = UNSET) -> Any:
        """Write ``value`` through for ``key`` and seed the local memo with it.

        None primes an explicit null. Any memoized value is replaced.
        Returns the decoded value as read back from the store.

        Raises:
            InvalidArgumentError: If ``key`` or ``value`` is omitted.
        """
        if key is None:
            raise InvalidArgumentError("Key parameter is required")
        if value is UNSET:
            raise InvalidArgumentError("Value parameter is required")

        store_key = self.keys.store_key(key)
        with LogContext(namespace=self.namespace):
            decoded = await self._write(store_key, value)
            logger.debug(f"Primed {store_key}")

        self._coalescer.clear(key)
        self._coalescer.prime(key, decoded)
        return decoded

    async def clear(self, key: Any = None) -> None:
        """Delete ``key`` from the store, then from the local memo."""
        if key is None:
            raise InvalidArgumentError("Key parameter is required")

        store_key = self.keys.store_key(key)
        await self.store.delete(store_key)
        self._coalescer.clear(key)

    def clear_local(self, key: Any = None) -> None:
        """Evict ``key`` from the local memo only."""
        if key is None:
            raise InvalidArgumentError("Key parameter is required")
        self._coalescer.clear(key)

    def clear_all_local(self) -> None:
        """Evict every key from the local memo only."""
        self._coalescer.clear_all()
