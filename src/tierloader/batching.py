"""Request coalescing for batch loading.

Collapses single-key load() calls issued within one batching window into a
single call of a bulk function, and fans the results back out per key:

- Keys loaded before the window closes share one batch
- Duplicate keys within a batch are fetched once
- Resolved futures are memoized per canonical key (optional)
- Failures are never memoized; a failed key is loaded again on the next call

The window is closed by a schedule hook, which receives the dispatch callback.
next_tick() runs it on the next event-loop iteration, debounce() after a fixed
delay. Tests can pass their own hook to control dispatch explicitly.

Example:
    async def fetch(keys: list[str]) -> list[str]:
        return [k.upper() for k in keys]

    coalescer = BatchCoalescer(fetch)
    a, b = await asyncio.gather(coalescer.load("a"), coalescer.load("b"))
    # fetch() was called once with ["a", "b"]
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Hashable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from tierloader.errors import LoaderError

logger = logging.getLogger(__name__)

K = TypeVar("K")
T = TypeVar("T")

BatchFn = Callable[[list[K]], Awaitable[Sequence[T | BaseException]]]
ScheduleFn = Callable[[Callable[[], None]], None]


def next_tick() -> ScheduleFn:
    """Close the batching window on the next event-loop iteration."""

    def schedule(callback: Callable[[], None]) -> None:
        asyncio.get_running_loop().call_soon(callback)

    return schedule


def debounce(delay: float) -> ScheduleFn:
    """Close the batching window after ``delay`` seconds."""
    if delay < 0:
        raise ValueError("delay must be non-negative")

    def schedule(callback: Callable[[], None]) -> None:
        asyncio.get_running_loop().call_later(delay, callback)

    return schedule


@dataclass
class BatchEntry(Generic[K, T]):
    """One distinct key in a batch and every future waiting on it."""

    key: K
    cache_key: Hashable
    futures: list[asyncio.Future[T]] = field(default_factory=list)


@dataclass
class Batch(Generic[K, T]):
    """Keys collected during one batching window."""

    entries: dict[Hashable, BatchEntry[K, T]] = field(default_factory=dict)
    dispatched: bool = False

    def __len__(self) -> int:
        return len(self.entries)

    def add(self, key: K, cache_key: Hashable, future: asyncio.Future[T]) -> None:
        entry = self.entries.get(cache_key)
        if entry is None:
            entry = self.entries[cache_key] = BatchEntry(key=key, cache_key=cache_key)
        entry.futures.append(future)


class BatchCoalescer(Generic[K, T]):
    """Coalesces per-key loads into bulk calls with optional memoization."""

    def __init__(
        self,
        batch_fn: BatchFn[K, T],
        *,
        cache: bool = True,
        cache_key_fn: Callable[[K], Hashable] | None = None,
        max_batch_size: int | None = None,
        schedule: ScheduleFn | None = None,
    ):
        if max_batch_size is not None and max_batch_size < 1:
            raise ValueError("max_batch_size must be at least 1")

        self.batch_fn = batch_fn
        self.cache = cache
        self.cache_key_fn: Callable[[K], Hashable] = cache_key_fn or (lambda key: key)
        self.max_batch_size = max_batch_size
        self.schedule = schedule or next_tick()

        self._memo: dict[Hashable, asyncio.Future[T]] = {}
        self._batch: Batch[K, T] | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    def __len__(self) -> int:
        """Number of memoized keys."""
        return len(self._memo)

    def __contains__(self, key: K) -> bool:
        return self.cache_key_fn(key) in self._memo

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def load(self, key: K) -> asyncio.Future[T]:
        """Return a future for ``key``, joining the current batch if needed."""
        loop = asyncio.get_running_loop()
        cache_key = self.cache_key_fn(key)

        if self.cache:
            cached = self._memo.get(cache_key)
            if cached is not None and not cached.cancelled():
                return cached

        future: asyncio.Future[T] = loop.create_future()
        if self.cache:
            self._memo[cache_key] = future

        self._current_batch(cache_key).add(key, cache_key, future)
        return future

    def load_many(
        self, keys: Iterable[K], *, return_exceptions: bool = False
    ) -> asyncio.Future[list[Any]]:
        """Load several keys; results keep the input order."""
        return asyncio.gather(
            *(self.load(key) for key in keys), return_exceptions=return_exceptions
        )

    def _current_batch(self, cache_key: Hashable) -> Batch[K, T]:
        batch = self._batch
        if batch is not None and not batch.dispatched:
            full = (
                self.max_batch_size is not None
                and len(batch) >= self.max_batch_size
                and cache_key not in batch.entries
            )
            if not full:
                return batch

        batch = self._batch = Batch()
        self.schedule(lambda: self._dispatch(batch))
        return batch

    def _dispatch(self, batch: Batch[K, T]) -> None:
        batch.dispatched = True
        if self._batch is batch:
            self._batch = None
        if not batch.entries:
            return

        task = asyncio.get_running_loop().create_task(self._run_batch(batch))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_batch(self, batch: Batch[K, T]) -> None:
        entries = list(batch.entries.values())
        keys = [entry.key for entry in entries]
        logger.debug(f"Dispatching batch of {len(keys)} keys")

        try:
            values = list(await self.batch_fn(keys))
        except asyncio.CancelledError:
            for entry in entries:
                self._cancel(entry)
            raise
        except Exception as e:
            for entry in entries:
                self._fail(entry, e)
            return

        if len(values) != len(keys):
            error = LoaderError(
                keys,
                f"Batch function must return one result per key: "
                f"got {len(values)} results for {len(keys)} keys",
            )
            for entry in entries:
                self._fail(entry, error)
            return

        for entry, value in zip(entries, values):
            if isinstance(value, BaseException):
                self._fail(entry, value)
                continue
            for future in entry.futures:
                if not future.done():
                    future.set_result(value)

    def _fail(self, entry: BatchEntry[K, T], error: BaseException) -> None:
        for future in entry.futures:
            self._evict(entry.cache_key, future)
            if not future.done():
                future.set_exception(error)

    def _cancel(self, entry: BatchEntry[K, T]) -> None:
        for future in entry.futures:
            self._evict(entry.cache_key, future)
            future.cancel()

    def _evict(self, cache_key: Hashable, future: asyncio.Future[T]) -> None:
        # Only drop the memo entry if it still belongs to this batch
        if self._memo.get(cache_key) is future:
            del self._memo[cache_key]

    # -------------------------------------------------------------------------
    # Memo management
    # -------------------------------------------------------------------------

    def prime(self, key: K, value: T) -> None:
        """Memoize ``value`` for ``key`` unless the key is already memoized."""
        if not self.cache:
            return
        cache_key = self.cache_key_fn(key)
        if cache_key in self._memo:
            return
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        future.set_result(value)
        self._memo[cache_key] = future

    def clear(self, key: K) -> None:
        self._memo.pop(self.cache_key_fn(key), None)

    def clear_many(self, keys: Iterable[K]) -> None:
        for key in keys:
            self.clear(key)

    def clear_all(self) -> None:
        self._memo.clear()
