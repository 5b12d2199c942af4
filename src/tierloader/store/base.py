"""Key-value store contract used by the loader.

The loader only needs a handful of string-keyed operations. Payloads are
str (text mode) or bytes (binary mode); None means the key is absent.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

Payload = str | bytes


@runtime_checkable
class KeyValueStore(Protocol):
    """Async key-value store operations."""

    async def get(self, key: str) -> str | None: ...

    async def mget(self, keys: Sequence[str]) -> list[str | None]:
        """Positional multi-get, same order as ``keys``."""
        ...

    async def get_binary(self, key: str) -> bytes | None: ...

    async def mget_binary(self, keys: Sequence[str]) -> list[bytes | None]: ...

    async def set(self, key: str, payload: Payload) -> None: ...

    async def expire(self, key: str, seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def set_and_get(
        self,
        key: str,
        payload: Payload,
        *,
        expire: int | None = None,
        binary: bool = False,
    ) -> Payload | None:
        """Write ``payload``, apply the TTL, and read the value back in one round trip.

        A failure to apply the TTL is not fatal; implementations log it.
        """
        ...
