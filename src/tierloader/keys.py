"""Cache key schema for tierloader.

Key format: {namespace}:{canonical_key}

Where:
- namespace: caller-chosen prefix scoping one loader's entries (optional)
- canonical_key: deterministic string form of the application key

Primitive keys are stringified directly. Structured keys (dicts, lists, tuples,
pydantic models) are serialized as compact JSON with sorted object keys, so
field order never changes the resulting store key.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import orjson
from pydantic import BaseModel

from tierloader.errors import InvalidArgumentError

KEY_SEPARATOR = ":"

ORJSON_KEY_OPTIONS = orjson.OPT_SORT_KEYS | orjson.OPT_NON_STR_KEYS

CacheKeyFn = Callable[[Any], str]


def _canonical_primitive(key: str | int | float | bool) -> str:
    if isinstance(key, str):
        return key
    if isinstance(key, bool):
        return "true" if key else "false"
    if isinstance(key, float) and key.is_integer():
        return str(int(key))
    return str(key)


def _canonical_structured(key: dict[Any, Any] | list[Any] | tuple[Any, ...] | BaseModel) -> str:
    if isinstance(key, BaseModel):
        key = key.model_dump(mode="json", by_alias=True)
    try:
        return orjson.dumps(key, option=ORJSON_KEY_OPTIONS).decode()
    except TypeError as e:
        raise InvalidArgumentError(f"Key is not JSON serializable: {e}") from e


def canonicalize(key: Any) -> str:
    """Return the canonical string form of an application key.

    Raises InvalidArgumentError for None or unsupported key types.
    """
    if key is None:
        raise InvalidArgumentError("Key parameter is required")
    if isinstance(key, (str, int, float)):
        return _canonical_primitive(key)
    if isinstance(key, (dict, list, tuple, BaseModel)):
        return _canonical_structured(key)
    raise InvalidArgumentError(f"Unsupported key type: {type(key).__name__}")


class KeyCodec:
    """Maps application keys to namespaced store keys."""

    def __init__(self, namespace: str | None = None, cache_key_fn: CacheKeyFn | None = None):
        self.namespace = namespace or None
        self.cache_key_fn = cache_key_fn

    def canonicalize(self, key: Any) -> str:
        """Canonical key used for both the local memo and the store."""
        if key is None:
            raise InvalidArgumentError("Key parameter is required")
        if self.cache_key_fn is not None:
            return str(self.cache_key_fn(key))
        return canonicalize(key)

    def store_key_for(self, canonical: str) -> str:
        """Namespace an already-canonical key."""
        if self.namespace is None:
            return canonical
        return f"{self.namespace}{KEY_SEPARATOR}{canonical}"

    def store_key(self, key: Any) -> str:
        return self.store_key_for(self.canonicalize(key))
