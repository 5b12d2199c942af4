"""Exception taxonomy for tierloader.

Every error raised by the loader derives from TierLoaderError so callers can
catch the whole family, while the subclasses keep the failure kinds apart:

- InvalidArgumentError: bad key / keys / value passed to a public operation
- EncodeError / DecodeError: a value could not be serialized or parsed
- StoreError: the key-value store failed (transport or command error)
- LoaderError: the user-supplied loader failed for a specific key
"""

from __future__ import annotations

from typing import Any


class TierLoaderError(Exception):
    """Base exception for tierloader errors."""


class InvalidArgumentError(TierLoaderError, ValueError):
    """A public operation was called with a missing or malformed argument."""


class EncodeError(TierLoaderError):
    """A value cannot be serialized into a store payload."""

    def __init__(self, message: str, value: Any = None):
        self.value = value
        super().__init__(message)


class DecodeError(TierLoaderError):
    """A stored payload cannot be parsed back into a value."""

    def __init__(self, message: str, payload: str | bytes | None = None):
        self.payload = payload
        super().__init__(message)


class StoreError(TierLoaderError):
    """The persistent store failed while executing an operation."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"{operation} failed: {message}")


class LoaderError(TierLoaderError):
    """The user-supplied loader failed for a key."""

    def __init__(self, key: Any, message: str):
        self.key = key
        super().__init__(message)
