"""Value encoding for store payloads.

A store entry is a single string/bytes payload per key, in one of three states:

- MISSING: the store has no entry (it returned None)
- NULL: zero-length payload, the loader was asked and produced None
- PRESENT: the serialized value (JSON by default)

Keeping the explicit null as an empty payload means no separate existence
flag has to be stored next to the value.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import Any

import orjson
from pydantic import BaseModel

from tierloader.errors import DecodeError, EncodeError

Payload = str | bytes

SerializeFn = Callable[[Any], Any]
DeserializeFn = Callable[[Payload], Any]

NULL_PAYLOAD = ""

ORJSON_OPTIONS = orjson.OPT_NON_STR_KEYS | orjson.OPT_UTC_Z


class PayloadState(str, Enum):
    """State of a payload read back from the store."""

    MISSING = "missing"
    NULL = "null"
    PRESENT = "present"


class ValueCodec:
    """Serializes application values to store payloads and back.

    Payloads are read from the store as bytes. Unless ``binary`` is set, each
    one is decoded as UTF-8 before parsing, so deserializers receive str.
    """

    def __init__(
        self,
        serialize: SerializeFn | None = None,
        deserialize: DeserializeFn | None = None,
        *,
        binary: bool = False,
    ):
        self.serialize = serialize
        self.deserialize = deserialize
        self.binary = binary

    def encode(self, value: Any) -> Payload:
        """Encode a value for storage.

        None becomes the explicit-null payload. Without a custom serializer only
        JSON objects/arrays (and pydantic models) are accepted.

        Raises:
            EncodeError: If the value cannot be serialized.
        """
        if value is None:
            return NULL_PAYLOAD

        if self.serialize is not None:
            try:
                payload = self.serialize(value)
            except Exception as e:
                raise EncodeError(f"Custom serializer failed: {e}", value) from e
            return self._coerce(payload, value)

        if isinstance(value, BaseModel):
            value = value.model_dump(by_alias=True, exclude_none=True)

        if isinstance(value, (dict, list, tuple)):
            try:
                return orjson.dumps(value, option=ORJSON_OPTIONS)
            except TypeError as e:
                raise EncodeError(f"Value is not JSON serializable: {e}", value) from e

        raise EncodeError("Must be Object or None", value)

    @staticmethod
    def _coerce(payload: Any, value: Any) -> Payload:
        if isinstance(payload, (str, bytes)):
            return payload
        # redis stores numbers as their decimal text
        if isinstance(payload, (int, float)) and not isinstance(payload, bool):
            return str(payload)
        raise EncodeError(
            f"Serializer must return str or bytes, got {type(payload).__name__}", value
        )

    @staticmethod
    def state(payload: Payload | None) -> PayloadState:
        """Classify a raw store payload."""
        if payload is None:
            return PayloadState.MISSING
        if len(payload) == 0:
            return PayloadState.NULL
        return PayloadState.PRESENT

    def decode(self, payload: Payload | None) -> Any:
        """Decode a store payload.

        Both MISSING and NULL decode to None; use state() to tell them apart.

        Raises:
            DecodeError: If the payload cannot be parsed.
        """
        if self.state(payload) is not PayloadState.PRESENT:
            return None

        if not self.binary and isinstance(payload, bytes):
            try:
                payload = payload.decode("utf-8")
            except UnicodeDecodeError as e:
                raise DecodeError(f"Payload is not valid UTF-8: {e}", payload) from e

        try:
            if self.deserialize is not None:
                return self.deserialize(payload)  # type: ignore[arg-type]
            return orjson.loads(payload)  # type: ignore[arg-type]
        except Exception as e:
            raise DecodeError(f"Failed to decode payload: {e}", payload) from e
