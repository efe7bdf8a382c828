"""
Value codec for session storage.

Every stored value is wrapped in an ``Envelope``: a small tagged container
holding the value's kind, its qualified type name (for records) and a JSON
payload. Decoding validates the payload into a caller-supplied target type
with pydantic, so primitives, dataclasses, pydantic models and containers
of them all round-trip.
"""

import base64
import binascii
import dataclasses
import json
import logging
import math
from abc import ABC, abstractmethod
from collections.abc import Mapping
from functools import lru_cache
from typing import Any, Optional

from pydantic import BaseModel, TypeAdapter, ValidationError
from pydantic.errors import PydanticSchemaGenerationError
from pydantic_core import PydanticSerializationError, to_jsonable_python

from reqsession.core.errors import DecodeError, EncodeError, NotFound

logger = logging.getLogger(__name__)

# Kinds whose payload is a bare JSON scalar
_SCALAR_KINDS = {
    str: "str",
    bool: "bool",
    int: "int",
    float: "float",
}


def _b64decode(payload: Any) -> bytes:
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, TypeError, ValueError) as e:
        raise DecodeError(f"Stored bytes payload is not valid base64: {e}") from e


def _reject_non_finite(value: Any) -> None:
    """JSON has no NaN/Infinity; nested ones would silently become null."""
    if isinstance(value, float):
        if not math.isfinite(value):
            raise EncodeError(f"Cannot encode non-finite float {value!r} inside a container")
    elif isinstance(value, BaseModel):
        for name in type(value).model_fields:
            _reject_non_finite(getattr(value, name))
    elif dataclasses.is_dataclass(value) and not isinstance(value, type):
        for field in dataclasses.fields(value):
            _reject_non_finite(getattr(value, field.name))
    elif isinstance(value, Mapping):
        for item in value.values():
            _reject_non_finite(item)
    elif isinstance(value, (list, tuple, set, frozenset)):
        for item in value:
            _reject_non_finite(item)


class Envelope(BaseModel):
    """Tagged container for one encoded value."""

    kind: str
    type: Optional[str] = None
    data: Any = None

    def render(self) -> str:
        """
        Render the payload as plain text.

        Strings come back verbatim; everything else is rendered as compact
        JSON (``true``, ``18``, ``{"name":"jinzhu"}``).
        """
        if self.kind == "none":
            return ""
        if self.kind == "str":
            return self.data
        if self.kind == "bytes":
            return _b64decode(self.data).decode("utf-8", errors="replace")
        if self.kind == "float" and isinstance(self.data, str):
            return self.data
        return json.dumps(self.data, ensure_ascii=False, separators=(",", ":"))


class Codec(ABC):
    """Abstract value codec.

    Implementations turn arbitrary values into bytes for a ``Store`` and
    back. ``decode`` returns the decoded value rather than writing through a
    reference.
    """

    @abstractmethod
    def encode(self, value: Any) -> bytes:
        """Encode a value.

        Raises:
            EncodeError: If the value cannot be represented
        """

    @abstractmethod
    def decode(self, data: Optional[bytes], target: Any) -> Any:
        """Decode bytes into an instance of ``target``.

        Raises:
            NotFound: If ``data`` is empty or None
            DecodeError: If the bytes are corrupt or do not fit ``target``
        """

    @abstractmethod
    def render(self, data: Optional[bytes]) -> str:
        """Decode bytes into their plain-string form.

        Raises:
            NotFound: If ``data`` is empty or None
            DecodeError: If the bytes are corrupt
        """


@lru_cache(maxsize=256)
def _adapter(target: Any) -> TypeAdapter:
    return TypeAdapter(target)


def _type_adapter(target: Any) -> TypeAdapter:
    try:
        return _adapter(target)
    except TypeError:
        # Unhashable type expression, skip the cache
        return TypeAdapter(target)


def _qualified_name(cls: type) -> str:
    return f"{cls.__module__}.{cls.__qualname__}"


class JSONCodec(Codec):
    """Default codec: UTF-8 JSON envelopes validated with pydantic."""

    def envelope(self, value: Any) -> Envelope:
        """Wrap a value in its tagged envelope."""
        if value is None:
            return Envelope(kind="none")

        # bool must be checked before int
        for scalar_type, kind in _SCALAR_KINDS.items():
            if type(value) is scalar_type:
                if kind == "float" and not math.isfinite(value):
                    # Carried as "nan", "inf" or "-inf"
                    return Envelope(kind=kind, data=repr(value))
                return Envelope(kind=kind, data=value)

        if isinstance(value, (bytes, bytearray)):
            return Envelope(
                kind="bytes", data=base64.b64encode(bytes(value)).decode("ascii")
            )

        if isinstance(value, BaseModel):
            return Envelope(
                kind="record",
                type=_qualified_name(type(value)),
                data=value.model_dump(mode="json"),
            )

        if dataclasses.is_dataclass(value) and not isinstance(value, type):
            return Envelope(
                kind="record",
                type=_qualified_name(type(value)),
                data=self._jsonable(value),
            )

        if isinstance(value, Mapping):
            return Envelope(kind="mapping", data=self._jsonable(value))

        if isinstance(value, (list, tuple, set, frozenset)):
            return Envelope(kind="sequence", data=self._jsonable(value))

        # Subclasses of scalars (IntEnum, str Enum) and other JSON-able values
        return Envelope(
            kind="json", type=_qualified_name(type(value)), data=self._jsonable(value)
        )

    def _jsonable(self, value: Any) -> Any:
        try:
            return to_jsonable_python(value)
        except PydanticSerializationError as e:
            raise EncodeError(
                f"Cannot encode value of type {type(value).__name__}: {e}"
            ) from e

    def encode(self, value: Any) -> bytes:
        envelope = self.envelope(value)
        if envelope.kind not in _SCALAR_KINDS.values():
            _reject_non_finite(value)
        try:
            return envelope.model_dump_json().encode("utf-8")
        except PydanticSerializationError as e:
            raise EncodeError(
                f"Cannot encode value of type {type(value).__name__}: {e}"
            ) from e

    def open(self, data: Optional[bytes]) -> Envelope:
        """Parse stored bytes back into an envelope."""
        if not data:
            raise NotFound()
        try:
            return Envelope.model_validate_json(data)
        except ValidationError as e:
            raise DecodeError(f"Stored session value is not a valid envelope: {e}") from e

    def decode(self, data: Optional[bytes], target: Any) -> Any:
        envelope = self.open(data)
        self._check_scalar_target(envelope, target)

        payload = envelope.data
        if envelope.kind == "bytes":
            payload = _b64decode(payload)
        elif envelope.kind == "float" and isinstance(payload, str):
            try:
                payload = float(payload)
            except ValueError as e:
                raise DecodeError(f"Stored float payload {payload!r} is not a number") from e

        try:
            return _type_adapter(target).validate_python(payload)
        except ValidationError as e:
            raise DecodeError(
                f"Cannot decode {envelope.type or envelope.kind} value into {target!r}: "
                f"{e.error_count()} validation error(s)"
            ) from e
        except PydanticSchemaGenerationError as e:
            raise DecodeError(f"Unsupported decode target {target!r}: {e}") from e

    def render(self, data: Optional[bytes]) -> str:
        return self.open(data).render()

    @staticmethod
    def _check_scalar_target(envelope: Envelope, target: Any) -> None:
        """Reject lax coercions between scalar kinds ("18" -> 18, 1 -> True)."""
        if not isinstance(target, type):
            return
        expected = _SCALAR_KINDS.get(target)
        if expected is None or envelope.kind == expected:
            return
        if target is float and envelope.kind == "int":
            return
        raise DecodeError(
            f"Cannot decode {envelope.kind} value into {target.__name__}"
        )
