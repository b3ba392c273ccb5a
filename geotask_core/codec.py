"""JSON codec for GeoTask models.

Wire conventions:
- object keys are snake_case (camelCase keys are accepted when decoding)
- keys are sorted, separators are compact
- datetimes are ISO-8601 UTC with fractional seconds, e.g.
  ``2024-05-01T10:00:00.123000Z``
- non-finite floats are the strings ``"+inf"``, ``"-inf"`` and ``"nan"``
- dataclass fields holding None are omitted
"""

from __future__ import annotations

import dataclasses
import functools
import json
import math
import re
import types
from datetime import UTC, datetime
from enum import Enum
from typing import Any, TypeVar, Union, get_args, get_origin, get_type_hints

from .errors import DecodingError, EncodingError

T = TypeVar("T")

_POSITIVE_INFINITY = "+inf"
_NEGATIVE_INFINITY = "-inf"
_NAN = "nan"

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def camel_to_snake(name: str) -> str:
    """Convert ``camelCase`` (or ``PascalCase``) to ``snake_case``."""
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def snake_to_camel(name: str) -> str:
    """Convert ``snake_case`` to ``camelCase``."""
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def format_datetime(value: datetime) -> str:
    """Format a datetime as ISO-8601 UTC with fractional seconds."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def parse_datetime(value: str) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


# -----------------------------------------------------------------------------
# Encoding
# -----------------------------------------------------------------------------


def _to_wire(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        if math.isnan(value):
            return _NAN
        if math.isinf(value):
            return _POSITIVE_INFINITY if value > 0 else _NEGATIVE_INFINITY
        return value
    if isinstance(value, Enum):
        return _to_wire(value.value)
    if isinstance(value, datetime):
        return format_datetime(value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        encoded: dict[str, Any] = {}
        for item in dataclasses.fields(value):
            field_value = getattr(value, item.name)
            if field_value is None:
                continue
            encoded[camel_to_snake(item.name)] = _to_wire(field_value)
        return encoded
    if isinstance(value, dict):
        return {str(key): _to_wire(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_to_wire(item) for item in value]
    raise TypeError(f"Object of type {type(value).__name__} is not encodable")


def encode_to_dict(value: Any) -> Any:
    """Convert a model into a JSON-ready structure."""
    try:
        return _to_wire(value)
    except (TypeError, ValueError) as err:
        raise EncodingError(err) from err


def encode(value: Any) -> bytes:
    """Encode a model into JSON bytes."""
    wire = encode_to_dict(value)
    try:
        return json.dumps(
            wire, sort_keys=True, separators=(",", ":"), allow_nan=False
        ).encode("utf-8")
    except (TypeError, ValueError) as err:
        raise EncodingError(err) from err


def encode_to_string(value: Any) -> str:
    return encode(value).decode("utf-8")


# -----------------------------------------------------------------------------
# Decoding
# -----------------------------------------------------------------------------


@functools.cache
def _field_types(cls: type) -> dict[str, Any]:
    return get_type_hints(cls)


def _decode_float(data: Any) -> float:
    if isinstance(data, bool):
        raise TypeError("Expected number, got bool")
    if isinstance(data, (int, float)):
        return float(data)
    if data == _POSITIVE_INFINITY:
        return math.inf
    if data == _NEGATIVE_INFINITY:
        return -math.inf
    if data == _NAN:
        return math.nan
    raise TypeError(f"Expected number, got {type(data).__name__}")


def _from_wire(data: Any, tp: Any) -> Any:
    if tp is Any:
        return data
    if tp is None or tp is type(None):
        if data is not None:
            raise TypeError("Expected null")
        return None

    origin = get_origin(tp)
    if origin is Union or origin is types.UnionType:
        options = get_args(tp)
        if data is None:
            if type(None) in options:
                return None
            raise TypeError("Unexpected null")
        errors: list[Exception] = []
        for option in options:
            if option is type(None):
                continue
            try:
                return _from_wire(data, option)
            except (TypeError, ValueError, KeyError) as err:
                errors.append(err)
        raise TypeError(f"No union member matched: {errors}")

    if origin in (list, tuple, set, frozenset):
        if not isinstance(data, list):
            raise TypeError(f"Expected array, got {type(data).__name__}")
        args = get_args(tp)
        item_type = args[0] if args else Any
        items = [_from_wire(item, item_type) for item in data]
        return items if origin is list else origin(items)

    if origin is dict:
        if not isinstance(data, dict):
            raise TypeError(f"Expected object, got {type(data).__name__}")
        args = get_args(tp)
        value_type = args[1] if len(args) == 2 else Any
        return {str(key): _from_wire(item, value_type) for key, item in data.items()}

    if tp is list:
        return _from_wire(data, list[Any])
    if tp is dict:
        return _from_wire(data, dict[str, Any])

    if isinstance(tp, type):
        if dataclasses.is_dataclass(tp):
            return _decode_dataclass(data, tp)
        if issubclass(tp, Enum):
            return tp(data)
        if issubclass(tp, datetime):
            if not isinstance(data, str):
                raise TypeError("Expected ISO-8601 string for datetime")
            return parse_datetime(data)
        if tp is bool:
            if not isinstance(data, bool):
                raise TypeError(f"Expected bool, got {type(data).__name__}")
            return data
        if tp is int:
            if isinstance(data, bool) or not isinstance(data, int):
                raise TypeError(f"Expected int, got {type(data).__name__}")
            return data
        if tp is float:
            return _decode_float(data)
        if tp is str:
            if not isinstance(data, str):
                raise TypeError(f"Expected string, got {type(data).__name__}")
            return data

    raise TypeError(f"Unsupported target type: {tp!r}")


def _decode_dataclass(data: Any, cls: type) -> Any:
    if not isinstance(data, dict):
        raise TypeError(f"Expected object for {cls.__name__}, got {type(data).__name__}")
    normalized = {camel_to_snake(str(key)): value for key, value in data.items()}
    hints = _field_types(cls)
    kwargs: dict[str, Any] = {}
    for item in dataclasses.fields(cls):
        if not item.init or item.name not in normalized:
            continue
        kwargs[item.name] = _from_wire(normalized[item.name], hints[item.name])
    return cls(**kwargs)


def decode_from_dict(data: Any, tp: type[T] | Any) -> T:
    """Decode an already-parsed JSON structure into ``tp``."""
    try:
        return _from_wire(data, tp)
    except (TypeError, ValueError, KeyError, AttributeError, RecursionError) as err:
        raise DecodingError(err) from err


def decode(data: bytes | str, tp: type[T] | Any) -> T:
    """Decode JSON bytes into ``tp``.

    ``bytes`` returns the payload untouched. An empty payload decodes to an
    instance of a dataclass without required fields (e.g. EmptyResponse).
    """
    if tp is bytes:
        return data if isinstance(data, bytes) else data.encode("utf-8")  # type: ignore[return-value]
    try:
        text = data.decode("utf-8") if isinstance(data, bytes) else data
        if not text.strip():
            parsed: Any = {}
        else:
            parsed = json.loads(text)
    except (ValueError, RecursionError) as err:
        raise DecodingError(err) from err
    return decode_from_dict(parsed, tp)


def decode_from_string(data: str, tp: type[T] | Any) -> T:
    return decode(data, tp)
