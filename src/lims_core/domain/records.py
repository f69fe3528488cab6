"""Plain-record codec for entities.

Converts entity dataclasses to JSON-compatible dicts and back. Used by the
persistence adapters (records handed to save()) and by the gateways
(plain-dict requests and responses).

Encoding rules:
- Enum → its value.
- datetime → ISO-8601 string.
- Decimal → its string form (exact).
- nested dataclass → dict; tuple → list.

Decoding is driven by the dataclass type hints, so a record produced by
to_record() always decodes back to an equal entity. Naive datetimes and
date-only strings are read as UTC. Numbers bound for a Decimal field go
through str() first, so 0.1 becomes Decimal("0.1").
"""

from __future__ import annotations

import dataclasses
import types
import typing
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, TypeVar

T = TypeVar("T")


def to_record(entity: Any) -> dict[str, Any]:
    """Encode an entity dataclass as a plain dict."""
    return {f.name: _encode(getattr(entity, f.name)) for f in dataclasses.fields(entity)}


def from_record(cls: type[T], record: Mapping[str, Any]) -> T:
    """Decode a plain dict into an entity of type cls.

    Unknown keys are ignored. Missing keys fall back to the field default.
    """
    hints = _hints(cls)
    kwargs: dict[str, Any] = {}
    for f in dataclasses.fields(cls):
        if f.name in record:
            kwargs[f.name] = decode_value(record[f.name], hints[f.name])
    return cls(**kwargs)


def coerce_fields(cls: type, values: Mapping[str, Any]) -> dict[str, Any]:
    """Decode only the keys of values that are fields of cls.

    Used for partial updates: the result can be passed to dataclasses.replace().
    """
    hints = _hints(cls)
    names = {f.name for f in dataclasses.fields(cls)}
    return {k: decode_value(v, hints[k]) for k, v in values.items() if k in names}


def decode_value(value: Any, hint: Any) -> Any:
    if value is None:
        return None

    origin = typing.get_origin(hint)
    if origin in (typing.Union, types.UnionType):
        args = [a for a in typing.get_args(hint) if a is not type(None)]
        return decode_value(value, args[0]) if args else value

    if origin is tuple:
        args = typing.get_args(hint)
        item_hint = args[0] if args else Any
        return tuple(decode_value(v, item_hint) for v in value)

    if hint is datetime:
        return as_utc(value)

    if isinstance(hint, type):
        if isinstance(value, hint) and not dataclasses.is_dataclass(hint):
            return value
        if dataclasses.is_dataclass(hint):
            return value if isinstance(value, hint) else from_record(hint, value)
        if issubclass(hint, Enum):
            return hint(value)
        if hint is Decimal and isinstance(value, (int, float, str)) and not isinstance(value, bool):
            return Decimal(str(value).strip())
        if hint is float and isinstance(value, (int, str)):
            return float(value)
        if hint is int and isinstance(value, str):
            return int(value)
    return value


def as_utc(value: Any) -> Any:
    """Read an ISO string, date or datetime as a tz-aware datetime.

    Naive values are taken to be UTC. Anything else is returned unchanged.
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value.strip())
    elif isinstance(value, date) and not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _encode(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return to_record(value)
    if isinstance(value, (tuple, list)):
        return [_encode(v) for v in value]
    if isinstance(value, dict):
        return {k: _encode(v) for k, v in value.items()}
    return value


_HINT_CACHE: dict[type, dict[str, Any]] = {}


def _hints(cls: type) -> dict[str, Any]:
    if cls not in _HINT_CACHE:
        _HINT_CACHE[cls] = typing.get_type_hints(cls)
    return _HINT_CACHE[cls]
