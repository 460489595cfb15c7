"""
unibo.bo.convert

Typed views over loosely-typed BO values.

Responsibilities:
- Convert decoded JSON / extras values to int, unsigned int, float, bool, str or datetime.
- Raise `ConversionError` instead of silently coercing nonsense.
"""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal
from typing import Any

from unibo.bo.timestamps import RFC3339, ensure_aware, format_time, parse_time
from unibo.errors import ConversionError


class ValueType(enum.StrEnum):
    INT = "int"
    UINT = "uint"
    FLOAT = "float"
    BOOL = "bool"
    STR = "str"
    TIME = "time"


_PY_TYPES: dict[type, ValueType] = {
    int: ValueType.INT,
    float: ValueType.FLOAT,
    bool: ValueType.BOOL,
    str: ValueType.STR,
    datetime: ValueType.TIME,
}


def to_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, (float, Decimal)):
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            try:
                return int(float(text))
            except ValueError as e:
                raise ConversionError(f"cannot convert [{value}] to int") from e
    raise ConversionError(f"cannot convert {type(value).__name__} to int")


def to_uint(value: Any) -> int:
    result = to_int(value)
    if result < 0:
        raise ConversionError(f"cannot convert negative value [{value}] to unsigned int")
    return result


def to_float(value: Any) -> float:
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError as e:
            raise ConversionError(f"cannot convert [{value}] to float") from e
    raise ConversionError(f"cannot convert {type(value).__name__} to float")


def to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return value != 0
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("true", "t", "yes", "y", "1"):
            return True
        if text in ("false", "f", "no", "n", "0", ""):
            return False
    raise ConversionError(f"cannot convert [{value!r}] to bool")


def to_str(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, datetime):
        return format_time(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    raise ConversionError(f"cannot convert {type(value).__name__} to str")


def to_time(value: Any, layout: str = RFC3339) -> datetime:
    if isinstance(value, datetime):
        return ensure_aware(value)
    if isinstance(value, str):
        try:
            return parse_time(value, layout)
        except ValueError as e:
            raise ConversionError(str(e)) from e
    raise ConversionError(f"cannot convert {type(value).__name__} to datetime")


def convert(value: Any, typ: ValueType | type | None, *, layout: str = RFC3339) -> Any:
    """Convert `value` to `typ`; `None` input stays `None`, `typ=None` is a passthrough."""

    if typ is None or value is None:
        return value
    if isinstance(typ, type):
        if typ not in _PY_TYPES:
            raise ConversionError(f"unsupported target type {typ.__name__}")
        typ = _PY_TYPES[typ]
    match ValueType(typ):
        case ValueType.INT:
            return to_int(value)
        case ValueType.UINT:
            return to_uint(value)
        case ValueType.FLOAT:
            return to_float(value)
        case ValueType.BOOL:
            return to_bool(value)
        case ValueType.STR:
            return to_str(value)
        case ValueType.TIME:
            return to_time(value, layout)
