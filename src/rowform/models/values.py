"""Values crossing the connector boundary.

Rows coming back from the database are ``dict[str, SqlValue]``. Decoding a
raw value into a column's declared type branches on every ``ColumnType``
member; values that cannot be coerced decode to ``None`` so heterogeneous
legacy rows still hydrate.
"""

import types
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, TypeAlias, Union, get_args, get_origin

from rowform.models.enums import ColumnType

SqlValue: TypeAlias = int | float | str | bytes | bool | datetime | None
Row: TypeAlias = dict[str, SqlValue]

_TRUE_STRINGS = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSE_STRINGS = frozenset({"0", "false", "f", "no", "n", "off"})


def encode(value: Any) -> int | float | str | bytes | None:
    """Convert a Python value into something the SQLite driver binds natively.

    Raises:
        TypeError: If the value has no SQL representation.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, Enum):
        return encode(value.value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (int, float, str, bytes)):
        return value
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    raise TypeError(f"cannot bind value of type {type(value).__name__}")


def decode(value: Any, column_type: ColumnType) -> SqlValue:
    """Coerce a raw column value into the Python type for ``column_type``.

    Returns ``None`` when the value is null or cannot be coerced.
    """
    if value is None:
        return None
    try:
        if column_type == ColumnType.INTEGER:
            return _decode_integer(value)
        elif column_type == ColumnType.REAL:
            return _decode_real(value)
        elif column_type == ColumnType.TEXT:
            return _decode_text(value)
        elif column_type == ColumnType.BOOLEAN:
            return _decode_boolean(value)
        elif column_type == ColumnType.DATETIME:
            return parse_datetime(value)
        elif column_type == ColumnType.BLOB:
            return _decode_blob(value)
    except (TypeError, ValueError, OverflowError):
        return None
    raise AssertionError(f"unhandled column type: {column_type}")


def parse_datetime(value: Any) -> datetime | None:
    """Parse ISO-8601 text, epoch milliseconds or a datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    return None


def parse_date(value: Any) -> date | None:
    """Parse an ISO-8601 date, keeping only the date part of a timestamp."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            parsed = parse_datetime(value)
            return parsed.date() if parsed is not None else None
    return None


def _decode_integer(value: Any) -> int | None:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        return int(value.strip())
    return None


def _decode_real(value: Any) -> float | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if isinstance(value, str):
        return float(value.strip())
    return None


def _decode_text(value: Any) -> str | None:
    if isinstance(value, str):
        return value
    if isinstance(value, bytes):
        return value.decode("utf-8")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (int, float)):
        return str(value)
    return None


def _decode_boolean(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    return None


def _decode_blob(value: Any) -> bytes | None:
    if isinstance(value, bytes):
        return value
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode("utf-8")
    return None


def unwrap_optional(annotation: Any) -> tuple[Any, bool]:
    """Strip ``None`` from a union annotation.

    Returns:
        The remaining annotation and whether ``None`` was part of it.
    """
    origin = get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        args = [arg for arg in get_args(annotation) if arg is not type(None)]
        nullable = len(args) != len(get_args(annotation))
        if len(args) == 1:
            return args[0], nullable
        return annotation, nullable
    return annotation, annotation is None


def column_type_for(annotation: Any) -> ColumnType:
    """Map a field annotation to the column type used to store it."""
    inner, _ = unwrap_optional(annotation)
    if get_origin(inner) is not None or not isinstance(inner, type):
        return ColumnType.TEXT
    # bool is a subclass of int, so it must be checked first.
    if issubclass(inner, bool):
        return ColumnType.BOOLEAN
    if issubclass(inner, datetime):
        return ColumnType.DATETIME
    if issubclass(inner, int):
        return ColumnType.INTEGER
    if issubclass(inner, float):
        return ColumnType.REAL
    if issubclass(inner, (bytes, bytearray)):
        return ColumnType.BLOB
    return ColumnType.TEXT
