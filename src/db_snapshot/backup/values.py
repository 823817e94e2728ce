"""Tagged column values and their SQL / JSON encodings.

Row values arrive from an adapter as plain Python objects.  ``decode``
turns each one into exactly one of six tagged variants, using the column's
catalog type when it is known (so a ``jsonb`` list stays JSON and a
``text[]`` list becomes an array).  The two encoders then handle each
variant explicitly:

    >>> print(to_sql_literal(decode("O'Brien")))
    'O''Brien'
    >>> print(to_sql_literal(decode(["a", "b"])))
    '{"a","b"}'
    >>> print(to_sql_literal(decode(None)))
    NULL
"""

import json
import math
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Union

from db_snapshot.schema.models import ColumnDescriptor

# Significant decimal digits a float always round-trips
FLOAT_DIGITS = 15


@dataclass(frozen=True)
class SqlNull:
    pass


@dataclass(frozen=True)
class SqlBool:
    value: bool


@dataclass(frozen=True)
class SqlNumber:
    value: int | float | Decimal


@dataclass(frozen=True)
class SqlText:
    value: str


@dataclass(frozen=True)
class SqlArray:
    items: tuple["TaggedValue", ...]


@dataclass(frozen=True)
class SqlJson:
    value: Any
    json_type: str = "jsonb"


TaggedValue = Union[SqlNull, SqlBool, SqlNumber, SqlText, SqlArray, SqlJson]


# ============================================================================
# Decoding
# ============================================================================


def decode(value: Any, column: ColumnDescriptor | None = None) -> TaggedValue:
    """Tag a raw row value.

    Args:
        value: Value as returned by the adapter.
        column: Catalog description of the column, when available.  Without
            it, lists are treated as arrays and dicts as ``jsonb``.
    """
    if value is None:
        return SqlNull()
    if column is not None and column.is_json:
        return SqlJson(value, column.udt_name)
    # bool is a subclass of int: check it first
    if isinstance(value, bool):
        return SqlBool(value)
    if isinstance(value, (int, float, Decimal)):
        return SqlNumber(value)
    if isinstance(value, (list, tuple)):
        if column is None or column.is_array:
            return SqlArray(tuple(decode(item) for item in value))
        return SqlJson(list(value))
    if isinstance(value, dict):
        return SqlJson(value)
    if isinstance(value, (datetime, date, time)):
        return SqlText(value.isoformat())
    if isinstance(value, (bytes, bytearray, memoryview)):
        # bytea hex input format
        return SqlText("\\x" + bytes(value).hex())
    return SqlText(str(value))


# ============================================================================
# SQL literals (dump mode)
# ============================================================================


def _is_finite(number: int | float | Decimal) -> bool:
    if isinstance(number, Decimal):
        return number.is_finite()
    if isinstance(number, float):
        return math.isfinite(number)
    return True


def _non_finite_text(number: float | Decimal) -> str:
    if isinstance(number, Decimal):
        number = float(number)
    if math.isnan(number):
        return "NaN"
    return "Infinity" if number > 0 else "-Infinity"


def _quote_text(text: str) -> str:
    """Single-quoted literal; backslashes force an escape string."""
    escaped = text.replace("'", "''")
    if "\\" in escaped:
        return "E'" + escaped.replace("\\", "\\\\") + "'"
    return "'" + escaped + "'"


def _array_element(item: TaggedValue) -> str:
    if isinstance(item, SqlNull):
        return "NULL"
    if isinstance(item, SqlBool):
        return "true" if item.value else "false"
    if isinstance(item, SqlNumber):
        if not _is_finite(item.value):
            return _non_finite_text(item.value)
        return str(item.value)
    if isinstance(item, SqlArray):
        return _array_body(item)
    if isinstance(item, SqlText):
        text = item.value
    elif isinstance(item, SqlJson):
        text = json.dumps(item.value, ensure_ascii=False, default=str)
    else:
        raise TypeError(f"Unsupported array element: {item!r}")
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _array_body(array: SqlArray) -> str:
    return "{" + ",".join(_array_element(item) for item in array.items) + "}"


def to_sql_literal(tagged: TaggedValue) -> str:
    """Render a tagged value as a PostgreSQL literal.

    Raises:
        TypeError: If *tagged* is not one of the tagged variants.
    """
    if isinstance(tagged, SqlNull):
        return "NULL"
    if isinstance(tagged, SqlBool):
        return "TRUE" if tagged.value else "FALSE"
    if isinstance(tagged, SqlNumber):
        if not _is_finite(tagged.value):
            return f"'{_non_finite_text(tagged.value)}'"
        return str(tagged.value)
    if isinstance(tagged, SqlText):
        return _quote_text(tagged.value)
    if isinstance(tagged, SqlArray):
        return "'" + _array_body(tagged).replace("'", "''") + "'"
    if isinstance(tagged, SqlJson):
        text = json.dumps(tagged.value, ensure_ascii=False, default=str)
        return "'" + text.replace("'", "''") + "'::" + tagged.json_type
    raise TypeError(f"Not a tagged value: {tagged!r}")


# ============================================================================
# JSON values (snapshot mode)
# ============================================================================


def _json_number(number: int | float | Decimal) -> int | float | str:
    if not _is_finite(number):
        return _non_finite_text(number)
    if isinstance(number, Decimal):
        if number == number.to_integral_value():
            return int(number)
        # Beyond float precision the numeral travels as a string
        if len(number.as_tuple().digits) > FLOAT_DIGITS:
            return str(number)
        return float(number)
    return number


def to_json_value(tagged: TaggedValue) -> Any:
    """Convert a tagged value to a JSON-serializable Python value.

    Raises:
        TypeError: If *tagged* is not one of the tagged variants.
    """
    if isinstance(tagged, SqlNull):
        return None
    if isinstance(tagged, SqlBool):
        return tagged.value
    if isinstance(tagged, SqlNumber):
        return _json_number(tagged.value)
    if isinstance(tagged, SqlText):
        return tagged.value
    if isinstance(tagged, SqlArray):
        return [to_json_value(item) for item in tagged.items]
    if isinstance(tagged, SqlJson):
        return tagged.value
    raise TypeError(f"Not a tagged value: {tagged!r}")


def encode_row_json(row: dict, columns: dict[str, ColumnDescriptor] | None = None) -> dict:
    """Decode and re-encode every value of *row* for the JSON snapshot."""
    columns = columns or {}
    return {key: to_json_value(decode(value, columns.get(key))) for key, value in row.items()}


def encode_row_sql(
    row: dict, column_order: list[str], columns: dict[str, ColumnDescriptor] | None = None
) -> list[str]:
    """SQL literals for *row* in *column_order*; absent keys become ``NULL``."""
    columns = columns or {}
    return [to_sql_literal(decode(row.get(name), columns.get(name))) for name in column_order]
