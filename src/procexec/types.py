"""
Consolidated type handling for procedure calls and record mapping.

This module provides:
- TypeConverter: Convert Python parameter values to database-compatible formats
- Column: Column metadata from cursor descriptions
- resolve_type: Resolve database type codes to Python types
- parse_value: Convert a cell value to a record field type
"""
import datetime
import decimal
import logging
import math
import types
import typing
import uuid
from typing import Any, Self

import dateutil.parser
import numpy as np
import pandas as pd
from psycopg.postgres import types as pg_types

logger = logging.getLogger(__name__)

NUMPY_FLOAT_TYPES = (np.floating,)
NUMPY_INT_TYPES = (np.integer, np.unsignedinteger)
NUMERIC_TYPES = (int, float, decimal.Decimal)
FORMATTING_CHARS = '$,%'
TRUE_STRINGS: set[str] = {'true', 't', 'yes', 'y', '1'}
FALSE_STRINGS: set[str] = {'false', 'f', 'no', 'n', '0'}


# Type Converter - Handles Python -> Database value conversion

def _convert_numpy_value(val: Any) -> float | int | datetime.datetime | None:
    """Convert NumPy value to Python type."""
    if isinstance(val, np.floating) and np.isnan(val):
        return None

    if isinstance(val, np.datetime64):
        if np.isnat(val):
            return None
        return pd.Timestamp(val).to_pydatetime()

    return val.item()


class TypeConverter:
    """Parameter conversion for procedure calls.

    None, NaN and pandas missing markers bind as SQL NULL. Strings are
    passed through untouched, so the literal 'null' stays a string.
    """

    @staticmethod
    def convert_value(value: Any) -> Any:
        """Convert a single value to a database-compatible format."""
        if value is None:
            return None

        if isinstance(value, str):
            return value

        if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
            return None

        if isinstance(value, (*NUMPY_FLOAT_TYPES, *NUMPY_INT_TYPES, np.datetime64)):
            return _convert_numpy_value(value)

        if pd.api.types.is_scalar(value) and pd.isna(value):
            return None

        return value

    @staticmethod
    def convert_params(params: Any) -> Any:
        """Convert a collection of parameters for database operations."""
        if params is None:
            return None

        if isinstance(params, list | tuple):
            return type(params)(TypeConverter.convert_value(v) for v in params)

        return TypeConverter.convert_value(params)


# Type Resolution - Database type codes -> Python types

_oid = lambda x: pg_types.get(x).oid

postgres_types: dict[int, type] = {}

for v in [_oid('"char"'), _oid('bpchar'), _oid('character varying'), _oid('character'),
          _oid('json'), _oid('name'), _oid('text'), _oid('uuid'), _oid('varchar')]:
    postgres_types[v] = str

for v in [_oid('bigint'), _oid('int2'), _oid('int4'), _oid('int8'), _oid('integer')]:
    postgres_types[v] = int

for v in [_oid('float4'), _oid('float8'), _oid('double precision')]:
    postgres_types[v] = float

postgres_types[_oid('numeric')] = decimal.Decimal
postgres_types[_oid('date')] = datetime.date

for v in [_oid('time'), _oid('timetz')]:
    postgres_types[v] = datetime.time

for v in [_oid('timestamp'), _oid('timestamptz')]:
    postgres_types[v] = datetime.datetime

postgres_types[_oid('bool')] = bool

for v in [_oid('bytea'), _oid('jsonb')]:
    postgres_types[v] = bytes


def resolve_type(db_type: str, type_code: Any) -> type:
    """Resolve database type code to Python type.

    pyodbc reports Python types directly in the cursor description, psycopg
    reports OIDs. Anything unknown resolves to str.
    """
    if isinstance(type_code, type):
        return type_code

    if db_type == 'postgresql' and type_code in postgres_types:
        return postgres_types[type_code]

    return str


# Column - Metadata from cursor descriptions

class Column:
    """Database column metadata."""

    def __init__(self,
                 name: str,
                 type_code: Any,
                 python_type: type | None = None,
                 display_size: int | None = None,
                 internal_size: int | None = None,
                 precision: int | None = None,
                 scale: int | None = None,
                 nullable: bool | None = None):
        self.name = name
        self.type_code = type_code
        self.python_type = python_type
        self.display_size = display_size
        self.internal_size = internal_size
        self.precision = precision
        self.scale = scale
        self.nullable = nullable

    @classmethod
    def from_cursor_description(cls, description_item: Any, connection_type: str) -> Self:
        """Create a Column from cursor description item."""
        if connection_type == 'postgresql':
            column_info = cls._extract_postgres_column_info(description_item)
        else:
            column_info = cls._extract_dbapi_column_info(description_item)

        column_info['python_type'] = resolve_type(connection_type, column_info['type_code'])
        return cls(**column_info)

    @classmethod
    def _extract_postgres_column_info(cls, description_item: Any) -> dict:
        return {
            'name': getattr(description_item, 'name', None),
            'type_code': getattr(description_item, 'type_code', None),
            'display_size': getattr(description_item, 'display_size', None),
            'internal_size': getattr(description_item, 'internal_size', None),
            'precision': getattr(description_item, 'precision', None),
            'scale': getattr(description_item, 'scale', None),
            'nullable': None
        }

    @classmethod
    def _extract_dbapi_column_info(cls, description_item: Any) -> dict:
        """Plain 7-item DB-API description (pyodbc and friends)."""
        item = tuple(description_item) + (None,) * (7 - len(description_item))
        return {
            'name': item[0],
            'type_code': item[1],
            'display_size': item[2],
            'internal_size': item[3],
            'precision': item[4],
            'scale': item[5],
            'nullable': None if item[6] is None else bool(item[6])
        }

    def __repr__(self) -> str:
        return (f'Column(name={self.name!r}, type_code={self.type_code!r}, '
                f'python_type={self.python_type.__name__ if self.python_type else None})')

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'type_code': self.type_code,
            'python_type': self.python_type.__name__ if self.python_type else None,
            'display_size': self.display_size,
            'internal_size': self.internal_size,
            'precision': self.precision,
            'scale': self.scale,
            'nullable': self.nullable
        }

    @staticmethod
    def get_names(columns: list[Self]) -> list[str]:
        return [col.name for col in columns]

    @staticmethod
    def get_column_types_dict(columns: list[Self]) -> dict[str, dict]:
        return {col.name: col.to_dict() for col in columns}


def columns_from_cursor_description(cursor: Any, connection_type: str) -> list[Column]:
    """Create Column objects from cursor description."""
    if cursor.description is None:
        return []
    columns = [Column.from_cursor_description(desc, connection_type)
               for desc in cursor.description]
    return unique_column_names(columns)


def unique_column_names(columns: list[Column]) -> list[Column]:
    """Rename repeated column names in place.

    The second `id` becomes `id1`, the third `id2`, skipping names the result
    set already uses. Unnamed columns become `Column1`, `Column2`, ... Names
    are compared case-insensitively, like record field matching.
    """
    taken = {col.name.lower() for col in columns if col.name}
    seen = set()
    for col in columns:
        name = col.name or ''
        if not name or name.lower() in seen:
            base, n = name or 'Column', 1
            while f'{base}{n}'.lower() in taken | seen:
                n += 1
            col.name = f'{base}{n}'
        seen.add(col.name.lower())
    return columns


# Value Parsing - Cell values -> record field types

def unwrap_optional(annotation: Any) -> Any:
    """Return X for Optional[X] / X | None; other unions resolve to Any.
    """
    origin = typing.get_origin(annotation)
    if origin is typing.Union or origin is types.UnionType:
        args = [a for a in typing.get_args(annotation) if a is not type(None)]
        return args[0] if len(args) == 1 else Any
    return annotation


def is_null(value: Any) -> bool:
    """True for None and the pandas/NumPy missing markers."""
    if value is None:
        return True
    try:
        return bool(pd.api.types.is_scalar(value) and pd.isna(value))
    except (TypeError, ValueError):
        return False


def strip_formatting(text: str) -> str:
    """Remove currency, thousands and percent markers."""
    for char in FORMATTING_CHARS:
        text = text.replace(char, '')
    return text


def _as_text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _parse_bool(text: str) -> bool:
    lowered = text.strip().lower()
    if lowered in TRUE_STRINGS:
        return True
    if lowered in FALSE_STRINGS:
        return False
    raise ValueError(f'not a boolean: {text!r}')


def _parse_datetime(value: Any, text: str) -> datetime.datetime:
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, datetime.date):
        return datetime.datetime.combine(value, datetime.time())
    return dateutil.parser.parse(text)


def _parse_date(value: Any, text: str) -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    return dateutil.parser.parse(text).date()


def _parse_time(value: Any, text: str) -> datetime.time:
    if isinstance(value, datetime.datetime):
        return value.time()
    return datetime.time.fromisoformat(text.strip())


def _parse_int(value: Any, text: str) -> int:
    if isinstance(value, bool):
        return int(value)
    return int(text)


_PARSERS: dict[type, Any] = {
    str: lambda value, text: text,
    int: _parse_int,
    float: lambda value, text: float(text),
    decimal.Decimal: lambda value, text: decimal.Decimal(text.strip()),
    bool: lambda value, text: _parse_bool(text),
    datetime.datetime: _parse_datetime,
    datetime.date: _parse_date,
    datetime.time: _parse_time,
    uuid.UUID: lambda value, text: uuid.UUID(text.strip()),
    bytes: lambda value, text: text.encode(),
}


def parse_value(value: Any, target_type: Any, strip: str = 'numeric') -> Any:
    """Convert a cell to `target_type`.

    Returns None when the cell is null or empty after cleaning, leaving the
    caller to keep the field default. Raises ValueError/TypeError (or
    decimal.InvalidOperation) when the cell cannot be converted.
    """
    if is_null(value):
        return None

    if isinstance(value, (*NUMPY_FLOAT_TYPES, *NUMPY_INT_TYPES, np.datetime64)):
        value = _convert_numpy_value(value)
        if value is None:
            return None

    if target_type is Any or not isinstance(target_type, type):
        return value

    if type(value) is target_type and not isinstance(value, str):
        return value

    text = _as_text(value)
    if strip == 'all' or (strip == 'numeric' and target_type in NUMERIC_TYPES):
        text = strip_formatting(text)
    if not text:
        return None

    parser = _PARSERS.get(target_type)
    if parser is None:
        return target_type(text)
    return parser(value, text)
