"""
Mapping between tabular results and typed records.

A RecordMapping is the schema descriptor of a record type: its public fields
in declaration order, each with the column it reads from and its declared
type. Mappings are built once per type (or declared with `register_mapping`)
and validated at that point, so a type that cannot be default-constructed
fails at registration rather than halfway through a result set.

Usage:
    @dataclass
    class Account:
        account_id: int = 0
        balance: Decimal | None = None
        owner: str = field(default='', metadata={'column': 'OwnerName'})

    records = to_objects(Account, table)
    table = to_table(records)
"""
import dataclasses
import logging
import threading
import typing
from collections.abc import Iterable, Iterator, Sequence
from typing import Any, TypeVar

import cachetools
import cachetools.keys
import pandas as pd
from procexec.exceptions import ConversionError
from procexec.types import parse_value, unwrap_optional

__all__ = [
    'FieldMap',
    'RecordMapping',
    'register_mapping',
    'clear_mappings',
    'to_objects',
    'to_object',
    'to_table',
]

logger = logging.getLogger(__name__)

T = TypeVar('T')

_mapping_registry: dict[type, 'RecordMapping'] = {}
_mapping_registry_lock = threading.RLock()
_binding_cache: cachetools.LRUCache = cachetools.LRUCache(maxsize=256)
_binding_cache_lock = threading.Lock()


@dataclasses.dataclass(frozen=True)
class FieldMap:
    """One record field and the column it is read from."""
    name: str
    column: str
    python_type: Any


def _public_type_hints(record_type: type) -> dict[str, Any]:
    hints = typing.get_type_hints(record_type)
    return {name: hint for name, hint in hints.items()
            if not name.startswith('_') and typing.get_origin(hint) is not typing.ClassVar}


def _dataclass_fields(record_type: type, columns: dict[str, str]) -> list[FieldMap]:
    hints = _public_type_hints(record_type)
    fields = []
    for f in dataclasses.fields(record_type):
        if f.name.startswith('_'):
            continue
        if f.init and f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING:
            raise TypeError(f'{record_type.__name__}.{f.name} has no default; '
                            f'record types must be constructible without arguments')
        python_type = unwrap_optional(hints.get(f.name, Any))
        column = columns.get(f.name) or f.metadata.get('column') or f.name
        fields.append(FieldMap(f.name, column, python_type))
    return fields


def _annotated_fields(record_type: type, columns: dict[str, str]) -> list[FieldMap]:
    try:
        record_type()
    except TypeError as exc:
        raise TypeError(f'{record_type.__name__} must be constructible without arguments') from exc

    fields = []
    for name, hint in _public_type_hints(record_type).items():
        python_type = unwrap_optional(hint)
        fields.append(FieldMap(name, columns.get(name, name), python_type))
    return fields


class RecordMapping:
    """Ordered field list of a record type.
    """

    def __init__(self, record_type: type, fields: Sequence[FieldMap]) -> None:
        self.record_type = record_type
        self.fields = tuple(fields)
        self._frozen = (dataclasses.is_dataclass(record_type)
                        and record_type.__dataclass_params__.frozen)

    def __repr__(self) -> str:
        return f'RecordMapping({self.record_type.__name__}, {[f.name for f in self.fields]})'

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    @classmethod
    def from_type(cls, record_type: type, columns: dict[str, str] | None = None) -> 'RecordMapping':
        """Build a mapping by introspecting a dataclass or annotated class.
        """
        columns = columns or {}
        if dataclasses.is_dataclass(record_type):
            fields = _dataclass_fields(record_type, columns)
        else:
            fields = _annotated_fields(record_type, columns)

        unknown = set(columns) - {f.name for f in fields}
        if unknown:
            raise TypeError(f'{record_type.__name__} has no fields {sorted(unknown)}')
        if not fields:
            raise TypeError(f'{record_type.__name__} declares no public fields')
        return cls(record_type, fields)

    @classmethod
    def for_type(cls, record_type: type) -> 'RecordMapping':
        """Return the registered mapping, building and registering it on first use.
        """
        with _mapping_registry_lock:
            mapping = _mapping_registry.get(record_type)
            if mapping is None:
                mapping = cls.from_type(record_type)
                _mapping_registry[record_type] = mapping
                logger.debug(f'Registered {mapping!r}')
            return mapping

    def bind(self, columns: Sequence[str]) -> list[tuple[FieldMap, int]]:
        """Match fields to column positions, case-insensitively.

        A field binds to its mapped column, or failing that to a column named
        like the field. The first matching column wins. Unmatched fields are
        left out.
        """
        return _bind(self, tuple(columns))

    def new_record(self) -> Any:
        return self.record_type()

    def set_field(self, record: Any, name: str, value: Any) -> None:
        if self._frozen:
            object.__setattr__(record, name, value)
        else:
            setattr(record, name, value)


@cachetools.cached(_binding_cache, key=lambda mapping, columns: cachetools.keys.hashkey(mapping, columns),
                   lock=_binding_cache_lock)
def _bind(mapping: RecordMapping, columns: tuple[str, ...]) -> list[tuple[FieldMap, int]]:
    positions: dict[str, int] = {}
    for i, col in enumerate(columns):
        positions.setdefault(str(col).lower(), i)

    binding = []
    for f in mapping.fields:
        position = positions.get(f.column.lower(), positions.get(f.name.lower()))
        if position is not None:
            binding.append((f, position))
    logger.debug(f'Bound {len(binding)} of {len(mapping.fields)} fields of '
                 f'{mapping.record_type.__name__} to {len(columns)} columns')
    return binding


def register_mapping(record_type: type, columns: dict[str, str] | None = None,
                     fields: Sequence[tuple[str, Any]] | None = None) -> RecordMapping:
    """Declare how a record type maps to columns.

    Args:
        record_type: The record class
        columns: field name -> column name overrides
        fields: Explicit ordered (name, type) pairs; introspected when omitted

    Returns
        The registered RecordMapping

    Raises
        TypeError: If the type cannot be default-constructed or names unknown fields
    """
    if fields is not None:
        columns = columns or {}
        try:
            record_type()
        except TypeError as exc:
            raise TypeError(f'{record_type.__name__} must be constructible without arguments') from exc
        maps = []
        for name, hint in fields:
            python_type = unwrap_optional(hint)
            maps.append(FieldMap(name, columns.get(name, name), python_type))
        mapping = RecordMapping(record_type, maps)
    else:
        mapping = RecordMapping.from_type(record_type, columns)

    with _mapping_registry_lock:
        _mapping_registry[record_type] = mapping
    logger.debug(f'Registered {mapping!r}')
    return mapping


def clear_mappings() -> None:
    """Forget all registered mappings and cached bindings."""
    with _mapping_registry_lock:
        _mapping_registry.clear()
    with _binding_cache_lock:
        _binding_cache.clear()


def _mapping_for(record_type: type) -> RecordMapping:
    """Registered mapping of a record type, failures reported as ConversionError."""
    try:
        return RecordMapping.for_type(record_type)
    except TypeError as exc:
        raise ConversionError(f'Cannot map {getattr(record_type, "__name__", record_type)}: {exc}') from exc


def _table_rows(table: Any) -> tuple[list[str], Iterator[Sequence[Any]]]:
    """Column names and positional rows of a DataFrame or a list of row dicts."""
    if isinstance(table, pd.DataFrame):
        return list(table.columns), table.itertuples(index=False, name=None)

    try:
        rows = list(table)
        if not rows:
            return [], iter(())
        columns = list(rows[0].keys())
    except (TypeError, AttributeError) as exc:
        raise ConversionError(f'Expected a DataFrame or a list of row dicts, got {type(table).__name__}') from exc
    return columns, (tuple(row.get(col) for col in columns) for row in rows)


def to_objects(record_type: type[T], table: Any, strip_formatting: str = 'numeric') -> list[T]:
    """Map every row of `table` to a new `record_type` instance.

    Cells that are null, or empty after cleaning, leave the field default.

    Raises
        ConversionError: If the type cannot be mapped or any cell cannot be
            converted; no partial result is returned
    """
    mapping = _mapping_for(record_type)
    if table is None:
        return []

    columns, rows = _table_rows(table)
    if not columns:
        return []

    binding = mapping.bind(columns)
    records = []
    for rownum, row in enumerate(rows):
        record = mapping.new_record()
        for field, position in binding:
            value = row[position]
            try:
                converted = parse_value(value, field.python_type, strip_formatting)
            except (ValueError, TypeError, ArithmeticError, OverflowError) as exc:
                raise ConversionError(
                    f'Cannot convert column {columns[position]!r} value {value!r} to '
                    f'{getattr(field.python_type, "__name__", field.python_type)} for '
                    f'{record_type.__name__}.{field.name} (row {rownum})') from exc
            if converted is not None:
                mapping.set_field(record, field.name, converted)
        records.append(record)

    logger.debug(f'Mapped {len(records)} rows to {record_type.__name__}')
    return records


def to_object(record_type: type[T], table: Any, strip_formatting: str = 'numeric') -> T | None:
    """Map the first row of `table`, or return None for an empty table.
    """
    if table is None:
        return None
    if isinstance(table, pd.DataFrame):
        table = table.head(1)
    else:
        columns, rows = _table_rows(table)
        table = [dict(zip(columns, row)) for row in rows][:1]
    records = to_objects(record_type, table, strip_formatting)
    return records[0] if records else None


def to_table(items: Iterable[Any], record_type: type | None = None) -> pd.DataFrame:
    """Build a table with one column per public field and one row per item.

    Values are stored as-is in object columns, in field declaration order.

    Raises
        ConversionError: If the record type cannot be mapped
    """
    items = list(items)
    if record_type is None:
        if not items:
            return pd.DataFrame()
        record_type = type(items[0])

    names = _mapping_for(record_type).field_names
    rows = [[getattr(item, name, None) for name in names] for item in items]
    df = pd.DataFrame(rows, columns=names, dtype=object)
    df.attrs['name'] = record_type.__name__
    return df
