"""
Stored procedure execution with typed record mapping, for PostgreSQL and SQL Server.

All operations can be called either as:
- Module functions: px.execute_for_results(executor, 'proc', names, values)
- ProcedureExecutor methods: executor.execute_for_results('proc', names, values)

Mapping functions do not need an executor: px.to_objects(Account, table).
"""
__version__ = '0.1.0'

from collections.abc import Iterable, Sequence
from typing import Any, TypeVar

import pandas as pd
from procexec import mapping as _mapping
from procexec.exceptions import ConnectionFailure, ConversionError
from procexec.exceptions import DatabaseError, DbConnectionError
from procexec.exceptions import ExecutionError
from procexec.executor import ProcedureExecutor, connect
from procexec.mapping import RecordMapping, register_mapping
from procexec.options import ExecutorOptions
from procexec.types import Column

T = TypeVar('T')


def execute_for_results(px: ProcedureExecutor, name: str,
                        param_names: Sequence[str] | None = None,
                        param_values: Sequence[str | None] | None = None) -> Any:
    """Execute a stored procedure and return its first result set.
    """
    return px.execute_for_results(name, param_names, param_values)


def execute_without_results(px: ProcedureExecutor, name: str,
                            param_names: Sequence[str] | None = None,
                            param_values: Sequence[str | None] | None = None) -> int:
    """Execute a stored procedure for effect and return the row count.

    PostgreSQL functions go through execute_for_results instead.
    """
    return px.execute_without_results(name, param_names, param_values)


def to_objects(record_type: type[T], table: Any,
               strip_formatting: str = 'numeric') -> list[T]:
    """Convert a table to a list of records.
    """
    return _mapping.to_objects(record_type, table, strip_formatting)


def to_object(record_type: type[T], table: Any,
              strip_formatting: str = 'numeric') -> T | None:
    """Convert the first row of a table to a record, or None if the table is empty.
    """
    return _mapping.to_object(record_type, table, strip_formatting)


def to_table(items: Iterable[Any], record_type: type | None = None) -> pd.DataFrame:
    """Convert a list of records to a table.
    """
    return _mapping.to_table(items, record_type)


__all__ = [
    'connect',
    'ProcedureExecutor',
    'ExecutorOptions',
    'RecordMapping',
    'register_mapping',
    'execute_for_results',
    'execute_without_results',
    'to_objects',
    'to_object',
    'to_table',
    'Column',
    'DatabaseError',
    'ConnectionFailure',
    'ExecutionError',
    'ConversionError',
    'DbConnectionError',
]
