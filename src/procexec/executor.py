"""
Stored procedure execution.

The ProcedureExecutor is the primary client:
- execute_for_results(name, param_names, param_values) - call and return the rows
- execute_without_results(name, param_names, param_values) - call for effect
- to_objects / to_object / to_table - map between tables and typed records

Each call opens its own connection and closes it before returning, on success
and on failure alike. Nothing but configuration is shared between calls.
"""
import logging
import threading
from collections.abc import Callable, Iterable, Sequence
from dataclasses import fields
from typing import Any, Self, TypeVar

import pandas as pd
import sqlalchemy as sa
from procexec.configuration import get_connection_string
from procexec.connection import ConnectionManager, ConnectionWrapper
from procexec.cursor import Cursor, load_data
from procexec.exceptions import ConversionError, DatabaseError, ExecutionError
from procexec.mapping import to_object, to_objects, to_table
from procexec.options import ExecutorOptions
from sqlalchemy.engine import Engine

from libb import load_options

__all__ = ['ProcedureExecutor', 'connect']

logger = logging.getLogger(__name__)

T = TypeVar('T')


def _bind_parameters(param_names: Sequence[str] | None,
                     param_values: Sequence[str | None] | None) -> tuple[list[str], list[Any]]:
    """Pair names with values; parameters are bound only when both are given.

    Raises
        ExecutionError: If both are given with different lengths
    """
    if param_names is None or param_values is None:
        return [], []
    names, values = list(param_names), list(param_values)
    if len(names) != len(values):
        raise ExecutionError(
            f'Parameter count mismatch: {len(names)} names but {len(values)} values')
    return names, values


class ProcedureExecutor:
    """Executes stored procedures and maps their results.

    Args:
        configuration: Source of the named connection string (mapping, config
            object, libb Setting) or the connection string itself
        options: ExecutorOptions; keyword arguments override its fields
    """

    def __init__(self, configuration: Any = None, options: ExecutorOptions | None = None,
                 engine_factory: Callable[..., Engine] = sa.create_engine, **kw: Any) -> None:
        if options is None:
            options = ExecutorOptions(**kw)
        elif kw:
            options = ExecutorOptions(**{**{f.name: getattr(options, f.name) for f in fields(options)}, **kw})
        self.configuration = configuration
        self.options = options
        connection_string = options.connection_string or get_connection_string(
            configuration, options.connection_name)
        self.connections = ConnectionManager(connection_string, options, engine_factory)
        self._active: set[Cursor] = set()
        self._active_lock = threading.Lock()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        self.close()

    def close(self) -> None:
        """Dispose the engine pool created for this executor."""
        self.connections.dispose()

    def _run(self, name: str, param_names: Sequence[str] | None,
             param_values: Sequence[str | None] | None, returns_rows: bool,
             handler: Callable[[Cursor], Any]) -> Any:
        """Open a connection, call the procedure and commit.

        `handler` reads what the caller needs from the cursor; the remaining
        results are drained before the commit so late errors cause a rollback.
        The connection is released on every exit path. Driver errors are
        wrapped in ExecutionError; ConnectionFailure propagates unchanged.
        """
        names, values = _bind_parameters(param_names, param_values)

        with self.connections.connection() as cn:
            try:
                sql = cn.strategy.build_procedure_call(name, names, returns_rows)
            except ValueError as exc:
                raise ExecutionError(str(exc)) from exc

            cursor = cn.cursor()
            with self._active_lock:
                self._active.add(cursor)
            try:
                cursor.execute(sql, values)
                result = handler(cursor)
                cn.strategy.drain(cursor)
                cn.commit()
                return result
            except DatabaseError:
                self._rollback(cn)
                raise
            except Exception as exc:
                self._rollback(cn)
                raise ExecutionError(f'Error executing stored procedure {name}: {exc}') from exc
            finally:
                with self._active_lock:
                    self._active.discard(cursor)
                cursor.close()

    @staticmethod
    def _rollback(cn: ConnectionWrapper) -> None:
        try:
            cn.rollback()
        except Exception as e:
            logger.debug(f'Rollback failed: {e}')

    def execute_for_results(self, name: str, param_names: Sequence[str] | None = None,
                            param_values: Sequence[str | None] | None = None) -> Any:
        """Execute a stored procedure and return its first result set.

        None values bind as SQL NULL. The result is fully materialized by the
        configured data loader (a DataFrame by default) before the connection
        is closed.
        """
        data_loader = self.options.data_loader
        result = self._run(name, param_names, param_values, True,
                           lambda cursor: load_data(cursor, data_loader))
        logger.debug(f"Procedure {name} returned {len(result) if hasattr(result, '__len__') else 'scalar'} rows")
        return result

    def execute_without_results(self, name: str, param_names: Sequence[str] | None = None,
                                param_values: Sequence[str | None] | None = None) -> int:
        """Execute a stored procedure for effect and return the driver row count.

        On PostgreSQL this issues CALL, which only accepts procedures. Call
        functions, void ones included, with execute_for_results.
        """
        rowcount = self._run(name, param_names, param_values, False,
                             lambda cursor: cursor.rowcount)
        logger.debug(f'Procedure {name} affected {rowcount} rows')
        return rowcount

    def cancel(self) -> int:
        """Cancel every statement this executor is running.

        Returns the number of statements a cancel was sent to. The cancelled
        calls raise ExecutionError in their own threads.
        """
        with self._active_lock:
            active = list(self._active)
        for cursor in active:
            try:
                cursor.cancel()
            except Exception as e:
                logger.warning(f'Could not cancel statement: {e}')
        logger.debug(f'Cancel sent to {len(active)} running statement(s)')
        return len(active)

    def to_objects(self, record_type: type[T], table: Any) -> list[T]:
        """Convert a table to a list of records.
        """
        try:
            return to_objects(record_type, table, self.options.strip_formatting)
        except ConversionError:
            logger.error(f'Error converting table to list of {record_type.__name__}')
            raise
        except Exception as exc:
            raise ConversionError(f'Error converting table to list: {exc}') from exc

    def to_object(self, record_type: type[T], table: Any) -> T | None:
        """Convert the first row of a table to a record, None if the table is empty.
        """
        try:
            return to_object(record_type, table, self.options.strip_formatting)
        except ConversionError:
            logger.error(f'Error converting table to {record_type.__name__}')
            raise
        except Exception as exc:
            raise ConversionError(f'Error converting table to object: {exc}') from exc

    def to_table(self, items: Iterable[Any], record_type: type | None = None) -> pd.DataFrame:
        """Convert a list of records to a table.
        """
        try:
            return to_table(items, record_type)
        except ConversionError:
            logger.error('Error converting list to table')
            raise
        except Exception as exc:
            raise ConversionError(f'Error converting list to table: {exc}') from exc


@load_options(cls=ExecutorOptions)
def connect(options: ExecutorOptions | dict[str, Any] | str,
            config: Any | None = None, **kw: Any) -> ProcedureExecutor:
    """Create a ProcedureExecutor from options

    Args:
        options: Can be:
                - ExecutorOptions object
                - String name of a section in `config`
                - Dictionary of options
        config: Configuration object; also searched for the named connection
                string when the options do not carry one
        **kw: Additional keyword arguments to override options

    Returns
        ProcedureExecutor
    """
    if isinstance(options, ExecutorOptions):
        for field in fields(options):
            kw.pop(field.name, None)
    else:
        options_func = load_options(cls=ExecutorOptions)(lambda o, c: o)
        options = options_func(options, config, **kw)

    return ProcedureExecutor(config, options)
