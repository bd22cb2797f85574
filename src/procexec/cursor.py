"""
Cursor wrapper for stored procedure calls.

Implements the part of Python DB-API 2.0 (PEP-249) the executor needs, with
SQL logging and timing, and materializes result sets through the configured
data loader.
"""
import logging
import time
from collections.abc import Sequence
from functools import wraps
from typing import Any

from procexec.types import Column, TypeConverter
from procexec.types import columns_from_cursor_description

logger = logging.getLogger(__name__)


def dumpsql(func):
    """Decorator for logging SQL queries and parameters."""
    @wraps(func)
    def wrapper(self, operation: str, *args: Any, **kwargs: Any):
        start = time.time()
        logger.debug(f'SQL:\n{operation}\nargs: {args}')
        try:
            return func(self, operation, *args, **kwargs)
        except Exception:
            logger.error(f'Error with query:\nSQL:\n{operation}\nargs: {args}')
            raise
        finally:
            elapsed = time.time() - start
            self.connwrapper.addcall(elapsed)
            logger.debug(f'Query time: {elapsed:.4f}s')
    return wrapper


class Cursor:
    """Cursor wrapper that converts parameters and tracks call statistics.
    """

    def __init__(self, cursor: Any, connection_wrapper: Any) -> None:
        """Initialize cursor wrapper.

        Args:
            cursor: The underlying database cursor
            connection_wrapper: The connection wrapper that created this cursor
        """
        self.dbapi_cursor = cursor
        self.connwrapper = connection_wrapper

    def __getattr__(self, name: str) -> Any:
        """Delegate members to underlying cursor."""
        return getattr(self.dbapi_cursor, name)

    @property
    def description(self) -> list[tuple] | None:
        """Column descriptions for the current result set."""
        return self.dbapi_cursor.description

    @property
    def rowcount(self) -> int:
        """Number of rows produced/affected by last operation."""
        return self.dbapi_cursor.rowcount

    def close(self) -> None:
        """Close cursor."""
        self.dbapi_cursor.close()

    def fetchall(self) -> list[tuple]:
        """Fetch all remaining rows."""
        return self.dbapi_cursor.fetchall()

    def nextset(self) -> bool | None:
        """Move to next result set.

        Returns None for drivers that don't support multiple result sets.
        """
        if hasattr(self.dbapi_cursor, 'nextset'):
            return self.dbapi_cursor.nextset()
        return None

    def cancel(self) -> None:
        """Cancel the running statement through the dialect strategy."""
        self.connwrapper.strategy.cancel(self.connwrapper.dbapi_connection, self.dbapi_cursor)

    @dumpsql
    def execute(self, operation: str, params: Sequence[Any] = ()) -> int:
        """Execute a database operation with positional parameters."""
        params = TypeConverter.convert_params(tuple(params))
        if params:
            self.dbapi_cursor.execute(operation, params)
        else:
            self.dbapi_cursor.execute(operation)
        return self.dbapi_cursor.rowcount


def extract_column_info(cursor: Cursor) -> list[Column]:
    """Extract column information from cursor description based on database type."""
    return columns_from_cursor_description(cursor, cursor.connwrapper.dialect)


def load_data(cursor: Cursor, data_loader: Any, **kwargs: Any) -> Any:
    """Materialize the current result set through `data_loader`.

    A cursor positioned on no result set yields the loader's empty result.
    """
    strategy = cursor.connwrapper.strategy
    if not strategy.advance_to_result_set(cursor):
        logger.debug('Procedure produced no result set')
        return data_loader([], [], **kwargs)

    columns = extract_column_info(cursor)
    names = Column.get_names(columns)
    data = [dict(zip(names, row)) for row in cursor.fetchall()]
    logger.debug(f'Fetched {len(data)} rows with {len(columns)} columns')
    return data_loader(data, columns, **kwargs)
