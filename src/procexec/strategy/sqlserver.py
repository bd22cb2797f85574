"""
SQL Server-specific strategy implementation.

This module implements the DatabaseStrategy interface for SQL Server over pyodbc.
It handles SQL Server's unique features such as:
- EXEC with named `@param=?` arguments
- Proper quoting of identifiers with square brackets
- Row-count-only result sets emitted ahead of the real result set
- Login timeout and per-statement timeout on the pyodbc connection
"""
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from procexec.strategy.base import DatabaseStrategy, normalize_parameter_name
from procexec.strategy.base import register_strategy

if TYPE_CHECKING:
    from procexec.options import ExecutorOptions

logger = logging.getLogger(__name__)


@register_strategy('mssql')
class SQLServerStrategy(DatabaseStrategy):
    """SQL Server-specific operations"""

    @property
    def placeholder(self) -> str:
        return '?'

    def quote_identifier(self, identifier):
        """Quote an identifier for SQL Server"""
        return f"[{identifier.replace(']', ']]')}]"

    def build_procedure_call(self, name: str, param_names: Sequence[str],
                             returns_rows: bool) -> str:
        quoted_name = self.quote_procedure_name(name)
        args = ', '.join(f'@{normalize_parameter_name(p)}={self.placeholder}'
                         for p in param_names)
        return f'EXEC {quoted_name} {args}'.rstrip()

    def get_engine_kwargs(self, options: 'ExecutorOptions',
                          connect_timeout: int | None) -> dict[str, Any]:
        """pyodbc takes the login timeout as a connect() keyword."""
        if connect_timeout:
            return {'connect_args': {'timeout': connect_timeout}}
        return {}

    def configure_connection(self, dbapi_connection: Any,
                             options: 'ExecutorOptions') -> None:
        """Set the query timeout for every statement on this connection"""
        if options.command_timeout:
            raw = getattr(dbapi_connection, 'driver_connection', dbapi_connection)
            raw.timeout = options.command_timeout

    def advance_to_result_set(self, cursor: Any) -> bool:
        """Skip the row count sets procedures without SET NOCOUNT ON produce"""
        while cursor.description is None:
            if not cursor.nextset():
                return False
        return True

    def drain(self, cursor: Any) -> None:
        """Step through the remaining result sets

        pyodbc raises an error from a later statement of the procedure
        (RAISERROR after an INSERT, say) only when its result set is reached.
        """
        while cursor.nextset():
            pass
