"""
PostgreSQL-specific strategy implementation.

PostgreSQL separates the two kinds of routine:
- Functions returning a table/set are read with SELECT * FROM fn(...)
- Procedures are invoked with CALL proc(...)

Parameters are passed with named notation (`"p" => %s`) so their order in the
call does not have to match the routine signature.
"""
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from procexec.strategy.base import DatabaseStrategy, normalize_parameter_name
from procexec.strategy.base import register_strategy

if TYPE_CHECKING:
    from procexec.options import ExecutorOptions

logger = logging.getLogger(__name__)


@register_strategy('postgresql')
class PostgresStrategy(DatabaseStrategy):
    """PostgreSQL-specific operations.
    """

    @property
    def placeholder(self) -> str:
        return '%s'

    def quote_identifier(self, identifier: str) -> str:
        return '"' + identifier.replace('"', '""') + '"'

    def build_procedure_call(self, name: str, param_names: Sequence[str],
                             returns_rows: bool) -> str:
        """Named-notation call: SELECT * FROM for results, CALL otherwise.

        CALL only reaches procedures. A function, including one returning
        void, has to be called through execute_for_results.
        """
        quoted_name = self.quote_procedure_name(name)
        args = ', '.join(
            f'{self.quote_identifier(normalize_parameter_name(p))} => {self.placeholder}'
            for p in param_names)
        if returns_rows:
            return f'SELECT * FROM {quoted_name}({args})'
        return f'CALL {quoted_name}({args})'

    def get_engine_kwargs(self, options: 'ExecutorOptions',
                          connect_timeout: int | None) -> dict[str, Any]:
        """Connect timeout, application name and statement timeout as libpq parameters."""
        connect_args: dict[str, Any] = {'application_name': options.appname}
        if connect_timeout:
            connect_args['connect_timeout'] = connect_timeout
        if options.command_timeout:
            connect_args['options'] = f'-c statement_timeout={int(options.command_timeout * 1000)}'
        return {'connect_args': connect_args}

    def cancel(self, dbapi_connection: Any, cursor: Any) -> None:
        """Send a cancel request for the connection's running statement."""
        raw = getattr(dbapi_connection, 'driver_connection', dbapi_connection)
        raw.cancel()
        logger.debug('Sent PostgreSQL cancel request')
