"""
Base strategy interface for stored procedure calls.

Defines the abstract base class that all database-specific strategy implementations
must inherit from. The strategy pattern encapsulates how each database names,
quotes and invokes a procedure, applies timeouts and cancels running statements,
while the executor works with any database through this consistent interface.
"""
import re
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from procexec.options import ExecutorOptions

# Registry of dialect name -> strategy class
# Defined here to avoid circular imports (concrete strategies import from base)
_STRATEGY_REGISTRY: dict[str, type['DatabaseStrategy']] = {}

_IDENTIFIER = re.compile(r'^[A-Za-z_#][\w$#@]*$')


def register_strategy(dialect: str):
    """Decorator to register a strategy class for a SQLAlchemy dialect name.

    Usage:
        @register_strategy('postgresql')
        class PostgresStrategy(DatabaseStrategy):
            ...
    """
    def decorator(cls: type['DatabaseStrategy']) -> type['DatabaseStrategy']:
        _STRATEGY_REGISTRY[dialect] = cls
        return cls
    return decorator


def split_identifier(name: str) -> list[str]:
    """Split a dotted procedure name into validated parts.

    Parts may already be quoted with brackets or double quotes.

    Raises
        ValueError: If any part is empty or not a plain identifier
    """
    if not name or not name.strip():
        raise ValueError('Procedure name must not be empty')

    parts = []
    for part in name.strip().split('.'):
        part = part.strip()
        if len(part) > 1 and (part[0], part[-1]) in {('[', ']'), ('"', '"')}:
            part = part[1:-1]
        if not _IDENTIFIER.match(part):
            raise ValueError(f'Invalid identifier {part!r} in procedure name {name!r}')
        parts.append(part)
    return parts


def normalize_parameter_name(name: str) -> str:
    """Strip the `@` prefix SQL Server style names carry and validate the rest.
    """
    bare = name.strip().lstrip('@')
    if not _IDENTIFIER.match(bare):
        raise ValueError(f'Invalid parameter name {name!r}')
    return bare


class DatabaseStrategy(ABC):
    """Base class for database-specific procedure handling.
    """

    @property
    @abstractmethod
    def placeholder(self) -> str:
        """Return the positional placeholder used by the driver."""

    @abstractmethod
    def quote_identifier(self, identifier: str) -> str:
        """Quote a single identifier."""

    def quote_procedure_name(self, name: str) -> str:
        """Validate and quote a possibly schema-qualified procedure name."""
        return '.'.join(self.quote_identifier(part) for part in split_identifier(name))

    @abstractmethod
    def build_procedure_call(self, name: str, param_names: Sequence[str],
                             returns_rows: bool) -> str:
        """Build the SQL that invokes a procedure.

        Args:
            name: Procedure name, optionally schema qualified
            param_names: Parameter names bound in order, one placeholder each
            returns_rows: Whether the caller wants the result set

        Returns
            SQL text with one placeholder per parameter
        """

    def get_engine_kwargs(self, options: 'ExecutorOptions',
                          connect_timeout: int | None) -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for this dialect."""
        return {}

    def configure_connection(self, dbapi_connection: Any,
                             options: 'ExecutorOptions') -> None:
        """Apply per-connection settings after open."""

    def advance_to_result_set(self, cursor: Any) -> bool:
        """Position the cursor on the first result set with columns.

        Returns True if such a result set exists.
        """
        return cursor.description is not None

    def drain(self, cursor: Any) -> None:
        """Consume whatever the call produced after the rows that were read.

        Errors raised by later statements of a procedure surface here, before
        the call is committed.
        """

    def cancel(self, dbapi_connection: Any, cursor: Any) -> None:
        """Cancel the statement running on the connection/cursor."""
        cursor.cancel()
