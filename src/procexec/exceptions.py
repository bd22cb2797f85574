"""
Error taxonomy for procedure execution and record mapping.

Every public operation raises one of the three kinds below, each a
subclass of DatabaseError, with the driver exception chained as the cause.
"""
import psycopg
import sqlalchemy.exc


class DatabaseError(Exception):
    """Base class for all procexec errors.
    """


class ConnectionFailure(DatabaseError):
    """Error establishing a database connection.
    """


class ExecutionError(DatabaseError):
    """Error binding parameters for or executing a stored procedure.
    """


class ConversionError(DatabaseError):
    """Error converting a cell value to a record field type.
    """


DbConnectionError = (
    psycopg.OperationalError,
    psycopg.InterfaceError,
    sqlalchemy.exc.DBAPIError,
    sqlalchemy.exc.ArgumentError,
    ConnectionFailure,
    )
