"""
Database connection handling with SQLAlchemy.

This module provides:
1. Engine creation and management through a thread-safe registry
2. The `ConnectionWrapper` class that wraps SQLAlchemy connections
3. The `ConnectionManager` that opens one connection per call and
   releases it on every exit path

SQLAlchemy is used exclusively for connection management and pooling. With
the default NullPool every released connection is really closed; with
`use_pool` the pool lives in the engine and `clear_pool_on_release` disposes
it after each call.
"""
import atexit
import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any, Self

import sqlalchemy as sa
from procexec.configuration import create_url_from_connection_string
from procexec.cursor import Cursor
from procexec.exceptions import ConnectionFailure, DbConnectionError
from procexec.options import ExecutorOptions
from procexec.strategy import DatabaseStrategy, get_strategy
from procexec.strategy import is_supported_dialect
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool

__all__ = [
    'ConnectionWrapper',
    'ConnectionManager',
    'get_engine',
    'dispose_engine',
    'dispose_all_engines',
]

logger = logging.getLogger(__name__)

_engine_registry: dict[str, Engine] = {}
_engine_registry_lock = threading.RLock()


def _engine_key(url: sa.URL, options: ExecutorOptions, connect_timeout: int | None) -> str:
    return (f'{url.render_as_string(hide_password=False)}_{options.use_pool}'
            f'_{options.pool_max_connections}_{options.pool_max_idle_time}'
            f'_{options.pool_wait_timeout}_{connect_timeout}_{options.command_timeout}')


def get_engine(url: sa.URL, options: ExecutorOptions, connect_timeout: int | None = None,
               engine_factory: Callable[..., Engine] = sa.create_engine) -> Engine:
    """Get or create a SQLAlchemy engine for the URL and options.
    """
    dialect = url.get_backend_name()
    if not is_supported_dialect(dialect):
        raise ValueError(f'Unsupported dialect: {dialect}')

    key = _engine_key(url, options, connect_timeout)

    with _engine_registry_lock:
        if key in _engine_registry:
            logger.debug(f'Using existing engine for {dialect}')
            return _engine_registry[key]

        strategy = get_strategy(dialect)
        engine_kwargs: dict[str, Any] = {'echo': False}

        if not options.use_pool:
            engine_kwargs['poolclass'] = NullPool
        else:
            engine_kwargs['pool_size'] = options.pool_max_connections
            engine_kwargs['pool_recycle'] = options.pool_max_idle_time
            engine_kwargs['pool_timeout'] = options.pool_wait_timeout
            engine_kwargs['max_overflow'] = 10
            engine_kwargs['pool_pre_ping'] = True
            engine_kwargs['pool_reset_on_return'] = 'rollback'

        engine_kwargs.update(strategy.get_engine_kwargs(options, connect_timeout))

        engine = engine_factory(url, **engine_kwargs)

        _engine_registry[key] = engine
        logger.debug(f'Created new engine for {dialect}')

        return engine


def dispose_engine(engine: Engine) -> None:
    """Drop every pooled connection of an engine.
    """
    engine.dispose()
    logger.debug(f'Cleared connection pool for {engine.dialect.name}')


def dispose_all_engines() -> None:
    """Dispose all engines in the registry.
    """
    with _engine_registry_lock:
        for engine in list(_engine_registry.values()):
            engine.dispose()
        _engine_registry.clear()
        logger.debug('All database engines disposed')


atexit.register(dispose_all_engines)


class ConnectionWrapper:
    """Wraps a SQLAlchemy connection object to track calls and execution time

    This class provides a thin wrapper around SQLAlchemy connection objects that:
    1. Tracks statement counts and timing
    2. Hands out cursors bound to the dialect strategy
    3. Supports context manager protocol for explicit resource management
    """

    def __init__(self, sa_connection: sa.engine.Connection,
                 options: ExecutorOptions) -> None:
        self.sa_connection = sa_connection
        self.engine = sa_connection.engine
        self.options = options
        self.dbapi_connection = sa_connection.connection
        self._dialect = self.engine.dialect.name
        self.strategy: DatabaseStrategy = get_strategy(self._dialect)
        self.calls = 0
        self.time = 0

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        self.close()

    @property
    def dialect(self) -> str:
        """Return the SQLAlchemy dialect name ('postgresql' or 'mssql')."""
        return self._dialect

    @property
    def closed(self) -> bool:
        return self.sa_connection.closed

    def cursor(self) -> Cursor:
        """Get a wrapped cursor for this connection
        """
        return Cursor(self.dbapi_connection.cursor(), self)

    def addcall(self, elapsed: float) -> None:
        """Track execution statistics
        """
        self.time += elapsed
        self.calls += 1

    def commit(self) -> None:
        self.dbapi_connection.commit()

    def rollback(self) -> None:
        self.dbapi_connection.rollback()

    def close(self) -> None:
        """Close the SQLAlchemy connection; uncommitted work is rolled back
        """
        if not self.sa_connection.closed:
            self.sa_connection.close()
            logger.debug(f'Connection closed: {self.calls} statements in {self.time:.2f}s')


class ConnectionManager:
    """Opens one private connection per call.

    No connection is kept between calls, so a manager can be shared by
    threads; each `connection()` block owns its connection outright.
    """

    def __init__(self, connection_string: str | None, options: ExecutorOptions,
                 engine_factory: Callable[..., Engine] = sa.create_engine) -> None:
        self.connection_string = connection_string
        self.options = options
        self.engine_factory = engine_factory
        self._engine: Engine | None = None
        self._lock = threading.Lock()

    @property
    def engine(self) -> Engine:
        """Engine for the configured connection string, created on first use.

        Raises
            ConnectionFailure: If the connection string is missing or invalid
        """
        with self._lock:
            if self._engine is None:
                self._engine = self._create_engine()
            return self._engine

    def _create_engine(self) -> Engine:
        if not self.connection_string:
            raise ConnectionFailure(
                f'Connection string {self.options.connection_name!r} is not configured')
        try:
            url, embedded_timeout = create_url_from_connection_string(self.connection_string)
            connect_timeout = embedded_timeout or self.options.timeout
            return get_engine(url, self.options, connect_timeout, self.engine_factory)
        except (ValueError, *DbConnectionError) as exc:
            raise ConnectionFailure(f'Invalid connection string: {exc}') from exc

    def acquire(self) -> ConnectionWrapper:
        """Open a new connection.

        Raises
            ConnectionFailure: If the database cannot be reached
        """
        engine = self.engine
        try:
            sa_connection = engine.connect()
        except DbConnectionError as exc:
            logger.error(f'Could not connect to {engine.dialect.name}: {exc}')
            raise ConnectionFailure(f'Could not connect to database: {exc}') from exc

        cn = ConnectionWrapper(sa_connection, self.options)
        try:
            cn.strategy.configure_connection(cn.dbapi_connection, self.options)
        except Exception:
            cn.close()
            raise
        logger.debug(f'Opened {cn.dialect} connection')
        return cn

    def release(self, cn: ConnectionWrapper) -> None:
        """Close the connection and optionally clear the pool.

        Errors raised here propagate to the caller.
        """
        cn.close()
        if self.options.clear_pool_on_release:
            dispose_engine(cn.engine)

    @contextmanager
    def connection(self) -> Iterator[ConnectionWrapper]:
        """Acquire a connection for the block and release it on every exit path.
        """
        cn = self.acquire()
        try:
            yield cn
        finally:
            self.release(cn)

    def dispose(self) -> None:
        """Dispose this manager's engine pool, if one was created."""
        with self._lock:
            if self._engine is not None:
                dispose_engine(self._engine)
