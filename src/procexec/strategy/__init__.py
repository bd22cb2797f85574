"""
Database strategy factory for dialect-specific procedure calls.
"""
from functools import lru_cache

from procexec.strategy.base import _STRATEGY_REGISTRY
from procexec.strategy.base import DatabaseStrategy as DatabaseStrategy
from procexec.strategy.base import register_strategy as register_strategy
from procexec.strategy.postgres import PostgresStrategy as PostgresStrategy
from procexec.strategy.sqlserver import SQLServerStrategy as SQLServerStrategy


def _validate_dialect(dialect: str) -> None:
    """Raise ValueError if dialect is not registered."""
    if dialect not in _STRATEGY_REGISTRY:
        available = list(_STRATEGY_REGISTRY.keys())
        raise ValueError(f'Unsupported dialect: {dialect}. Available: {available}')


@lru_cache(maxsize=8)
def _get_strategy(dialect: str) -> DatabaseStrategy:
    """Get cached strategy instance for a dialect."""
    _validate_dialect(dialect)
    return _STRATEGY_REGISTRY[dialect]()


def get_strategy(dialect: str) -> DatabaseStrategy:
    """Get strategy instance for a dialect name."""
    return _get_strategy(dialect)


def get_available_dialects() -> list[str]:
    """Return list of registered dialect names."""
    return list(_STRATEGY_REGISTRY.keys())


def is_supported_dialect(dialect: str) -> bool:
    """Check if a dialect is supported."""
    return dialect in _STRATEGY_REGISTRY
