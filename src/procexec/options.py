from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import pandas as pd
import pyarrow as pa
from procexec.types import Column

from libb import ConfigOptions, scriptname

__all__ = [
    'ExecutorOptions',
    'STRIP_FORMATTING_MODES',
    'pandas_numpy_data_loader',
    'pandas_pyarrow_data_loader',
    'iterdict_data_loader',
]

STRIP_FORMATTING_MODES = ('numeric', 'all', 'none')


def iterdict_data_loader(data, columns, **kwargs) -> list[dict]:
    """Minimal data loader returning a list of row dicts.
    """
    if not data:
        return []
    return list(data)


def _empty_dataframe(columns) -> pd.DataFrame:
    """Create empty DataFrame with column metadata."""
    df = pd.DataFrame(columns=Column.get_names(columns))
    df.attrs['column_types'] = Column.get_column_types_dict(columns)
    return df


def pandas_numpy_data_loader(data, columns, **kwargs) -> pd.DataFrame:
    """Standard pandas DataFrame loader using NumPy.

    Always returns a DataFrame, never None, with columns preserved for empty results.
    Includes type information in the DataFrame.attrs attribute.
    """
    if not data:
        return _empty_dataframe(columns)

    df = pd.DataFrame.from_records(list(data), columns=Column.get_names(columns))
    df.attrs['column_types'] = Column.get_column_types_dict(columns)
    return df


def pandas_pyarrow_data_loader(data, columns, **kwargs) -> pd.DataFrame:
    """PyArrow-based pandas DataFrame loader.

    Always returns a DataFrame, never None, with columns preserved for empty results.
    """
    if not data:
        return _empty_dataframe(columns)

    column_names = Column.get_names(columns)
    columns_data = [[row[col] for row in data] for col in column_names]
    df = pa.table(columns_data, names=column_names).to_pandas(types_mapper=pd.ArrowDtype)
    df.attrs['column_types'] = Column.get_column_types_dict(columns)
    return df


@dataclass
class ExecutorOptions(ConfigOptions):
    """Options

    The connection string is taken from `connection_string` when set,
    otherwise it is looked up under `connection_name` in the configuration
    handed to the executor.

    Timeouts (seconds):
    - timeout: connect timeout, bounded so unreachable hosts fail (default: 15)
    - command_timeout: per statement timeout, 0 keeps the driver default

    Pooling:
    - use_pool: Whether to use connection pooling (default: False)
    - pool_max_connections: Maximum connections in pool (default: 5)
    - pool_max_idle_time: Maximum seconds a connection can be idle (default: 300)
    - pool_wait_timeout: Maximum seconds to wait for a connection (default: 30)
    - clear_pool_on_release: Dispose the pool after every call (default: False)

    strip_formatting controls removal of `$`, `,` and `%` from cells before
    conversion: `numeric` (numeric fields only), `all` or `none`.
    """
    connection_string: str = None
    connection_name: str = 'DefaultConnection'
    timeout: int = 15
    command_timeout: int = 0
    appname: str = None
    use_pool: bool = False
    pool_max_connections: int = 5
    pool_max_idle_time: int = 300
    pool_wait_timeout: int = 30
    clear_pool_on_release: bool = False
    strip_formatting: str = 'numeric'
    data_loader: Callable[..., Any] | None = None

    def __post_init__(self):
        if self.strip_formatting not in STRIP_FORMATTING_MODES:
            raise ValueError(f'strip_formatting must be one of: {STRIP_FORMATTING_MODES}')
        if self.timeout < 0 or self.command_timeout < 0:
            raise ValueError('timeout and command_timeout must not be negative')
        self.appname = self.appname or scriptname() or 'python_console'
        if self.data_loader is None:
            self.data_loader = pandas_numpy_data_loader
