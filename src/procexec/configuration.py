"""
Connection string lookup and conversion.

A configuration source can be:
1. A mapping with a `ConnectionStrings` section or flat named entries
2. An object (config module, libb Setting) with a `ConnectionStrings` attribute
3. The connection string itself

Connection strings are either SQLAlchemy URLs or ADO.NET/ODBC style
`key=value;` strings, which are converted to `mssql+pyodbc` URLs.
"""
import logging
import re
from collections.abc import Mapping
from typing import Any

import sqlalchemy as sa

__all__ = [
    'CONNECTION_STRINGS_SECTION',
    'DEFAULT_ODBC_DRIVER',
    'DEFAULT_DRIVERS',
    'get_connection_string',
    'parse_key_value_string',
    'to_odbc_connection_string',
    'create_url_from_connection_string',
]

logger = logging.getLogger(__name__)

CONNECTION_STRINGS_SECTION = 'ConnectionStrings'
DEFAULT_ODBC_DRIVER = '{ODBC Driver 18 for SQL Server}'
DEFAULT_DRIVERS = {'postgresql': 'postgresql+psycopg', 'mssql': 'mssql+pyodbc'}

_ADO_KEYWORDS = {
    'data source': 'Server',
    'address': 'Server',
    'addr': 'Server',
    'network address': 'Server',
    'server': 'Server',
    'initial catalog': 'Database',
    'database': 'Database',
    'user id': 'UID',
    'user': 'UID',
    'uid': 'UID',
    'password': 'PWD',
    'pwd': 'PWD',
    'driver': 'Driver',
    'encrypt': 'Encrypt',
    'trustservercertificate': 'TrustServerCertificate',
    'trust server certificate': 'TrustServerCertificate',
    'application name': 'APP',
    'app': 'APP',
    'multisubnetfailover': 'MultiSubnetFailover',
    'multi subnet failover': 'MultiSubnetFailover',
    'applicationintent': 'ApplicationIntent',
    'application intent': 'ApplicationIntent',
}

_TIMEOUT_KEYWORDS = {'connect timeout', 'connection timeout', 'timeout'}

# ADO.NET keys with no ODBC counterpart (pooling is handled by SQLAlchemy)
_IGNORED_KEYWORDS = {'pooling', 'min pool size', 'max pool size',
                     'multipleactiveresultsets', 'persist security info'}

_TRUE_VALUES = {'true', 'yes', 'sspi'}


def _lookup(source: Any, key: str) -> Any:
    """Case-insensitive key or attribute lookup, None when absent."""
    if isinstance(source, Mapping):
        if key in source:
            return source[key]
        for k, v in source.items():
            if isinstance(k, str) and k.lower() == key.lower():
                return v
        return None
    return getattr(source, key, None)


def get_connection_string(configuration: Any, name: str = 'DefaultConnection') -> str | None:
    """Read the named connection string from a configuration source.

    Returns None when it cannot be found; the caller decides when that
    becomes an error.
    """
    if configuration is None:
        return None

    if isinstance(configuration, str):
        return configuration

    section = _lookup(configuration, CONNECTION_STRINGS_SECTION)
    if section is not None:
        value = _lookup(section, name)
        if value:
            return str(value)

    value = _lookup(configuration, name)
    if isinstance(value, str) and value:
        return value

    logger.debug(f'Connection string {name!r} not found in configuration')
    return None


def parse_key_value_string(connection_string: str) -> list[tuple[str, str]]:
    """Split a `key=value;key={va;lue}` string into ordered pairs.
    """
    pairs = []
    pattern = re.compile(r'\s*([^=;]+?)\s*=\s*(\{(?:[^}]|\}\})*\}|[^;]*)\s*(?:;|$)')
    pos = 0
    text = connection_string.strip()
    while pos < len(text):
        if text[pos] in ' ;':
            pos += 1
            continue
        match = pattern.match(text, pos)
        if not match or match.end() == pos:
            raise ValueError(f'Malformed connection string near: {text[pos:]!r}')
        pairs.append((match.group(1), match.group(2).strip()))
        pos = match.end()
    return pairs


def to_odbc_connection_string(connection_string: str) -> tuple[str, int | None]:
    """Convert an ADO.NET style string to an ODBC string for pyodbc.

    Returns the ODBC string and the connect timeout found in it (or None).
    """
    odbc: dict[str, str] = {}
    timeout = None
    for key, value in parse_key_value_string(connection_string):
        lowered = key.lower()
        if lowered in _TIMEOUT_KEYWORDS:
            timeout = int(value)
        elif lowered in {'integrated security', 'trusted_connection'}:
            if value.lower() in _TRUE_VALUES:
                odbc['Trusted_Connection'] = 'yes'
        elif lowered in _IGNORED_KEYWORDS:
            logger.debug(f'Ignoring connection string keyword {key!r}')
        else:
            odbc[_ADO_KEYWORDS.get(lowered, key)] = value

    odbc.setdefault('Driver', DEFAULT_ODBC_DRIVER)
    ordered = {'Driver': odbc.pop('Driver'), **odbc}
    return ';'.join(f'{k}={v}' for k, v in ordered.items()), timeout


def create_url_from_connection_string(connection_string: str) -> tuple[sa.URL, int | None]:
    """Convert a connection string to a SQLAlchemy URL.

    Returns the URL and any connect timeout embedded in a key-value string.
    A URL naming only the backend gets the driver the strategies are written
    for, so `postgresql://` uses psycopg rather than SQLAlchemy's psycopg2
    default.
    """
    if '://' in connection_string:
        url = sa.make_url(connection_string)
        if url.drivername in DEFAULT_DRIVERS:
            url = url.set(drivername=DEFAULT_DRIVERS[url.drivername])
        return url, None

    odbc, timeout = to_odbc_connection_string(connection_string)
    url = sa.URL.create('mssql+pyodbc', query={'odbc_connect': odbc})
    return url, timeout
