"""
Client options and data loaders.

Client level options are a libb `ConfigOptions` dataclass loaded by
`connect()`. The query option schema and validation policy names are
re-exported from `dbclient.schema`.
"""
from collections.abc import Callable
from dataclasses import dataclass
from functools import wraps
from typing import Any

import pandas as pd
import pyarrow as pa
from dbclient.schema import VALIDATE_ALWAYS, VALIDATE_DEFAULT, VALIDATE_EXECUTE
from dbclient.schema import VALIDATE_FAILURE, VALIDATE_PREPARE
from dbclient.schema import VALIDATE_STRINGABLE_EXEC, QueryOptions
from dbclient.schema import QueryOptionSchema, ValidationPolicy
from dbclient.strategy import get_available_dialects, get_strategy_class
from dbclient.strategy import is_supported_dialect
from dbclient.types import Column

from libb import ConfigOptions, scriptname

__all__ = [
    'ClientOptions',
    'ValidationPolicy',
    'QueryOptionSchema',
    'QueryOptions',
    'VALIDATE_PREPARE',
    'VALIDATE_EXECUTE',
    'VALIDATE_FAILURE',
    'VALIDATE_STRINGABLE_EXEC',
    'VALIDATE_ALWAYS',
    'VALIDATE_DEFAULT',
    'pandas_numpy_data_loader',
    'pandas_pyarrow_data_loader',
    'iterdict_data_loader',
    'use_iterdict_data_loader',
]


def use_iterdict_data_loader(func):
    """Temporarily use default dict loader over user-specified loader"""

    @wraps(func)
    def inner(*args, **kwargs):
        client = getattr(args[0], 'client', args[0])
        original_data_loader = client.options.data_loader
        client.options.data_loader = iterdict_data_loader

        try:
            return func(*args, **kwargs)
        finally:
            client.options.data_loader = original_data_loader

    return inner


def iterdict_data_loader(data, columns, **kwargs) -> list[dict]:
    """Minimal data loader, rows as dicts.
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
class ClientOptions(ConfigOptions):
    """Options

    supported driver names: `mariadb`, `mssql`

    name: client name shown in message prefixes, defaults to the database
    validate_params: default argument validation bitmask of queries
    reconnect: whether a query may reconnect and retry once on connection loss
    """
    drivername: str = 'mariadb'
    hostname: str = None
    username: str = None
    password: str = None
    database: str = None
    port: int = 0
    timeout: int = 0
    appname: str = None
    name: str = None
    character_set: str = 'utf8mb4'
    odbc_driver: str = 'ODBC Driver 18 for SQL Server'
    trust_server_certificate: bool = False
    validate_params: int = VALIDATE_DEFAULT
    reconnect: bool = True
    data_loader: Callable[..., Any] | None = None
    # Connection pooling parameters
    use_pool: bool = False
    pool_max_connections: int = 5
    pool_max_idle_time: int = 300
    pool_wait_timeout: int = 30

    def __post_init__(self):
        if not is_supported_dialect(self.drivername):
            available = get_available_dialects()
            raise ValueError(f'drivername must be one of: {available}')
        self.appname = self.appname or scriptname() or 'python_console'
        self.name = self.name or self.database or self.drivername
        strategy_cls = get_strategy_class(self.drivername)
        strategy_cls.validate_options(self)
        if self.data_loader is None:
            self.data_loader = iterdict_data_loader
