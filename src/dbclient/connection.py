"""
Database client and connection handling with SQLAlchemy.

This module provides the primary interfaces for connecting to databases:
1. The `connect()` function for creating new clients
2. The `Client` class that owns one DB-API connection and creates queries

SQLAlchemy is used for URL handling, driver loading and optional pooling.
Queries and results talk to the raw DB-API connection through the engine
strategy.
"""
import logging
from dataclasses import fields
from typing import Any, Self

import sqlalchemy as sa
from dbclient.exceptions import ERROR_KIND_EXCEPTIONS, ConnectionLost, IllegalReuse
from dbclient.options import ClientOptions
from dbclient.query import Query
from dbclient.strategy import get_strategy
from dbclient.utils.connection_utils import check_connection, get_engine_for_options

from libb import load_options

logger = logging.getLogger(__name__)

__all__ = ['Client', 'connect']


class Client:
    """One database connection, its engine strategy and statistics.

    The connection is opened lazily by the first query, or eagerly by
    `connect()`. It runs in auto-commit mode except between
    `transaction_start()` and `transaction_commit()`/`transaction_rollback()`.

    Attributes
        calls: Number of statements executed
        time: Seconds spent executing statements
        in_transaction: Whether a transaction is open
    """

    def __init__(self, options: ClientOptions) -> None:
        self.options = options
        self.strategy = get_strategy(options.drivername)
        self.dialect = self.strategy.dialect_name
        self.engine: sa.engine.Engine | None = None
        self.sa_connection: sa.engine.Connection | None = None
        self.dbapi_connection: Any = None
        self.calls = 0
        self.time = 0
        self.in_transaction = False
        self._lost = False

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        try:
            self.close()
            logger.debug('Closed connection via context manager')
        except Exception as e:
            logger.debug(f'Error closing connection in __exit__: {e}')

    def __repr__(self) -> str:
        return f'Client({self.message_prefix()})'

    @property
    def name(self) -> str:
        return self.options.name

    def message_prefix(self) -> str:
        """Prefix of every log message and error, `Database[name][engine][database]`."""
        return f'Database[{self.options.name}][{self.dialect}][{self.options.database}]'

    def addcall(self, elapsed: float) -> None:
        """Track execution statistics

        Args:
            elapsed: Time in seconds that the statement took to execute
        """
        self.time += elapsed
        self.calls += 1

    @property
    def is_pooled(self) -> bool:
        """Whether connections come from a SQLAlchemy pool rather than NullPool."""
        return self.engine is not None and not isinstance(self.engine.pool, sa.pool.NullPool)

    # Connection -------------------------------------------------------------

    def _open_connection(self) -> sa.engine.Connection:
        """Open a SQLAlchemy connection and configure its DB-API connection."""
        self.engine = get_engine_for_options(self.options)
        sa_connection = self.engine.connect()
        self.strategy.configure_connection(sa_connection.connection, self.options)
        return sa_connection

    def reconnect(self) -> Any:
        """Close any current connection and open a new one.

        Returns
            The new DB-API connection

        Raises
            ConnectionLost: When the database refuses the connection
        """
        if self.dbapi_connection is not None:
            self.disconnect()
        try:
            self.sa_connection = self._open_connection()
        except sa.exc.DBAPIError as exc:
            native = getattr(exc, 'orig', None) or exc
            message = self.strategy.native_error_message(native)
            raise ConnectionLost(f'{self.message_prefix()} - failed to connect: {message}',
                                 prefix=self.message_prefix(),
                                 native_code=next(iter(self.strategy.native_error_codes(native)), None),
                                 native_message=message) from exc
        self.dbapi_connection = self.sa_connection.connection
        self._lost = False
        logger.debug(f'{self.message_prefix()} - connected')
        return self.dbapi_connection

    def get_connection(self, reconnect: bool = False) -> Any:
        """The DB-API connection.

        Args:
            reconnect: Open a connection when there is none

        Returns
            The connection, or None when absent and `reconnect` is false

        Raises
            ConnectionLost: When the connection dropped inside a transaction
        """
        if self.dbapi_connection is not None:
            return self.dbapi_connection
        if self._lost and self.in_transaction:
            raise ConnectionLost(f'{self.message_prefix()} - connection lost during transaction',
                                 prefix=self.message_prefix())
        if not reconnect:
            return None
        return self.reconnect()

    def connection_lost(self) -> None:
        """Drop a connection the driver reported as lost."""
        logger.warning(f'{self.message_prefix()} - connection lost')
        self.disconnect()
        self._lost = True

    def disconnect(self) -> None:
        """Close the connection, ignoring errors of an already broken one."""
        sa_connection, self.sa_connection, self.dbapi_connection = self.sa_connection, None, None
        if sa_connection is None:
            return
        try:
            sa_connection.close()
        except Exception as exc:
            logger.debug(f'{self.message_prefix()} - error closing connection: {exc}')

    def ping(self) -> bool:
        """Whether the connection is open and usable."""
        if self.dbapi_connection is None:
            return False
        return self.strategy.ping(self.dbapi_connection)

    def close(self) -> None:
        """Close the connection, rolling back an open transaction first."""
        if self.in_transaction and self.dbapi_connection is not None:
            logger.warning(f'{self.message_prefix()} - closing inside a transaction, rolling back')
            self.transaction_rollback()
        self.in_transaction = False
        if self.sa_connection is not None:
            self.disconnect()
            logger.debug(f'Connection closed: {self.calls} queries in {self.time:.2f}s'
                         f' (avg: {self.time/max(1,self.calls):.3f}s per query)')

    # Queries ----------------------------------------------------------------

    def query(self, sql: str, **options: Any) -> Query:
        """Create a query; SQL uses `?` markers.

        Options: see `QueryOptionSchema`, e.g. `result_mode`, `affected_rows`,
        `insert_id`, `num_rows`, `validate_params`, `reusable`, `name`.
        """
        return Query(self, sql, options)

    def multi_query(self, sql: str, **options: Any) -> Query:
        """Create a query whose statements yield independent result sets."""
        return Query(self, sql, options, multi=True)

    # Transactions -----------------------------------------------------------

    def _native_call(self, action: str, func) -> None:
        try:
            func()
        except Exception as exc:
            if not self.strategy.is_native_error(exc):
                raise
            error_cls = ERROR_KIND_EXCEPTIONS[self.strategy.classify(exc)]
            message = self.strategy.native_error_message(exc)
            raise error_cls(f'{self.message_prefix()} - {action} failed: {message}',
                           prefix=self.message_prefix(),
                           native_message=message) from exc

    def transaction_start(self) -> None:
        """Turn auto-commit off until commit or rollback.

        Raises
            IllegalReuse: When a transaction is already open
        """
        if self.in_transaction:
            raise IllegalReuse(f'{self.message_prefix()} - transaction already started',
                               prefix=self.message_prefix())
        conn = self.get_connection(reconnect=True)
        self._native_call('transaction start', lambda: self.strategy.disable_autocommit(conn))
        self.in_transaction = True
        logger.debug(f'{self.message_prefix()} - transaction started')

    def _end_transaction(self, action: str) -> None:
        if not self.in_transaction:
            raise IllegalReuse(f'{self.message_prefix()} - {action} without transaction',
                               prefix=self.message_prefix())
        conn = self.dbapi_connection
        self.in_transaction = False
        self._lost = False
        if conn is None:
            raise ConnectionLost(f'{self.message_prefix()} - connection lost during transaction,'
                                 f' {action} impossible', prefix=self.message_prefix())
        self._native_call(f'transaction {action}', getattr(conn, action))
        self._native_call('auto-commit', lambda: self.strategy.enable_autocommit(conn))
        logger.debug(f'{self.message_prefix()} - transaction {action}')

    def transaction_commit(self) -> None:
        self._end_transaction('commit')

    def transaction_rollback(self) -> None:
        self._end_transaction('rollback')


@check_connection
def _open(client: Client) -> Any:
    """First connection of a new client, retried with backoff."""
    return client.reconnect()


@load_options(cls=ClientOptions)
def connect(options: ClientOptions | dict[str, Any] | str,
            config: Any | None = None, **kw: Any) -> Client:
    """Connect to a database and return a client

    Args:
        options: Can be:
                - ClientOptions object
                - String path to configuration
                - Dictionary of options
                - Options specified as keyword arguments
        config: Configuration object (for loading from config files)
        **kw: Additional keyword arguments to override options

    Connection pooling options:
        use_pool: Whether to use connection pooling (default: False)
        pool_max_connections: Maximum connections in pool (default: 5)
        pool_max_idle_time: Maximum seconds a connection can be idle (default: 300)
        pool_wait_timeout: Maximum seconds to wait for a connection (default: 30)
    """
    if isinstance(options, ClientOptions):
        for field in fields(options):
            kw.pop(field.name, None)
    else:
        options_func = load_options(cls=ClientOptions)(lambda o, c: o)
        options = options_func(options, config, **kw)

    client = Client(options)
    _open(client)
    return client
