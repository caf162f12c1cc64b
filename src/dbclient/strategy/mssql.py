"""
SQL Server strategy implementation on pyodbc.

It handles SQL Server's features such as:
- Batches instead of multi-query: non-selecting statements plus at most
  one trailing SELECT
- Insert id through an appended `SELECT SCOPE_IDENTITY()` result set
- Result modes named after server cursor types, with client side buffering
  where a row count is needed
- Argument type qualifiers through `setinputsizes`
- Native error codes embedded in ODBC messages, connection loss by SQLSTATE

The strategy never imports pyodbc; SQLAlchemy loads it when the engine
connects, so everything short of connecting works without an ODBC driver
manager installed.
"""
import logging
import re
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from dbclient.exceptions import MSSQL_ERROR_CODES
from dbclient.schema import QueryOptionSchema
from dbclient.sql import SqlDialect
from dbclient.strategy.base import DatabaseStrategy, register_strategy

if TYPE_CHECKING:
    from dbclient.options import ClientOptions
    from dbclient.types import NativeParam

logger = logging.getLogger(__name__)

MSSQL_QUERY_OPTIONS = QueryOptionSchema(
    engine='mssql',
    result_modes=('forward', 'static', 'dynamic', 'keyset', 'buffered'),
    default_result_mode='forward',
    unbuffered_modes=frozenset({'forward', 'dynamic'}),
    row_count_modes=frozenset({'static', 'keyset', 'buffered'}),
    client_buffered_modes=frozenset({'static', 'keyset', 'buffered'}),
    affected_rows_modes=frozenset({'forward'}),
    num_rows_mode='static',
    multi_query=False,
)

INSERT_ID_SELECT = 'SELECT SCOPE_IDENTITY() AS insert_id'

# Native code followed by the ODBC function name, e.g. '(547) (SQLExecDirectW)'
_NATIVE_CODE = re.compile(r'\((\d+)\)\s*\(SQL\w+\)')
_ANY_CODE = re.compile(r'\((\d+)\)')

CONNECTION_SQLSTATES = ('HYT00', 'HYT01')


def _driver_connection(conn: Any) -> Any:
    return getattr(conn, 'driver_connection', conn)


@register_strategy('mssql')
class MsSqlStrategy(DatabaseStrategy):
    """SQL Server specific operations.
    """
    sql_dialect = SqlDialect(name='mssql', bracket_identifiers=True)
    error_codes = MSSQL_ERROR_CODES
    option_schema = MSSQL_QUERY_OPTIONS

    @property
    def dialect_name(self) -> str:
        return 'mssql'

    @property
    def insert_id_by_select(self) -> bool:
        return True

    @property
    def supports_native_params(self) -> bool:
        return True

    def build_connection_url(self, options: 'ClientOptions') -> sa.URL:
        """Build the SQLAlchemy connection URL for SQL Server over ODBC."""
        query = {'driver': options.odbc_driver}
        if options.trust_server_certificate:
            query['TrustServerCertificate'] = 'yes'
        if options.appname:
            query['APP'] = options.appname
        return sa.URL.create(
            drivername='mssql+pyodbc',
            username=options.username,
            password=options.password,
            host=options.hostname,
            port=options.port or None,
            database=options.database,
            query=query,
        )

    def get_engine_kwargs(self, options: 'ClientOptions') -> dict[str, Any]:
        if options.timeout:
            return {'connect_args': {'timeout': options.timeout}}
        return {}

    @classmethod
    def get_required_options(cls) -> list[str]:
        return ['hostname', 'username', 'password', 'database']

    def configure_connection(self, conn: Any, options: 'ClientOptions') -> None:
        self.enable_autocommit(conn)

    def enable_autocommit(self, raw_conn: Any) -> None:
        _driver_connection(raw_conn).autocommit = True

    def disable_autocommit(self, raw_conn: Any) -> None:
        _driver_connection(raw_conn).autocommit = False

    def ping(self, raw_conn: Any) -> bool:
        try:
            cursor = raw_conn.cursor()
            try:
                cursor.execute('SELECT 1')
                cursor.fetchall()
            finally:
                cursor.close()
            return True
        except Exception as exc:
            if not self.is_native_error(exc):
                raise
            logger.debug(f'SQL Server ping failed: {exc}')
            return False

    def quote_string(self, value: str) -> str:
        return "N'" + value.replace("'", "''") + "'"

    def quote_binary(self, value: bytes) -> str:
        return '0x' + value.hex()

    def create_cursor(self, conn: Any, result_mode: str) -> Any:
        """pyodbc has a single cursor type; buffering is done per result set."""
        return conn.cursor()

    def insert_id_sql(self, sql: str) -> str:
        return f'{sql}; {INSERT_ID_SELECT}'

    def execute(self, cursor: Any, sql: str, params: Sequence | None = None,
                native_params: Sequence['NativeParam | None'] | None = None,
                timeout: int = 0) -> None:
        if native_params and any(p is not None and p.input_size for p in native_params):
            cursor.setinputsizes([p.input_size if p is not None else None
                                  for p in native_params])
        connection = getattr(cursor, 'connection', None)
        previous = getattr(connection, 'timeout', 0) if timeout else 0
        if timeout:
            connection.timeout = timeout
        try:
            if params is None:
                cursor.execute(sql)
            else:
                cursor.execute(sql, list(params))
        finally:
            if timeout:
                connection.timeout = previous

    def last_insert_id(self, cursor: Any) -> Any:
        return None

    def is_native_error(self, exc: BaseException) -> bool:
        return any(cls.__module__ == 'pyodbc' for cls in type(exc).__mro__)

    def native_error_codes(self, exc: BaseException) -> list[int]:
        message = self.native_error_message(exc)
        codes = _NATIVE_CODE.findall(message) or _ANY_CODE.findall(message)
        return [int(code) for code in codes]

    def is_connection_error(self, exc: BaseException) -> bool:
        """SQLSTATE class 08 and login/query timeouts mean a lost connection."""
        args = getattr(exc, 'args', ())
        sqlstate = args[0] if args and isinstance(args[0], str) else ''
        if sqlstate.startswith('08') or sqlstate in CONNECTION_SQLSTATES:
            return True
        return super().is_connection_error(exc)
