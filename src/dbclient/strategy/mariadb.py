"""
MariaDB/MySQL strategy implementation on PyMySQL.

It handles MariaDB's features such as:
- Multi-query: statements separated by `;` yield independent result sets,
  and an error of a later statement surfaces when its set is reached
- Buffered (`store`) and unbuffered (`use`) result modes
- Backslash escapes in string literals, backtick identifiers, `#` comments
- Insert id reported directly by the driver
"""
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import pymysql
import pymysql.cursors
import sqlalchemy as sa
from dbclient.exceptions import MARIADB_ERROR_CODES
from dbclient.schema import QueryOptionSchema
from dbclient.sql import SqlDialect, to_format_paramstyle
from dbclient.strategy.base import DatabaseStrategy, register_strategy
from pymysql.constants import CLIENT
from pymysql.converters import escape_string

if TYPE_CHECKING:
    from dbclient.options import ClientOptions
    from dbclient.types import NativeParam

logger = logging.getLogger(__name__)

MARIADB_QUERY_OPTIONS = QueryOptionSchema(
    engine='mariadb',
    result_modes=('store', 'use'),
    default_result_mode='store',
    unbuffered_modes=frozenset({'use'}),
    row_count_modes=frozenset({'store'}),
    num_rows_mode='store',
    multi_query=True,
)


def _driver_connection(conn: Any) -> Any:
    return getattr(conn, 'driver_connection', conn)


@register_strategy('mariadb')
class MariaDbStrategy(DatabaseStrategy):
    """MariaDB specific operations.
    """
    sql_dialect = SqlDialect(
        name='mariadb',
        backslash_escapes=True,
        backtick_identifiers=True,
        hash_comments=True,
        strict_dash_comments=True,
    )
    error_codes = MARIADB_ERROR_CODES
    option_schema = MARIADB_QUERY_OPTIONS

    @property
    def dialect_name(self) -> str:
        return 'mariadb'

    def build_connection_url(self, options: 'ClientOptions') -> sa.URL:
        """Build the SQLAlchemy connection URL for MariaDB."""
        return sa.URL.create(
            drivername='mysql+pymysql',
            username=options.username,
            password=options.password,
            host=options.hostname,
            port=options.port or None,
            database=options.database,
            query={'charset': options.character_set},
        )

    def get_engine_kwargs(self, options: 'ClientOptions') -> dict[str, Any]:
        """Multi statement support is a client flag of the connection.

        The flag replaces SQLAlchemy's default FOUND_ROWS, so affected rows
        count changed rows, not matched rows.
        """
        connect_args = {'client_flag': CLIENT.MULTI_STATEMENTS}
        if options.timeout:
            connect_args['connect_timeout'] = options.timeout
        return {'connect_args': connect_args}

    @classmethod
    def get_required_options(cls) -> list[str]:
        return ['hostname', 'username', 'password', 'database']

    def configure_connection(self, conn: Any, options: 'ClientOptions') -> None:
        self.enable_autocommit(conn)

    def enable_autocommit(self, raw_conn: Any) -> None:
        _driver_connection(raw_conn).autocommit(True)

    def disable_autocommit(self, raw_conn: Any) -> None:
        _driver_connection(raw_conn).autocommit(False)

    def ping(self, raw_conn: Any) -> bool:
        try:
            _driver_connection(raw_conn).ping(reconnect=False)
            return True
        except pymysql.err.Error as exc:
            logger.debug(f'MariaDB ping failed: {exc}')
            return False

    def quote_string(self, value: str) -> str:
        return "'" + escape_string(value) + "'"

    def quote_binary(self, value: bytes) -> str:
        return "X'" + value.hex() + "'"

    def create_cursor(self, conn: Any, result_mode: str) -> Any:
        """Unbuffered `use` mode streams rows through an SSCursor."""
        if result_mode == 'use':
            return conn.cursor(pymysql.cursors.SSCursor)
        return conn.cursor()

    def prepare_sql(self, sql: str) -> str:
        """PyMySQL binds through format paramstyle."""
        return to_format_paramstyle(sql, self.sql_dialect)

    def timeout_sql(self, sql: str, timeout: int) -> str:
        """Server side statement timeout, applies to the first statement."""
        return f'SET STATEMENT max_statement_time={int(timeout)} FOR {sql}'

    def execute(self, cursor: Any, sql: str, params: Sequence | None = None,
                native_params: Sequence['NativeParam | None'] | None = None,
                timeout: int = 0) -> None:
        if timeout:
            sql = self.timeout_sql(sql, timeout)
        if params is None:
            cursor.execute(sql)
        else:
            cursor.execute(sql, tuple(params))

    def last_insert_id(self, cursor: Any) -> Any:
        return cursor.lastrowid or None

    def is_native_error(self, exc: BaseException) -> bool:
        return isinstance(exc, pymysql.err.MySQLError)

    def native_error_codes(self, exc: BaseException) -> list[int]:
        args = getattr(exc, 'args', ())
        if args and isinstance(args[0], int) and not isinstance(args[0], bool):
            return [args[0]]
        return []

    def is_connection_error(self, exc: BaseException) -> bool:
        """A closed connection raises InterfaceError without a server code."""
        if isinstance(exc, pymysql.err.InterfaceError):
            return True
        return super().is_connection_error(exc)
