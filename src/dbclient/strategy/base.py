"""
Base strategy interface for engine specific behavior.

Defines the abstract base class every engine strategy inherits from. The
query and result layers talk to native drivers only through a strategy:
connection setup, literal quoting, cursor creation, statement execution,
insert id retrieval and native error classification.
"""
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from functools import cached_property
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from dbclient.exceptions import ErrorCodes, ErrorKind, classify_error
from dbclient.exceptions import is_retryable_error
from dbclient.schema import QueryOptionSchema
from dbclient.sql import SqlDialect, StatementBuilder

if TYPE_CHECKING:
    from dbclient.options import ClientOptions
    from dbclient.types import NativeParam

logger = logging.getLogger(__name__)

# Registry of dialect name -> strategy class
# Defined here to avoid circular imports (concrete strategies import from base)
_STRATEGY_REGISTRY: dict[str, type['DatabaseStrategy']] = {}


def register_strategy(dialect: str):
    """Decorator to register a strategy class for a dialect.

    Usage:
        @register_strategy('mariadb')
        class MariaDbStrategy(DatabaseStrategy):
            ...
    """
    def decorator(cls: type['DatabaseStrategy']) -> type['DatabaseStrategy']:
        _STRATEGY_REGISTRY[dialect] = cls
        return cls
    return decorator


class DatabaseStrategy(ABC):
    """Base class for engine specific operations.

    Class attributes every strategy sets:
        sql_dialect: lexical rules for SQL scanning
        error_codes: native error code table
        option_schema: accepted query options and result mode behavior
    """
    sql_dialect: SqlDialect
    error_codes: ErrorCodes
    option_schema: QueryOptionSchema

    @property
    @abstractmethod
    def dialect_name(self) -> str:
        """Return the dialect identifier (e.g., 'mariadb', 'mssql')."""

    @property
    def supports_multi_query(self) -> bool:
        """Whether several statements yield independent result sets."""
        return self.option_schema.multi_query

    @property
    def insert_id_by_select(self) -> bool:
        """Whether the insert id is read from an appended SELECT result set."""
        return False

    @property
    def supports_native_params(self) -> bool:
        """Whether arguments may carry driver type qualifiers."""
        return False

    # Connection -------------------------------------------------------------

    @abstractmethod
    def build_connection_url(self, options: 'ClientOptions') -> sa.URL:
        """Build the SQLAlchemy connection URL for this dialect."""

    @abstractmethod
    def get_engine_kwargs(self, options: 'ClientOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for this dialect."""

    @classmethod
    @abstractmethod
    def get_required_options(cls) -> list[str]:
        """Return list of required option field names for this dialect.

        Returns
            List of field names that must have non-None/non-zero values
        """

    @classmethod
    def validate_options(cls, options: 'ClientOptions') -> None:
        """Validate options for this dialect.

        Raises
            ValueError: If any required field is None or 0
        """
        for field in cls.get_required_options():
            if not getattr(options, field):
                raise ValueError(f'field {field} cannot be None or 0')

    @abstractmethod
    def configure_connection(self, conn: Any, options: 'ClientOptions') -> None:
        """Configure a freshly opened connection."""

    @abstractmethod
    def enable_autocommit(self, raw_conn: Any) -> None:
        """Enable auto-commit mode on a raw database connection."""

    @abstractmethod
    def disable_autocommit(self, raw_conn: Any) -> None:
        """Disable auto-commit mode on a raw database connection."""

    @abstractmethod
    def ping(self, raw_conn: Any) -> bool:
        """Whether the connection is still usable; never raises native errors."""

    # Statements -------------------------------------------------------------

    @abstractmethod
    def quote_string(self, value: str) -> str:
        """Escape and quote a string literal."""

    @abstractmethod
    def quote_binary(self, value: bytes) -> str:
        """Render a binary literal."""

    @cached_property
    def statement_builder(self) -> StatementBuilder:
        return StatementBuilder(self.sql_dialect, self.quote_string, self.quote_binary)

    @abstractmethod
    def create_cursor(self, conn: Any, result_mode: str) -> Any:
        """Create a native cursor suited to a result mode."""

    def prepare_sql(self, sql: str) -> str:
        """SQL as handed to the driver together with bound arguments."""
        return sql

    def insert_id_sql(self, sql: str) -> str:
        """SQL extended to report the insert id; unchanged by default."""
        return sql

    def timeout_sql(self, sql: str, timeout: int) -> str:
        """SQL carrying a per statement timeout; unchanged by default."""
        return sql

    @abstractmethod
    def execute(self, cursor: Any, sql: str, params: Sequence | None = None,
                native_params: Sequence['NativeParam | None'] | None = None,
                timeout: int = 0) -> None:
        """Run SQL on a native cursor.

        Args:
            params: Bound values, None for SQL with substituted literals
            native_params: Per argument type qualifiers, where supported
            timeout: Query timeout in seconds, 0 for none
        """

    @abstractmethod
    def last_insert_id(self, cursor: Any) -> Any:
        """Insert id reported directly by the driver, None when none."""

    # Errors -----------------------------------------------------------------

    @abstractmethod
    def is_native_error(self, exc: BaseException) -> bool:
        """Whether an exception was raised by the native driver."""

    @abstractmethod
    def native_error_codes(self, exc: BaseException) -> list[int]:
        """Native error codes carried by an exception, possibly none."""

    def native_error_message(self, exc: BaseException) -> str:
        args = getattr(exc, 'args', ())
        if len(args) >= 2 and isinstance(args[1], str):
            return args[1]
        return str(exc)

    def is_connection_error(self, exc: BaseException) -> bool:
        """Connection loss signalled other than by a known error code."""
        return is_retryable_error(exc)

    def classify(self, exc: BaseException) -> ErrorKind:
        """Map a native exception to an abstract error kind."""
        kind = classify_error(self.native_error_codes(exc), self.error_codes)
        if kind is ErrorKind.UNCLASSIFIED and self.is_connection_error(exc):
            return ErrorKind.CONNECTION_LOST
        return kind
