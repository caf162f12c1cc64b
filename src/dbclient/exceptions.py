"""
Database client exception classes and native error classification.

Every error raised by the client carries the query id (when a query is
involved) and a message prefix naming client, engine and database, so that
log warnings can be matched against raised exceptions.
"""
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

import pymysql

if TYPE_CHECKING:
    from dbclient.validation import ValidationReport

RETRYABLE_PATTERNS = [
    # SSL/TLS errors
    r'ssl',
    r'tls',
    # Connection drops
    r'connection.*(closed|reset|refused|lost|terminated|broken)',
    r'server closed',
    r'server has gone away',
    r'communication link failure',
    r'broken pipe',
    r'connection reset',
    # Timeouts
    r'timeout',
    r'timed out',
    # Network issues
    r'could not connect',
    r"can't connect",
    r'no route to host',
    r'network.*(unreachable|error)',
    r'host.*(unreachable|down)',
    # Database unavailable
    r'database.*unavailable',
    r'too many connections',
]

_RETRYABLE_REGEX = re.compile('|'.join(RETRYABLE_PATTERNS), re.IGNORECASE)


def is_retryable_error(exc: BaseException) -> bool:
    """Check if an exception message looks like a transient connection problem.

    Used when the native driver supplies no usable error code.

    Args:
        exc: The exception to check

    Returns
        True if the error is likely transient and worth retrying
    """
    error_msg = str(exc).lower()
    return bool(_RETRYABLE_REGEX.search(error_msg))


class DatabaseError(Exception):
    """Base class for all client errors.

    Args:
        message: Full message, normally starting with the message prefix
        query_id: Id of the query involved, if any
        prefix: The `Database[client][engine][database]` message prefix
        native_code: Native driver error code, verbatim
        native_message: Native driver error message, verbatim
        validation_report: Argument validation report, when one was made
    """

    def __init__(self, message: str = '', *, query_id: str | None = None,
                 prefix: str | None = None, native_code: Any = None,
                 native_message: str | None = None,
                 validation_report: 'ValidationReport | None' = None) -> None:
        super().__init__(message)
        self.query_id = query_id
        self.prefix = prefix
        self.native_code = native_code
        self.native_message = native_message
        self.validation_report = validation_report


class ArgumentCountMismatch(DatabaseError):
    """Number of arguments differs from the number of SQL parameter markers.
    """


class ArgumentTypeInvalid(DatabaseError):
    """Argument value incompatible with its declared or inferred type.
    """


class ArgumentNotStringConvertible(ArgumentTypeInvalid):
    """String typed argument is an object without its own string conversion.
    """


class IllegalReuse(DatabaseError):
    """Query used in a way its state forbids.
    """


class ConnectionLost(DatabaseError):
    """Connection missing, refused or dropped.
    """


class QueryRejected(DatabaseError):
    """Statement rejected by the database: syntax, constraint or permission.
    """


class ResultAccessInvalid(DatabaseError):
    """Result accessed after it was freed, or read in an unsupported way.
    """


class InvalidArgument(DatabaseError, ValueError):
    """Malformed call-site usage: bad option, bad type string, bad fetch shape.
    """


class Unclassified(DatabaseError):
    """Native failure that matched no known error code.
    """


DbConnectionError = (
    pymysql.err.OperationalError,
    pymysql.err.InterfaceError,
    ConnectionLost,
    )

ArgumentError = (
    ArgumentCountMismatch,
    ArgumentTypeInvalid,
    InvalidArgument,
    IllegalReuse,
    )


class ErrorKind(Enum):
    """Abstract failure kind a native error is mapped to."""
    CONNECTION_LOST = 'connection_lost'
    QUERY_REJECTED = 'query_rejected'
    ARGUMENT_INVALID = 'argument_invalid'
    RESULT_ACCESS_INVALID = 'result_access_invalid'
    UNCLASSIFIED = 'unclassified'


ERROR_KIND_EXCEPTIONS: dict[ErrorKind, type[DatabaseError]] = {
    ErrorKind.CONNECTION_LOST: ConnectionLost,
    ErrorKind.QUERY_REJECTED: QueryRejected,
    ErrorKind.ARGUMENT_INVALID: ArgumentTypeInvalid,
    ErrorKind.RESULT_ACCESS_INVALID: ResultAccessInvalid,
    ErrorKind.UNCLASSIFIED: Unclassified,
}

# Lookup order: single codes of every kind before any range.
_KIND_ORDER = (
    ErrorKind.CONNECTION_LOST,
    ErrorKind.QUERY_REJECTED,
    ErrorKind.ARGUMENT_INVALID,
    ErrorKind.RESULT_ACCESS_INVALID,
)


@dataclass(frozen=True)
class ErrorCodes:
    """Native error code table of one engine.

    `codes` maps a kind to known single codes, `ranges` maps a kind to
    inclusive (low, high) code ranges. Codes at or above `offset` have been
    shifted into a private range and are shifted back before lookup.
    """
    codes: dict[ErrorKind, frozenset[int]] = field(default_factory=dict)
    ranges: dict[ErrorKind, tuple[tuple[int, int], ...]] = field(default_factory=dict)
    offset: int | None = None

    def normalize(self, code: int) -> int:
        if self.offset is not None and code >= self.offset:
            return code - self.offset
        return code


def _as_code(code: Any) -> int | None:
    if isinstance(code, bool):
        return None
    if isinstance(code, int):
        return code
    if isinstance(code, str) and code.strip().lstrip('-').isdigit():
        return int(code)
    return None


def classify_error(code: int | str | Iterable[int | str] | None,
                   codes: ErrorCodes) -> ErrorKind:
    """Map native error code(s) to an abstract error kind.

    Single codes are checked first, then ranges, then `UNCLASSIFIED`. With a
    list of codes (drivers may report several errors for one statement), the
    first code matching a single-code table wins, then the first matching
    a range.

    >>> classify_error(2013, MARIADB_ERROR_CODES)
    <ErrorKind.CONNECTION_LOST: 'connection_lost'>
    >>> classify_error(102, MSSQL_ERROR_CODES)
    <ErrorKind.QUERY_REJECTED: 'query_rejected'>
    >>> classify_error(None, MSSQL_ERROR_CODES)
    <ErrorKind.UNCLASSIFIED: 'unclassified'>
    """
    if code is None:
        return ErrorKind.UNCLASSIFIED
    if isinstance(code, (int, str)):
        code = [code]
    numeric = [codes.normalize(c) for c in map(_as_code, code) if c is not None]

    for value in numeric:
        for kind in _KIND_ORDER:
            if value in codes.codes.get(kind, ()):
                return kind
    for value in numeric:
        for kind in _KIND_ORDER:
            for low, high in codes.ranges.get(kind, ()):
                if low <= value <= high:
                    return kind
    return ErrorKind.UNCLASSIFIED


def retryable(kind: ErrorKind, in_transaction: bool) -> bool:
    """Only a lost connection outside a transaction may be retried."""
    return kind is ErrorKind.CONNECTION_LOST and not in_transaction


def _codes(*items: int | range) -> frozenset[int]:
    out = set()
    for item in items:
        if isinstance(item, range):
            out.update(item)
        else:
            out.add(item)
    return frozenset(out)


MARIADB_ERROR_CODES = ErrorCodes(
    codes={
        ErrorKind.CONNECTION_LOST: _codes(
            range(2001, 2008), range(2009, 2014), range(2024, 2027), 2048, 2055,
            1040, range(1042, 1046), 1053,
        ),
        ErrorKind.QUERY_REJECTED: _codes(
            2030, 2031, 2033, 2056,
            range(1005, 1009), 1010, 1046, range(1048, 1053), range(1054, 1065),
            range(1066, 1076), 1136, 1142, 1143, 1146, range(1215, 1218), 1239,
            1364, 1370, 1451, 1506, 1553, 1557, 1701, 1725, 1740, 1742, 1761,
            1762, 1807, 1821, 1822, 1825, 1826,
        ),
        ErrorKind.RESULT_ACCESS_INVALID: _codes(
            2014, 2050, 2051, 2053, 2057, 1162, 1172, 1301, 1312, 1415, 3684, 11343,
        ),
    },
)

MSSQL_ERROR_CODES = ErrorCodes(
    codes={
        ErrorKind.CONNECTION_LOST: _codes(4060, 18456),
        ErrorKind.QUERY_REJECTED: _codes(229, 515, 547, 2601, 2627, 4712, 8152),
    },
    ranges={
        ErrorKind.QUERY_REJECTED: ((101, 681),),
    },
)
