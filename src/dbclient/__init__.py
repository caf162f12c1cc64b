"""
Cross-engine database client for MariaDB and SQL Server.

Queries use `?` parameter markers and are run either as simple (arguments
substituted as literals), prepared (arguments bound by the driver at every
execution) or multi-queries (several statements, one result set each):

    client = dbclient.connect(drivername='mariadb', hostname=..., ...)
    with client.query('SELECT * FROM t WHERE id > ?') as query:
        result = query.parameters('i', [5]).execute()
        rows = result.fetch_array_all()
"""
__version__ = '0.1.0'

from dbclient.connection import Client, connect
from dbclient.cursor import ResultCursor
from dbclient.exceptions import ArgumentCountMismatch, ArgumentError
from dbclient.exceptions import ArgumentNotStringConvertible
from dbclient.exceptions import ArgumentTypeInvalid, ConnectionLost
from dbclient.exceptions import DatabaseError, DbConnectionError, ErrorKind
from dbclient.exceptions import IllegalReuse, InvalidArgument, QueryRejected
from dbclient.exceptions import ResultAccessInvalid, Unclassified
from dbclient.exceptions import classify_error
from dbclient.options import VALIDATE_ALWAYS, VALIDATE_DEFAULT
from dbclient.options import VALIDATE_EXECUTE, VALIDATE_FAILURE
from dbclient.options import VALIDATE_PREPARE, VALIDATE_STRINGABLE_EXEC
from dbclient.options import ClientOptions, iterdict_data_loader
from dbclient.options import pandas_numpy_data_loader
from dbclient.options import pandas_pyarrow_data_loader
from dbclient.query import Query, QueryState
from dbclient.transaction import Transaction as transaction
from dbclient.types import FETCH_ASSOC, FETCH_NUMERIC, FETCH_OBJECT
from dbclient.types import ArgumentList, Column, NativeParam, TypeTag
from dbclient.types import infer_type

__all__ = [
    'Client',
    'connect',
    'transaction',
    'Query',
    'QueryState',
    'ResultCursor',
    'ClientOptions',
    'ArgumentList',
    'NativeParam',
    'Column',
    'TypeTag',
    'infer_type',
    'classify_error',
    'ErrorKind',
    'DatabaseError',
    'ArgumentCountMismatch',
    'ArgumentTypeInvalid',
    'ArgumentNotStringConvertible',
    'IllegalReuse',
    'ConnectionLost',
    'QueryRejected',
    'ResultAccessInvalid',
    'InvalidArgument',
    'Unclassified',
    'ArgumentError',
    'DbConnectionError',
    'FETCH_ASSOC',
    'FETCH_NUMERIC',
    'FETCH_OBJECT',
    'VALIDATE_PREPARE',
    'VALIDATE_EXECUTE',
    'VALIDATE_FAILURE',
    'VALIDATE_STRINGABLE_EXEC',
    'VALIDATE_ALWAYS',
    'VALIDATE_DEFAULT',
    'iterdict_data_loader',
    'pandas_numpy_data_loader',
    'pandas_pyarrow_data_loader',
]
