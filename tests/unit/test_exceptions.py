"""
Tests for native error classification and the exception hierarchy.
"""
import pymysql
import pytest
from dbclient.exceptions import MARIADB_ERROR_CODES, MSSQL_ERROR_CODES
from dbclient.exceptions import ArgumentNotStringConvertible, ArgumentTypeInvalid
from dbclient.exceptions import DatabaseError, ErrorCodes, ErrorKind, InvalidArgument
from dbclient.exceptions import classify_error, is_retryable_error, retryable
from dbclient.strategy import get_strategy

from tests.fixtures.mocks import PyodbcIntegrityError, PyodbcOperationalError
from tests.fixtures.mocks import PyodbcProgrammingError, pyodbc_error


@pytest.mark.parametrize(('code', 'kind'), [
    (2006, ErrorKind.CONNECTION_LOST),
    (2013, ErrorKind.CONNECTION_LOST),
    (1045, ErrorKind.CONNECTION_LOST),
    (1064, ErrorKind.QUERY_REJECTED),
    (1146, ErrorKind.QUERY_REJECTED),
    (1062, ErrorKind.QUERY_REJECTED),
    (1451, ErrorKind.QUERY_REJECTED),
    (2014, ErrorKind.RESULT_ACCESS_INVALID),
    (9999, ErrorKind.UNCLASSIFIED),
])
def test_mariadb_codes(code, kind):
    assert classify_error(code, MARIADB_ERROR_CODES) is kind


@pytest.mark.parametrize(('code', 'kind'), [
    (547, ErrorKind.QUERY_REJECTED),
    (2627, ErrorKind.QUERY_REJECTED),
    (102, ErrorKind.QUERY_REJECTED),
    (681, ErrorKind.QUERY_REJECTED),
    (682, ErrorKind.UNCLASSIFIED),
    (4060, ErrorKind.CONNECTION_LOST),
    (18456, ErrorKind.CONNECTION_LOST),
])
def test_mssql_codes(code, kind):
    assert classify_error(code, MSSQL_ERROR_CODES) is kind


def test_classify_code_forms():
    assert classify_error('2006', MARIADB_ERROR_CODES) is ErrorKind.CONNECTION_LOST
    assert classify_error(['x', 2006], MARIADB_ERROR_CODES) is ErrorKind.CONNECTION_LOST
    assert classify_error([], MARIADB_ERROR_CODES) is ErrorKind.UNCLASSIFIED
    assert classify_error(None, MARIADB_ERROR_CODES) is ErrorKind.UNCLASSIFIED
    assert classify_error(True, MARIADB_ERROR_CODES) is ErrorKind.UNCLASSIFIED


def test_classify_offset_codes():
    codes = ErrorCodes(codes={ErrorKind.QUERY_REJECTED: frozenset({5})}, offset=1000)
    assert classify_error(1005, codes) is ErrorKind.QUERY_REJECTED
    assert classify_error(5, codes) is ErrorKind.QUERY_REJECTED
    assert classify_error(999, codes) is ErrorKind.UNCLASSIFIED


def test_single_codes_win_over_ranges():
    """A later code matching a single-code table beats an earlier range match"""
    codes = ErrorCodes(
        codes={ErrorKind.QUERY_REJECTED: frozenset({700})},
        ranges={ErrorKind.CONNECTION_LOST: ((600, 800),)},
    )
    assert classify_error([650, 700], codes) is ErrorKind.QUERY_REJECTED
    assert classify_error([650], codes) is ErrorKind.CONNECTION_LOST


def test_retryable():
    assert retryable(ErrorKind.CONNECTION_LOST, in_transaction=False)
    assert not retryable(ErrorKind.CONNECTION_LOST, in_transaction=True)
    assert not retryable(ErrorKind.QUERY_REJECTED, in_transaction=False)


def test_is_retryable_error_messages():
    assert is_retryable_error(Exception('MySQL server has gone away'))
    assert is_retryable_error(Exception('Connection reset by peer'))
    assert is_retryable_error(Exception('Login timeout expired'))
    assert not is_retryable_error(Exception('Duplicate entry for key PRIMARY'))


def test_mariadb_strategy_classify():
    strategy = get_strategy('mariadb')
    gone = pymysql.err.OperationalError(2006, 'MySQL server has gone away')
    assert strategy.is_native_error(gone)
    assert strategy.native_error_codes(gone) == [2006]
    assert strategy.native_error_message(gone) == 'MySQL server has gone away'
    assert strategy.classify(gone) is ErrorKind.CONNECTION_LOST

    missing = pymysql.err.ProgrammingError(1146, "Table 'testdb.t' doesn't exist")
    assert strategy.classify(missing) is ErrorKind.QUERY_REJECTED

    # closed connection, no server code
    closed = pymysql.err.InterfaceError(0, '')
    assert strategy.classify(closed) is ErrorKind.CONNECTION_LOST

    assert not strategy.is_native_error(ValueError('x'))


def test_mssql_strategy_classify():
    strategy = get_strategy('mssql')
    constraint = pyodbc_error(PyodbcIntegrityError, '23000', 547,
                              'The INSERT statement conflicted with the FOREIGN KEY constraint')
    assert strategy.is_native_error(constraint)
    assert strategy.native_error_codes(constraint) == [547]
    assert strategy.classify(constraint) is ErrorKind.QUERY_REJECTED

    syntax = pyodbc_error(PyodbcProgrammingError, '42000', 102, "Incorrect syntax near 'FORM'.")
    assert strategy.classify(syntax) is ErrorKind.QUERY_REJECTED

    link = pyodbc_error(PyodbcOperationalError, '08S01', 10054, 'Communication link failure')
    assert strategy.classify(link) is ErrorKind.CONNECTION_LOST

    timeout = PyodbcOperationalError('HYT00', '[HYT00] Query timeout expired (0) (SQLExecDirectW)')
    assert strategy.classify(timeout) is ErrorKind.CONNECTION_LOST

    assert not strategy.is_native_error(pymysql.err.OperationalError(2006, 'gone'))


def test_exception_attributes():
    report = object()
    error = ArgumentTypeInvalid('Database[x][mariadb][db][abc] - bad', query_id='abc',
                                prefix='Database[x][mariadb][db][abc]', native_code=1366,
                                native_message='Incorrect integer value', validation_report=report)
    assert str(error).startswith('Database[x]')
    assert error.query_id == 'abc'
    assert error.native_code == 1366
    assert error.validation_report is report
    assert isinstance(error, DatabaseError)


def test_exception_hierarchy():
    assert issubclass(ArgumentNotStringConvertible, ArgumentTypeInvalid)
    assert issubclass(InvalidArgument, ValueError)
    with pytest.raises(ValueError):
        raise InvalidArgument('bad option')


if __name__ == '__main__':
    __import__('pytest').main([__file__])
