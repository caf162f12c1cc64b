"""
Integration tests for MariaDB queries: literals, prepared statements,
multi-queries and error classification on a real server.
"""
import dbclient as db
import pytest
from dbclient import FETCH_NUMERIC, QueryRejected


def test_simple_query_with_parameters(mconn):
    query = mconn.query('SELECT name FROM test_table WHERE value > ? ORDER BY value')
    names = query.parameters('i', [25]).execute().fetch_field_all()
    assert names == ['Charlie', 'Ethan', 'Fiona', 'George']


def test_string_escaping(mconn):
    with mconn.query('INSERT INTO test_table (name, value) VALUES (?, ?)') as query:
        query.parameters('si', ["O'Brien \\ ?", 5]).execute()
    with mconn.query('SELECT value FROM test_table WHERE name = ?') as query:
        assert query.parameters('s', ["O'Brien \\ ?"]).execute().fetch_field() == 5


def test_prepared_statement_sees_argument_changes(mconn):
    args = [0]
    with mconn.query('SELECT name FROM test_table WHERE value = ?') as query:
        query.prepare('i', args)
        names = []
        for value in (10, 50, 80):
            args[0] = value
            names.append(query.execute().fetch_field())
    assert names == ['Alice', 'Ethan', 'George']


def test_insert_id_and_affected_rows(mconn):
    query = mconn.query('INSERT INTO test_table (name, value) VALUES (?, ?)')
    result = query.parameters('si', ['Hank', 90]).execute()
    assert result.affected_rows() == 1
    assert result.insert_id('i') == 7
    assert result.insert_id() == '7'


def test_affected_rows_count_changed_rows(mconn):
    result = mconn.query('UPDATE test_table SET value = value + 1 WHERE value > ?').parameters('i', [25]).execute()
    assert result.affected_rows() == 4

    result = mconn.query('UPDATE test_table SET value = 10 WHERE name = ?').parameters('s', ['Alice']).execute()
    assert result.affected_rows() == 0


def test_multi_query_sets(mconn):
    sql = 'SELECT COUNT(*) FROM test_table; SELECT name FROM test_table WHERE value = ?'
    with mconn.multi_query(sql) as query:
        result = query.parameters('i', [20]).execute()
        assert result.fetch_field() == 6
        assert result.next_set()
        assert result.fetch_field() == 'Bob'
        assert not result.next_set()


def test_multi_query_later_statement_fails(mconn):
    query = mconn.multi_query('SELECT 1; SELECT * FROM no_such_table')
    result = query.execute()
    assert result.fetch_array(FETCH_NUMERIC) == [1]
    with pytest.raises(QueryRejected) as excinfo:
        result.next_set()
    assert excinfo.value.native_code == 1146
    assert query.state is db.QueryState.CLOSED


def test_duplicate_key_rejected(mconn):
    with pytest.raises(QueryRejected) as excinfo:
        mconn.query('INSERT INTO test_table (name, value) VALUES (?, ?)').parameters('si', ['Alice', 1]).execute()
    assert excinfo.value.native_code == 1062


def test_syntax_error_rejected(mconn):
    with pytest.raises(QueryRejected) as excinfo:
        mconn.query('SELEKT 1').execute()
    assert excinfo.value.native_code == 1064


if __name__ == '__main__':
    __import__('pytest').main([__file__])
