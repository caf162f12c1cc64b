import pymysql
import pytest
from dbclient import transaction
from dbclient.exceptions import ConnectionLost

from tests.fixtures.mocks import ResultSet

PEOPLE = ResultSet(['id', 'name'], [(1, 'ann'), (2, 'bob')])


def test_commit(mariadb_client):
    """Statements run with auto-commit off and are committed on exit"""
    client, conn = mariadb_client
    conn.script('UPDATE', [ResultSet(rowcount=3)])
    with transaction(client) as tx:
        assert conn.autocommit_mode is False
        assert client.in_transaction
        assert tx.execute('UPDATE t SET a = ? WHERE b = ?', 'x', 2) == 3
    assert conn.executed[-1][0] == "UPDATE t SET a = 'x' WHERE b = 2"
    assert conn.commits == 1
    assert conn.rollbacks == 0
    assert conn.autocommit_mode is True
    assert not client.in_transaction


def test_rollback_on_error(mariadb_client):
    client, conn = mariadb_client
    conn.script('DELETE', [ResultSet(rowcount=1)])
    with pytest.raises(ValueError), transaction(client) as tx:
        tx.execute('DELETE FROM t WHERE id = ?', 5)
        raise ValueError('abort')
    assert conn.rollbacks == 1
    assert conn.commits == 0
    assert not client.in_transaction


def test_nested_transaction(mariadb_client):
    client, _ = mariadb_client
    with transaction(client):
        with pytest.raises(RuntimeError, match='Nested'):
            transaction(client)
    with transaction(client):
        pass


def test_lost_connection_not_retried(mariadb_client):
    client, conn = mariadb_client
    conn.script('UPDATE', pymysql.err.OperationalError(2006, 'MySQL server has gone away'))
    with pytest.raises(ConnectionLost), transaction(client) as tx:
        tx.execute('UPDATE t SET a = 1')
    assert len(client.opened) == 1
    assert not client.in_transaction


def test_select(mariadb_client):
    client, conn = mariadb_client
    conn.script('FROM people', [PEOPLE])
    with transaction(client) as tx:
        rows = tx.select('SELECT id, name FROM people WHERE id > ?', 0)
        assert rows == [{'id': 1, 'name': 'ann'}, {'id': 2, 'name': 'bob'}]
        assert tx.select_column('SELECT id FROM people') == [1, 2]
    assert conn.executed[0][0] == 'SELECT id, name FROM people WHERE id > 0'


def test_select_all_sets(mariadb_client):
    client, conn = mariadb_client
    conn.script('FROM people', [ResultSet(rowcount=1), PEOPLE, ResultSet(['n'], [(2,)])])
    with transaction(client) as tx:
        sets = tx.select('UPDATE t SET a = 1; SELECT id, name FROM people; SELECT 2 AS n',
                         return_all=True)
    assert len(sets) == 2
    assert sets[1] == [{'n': 2}]


def test_select_row(mariadb_client):
    client, conn = mariadb_client
    conn.script('FROM people', [PEOPLE])
    conn.script('id = 1', [ResultSet(['id', 'name'], [(1, 'ann')])])
    conn.script('id = 9', [ResultSet(['id', 'name'], [])])
    with transaction(client) as tx:
        row = tx.select_row('SELECT id, name FROM people WHERE id = ?', 1)
        assert row.name == 'ann'
        assert tx.select_row_or_none('SELECT id, name FROM people WHERE id = ?', 9) is None
        with pytest.raises(AssertionError):
            tx.select_row('SELECT id, name FROM people')


if __name__ == '__main__':
    __import__('pytest').main([__file__])
