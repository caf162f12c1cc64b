"""
Integration tests for SQL Server type round-trips through literals and
prepared statements.
"""
import pytest
from dbclient import FETCH_NUMERIC

ROW = (42, 2.5, "it's ?", b'\x00\xffab')

INSERT = 'INSERT INTO typed_table (i, d, s, b) VALUES (?, ?, ?, ?)'


@pytest.fixture
def typed_table(sconn):
    for sql in (
        "IF OBJECT_ID('typed_table', 'U') IS NOT NULL DROP TABLE typed_table",
        """
CREATE TABLE typed_table (
    id INT IDENTITY(1,1) NOT NULL PRIMARY KEY,
    i INT NULL,
    d FLOAT NULL,
    s NVARCHAR(64) NULL,
    b VARBINARY(16) NULL
)
""",
    ):
        sconn.query(sql).execute()
    return sconn


def _select_row(client, insert_id):
    with client.query('SELECT i, d, s, b FROM typed_table WHERE id = ?') as query:
        return tuple(query.parameters('i', [insert_id]).execute().fetch_array(FETCH_NUMERIC))


def test_literal_round_trip(typed_table):
    """Binary arguments are substituted as 0x.. literals"""
    query = typed_table.query(INSERT, insert_id=True)
    result = query.parameters('idsb', list(ROW)).execute()
    assert '0x00ff6162' in query.sql_tampered
    assert "N'it''s ?'" in query.sql_tampered
    insert_id = result.insert_id('i')
    assert insert_id == 1
    assert _select_row(typed_table, insert_id) == ROW


def test_prepared_round_trip(typed_table):
    args = list(ROW)
    with typed_table.query(INSERT, insert_id=True) as query:
        query.prepare('idsb', args)
        first = query.execute().insert_id('i')
        args[0], args[3] = 7, b'\x01'
        second = query.execute().insert_id('i')
    assert second == first + 1
    assert _select_row(typed_table, first) == ROW
    assert _select_row(typed_table, second) == (7, 2.5, ROW[2], b'\x01')


def test_null_literals(typed_table):
    query = typed_table.query(INSERT, insert_id=True)
    insert_id = query.parameters('idsb', [None] * 4).execute().insert_id('i')
    assert _select_row(typed_table, insert_id) == (None, None, None, None)


if __name__ == '__main__':
    __import__('pytest').main([__file__])
