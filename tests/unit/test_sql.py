import decimal

import pytest
from dbclient.exceptions import ArgumentCountMismatch, ArgumentNotStringConvertible
from dbclient.exceptions import ArgumentTypeInvalid
from dbclient.sql import SegmentType, scan, split_statements, to_format_paramstyle
from dbclient.sql import trim_sql
from dbclient.strategy import get_strategy
from dbclient.types import TypeTag


@pytest.fixture
def mariadb():
    return get_strategy('mariadb').statement_builder


@pytest.fixture
def mssql():
    return get_strategy('mssql').statement_builder


class Money:
    def __str__(self):
        return '12.50'


def test_markers_outside_literals_and_comments(mariadb):
    """Markers in quoted strings and comments are not counted"""
    parsed = mariadb.parse("SELECT * FROM t WHERE a = ? AND b = '?' -- ?\n AND c = ?")
    assert parsed.marker_count == 2
    assert len(parsed.fragments) == 3
    assert parsed.fragments[1].startswith(" AND b = '?' -- ?")


def test_block_comment_and_double_quotes(mssql):
    parsed = mssql.parse('SELECT "col?" /* ? */ FROM t WHERE x = ?')
    assert parsed.marker_count == 1


def test_backslash_escape_mariadb(mariadb):
    """An escaped quote does not end a MariaDB string literal"""
    parsed = mariadb.parse("SELECT 'it\\'s ?', ?")
    assert parsed.marker_count == 1


def test_identifier_quoting(mariadb, mssql):
    assert mariadb.parse('SELECT `a?` FROM t WHERE x = ?').marker_count == 1
    assert mssql.parse('SELECT [a?b] FROM t WHERE x = ?').marker_count == 1


def test_hash_comments_mariadb_only(mariadb, mssql):
    assert mariadb.parse('SELECT 1 # ?\n, ?').marker_count == 1
    assert mssql.parse('SELECT 1 # ?\n, ?').marker_count == 2


def test_dash_comment_needs_whitespace_mariadb(mariadb, mssql):
    assert mariadb.parse('SELECT 5--?').marker_count == 1
    assert mssql.parse('SELECT 5--?').marker_count == 0


def test_scan_segments():
    segments = scan("a = '?' /* x */ b", get_strategy('mssql').sql_dialect)
    assert [s.type for s in segments] == [
        SegmentType.CODE, SegmentType.LITERAL, SegmentType.CODE,
        SegmentType.COMMENT, SegmentType.CODE]
    assert ''.join(s.text for s in segments) == "a = '?' /* x */ b"


def test_unterminated_literal_runs_to_end(mssql):
    assert mssql.parse("SELECT ? , 'abc ?").marker_count == 1


def test_multi_statement_detection(mariadb):
    assert mariadb.parse('SELECT 1; SELECT 2').is_multi
    assert not mariadb.parse("SELECT ';'").is_multi
    assert not mariadb.parse('SELECT 1;').is_multi
    assert not mariadb.parse('SELECT 1; -- trailing comment').is_multi
    assert mariadb.split_statements("INSERT INTO t VALUES ('a;b'); SELECT 1") == [
        "INSERT INTO t VALUES ('a;b')", 'SELECT 1']


def test_split_statements_drops_empty():
    segments = scan(';; SELECT 1 ;; SELECT 2;', get_strategy('mariadb').sql_dialect)
    assert split_statements(segments) == ['SELECT 1', 'SELECT 2']


def test_trim_sql():
    assert trim_sql(' \n SELECT 1;;\t') == 'SELECT 1'
    assert trim_sql(' ; \0') == ''


def test_minify(mariadb):
    sql = "SELECT  /* c */ a,\n  'x  y' -- tail\nFROM t"
    assert mariadb.minify(sql) == "SELECT a, 'x  y' FROM t"


def test_minify_keeps_hints(mariadb):
    assert mariadb.minify('SELECT  /*+ INDEX(t i) */  1') == 'SELECT /*+ INDEX(t i) */ 1'


def test_to_format_paramstyle():
    dialect = get_strategy('mariadb').sql_dialect
    sql = "SELECT '5%', ? FROM t WHERE a LIKE 'x%' AND b % 2 = ?"
    expected = "SELECT '5%%', %s FROM t WHERE a LIKE 'x%%' AND b %% 2 = %s"
    assert to_format_paramstyle(sql, dialect) == expected


def test_substitute_is_textual(mariadb):
    """A separator inside a literal stays inside it"""
    parsed = mariadb.parse('UPDATE t SET a = ? WHERE b = ?')
    sql = mariadb.substitute(parsed.fragments, ['1', "'x;y'"])
    assert sql == "UPDATE t SET a = 1 WHERE b = 'x;y'"
    assert not mariadb.parse(sql).is_multi


def test_check_count(mariadb):
    parsed = mariadb.parse('SELECT ?, ?')
    mariadb.check_count(parsed, [1, 2])
    with pytest.raises(ArgumentCountMismatch):
        mariadb.check_count(parsed, [1])
    with pytest.raises(ArgumentCountMismatch):
        mariadb.substitute(parsed.fragments, ['1'])


def test_literal_integer(mariadb):
    assert mariadb.literal(None, TypeTag.INTEGER) == 'NULL'
    assert mariadb.literal(5, TypeTag.INTEGER) == '5'
    assert mariadb.literal(True, TypeTag.INTEGER) == '1'
    assert mariadb.literal(' 42 ', TypeTag.INTEGER) == '42'
    assert mariadb.literal(decimal.Decimal('7'), TypeTag.INTEGER) == '7'
    with pytest.raises(ArgumentTypeInvalid):
        mariadb.literal('abc', TypeTag.INTEGER)
    with pytest.raises(ArgumentTypeInvalid):
        mariadb.literal(1.5, TypeTag.INTEGER)


def test_literal_float(mariadb):
    assert mariadb.literal(1.5, TypeTag.FLOAT) == '1.5'
    assert mariadb.literal(decimal.Decimal('2.50'), TypeTag.FLOAT) == '2.50'
    assert mariadb.literal('3.25', TypeTag.FLOAT) == '3.25'
    assert mariadb.literal(4, TypeTag.FLOAT) == '4'
    with pytest.raises(ArgumentTypeInvalid):
        mariadb.literal(float('nan'), TypeTag.FLOAT)
    with pytest.raises(ArgumentTypeInvalid):
        mariadb.literal('1.2.3', TypeTag.FLOAT)


def test_literal_binary(mariadb, mssql):
    assert mariadb.literal(b'\x01\xff', TypeTag.BINARY) == "X'01ff'"
    assert mssql.literal(bytearray(b'\x01\xff'), TypeTag.BINARY) == '0x01ff'
    with pytest.raises(ArgumentTypeInvalid):
        mariadb.literal('01ff', TypeTag.BINARY)


def test_literal_string_escaping(mariadb, mssql):
    assert mariadb.literal("O'Reilly", TypeTag.STRING) == "'O\\'Reilly'"
    assert mssql.literal("O'Reilly", TypeTag.STRING) == "N'O''Reilly'"
    assert mariadb.literal(True, TypeTag.STRING) == "'1'"
    assert mariadb.literal(12, TypeTag.STRING) == "'12'"


def test_literal_stringable_object(mariadb):
    assert mariadb.literal(Money(), TypeTag.STRING) == "'12.50'"


def test_literal_not_stringable(mariadb):
    with pytest.raises(ArgumentNotStringConvertible):
        mariadb.literal(object(), TypeTag.STRING, 3)
    with pytest.raises(ArgumentTypeInvalid):
        mariadb.literal(b'abc', TypeTag.STRING)


if __name__ == '__main__':
    __import__('pytest').main([__file__])
