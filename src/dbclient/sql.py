"""
SQL template scanning and statement building.

Templates use `?` as the positional parameter marker. A single regex pass
splits the SQL into code, literal and comment segments, so markers and
statement separators are only recognized in code:

    SQL → Scan segments → Count markers / detect separators → Substitute literals
           (one pass)        (code only)                       (textual)

Main entry points:
- `scan(sql, dialect)` - Segment SQL for a dialect
- `StatementBuilder.parse(sql)` - Marker count, fragments, multi-statement flag
- `StatementBuilder.minify(sql)` - Strip comments and collapse whitespace
- `StatementBuilder.substitute(fragments, literals)` - Interleave literals
- `StatementBuilder.literal(value, tag)` - Engine safe literal of one value
- `to_format_paramstyle(sql, dialect)` - `?` to `%s` for format paramstyle drivers
"""
import decimal
import math
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum, auto
from functools import lru_cache
from typing import Any

from dbclient.exceptions import ArgumentCountMismatch, ArgumentNotStringConvertible
from dbclient.exceptions import ArgumentTypeInvalid
from dbclient.types import BINARY_TYPES, Argument, ArgumentKind, TypeTag

__all__ = [
    'SQL_MARKER',
    'SQL_TRIM',
    'SqlDialect',
    'Segment',
    'SegmentType',
    'ParsedStatement',
    'StatementBuilder',
    'scan',
    'trim_sql',
    'to_format_paramstyle',
]

SQL_MARKER = '?'
SQL_SEPARATOR = ';'
SQL_TRIM = ' \t\n\r\0\x0b;'

# =============================================================================
# Data Structures
# =============================================================================


class SegmentType(Enum):
    """Segment types identified during SQL scanning."""
    CODE = auto()
    LITERAL = auto()        # quoted string or quoted identifier
    COMMENT = auto()
    KEPT_COMMENT = auto()   # executable /*! */ or optimizer hint /*+ */


@dataclass(slots=True)
class Segment:
    type: SegmentType
    text: str


@dataclass(frozen=True, slots=True)
class SqlDialect:
    """Lexical rules of one engine's SQL."""
    name: str
    backslash_escapes: bool = False
    backtick_identifiers: bool = False
    bracket_identifiers: bool = False
    hash_comments: bool = False
    # `--` starts a comment only when followed by whitespace
    strict_dash_comments: bool = False


@dataclass(frozen=True, slots=True)
class ParsedStatement:
    """Result of parsing a template.

    `fragments` holds the SQL split at each marker, so it always has
    `marker_count + 1` items.
    """
    sql: str
    marker_count: int
    fragments: tuple[str, ...]
    is_multi: bool


# =============================================================================
# Scanner
# =============================================================================


@lru_cache(maxsize=8)
def _scan_pattern(dialect: SqlDialect) -> re.Pattern:
    """Build the master scan pattern of a dialect.

    Unterminated quotes and block comments run to the end of the SQL.
    """
    if dialect.backslash_escapes:
        single = r"'(?:[^'\\]|\\.|'')*(?:'|\Z)"
        double = r'"(?:[^"\\]|\\.|"")*(?:"|\Z)'
    else:
        single = r"'(?:[^']|'')*(?:'|\Z)"
        double = r'"(?:[^"]|"")*(?:"|\Z)'
    literals = [single, double]
    if dialect.backtick_identifiers:
        literals.append(r'`(?:[^`]|``)*(?:`|\Z)')
    if dialect.bracket_identifiers:
        literals.append(r'\[(?:[^\]]|\]\])*(?:\]|\Z)')
    comments = [r'--(?=\s|\Z)[^\n]*' if dialect.strict_dash_comments else r'--[^\n]*']
    if dialect.hash_comments:
        comments.append(r'\#[^\n]*')
    return re.compile(
        r'(?P<kept>/\*[!+].*?(?:\*/|\Z))'
        r'|(?P<comment>/\*.*?(?:\*/|\Z)|' + '|'.join(comments) + ')'
        r'|(?P<literal>' + '|'.join(literals) + ')',
        re.DOTALL)


def scan(sql: str, dialect: SqlDialect) -> list[Segment]:
    """Split SQL into code, literal and comment segments, in order.

    >>> [s.type.name for s in scan("a = '?' -- ?", SqlDialect('x'))]
    ['CODE', 'LITERAL', 'CODE', 'COMMENT']
    """
    segments = []
    last_end = 0
    for match in _scan_pattern(dialect).finditer(sql):
        start, end = match.span()
        if start > last_end:
            segments.append(Segment(SegmentType.CODE, sql[last_end:start]))
        if match.group('kept'):
            stype = SegmentType.KEPT_COMMENT
        elif match.group('comment'):
            stype = SegmentType.COMMENT
        else:
            stype = SegmentType.LITERAL
        segments.append(Segment(stype, match.group(0)))
        last_end = end
    if last_end < len(sql):
        segments.append(Segment(SegmentType.CODE, sql[last_end:]))
    return segments


def trim_sql(sql: str) -> str:
    """Strip surrounding whitespace, NUL and statement separators."""
    return sql.strip(SQL_TRIM)


def split_statements(segments: Sequence[Segment]) -> list[str]:
    """Statement texts, split at separators in code, empty ones dropped."""
    statements = []
    current = []
    significant = False
    for segment in segments:
        if segment.type is not SegmentType.CODE:
            current.append(segment.text)
            significant = significant or segment.type is SegmentType.LITERAL
            continue
        parts = segment.text.split(SQL_SEPARATOR)
        for i, part in enumerate(parts):
            if i:
                if significant:
                    statements.append(''.join(current).strip())
                current = []
                significant = False
            current.append(part)
            significant = significant or bool(part.strip())
    if significant:
        statements.append(''.join(current).strip())
    return statements


def to_format_paramstyle(sql: str, dialect: SqlDialect) -> str:
    """Convert `?` markers to `%s` and double every literal percent sign.

    Drivers with format paramstyle run `sql % args` over the whole text,
    literals included.

    >>> to_format_paramstyle("select '5%', ? from t", SqlDialect('x'))
    "select '5%%', %s from t"
    """
    out = []
    for segment in scan(sql, dialect):
        text = segment.text.replace('%', '%%')
        if segment.type is SegmentType.CODE:
            text = text.replace(SQL_MARKER, '%s')
        out.append(text)
    return ''.join(out)


_WHITESPACE = re.compile(r'\s+')


# =============================================================================
# Statement builder
# =============================================================================


class StatementBuilder:
    """Parses templates and builds substituted SQL for one dialect.

    Args:
        dialect: Lexical rules used for scanning
        quote_string: Escapes and quotes a string value
        quote_binary: Renders bytes as a binary literal
    """

    def __init__(self, dialect: SqlDialect, quote_string: Callable[[str], str],
                 quote_binary: Callable[[bytes], str]) -> None:
        self.dialect = dialect
        self.quote_string = quote_string
        self.quote_binary = quote_binary

    def scan(self, sql: str) -> list[Segment]:
        return scan(sql, self.dialect)

    def parse(self, sql: str) -> ParsedStatement:
        """Count markers outside literals and comments and split at them."""
        segments = self.scan(sql)
        fragments = []
        current = []
        for segment in segments:
            if segment.type is not SegmentType.CODE:
                current.append(segment.text)
                continue
            parts = segment.text.split(SQL_MARKER)
            current.append(parts[0])
            for part in parts[1:]:
                fragments.append(''.join(current))
                current = [part]
        fragments.append(''.join(current))
        return ParsedStatement(
            sql=sql,
            marker_count=len(fragments) - 1,
            fragments=tuple(fragments),
            is_multi=len(split_statements(segments)) > 1,
        )

    def is_multi_statement(self, sql: str) -> bool:
        return len(split_statements(self.scan(sql))) > 1

    def split_statements(self, sql: str) -> list[str]:
        return split_statements(self.scan(sql))

    def minify(self, sql: str) -> str:
        """Remove comments and collapse whitespace outside literals.

        Executable `/*! */` and hint `/*+ */` comments are kept.

        >>> b = StatementBuilder(SqlDialect('x'), repr, bytes.hex)
        >>> b.minify("select  /* ? */ 1,\\n  'a  b' -- ?\\n")
        "select 1, 'a  b'"
        """
        out = []
        for segment in self.scan(sql):
            match segment.type:
                case SegmentType.COMMENT:
                    out.append(' ')
                case SegmentType.CODE:
                    out.append(_WHITESPACE.sub(' ', segment.text))
                case _:
                    out.append(segment.text)
        minified = []
        for text in out:
            if text.startswith(' ') and minified and minified[-1].endswith(' '):
                text = text.lstrip(' ')
            if text:
                minified.append(text)
        return trim_sql(''.join(minified).strip())

    @staticmethod
    def check_count(parsed: ParsedStatement, arguments: Sequence) -> None:
        """Raise ArgumentCountMismatch unless there is one argument per marker."""
        if len(arguments) != parsed.marker_count:
            raise ArgumentCountMismatch(
                f'arguments count[{len(arguments)}] doesn\'t match sql parameter'
                f' markers count[{parsed.marker_count}]')

    @staticmethod
    def substitute(fragments: Sequence[str], literals: Sequence[str]) -> str:
        """Interleave fragments and literals, purely textually.

        Literals are never altered here: a separator inside a string value
        stays inside that value.
        """
        if len(literals) != len(fragments) - 1:
            raise ArgumentCountMismatch(
                f'literals count[{len(literals)}] doesn\'t match sql parameter'
                f' markers count[{len(fragments) - 1}]')
        out = [fragments[0]]
        for literal, fragment in zip(literals, fragments[1:]):
            out.append(literal)
            out.append(fragment)
        return ''.join(out)

    def literal(self, value: Any, tag: TypeTag, index: int = 0) -> str:
        """Render one argument as an engine safe SQL literal.

        Raises
            ArgumentNotStringConvertible: String tag, object without
                a string conversion
            ArgumentTypeInvalid: Value not representable as its tag
        """
        argument = value if isinstance(value, Argument) else Argument.of(value)
        v = argument.value
        if argument.kind is ArgumentKind.NULL:
            return 'NULL'
        match tag:
            case TypeTag.INTEGER:
                if isinstance(v, bool):
                    return '1' if v else '0'
                try:
                    if isinstance(v, int):
                        return str(v)
                    if isinstance(v, str):
                        return str(int(v.strip()))
                    if isinstance(v, decimal.Decimal) and v == v.to_integral_value():
                        return str(int(v))
                except ValueError:
                    pass
            case TypeTag.FLOAT:
                if isinstance(v, bool):
                    return '1' if v else '0'
                try:
                    if isinstance(v, str):
                        v = decimal.Decimal(v.strip())
                    if isinstance(v, int):
                        return str(v)
                    if isinstance(v, float) and math.isfinite(v):
                        return repr(v)
                    if isinstance(v, decimal.Decimal) and v.is_finite():
                        return str(v)
                except decimal.InvalidOperation:
                    pass
            case TypeTag.BINARY:
                if isinstance(v, BINARY_TYPES):
                    return self.quote_binary(bytes(v))
            case _:
                if argument.kind is ArgumentKind.UNCONVERTIBLE:
                    raise ArgumentNotStringConvertible(
                        f'argument {index} of type {type(v).__name__} has no string conversion')
                if isinstance(v, bool):
                    return self.quote_string('1' if v else '0')
                if not isinstance(v, BINARY_TYPES):
                    return self.quote_string(str(argument.native))
        raise ArgumentTypeInvalid(
            f'argument {index} of type {type(v).__name__} is not valid as type {tag.value!r}')
