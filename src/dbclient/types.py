"""
Argument and column types.

This module provides:
- TypeTag and infer_type: the i/d/s/b type characters and implicit typing
- Argument: one argument value classified as scalar, stringable or unconvertible
- NativeParam: SQL Server type qualifier record wrapping an argument value
- ArgumentList: the argument storage shared between caller and query
- Column: column metadata from cursor descriptions
"""
import datetime
import decimal
from collections.abc import Callable, Iterator, MutableSequence, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Self

from dbclient.exceptions import InvalidArgument

FETCH_ASSOC = 2
FETCH_NUMERIC = 3
FETCH_OBJECT = 5

FETCH_SHAPES = (FETCH_ASSOC, FETCH_NUMERIC, FETCH_OBJECT)


class TypeTag(str, Enum):
    """Declared argument type, by its type character."""
    INTEGER = 'i'
    FLOAT = 'd'
    STRING = 's'
    BINARY = 'b'

    @classmethod
    def from_char(cls, char: str) -> Self:
        for tag in cls:
            if tag.value == char:
                return tag
        raise ValueError(f'Unknown type character {char!r}')


TYPE_CHARS = ''.join(tag.value for tag in TypeTag)

BINARY_TYPES = (bytes, bytearray, memoryview)


def infer_type(value: Any) -> TypeTag:
    """Derive a type tag from a value when the caller declared none.

    Total over any input; unknown objects are strings and left to the
    argument validator.

    >>> infer_type(True), infer_type(3), infer_type(1.5), infer_type(b'x')
    (<TypeTag.INTEGER: 'i'>, <TypeTag.INTEGER: 'i'>, <TypeTag.FLOAT: 'd'>, <TypeTag.BINARY: 'b'>)
    >>> infer_type(object())
    <TypeTag.STRING: 's'>
    """
    if isinstance(value, NativeParam):
        value = value.value
    if isinstance(value, (bool, int)):
        return TypeTag.INTEGER
    if isinstance(value, (float, decimal.Decimal)):
        return TypeTag.FLOAT
    if isinstance(value, BINARY_TYPES):
        return TypeTag.BINARY
    return TypeTag.STRING


def parse_type_string(types: str | None, count: int) -> list[TypeTag] | None:
    """Split a type string into per-position tags.

    Returns None for an empty type string, meaning each tag is inferred
    from its value at every execution.

    Raises
        ValueError: On illegal characters or a length not matching `count`
    """
    if not types:
        return None
    bad = sorted({c for c in types if c not in TYPE_CHARS})
    if bad:
        raise ValueError(f'type string contains illegal characters {bad}, allowed are {TYPE_CHARS!r}')
    if len(types) != count:
        raise ValueError(f'type string length {len(types)} does not match argument count {count}')
    return [TypeTag.from_char(c) for c in types]


def has_own_str(value: Any) -> bool:
    """Whether the value's class defines a string conversion of its own.

    Anything falling back to `object.__str__` only renders its address.
    """
    return type(value).__str__ is not object.__str__


STRING_NATIVE_TYPES = (str, int, float, decimal.Decimal, datetime.date,
                       datetime.time, datetime.timedelta)


class ArgumentKind(str, Enum):
    NULL = 'null'
    SCALAR = 'scalar'
    STRINGABLE = 'stringable'
    UNCONVERTIBLE = 'unconvertible'


@dataclass(frozen=True, slots=True)
class Argument:
    """One argument, classified once at construction.

    The stringable variant carries its conversion function, so later steps
    never probe the object again.
    """
    value: Any
    kind: ArgumentKind
    converter: Callable[[Any], str] | None = None

    @classmethod
    def of(cls, value: Any) -> Self:
        if isinstance(value, NativeParam):
            value = value.value
        if value is None:
            return cls(value, ArgumentKind.NULL)
        if isinstance(value, (bool, *STRING_NATIVE_TYPES, *BINARY_TYPES)):
            return cls(value, ArgumentKind.SCALAR)
        if has_own_str(value):
            return cls(value, ArgumentKind.STRINGABLE, str)
        return cls(value, ArgumentKind.UNCONVERTIBLE)

    @property
    def native(self) -> Any:
        """Value as handed to a driver; stringables are converted here."""
        if self.kind is ArgumentKind.STRINGABLE:
            return self.converter(self.value)
        return self.value


@dataclass(slots=True)
class NativeParam:
    """SQL Server argument with an explicit driver type qualifier.

    `sql_type` and `length` are handed to the driver's `setinputsizes`.
    Mutating `value` after prepare() is seen by the next execute().
    """
    value: Any
    direction: str = 'in'
    sql_type: int | None = None
    length: int | None = None

    def __post_init__(self):
        if self.direction != 'in':
            raise InvalidArgument(f'parameter direction {self.direction!r} is not supported, only \'in\'')

    @property
    def input_size(self) -> tuple[int, int, int] | None:
        if self.sql_type is None:
            return None
        return (self.sql_type, self.length or 0, 0)


class ArgumentList:
    """Argument storage shared by caller and query.

    Wraps the caller's own sequence without copying it: changing an item of
    that sequence after prepare() changes what the next execute() binds.
    Mutation between prepare() and execute() is part of the public contract.
    """

    def __init__(self, items: Sequence | None = None) -> None:
        if isinstance(items, ArgumentList):
            items = items.items
        self.items: Sequence = items if items is not None else []

    @classmethod
    def copy_of(cls, items: Sequence | None) -> Self:
        if isinstance(items, ArgumentList):
            items = items.items
        return cls(list(items or ()))

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator:
        return iter(self.items)

    def __getitem__(self, index: int) -> Any:
        return self.items[index]

    def __setitem__(self, index: int, value: Any) -> None:
        if not isinstance(self.items, MutableSequence):
            raise TypeError('argument storage is immutable')
        self.items[index] = value

    def values(self) -> list:
        """Current plain values, NativeParam wrappers unwrapped."""
        return [v.value if isinstance(v, NativeParam) else v for v in self.items]

    def native_params(self) -> list[NativeParam | None]:
        return [v if isinstance(v, NativeParam) else None for v in self.items]

    def arguments(self) -> list[Argument]:
        return [Argument.of(v) for v in self.items]

    def __repr__(self) -> str:
        return f'ArgumentList({self.items!r})'


class Column:
    """Result column metadata."""

    def __init__(self,
                 name: str,
                 type_code: Any,
                 display_size: int | None = None,
                 internal_size: int | None = None,
                 precision: int | None = None,
                 scale: int | None = None,
                 nullable: bool | None = None):
        self.name = name
        self.type_code = type_code
        self.display_size = display_size
        self.internal_size = internal_size
        self.precision = precision
        self.scale = scale
        self.nullable = nullable

    @classmethod
    def from_cursor_description(cls, description_item: Sequence) -> Self:
        """Create a Column from one DB-API 2.0 description item."""
        item = tuple(description_item) + (None,) * (7 - len(description_item))
        return cls(
            name=item[0],
            type_code=item[1],
            display_size=item[2],
            internal_size=item[3],
            precision=item[4],
            scale=item[5],
            nullable=None if item[6] is None else bool(item[6]),
        )

    def __repr__(self) -> str:
        return f'Column(name={self.name!r}, type_code={self.type_code!r})'

    def to_dict(self) -> dict:
        type_code = self.type_code
        if isinstance(type_code, type):
            type_code = type_code.__name__
        return {
            'name': self.name,
            'type_code': type_code,
            'display_size': self.display_size,
            'internal_size': self.internal_size,
            'precision': self.precision,
            'scale': self.scale,
            'nullable': self.nullable
        }

    @staticmethod
    def get_names(columns: list[Self]) -> list[str]:
        return [col.name for col in columns]

    @staticmethod
    def get_column_by_name(columns: list[Self], name: str) -> Self | None:
        for col in columns:
            if col.name == name:
                return col
        return None

    @staticmethod
    def get_column_types_dict(columns: list[Self]) -> dict[str, dict]:
        return {col.name: col.to_dict() for col in columns}


def columns_from_cursor_description(cursor: Any) -> list[Column]:
    """Create Column objects from cursor description."""
    if cursor.description is None:
        return []
    return [Column.from_cursor_description(desc) for desc in cursor.description]
