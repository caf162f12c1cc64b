"""
Result traversal over the sets and rows of one query execution.

A `ResultCursor` starts before the first result set (`set_index == -1`).
Reading anything enters set 0 implicitly; `next_set()` moves on. In
multi-query mode the driver only reports an error of a later statement when
its set is reached, so failures can surface from `next_set()` and the
fetchers. Such a native failure closes the query and is logged before the
classified error is raised.
"""
import importlib
import logging
from collections import deque
from collections.abc import Iterator
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from dbclient.exceptions import InvalidArgument, ResultAccessInvalid
from dbclient.types import FETCH_ASSOC, FETCH_NUMERIC, FETCH_OBJECT, FETCH_SHAPES
from dbclient.types import Column, columns_from_cursor_description
from more_itertools import consume

from libb import attrdict

if TYPE_CHECKING:
    from dbclient.query import Query

logger = logging.getLogger(__name__)

__all__ = ['ResultCursor']

INSERT_ID_TYPES = {
    'i': int,
    'int': int,
    'integer': int,
    'd': float,
    'float': float,
    's': str,
    'str': str,
    'string': str,
}

# MariaDB reports this (-1 as unsigned) for statements without a row count
_UNSIGNED_MINUS_ONE = 2 ** 64 - 1

_UNSET = object()


def _resolve_class(cls: type | str) -> type:
    """A class, or a dotted `module.Class` path to one."""
    if isinstance(cls, type):
        return cls
    if not isinstance(cls, str) or '.' not in cls:
        raise InvalidArgument(f'arg cls {cls!r} is neither a class nor a dotted class path')
    module_name, _, class_name = cls.rpartition('.')
    try:
        resolved = getattr(importlib.import_module(module_name), class_name)
    except (ImportError, AttributeError) as exc:
        raise InvalidArgument(f'arg cls {cls!r} cannot be resolved: {exc}') from exc
    if not isinstance(resolved, type):
        raise InvalidArgument(f'arg cls {cls!r} is not a class')
    return resolved


class ResultCursor:
    """Set and row navigation plus fetchers over a native driver cursor.

    Args:
        query: The executed query
        cursor: Native cursor holding the result
        owned: Whether the cursor is closed on `free()`; a prepared
            statement's cursor is shared and stays open
    """

    def __init__(self, query: 'Query', cursor: Any, owned: bool = True) -> None:
        self.query = query
        self.client = query.client
        self.strategy = query.strategy
        self.options = query.options
        self.cursor = cursor
        self.owned = owned
        self.set_index = -1
        self.row_index = -1
        self.depleted = False
        self._freed = False
        self._description = None
        self._rowcount = -1
        self._row_total: int | None = None
        self._buffer: deque | None = None
        self._pending: Any = _UNSET
        self._insert_id: Any = _UNSET
        self._first_insert_id = self.strategy.last_insert_id(cursor)

    def __repr__(self) -> str:
        return (f'ResultCursor(query={self.query.id!r}, set={self.set_index},'
                f' row={self.row_index}, freed={self._freed})')

    @property
    def mode(self) -> str:
        return self.options.result_mode

    @property
    def schema(self):
        return self.strategy.option_schema

    def _where(self, method: str) -> str:
        return f'result[{self.set_index}][{self.row_index}]->{method}()'

    def _error(self, cls: type, method: str, message: str):
        return self.query._error(cls, f'{self._where(method)} {message}')

    def _check_usable(self, method: str) -> None:
        if self._freed:
            raise self._error(ResultAccessInvalid, method, 'called after the result was freed')

    def _fail(self, exc: BaseException, method: str):
        """Close the query, log, and raise the classified error."""
        if not self.strategy.is_native_error(exc):
            raise exc
        error = self.query.native_error(exc, self._where(method))
        self.query.close()
        raise error from exc

    # Sets -------------------------------------------------------------------

    def _enter_set(self) -> None:
        self.row_index = -1
        self._pending = _UNSET
        self._description = self.cursor.description
        self._rowcount = self.cursor.rowcount
        self._buffer = None
        self._row_total = None
        if not self.strategy.insert_id_by_select:
            self._insert_id = _UNSET
        if self._description is None:
            self._row_total = 0
        elif self.mode in self.schema.client_buffered_modes:
            self._buffer = deque(self.cursor.fetchall())
            self._row_total = len(self._buffer)
        elif self.mode in self.schema.row_count_modes:
            self._row_total = self._rowcount

    def _ensure_set(self, method: str) -> None:
        self._check_usable(method)
        if self.set_index == -1 and not self.depleted:
            self.set_index = 0
            try:
                self._enter_set()
            except Exception as exc:
                self._fail(exc, method)

    def next_set(self) -> bool:
        """Move to the next result set; False when there is none.

        The first call enters set 0, which the driver already holds.
        """
        self._check_usable('next_set')
        if self.depleted:
            return False
        if self.set_index == -1:
            self._ensure_set('next_set')
            return True
        has_next = False
        try:
            if self.schema.is_unbuffered(self.mode):
                consume(self._native_rows())
            has_next = self.cursor.nextset()
            if has_next:
                self.set_index += 1
                self._enter_set()
        except Exception as exc:
            self._fail(exc, 'next_set')
        if not has_next:
            self.depleted = True
            self._pending = _UNSET
            self._buffer = None
            self._description = None
            return False
        return True

    # Rows -------------------------------------------------------------------

    def _native_row(self) -> tuple | None:
        if self._buffer is not None:
            return tuple(self._buffer.popleft()) if self._buffer else None
        if self._description is None:
            return None
        row = self.cursor.fetchone()
        return None if row is None else tuple(row)

    def _native_rows(self) -> Iterator[tuple]:
        return iter(self._native_row, None)

    def _take_row(self, method: str) -> tuple | None:
        """Consume the row loaded by `next_row()`, or load the next one."""
        self._ensure_set(method)
        if self._pending is not _UNSET:
            row, self._pending = self._pending, _UNSET
            return row
        if self.depleted:
            return None
        try:
            row = self._native_row()
        except Exception as exc:
            self._fail(exc, method)
        if row is not None:
            self.row_index += 1
        return row

    def _rows(self, method: str) -> Iterator[tuple]:
        while (row := self._take_row(method)) is not None:
            yield row

    def next_row(self) -> bool:
        """Load the next row of the current set; the next fetcher returns it."""
        self._ensure_set('next_row')
        self._pending = _UNSET
        row = self._take_row('next_row')
        if row is None:
            return False
        self._pending = row
        return True

    def deplete_rows(self) -> None:
        """Skip the remaining rows of the current set."""
        consume(self._rows('deplete_rows'))

    def deplete_sets(self) -> None:
        """Skip the remaining sets, surfacing errors of later statements."""
        self._check_usable('deplete_sets')
        consume(iter(self.next_set, False))

    def deplete_all(self) -> None:
        self.deplete_rows()
        self.deplete_sets()

    # Metadata ---------------------------------------------------------------

    def affected_rows(self) -> int:
        """Rows changed by the statement of the current set.

        Raises
            InvalidArgument: In a result mode not reporting affected rows
            ResultAccessInvalid: When the set has no affected row count,
                probably not an INSERT, UPDATE or DELETE
        """
        self._ensure_set('affected_rows')
        if not self.schema.supports_affected_rows(self.mode):
            raise self._error(InvalidArgument, 'affected_rows',
                              f'is not supported in result mode {self.mode!r}')
        count = self._rowcount
        if count is None or count < 0 or count == _UNSIGNED_MINUS_ONE:
            raise self._error(ResultAccessInvalid, 'affected_rows',
                              'got no affected row count, probably not a CRUD query')
        return count

    def insert_id(self, as_type: str | None = None) -> int | float | str | None:
        """Id generated by the last INSERT, None when there is none.

        Args:
            as_type: `i`/`int`, `d`/`float` or `s`/`string` (default)
        """
        self._check_usable('insert_id')
        key = as_type or 's'
        if key not in INSERT_ID_TYPES:
            raise self._error(InvalidArgument, 'insert_id',
                              f'arg as_type {as_type!r} is not one of {sorted(INSERT_ID_TYPES)}')
        if self._insert_id is _UNSET:
            if self.strategy.insert_id_by_select:
                if not self.options.insert_id:
                    raise self._error(InvalidArgument, 'insert_id',
                                      'requires the query option insert_id')
                self._insert_id = self._select_insert_id()
            elif self.set_index > 0:
                self._insert_id = self.strategy.last_insert_id(self.cursor)
            else:
                self._insert_id = self._first_insert_id
        value = self._insert_id
        if value is None:
            return None
        target = INSERT_ID_TYPES[key]
        if target is int:
            return int(value)
        if target is float:
            return float(value)
        if isinstance(value, (Decimal, float)) and value == int(value):
            return str(int(value))
        return str(value)

    def _select_insert_id(self) -> Any:
        """Read the appended `SELECT ... AS insert_id` set, skipping sets before it."""
        self._ensure_set('insert_id')
        while True:
            if self._description and self.column_names() == ['insert_id']:
                row = self._take_row('insert_id')
                return row[0] if row else None
            if not self.next_set():
                return None

    def num_rows(self) -> int:
        """Row count of the current set, in row countable result modes only."""
        self._ensure_set('num_rows')
        if self.mode not in self.schema.row_count_modes:
            raise self._error(InvalidArgument, 'num_rows',
                              f'is not supported in result mode {self.mode!r},'
                              f' use one of {sorted(self.schema.row_count_modes)}')
        return self._row_total or 0

    def num_columns(self) -> int:
        self._ensure_set('num_columns')
        return len(self._description or ())

    def column_names(self) -> list[str]:
        self._ensure_set('column_names')
        return [desc[0] for desc in self._description or ()]

    def columns(self) -> list[Column]:
        self._ensure_set('columns')
        return columns_from_cursor_description(self) if self._description else []

    @property
    def description(self):
        return self._description

    # Fetchers ---------------------------------------------------------------

    def _column_index(self, method: str, index: int = 0, name: str | None = None) -> int:
        names = self.column_names()
        if name is not None:
            if name not in names:
                raise self._error(InvalidArgument, method, f'column {name!r} does not exist')
            return names.index(name)
        if not 0 <= index < len(names):
            raise self._error(InvalidArgument, method, f'column index {index} out of range')
        return index

    def _shape(self, method: str, row: tuple, as_: int) -> Any:
        if as_ == FETCH_ASSOC:
            return dict(zip(self.column_names(), row))
        if as_ == FETCH_NUMERIC:
            return list(row)
        if as_ == FETCH_OBJECT:
            return attrdict(zip(self.column_names(), row))
        raise self._error(InvalidArgument, method,
                          f'arg as_ {as_!r} is not one of {list(FETCH_SHAPES)}')

    def _hydrate(self, method: str, cls: type | None, row: tuple, args: tuple | list | None) -> Any:
        if cls is None:
            return attrdict(zip(self.column_names(), row))
        obj = cls(*args) if args is not None else cls.__new__(cls)
        for name, value in zip(self.column_names(), row):
            try:
                setattr(obj, name, value)
            except AttributeError as exc:
                raise self._error(InvalidArgument, method,
                                  f'column {name!r} cannot be set on {cls.__name__}: {exc}') from exc
        return obj

    def _keyed(self, method: str, items: list, list_by_column: str, key) -> dict:
        if list_by_column not in self.column_names():
            raise self._error(InvalidArgument, method,
                              f'arg list_by_column {list_by_column!r} is not a column')
        return {key(item): item for item in items}

    def fetch_field(self, index: int = 0, name: str | None = None) -> Any:
        """One column of the next row, None when no rows are left."""
        self._ensure_set('fetch_field')
        column = self._column_index('fetch_field', index, name) if self._description else 0
        row = self._take_row('fetch_field')
        return None if row is None else row[column]

    def fetch_field_all(self, index: int = 0, name: str | None = None) -> list:
        self._ensure_set('fetch_field_all')
        if not self._description:
            return []
        column = self._column_index('fetch_field_all', index, name)
        return [row[column] for row in self._rows('fetch_field_all')]

    def fetch_array(self, as_: int = FETCH_ASSOC) -> dict | list | None:
        """Next row as a dict (`FETCH_ASSOC`), list (`FETCH_NUMERIC`) or attrdict."""
        if as_ not in FETCH_SHAPES:
            self._ensure_set('fetch_array')
            raise self._error(InvalidArgument, 'fetch_array',
                              f'arg as_ {as_!r} is not one of {list(FETCH_SHAPES)}')
        row = self._take_row('fetch_array')
        return None if row is None else self._shape('fetch_array', row, as_)

    def fetch_array_all(self, as_: int = FETCH_ASSOC, list_by_column: str | None = None) -> list | dict:
        """Remaining rows, or a dict of them keyed by a column's value."""
        self._ensure_set('fetch_array_all')
        if as_ not in FETCH_SHAPES:
            raise self._error(InvalidArgument, 'fetch_array_all',
                              f'arg as_ {as_!r} is not one of {list(FETCH_SHAPES)}')
        if list_by_column is not None and as_ == FETCH_NUMERIC:
            raise self._error(InvalidArgument, 'fetch_array_all',
                              'arg list_by_column is illegal with FETCH_NUMERIC')
        if list_by_column is not None and list_by_column not in self.column_names():
            raise self._error(InvalidArgument, 'fetch_array_all',
                              f'arg list_by_column {list_by_column!r} is not a column')
        rows = [self._shape('fetch_array_all', row, as_) for row in self._rows('fetch_array_all')]
        if list_by_column is None:
            return rows
        return self._keyed('fetch_array_all', rows, list_by_column, lambda r: r[list_by_column])

    def fetch_object(self, cls: type | str | None = None, args: tuple | list | None = None) -> Any:
        """Next row as an object, None when no rows are left.

        Without `cls` rows are attrdicts. A class is hydrated by setting one
        attribute per column; `__init__` only runs when `args` are given.
        """
        self._ensure_set('fetch_object')
        target = self._target_class('fetch_object', cls)
        row = self._take_row('fetch_object')
        return None if row is None else self._hydrate('fetch_object', target, row, args)

    def fetch_object_all(self, cls: type | str | None = None, list_by_column: str | None = None,
                         args: tuple | list | None = None) -> list | dict:
        self._ensure_set('fetch_object_all')
        target = self._target_class('fetch_object_all', cls)
        if list_by_column is not None and list_by_column not in self.column_names():
            raise self._error(InvalidArgument, 'fetch_object_all',
                              f'arg list_by_column {list_by_column!r} is not a column')
        objects = [self._hydrate('fetch_object_all', target, row, args)
                   for row in self._rows('fetch_object_all')]
        if list_by_column is None:
            return objects
        return self._keyed('fetch_object_all', objects, list_by_column,
                           lambda o: getattr(o, list_by_column))

    def _target_class(self, method: str, cls: type | str | None) -> type | None:
        if cls is None:
            return None
        try:
            return _resolve_class(cls)
        except InvalidArgument as exc:
            raise self._error(InvalidArgument, method, str(exc)) from exc

    def fetch_data(self, **kwargs: Any) -> Any:
        """Remaining rows of the current set through the client's data loader."""
        self._ensure_set('fetch_data')
        columns = self.columns()
        rows = self.fetch_array_all(FETCH_ASSOC)
        return self.client.options.data_loader(rows, columns, **kwargs)

    # Lifecycle --------------------------------------------------------------

    def free(self) -> None:
        """Release the result. Idempotent; later access raises ResultAccessInvalid.

        A shared prepared statement cursor is drained but stays open.
        """
        if self._freed:
            return
        self._freed = True
        self._buffer = None
        self._pending = _UNSET
        try:
            if self.owned:
                self.cursor.close()
            elif not self.depleted and self.schema.is_unbuffered(self.mode):
                if self._description:
                    consume(self._native_rows())
                while self.cursor.nextset():
                    if self.cursor.description:
                        consume(iter(self.cursor.fetchone, None))
        except Exception as exc:
            if not self.strategy.is_native_error(exc):
                raise
            logger.warning(f'{self.query.message_prefix()} - {self._where("free")} {exc}')

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.free()
