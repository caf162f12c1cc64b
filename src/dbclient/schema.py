"""
Query option schemas and argument validation policy.

Each engine strategy owns one `QueryOptionSchema`; queries resolve their raw
options through it, so unknown or misspelled keys fail at construction.
"""
import difflib
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from typing import Any, Self

from dbclient.exceptions import InvalidArgument

__all__ = [
    'ValidationPolicy',
    'QueryOptionSchema',
    'QueryOptions',
    'VALIDATE_PREPARE',
    'VALIDATE_EXECUTE',
    'VALIDATE_FAILURE',
    'VALIDATE_STRINGABLE_EXEC',
    'VALIDATE_ALWAYS',
    'VALIDATE_DEFAULT',
]

VALIDATE_PREPARE = 1
VALIDATE_EXECUTE = 2
VALIDATE_FAILURE = 4
VALIDATE_STRINGABLE_EXEC = 8
VALIDATE_ALWAYS = 16

VALIDATE_DEFAULT = VALIDATE_PREPARE | VALIDATE_FAILURE

LOG_SQL_TRUNCATE = 8192


@dataclass(frozen=True)
class ValidationPolicy:
    """When arguments are validated.

    `stringable_execute` is always on: the check that string typed objects
    convert to string runs at every execution whatever the other flags say.
    """
    prepare: bool = True
    execute: bool = False
    failure: bool = True
    stringable_execute: bool = True
    always: bool = False

    def __post_init__(self):
        object.__setattr__(self, 'stringable_execute', True)

    @classmethod
    def from_value(cls, value: 'int | ValidationPolicy | Mapping | None') -> Self:
        """Build a policy from a bitmask, a mapping of flags, or a policy.

        >>> ValidationPolicy.from_value(VALIDATE_EXECUTE).prepare
        False
        >>> ValidationPolicy.from_value(None) == ValidationPolicy()
        True
        """
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        if isinstance(value, Mapping):
            unknown = set(value) - {f.name for f in fields(cls)}
            if unknown:
                raise InvalidArgument(f'unknown validation policy flags {sorted(unknown)}')
            return cls(**value)
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise InvalidArgument(f'validate_params must be a non-negative bitmask, got {value!r}')
        return cls(
            prepare=bool(value & VALIDATE_PREPARE),
            execute=bool(value & VALIDATE_EXECUTE),
            failure=bool(value & VALIDATE_FAILURE),
            always=bool(value & VALIDATE_ALWAYS),
        )

    def applies(self, phase) -> bool:
        """Whether full validation runs at a phase (`prepare`, `execute`, `failure`)."""
        if self.always:
            return True
        return bool(getattr(self, getattr(phase, 'value', phase)))

    def to_bitmask(self) -> int:
        return ((VALIDATE_PREPARE if self.prepare else 0)
                | (VALIDATE_EXECUTE if self.execute else 0)
                | (VALIDATE_FAILURE if self.failure else 0)
                | VALIDATE_STRINGABLE_EXEC
                | (VALIDATE_ALWAYS if self.always else 0))


GENERIC_QUERY_OPTIONS = (
    'name',
    'validate_params',
    'sql_minify',
    'result_mode',
    'cursor_mode',
    'affected_rows',
    'insert_id',
    'num_rows',
    'query_timeout',
    'reusable',
)


@dataclass(frozen=True)
class QueryOptions:
    """Resolved options of one query."""
    name: str | None = None
    validation: ValidationPolicy = field(default_factory=ValidationPolicy)
    sql_minify: bool = False
    result_mode: str = ''
    affected_rows: bool = False
    insert_id: bool = False
    num_rows: bool = False
    query_timeout: int = 0
    reusable: bool = False


@dataclass(frozen=True)
class QueryOptionSchema:
    """Query options an engine accepts and how its result modes behave.

    result_modes: every accepted `result_mode` (alias `cursor_mode`) value
    unbuffered_modes: rows stream from the server, no automatic retry
    row_count_modes: `num_rows()` is available
    client_buffered_modes: rows of each set are read into memory on entry
    affected_rows_modes: `affected_rows()` reports correct counts
    num_rows_mode: mode switched to by `num_rows=True` without explicit mode
    """
    engine: str
    result_modes: tuple[str, ...]
    default_result_mode: str
    unbuffered_modes: frozenset[str] = frozenset()
    row_count_modes: frozenset[str] = frozenset()
    client_buffered_modes: frozenset[str] = frozenset()
    affected_rows_modes: frozenset[str] | None = None
    num_rows_mode: str | None = None
    multi_query: bool = False
    specific_options: tuple[str, ...] = ()

    @property
    def allowed_options(self) -> tuple[str, ...]:
        return GENERIC_QUERY_OPTIONS + self.specific_options

    def is_unbuffered(self, mode: str) -> bool:
        return mode in self.unbuffered_modes

    def supports_affected_rows(self, mode: str) -> bool:
        return self.affected_rows_modes is None or mode in self.affected_rows_modes

    def _check_keys(self, options: Mapping[str, Any]) -> None:
        allowed = self.allowed_options
        for key in options:
            if key in allowed:
                continue
            close = difflib.get_close_matches(key, allowed, n=1)
            hint = f', did you mean {close[0]!r}?' if close else ''
            raise InvalidArgument(
                f'query option {key!r} is not supported by {self.engine}{hint}'
                f' Supported: {", ".join(allowed)}')

    def resolve(self, options: Mapping[str, Any] | None = None,
                validate_params: Any = None) -> QueryOptions:
        """Validate raw query options and resolve them into `QueryOptions`.

        Args:
            validate_params: Client default policy, used when the query
                options carry no `validate_params`

        Raises
            InvalidArgument: On unknown keys and illegal values
        """
        options = dict(options or {})
        self._check_keys(options)

        if 'result_mode' in options and 'cursor_mode' in options:
            raise InvalidArgument('options result_mode and cursor_mode are aliases, give only one')
        explicit_mode = options.get('result_mode', options.get('cursor_mode'))
        mode = explicit_mode or self.default_result_mode
        if mode not in self.result_modes:
            raise InvalidArgument(
                f'{self.engine} result mode {mode!r} is not one of {list(self.result_modes)}')

        num_rows = bool(options.get('num_rows', False))
        if num_rows and mode not in self.row_count_modes:
            if explicit_mode or not self.num_rows_mode:
                raise InvalidArgument(
                    f'{self.engine} result mode {mode!r} cannot count rows,'
                    f' use one of {sorted(self.row_count_modes)}')
            mode = self.num_rows_mode

        affected_rows = bool(options.get('affected_rows', False))
        if affected_rows and not self.supports_affected_rows(mode):
            raise InvalidArgument(
                f'{self.engine} result mode {mode!r} forbids getting affected rows,'
                f' use one of {sorted(self.affected_rows_modes)}')

        timeout = options.get('query_timeout', 0) or 0
        if isinstance(timeout, bool) or not isinstance(timeout, int) or timeout < 0:
            raise InvalidArgument(f'query_timeout must be a non-negative integer, got {timeout!r}')

        policy = options.get('validate_params', validate_params)
        return QueryOptions(
            name=options.get('name'),
            validation=ValidationPolicy.from_value(policy),
            sql_minify=bool(options.get('sql_minify', False)),
            result_mode=mode,
            affected_rows=affected_rows,
            insert_id=bool(options.get('insert_id', False)),
            num_rows=num_rows,
            query_timeout=timeout,
            reusable=bool(options.get('reusable', False)),
        )


