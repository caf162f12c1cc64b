"""
Query binding and execution.

A `Query` is created by `Client.query()` or `Client.multi_query()` and moves
through these states:

    unbound ──parameters()/repeat()/append()──► parameterized ──execute()──► executed
       │                                                                       │
       └──prepare()──► prepared ──execute()──► executed ◄──execute()───────────┘
                                                   │
                                            close() from any state ──► closed

Simple and multi queries run SQL with argument literals substituted into it.
Prepared queries keep a dedicated driver cursor and hand the current argument
values to the driver at every execution, so the caller may change them between
executions.
"""
import decimal
import logging
import time
import uuid
from collections.abc import Mapping, Sequence
from enum import Enum
from functools import cached_property, wraps
from typing import TYPE_CHECKING, Any, Self

from dbclient.cursor import ResultCursor
from dbclient.exceptions import ERROR_KIND_EXCEPTIONS, ArgumentCountMismatch
from dbclient.exceptions import ArgumentNotStringConvertible, ArgumentTypeInvalid
from dbclient.exceptions import ConnectionLost, DatabaseError, ErrorKind
from dbclient.exceptions import IllegalReuse, InvalidArgument, retryable
from dbclient.schema import LOG_SQL_TRUNCATE
from dbclient.sql import ParsedStatement, trim_sql
from dbclient.types import Argument, ArgumentKind, ArgumentList, NativeParam
from dbclient.types import TypeTag, infer_type, parse_type_string
from dbclient.validation import Phase, ValidationReport, validate_arguments

if TYPE_CHECKING:
    from dbclient.connection import Client

logger = logging.getLogger(__name__)

__all__ = ['Query', 'QueryState']


class QueryState(str, Enum):
    UNBOUND = 'unbound'
    PREPARED = 'prepared'
    PARAMETERIZED = 'parameterized'
    EXECUTED = 'executed'
    CLOSED = 'closed'


def dumpsql(func):
    """Decorator for logging executed SQL and tracking call time on the client."""
    @wraps(func)
    def wrapper(self, cursor: Any, sql: str, *args: Any, **kwargs: Any):
        start = time.time()
        logger.debug(f'SQL:\n{sql[:LOG_SQL_TRUNCATE]}\nargs: {args}')
        try:
            return func(self, cursor, sql, *args, **kwargs)
        finally:
            elapsed = time.time() - start
            self.client.addcall(elapsed)
            logger.debug(f'Query time: {elapsed:.4f}s')
    return wrapper


def _coerce(argument: Argument, tag: TypeTag) -> Any:
    """Value handed to the driver for a prepared statement argument."""
    value = argument.native
    if not isinstance(value, str) or argument.kind is ArgumentKind.STRINGABLE:
        return value
    try:
        match tag:
            case TypeTag.INTEGER:
                return int(value.strip())
            case TypeTag.FLOAT:
                return decimal.Decimal(value.strip())
    except (ValueError, decimal.InvalidOperation):
        pass
    return value


class Query:
    """One SQL statement (or multi-statement) bound to a client.

    Args:
        client: Owning client, supplying connection and engine strategy
        sql: SQL with `?` parameter markers
        options: Raw query options, resolved by the engine's option schema
        multi: Force multi-query mode
    """

    def __init__(self, client: 'Client', sql: str, options: Mapping[str, Any] | None = None,
                 *, multi: bool = False) -> None:
        self.client = client
        self.strategy = client.strategy
        self.builder = self.strategy.statement_builder
        self.name = None
        try:
            self.options = self.strategy.option_schema.resolve(
                options, validate_params=client.options.validate_params)
        except InvalidArgument as exc:
            raise self._rewrap(exc) from None
        self.name = self.options.name
        self.reusable = self.options.reusable
        self.validation_policy = self.options.validation
        self.execution = 0
        self.state = QueryState.UNBOUND
        self.arguments: ArgumentList | None = None
        self.sql_tampered: str | None = None

        sql = trim_sql(sql or '')
        if sql and self.options.sql_minify:
            sql = self.builder.minify(sql)
        if not sql:
            raise self._error(InvalidArgument, 'arg sql is effectively empty')
        self.sql = sql

        base = self.builder.parse(sql)
        if multi and not self.strategy.supports_multi_query:
            raise self._error(InvalidArgument, f'{self.strategy.dialect_name} doesn\'t support multi-query')
        self.statement_mode = 'multi' if multi or base.is_multi else 'simple'

        self._parsed: ParsedStatement = base
        if self.options.insert_id and self.strategy.insert_id_by_select:
            if self.statement_mode == 'multi':
                raise self._error(InvalidArgument,
                                  'option insert_id is illegal for a multi-statement query')
            self._parsed = self.builder.parse(self.strategy.insert_id_sql(sql))

        self._tags: list[TypeTag] | None = None
        self._cursor: Any = None
        self._prepared_conn: Any = None
        self._prepared_sql: str | None = None
        self._bound_values: list = []
        self._bound_tags: list[TypeTag] = []
        self._repeated = False
        self._appended = False
        self._armed = True
        self._result: ResultCursor | None = None
        self._executed_sql = self._parsed.sql
        logger.debug(f'{self.message_prefix()} - created {self.statement_mode} query')

    @cached_property
    def id(self) -> str:
        return uuid.uuid4().hex[:12]

    @property
    def marker_count(self) -> int:
        return self._parsed.marker_count

    @property
    def is_prepared(self) -> bool:
        return self.statement_mode == 'prepared'

    @property
    def is_multi(self) -> bool:
        return self.statement_mode == 'multi'

    def message_prefix(self) -> str:
        prefix = f'{self.client.message_prefix()}[{self.id}]'
        if self.name:
            prefix += f'[{self.name}]'
        return prefix

    def _error(self, cls: type[DatabaseError], message: str, **kwargs: Any) -> DatabaseError:
        prefix = self.message_prefix()
        return cls(f'{prefix} - {message}', query_id=self.id, prefix=prefix, **kwargs)

    def _rewrap(self, exc: DatabaseError) -> DatabaseError:
        """Same error class, message carrying this query's prefix."""
        return self._error(type(exc), str(exc), validation_report=exc.validation_report)

    def _check_open(self, action: str) -> None:
        if self.state is QueryState.CLOSED:
            raise self._error(IllegalReuse, f'{action} on a closed query is illegal')

    # Binding ----------------------------------------------------------------

    def _parse_types(self, types: str | None, count: int) -> list[TypeTag] | None:
        try:
            return parse_type_string(types, count)
        except ValueError as exc:
            raise self._error(InvalidArgument, f'arg types: {exc}') from exc

    def _raise_for_report(self, report: ValidationReport, **kwargs: Any) -> None:
        if report.ok:
            return
        cls = ArgumentNotStringConvertible if report.only_not_stringable else ArgumentTypeInvalid
        raise self._error(cls, f'arguments failed validation, {report}',
                          validation_report=report, **kwargs)

    def _check_count(self, parsed: ParsedStatement, arguments: Sequence) -> None:
        try:
            self.builder.check_count(parsed, arguments)
        except ArgumentCountMismatch as exc:
            raise self._rewrap(exc) from None

    def _substitute(self, parsed: ParsedStatement, types: str | None, arguments: Sequence | None) -> str:
        """Validate a copy of the arguments and substitute them as literals."""
        args = ArgumentList.copy_of(arguments)
        self._check_count(parsed, args)
        if not parsed.marker_count:
            return parsed.sql
        tags = self._parse_types(types, len(args)) or [infer_type(v) for v in args.values()]
        entries = args.arguments()
        report = validate_arguments(entries, tags, Phase.PREPARE, self.validation_policy)
        self._raise_for_report(report)
        try:
            literals = [self.builder.literal(arg, tags[i], i) for i, arg in enumerate(entries)]
        except (ArgumentTypeInvalid, ArgumentCountMismatch) as exc:
            raise self._rewrap(exc) from None
        self._bound_values.extend(args.values())
        self._bound_tags.extend(tags)
        return self.builder.substitute(parsed.fragments, literals)

    def prepare(self, types: str = '', arguments: Sequence | ArgumentList | None = None) -> Self:
        """Turn the query into a prepared statement.

        The argument sequence is kept by reference: the next `execute()`
        binds whatever values it holds by then.

        Args:
            types: One type character (`i`, `d`, `s`, `b`) per argument,
                empty to infer each type from its value at every execution
            arguments: Argument sequence; items may be `NativeParam`
                records on engines supporting type qualifiers
        """
        self._check_open('prepare()')
        if self.is_prepared:
            raise self._error(IllegalReuse, 'query is already prepared')
        if self.state is QueryState.PARAMETERIZED or self.sql_tampered is not None:
            raise self._error(IllegalReuse, 'preparing a query after parameters() is illegal')
        if self.is_multi:
            raise self._error(InvalidArgument, 'a multi-statement query cannot be prepared')

        args = ArgumentList(arguments if arguments is not None else [])
        self._check_count(self._parsed, args)
        tags = self._parse_types(types, len(args))
        if not self.strategy.supports_native_params and any(p is not None for p in args.native_params()):
            raise self._error(InvalidArgument,
                              f'{self.strategy.dialect_name} doesn\'t support typed native parameters')
        report = validate_arguments(args.arguments(), tags, Phase.PREPARE, self.validation_policy)
        self._raise_for_report(report)

        conn = self.client.get_connection(reconnect=True)
        self._cursor = self.strategy.create_cursor(conn, self.options.result_mode)
        self._prepared_conn = conn
        self._prepared_sql = self.strategy.prepare_sql(self._parsed.sql)
        self._executed_sql = self._prepared_sql
        self._tags = tags
        self.arguments = args
        self.statement_mode = 'prepared'
        self.state = QueryState.PREPARED
        logger.debug(f'{self.message_prefix()} - prepared with {len(args)} arguments')
        return self

    def parameters(self, types: str = '', arguments: Sequence | None = None) -> Self:
        """Substitute arguments into the base SQL, re-arming the query.

        Arguments are copied; later changes to the caller's sequence have no
        effect.
        """
        self._check_open('parameters()')
        if self._repeated:
            raise self._error(IllegalReuse, 'passing parameters to base sql is illegal'
                              ' when base sql has been repeated')
        if self._appended:
            raise self._error(IllegalReuse, 'passing parameters to base sql is illegal'
                              ' after another sql string has been appended')
        if self.is_prepared:
            raise self._error(IllegalReuse, 'passing parameters to prepared statement is illegal'
                              ' except via call to prepare()')
        self._bound_values = []
        self._bound_tags = []
        self.sql_tampered = self._substitute(self._parsed, types, arguments)
        self.state = QueryState.PARAMETERIZED
        self._armed = True
        return self

    def _check_multi(self, action: str) -> None:
        self._check_open(action)
        if not self.strategy.supports_multi_query:
            raise self._error(InvalidArgument, f'{self.strategy.dialect_name} doesn\'t support multi-query')
        if self.is_prepared:
            raise self._error(IllegalReuse, f'{action} on a prepared statement is illegal')

    def repeat(self, types: str = '', arguments: Sequence | None = None) -> Self:
        """Repeat the base SQL with other arguments, making a multi-query.

        The first call without prior `parameters()` only substitutes.
        """
        self._check_multi('repeat()')
        if self._appended:
            raise self._error(IllegalReuse, 'repeating base sql is illegal'
                              ' after another sql string has been appended')
        repeated = self._substitute(self._parsed, types, arguments)
        if self.sql_tampered is None:
            self.sql_tampered = repeated
        else:
            self.sql_tampered += '; ' + repeated
            self._repeated = True
            self.statement_mode = 'multi'
        self.state = QueryState.PARAMETERIZED
        self._armed = True
        return self

    def append(self, sql: str, types: str = '', arguments: Sequence | None = None) -> Self:
        """Append another statement with its own arguments, making a multi-query."""
        self._check_multi('append()')
        appendix = trim_sql(sql or '')
        if not appendix:
            raise self._error(InvalidArgument, f'arg sql length[{len(sql or "")}] is effectively empty')
        if self.sql_tampered is None:
            if self.marker_count:
                raise self._error(ArgumentCountMismatch, 'base sql has parameter markers,'
                                  ' call parameters() before append()')
            self.sql_tampered = self.sql
        substituted = self._substitute(self.builder.parse(appendix), types, arguments)
        self.sql_tampered += '; ' + substituted
        self._appended = True
        self.statement_mode = 'multi'
        self.state = QueryState.PARAMETERIZED
        self._armed = True
        return self

    # Execution --------------------------------------------------------------

    def _bind(self) -> tuple[list, list[NativeParam | None] | None]:
        """Validate the current prepared arguments and produce driver values."""
        self._check_count(self._parsed, self.arguments)
        entries = self.arguments.arguments()
        report = validate_arguments(entries, self._tags, Phase.EXECUTE, self.validation_policy)
        self._raise_for_report(report)
        tags = self._tags or [infer_type(arg.value) for arg in entries]
        values = [_coerce(arg, tags[i]) for i, arg in enumerate(entries)]
        native_params = self.arguments.native_params() if self.strategy.supports_native_params else None
        return values, native_params

    @dumpsql
    def _execute_native(self, cursor: Any, sql: str, params: Sequence | None = None,
                        native_params: Sequence | None = None) -> None:
        self.strategy.execute(cursor, sql, params, native_params, timeout=self.options.query_timeout)

    def _stale_statement(self) -> ConnectionLost:
        """The prepared statement outlived its connection."""
        logger.warning(f'{self.message_prefix()} - prepared statement connection was lost')
        return self._error(ConnectionLost, 'connection of the prepared statement was lost,'
                           ' prepare the query again')

    def _may_retry(self) -> bool:
        return (self.client.options.reconnect
                and not self.is_prepared
                and not self.strategy.option_schema.is_unbuffered(self.options.result_mode))

    def native_error(self, exc: BaseException, where: str | None = None,
                     report: ValidationReport | None = None) -> DatabaseError:
        """Classify a native driver exception and log it with the failing SQL."""
        kind = self.strategy.classify(exc)
        codes = self.strategy.native_error_codes(exc)
        native_message = self.strategy.native_error_message(exc)
        location = f' {where}' if where else ''
        code_text = ', '.join(map(str, codes)) or 'none'
        error = self._error(
            ERROR_KIND_EXCEPTIONS[kind],
            f'failed{location}, native error ({code_text}) {native_message}',
            native_code=codes[0] if codes else None,
            native_message=native_message,
            validation_report=report)
        logger.warning(f'{error}\nSQL: {self._executed_sql[:LOG_SQL_TRUNCATE]}')
        return error

    def _failure_report(self) -> ValidationReport | None:
        if not self.validation_policy.applies(Phase.FAILURE):
            return None
        if self.is_prepared:
            if not self.arguments:
                return None
            return validate_arguments(self.arguments.arguments(), self._tags,
                                      Phase.FAILURE, self.validation_policy)
        if not self._bound_values:
            return None
        return validate_arguments(self._bound_values, self._bound_tags,
                                  Phase.FAILURE, self.validation_policy)

    def _close_cursor(self, cursor: Any) -> None:
        try:
            cursor.close()
        except Exception as exc:
            if not self.strategy.is_native_error(exc):
                raise
            logger.debug(f'{self.message_prefix()} - error closing cursor: {exc}')

    def _free_result(self) -> None:
        if self._result is not None:
            self._result.free()
            self._result = None

    def execute(self) -> ResultCursor:
        """Run the query and return a cursor over its result sets.

        Raises
            IllegalReuse: When closed, or a non-reusable simple query is
                executed again without new `parameters()`
            ArgumentCountMismatch: SQL has markers but no arguments were given,
                or the prepared argument list changed length
            ConnectionLost: The connection a prepared statement was made on is gone
        """
        self._check_open('execute()')
        if not self.is_prepared:
            if not self._armed and not self.reusable:
                raise self._error(IllegalReuse, 'executing a non-reusable query again'
                                  ' without new parameters() is illegal')
            if self.sql_tampered is None and self.marker_count:
                raise self._error(ArgumentCountMismatch, f'sql has {self.marker_count}'
                                  ' parameter markers but no arguments were passed')

        params = native_params = None
        if self.is_prepared:
            if self._prepared_conn is not self.client.dbapi_connection:
                raise self._stale_statement()
            params, native_params = self._bind()
            sql = self._prepared_sql
        else:
            sql = self.sql_tampered if self.sql_tampered is not None else self._parsed.sql

        self._free_result()
        self.execution += 1
        self._armed = False
        self._executed_sql = sql

        retried = False
        while True:
            owned = not self.is_prepared
            cursor = self._cursor
            try:
                if owned:
                    conn = self.client.get_connection(reconnect=True)
                    cursor = self.strategy.create_cursor(conn, self.options.result_mode)
                self._execute_native(cursor, sql, params, native_params)
                break
            except Exception as exc:
                if not self.strategy.is_native_error(exc):
                    raise
                if owned and cursor is not None:
                    self._close_cursor(cursor)
                kind = self.strategy.classify(exc)
                if kind is ErrorKind.CONNECTION_LOST:
                    in_transaction = self.client.in_transaction
                    self.client.connection_lost()
                    if not retried and retryable(kind, in_transaction) and self._may_retry():
                        retried = True
                        logger.warning(f'{self.message_prefix()} - connection lost, reconnecting'
                                       f' and retrying once: {exc}')
                        continue
                    raise self.native_error(exc, 'execute()') from exc
                report = self._failure_report()
                error = self.native_error(exc, 'execute()', report)
                if report is not None and not report.ok:
                    raise self._error(ArgumentTypeInvalid,
                                      f'arguments failed validation after execution failure, {report}',
                                      native_code=error.native_code,
                                      native_message=error.native_message,
                                      validation_report=report) from exc
                raise error from exc

        self.state = QueryState.EXECUTED
        self._result = ResultCursor(self, cursor, owned=owned)
        return self._result

    # Lifecycle --------------------------------------------------------------

    def close(self) -> None:
        """Free the result, close the statement handle, detach arguments.

        The caller's argument sequence is never cleared. Idempotent.
        """
        if self.state is QueryState.CLOSED:
            return
        self.state = QueryState.CLOSED
        try:
            self._free_result()
        finally:
            if self._cursor is not None:
                self._close_cursor(self._cursor)
                self._cursor = None
            self.arguments = None
            logger.debug(f'{self.message_prefix()} - closed after {self.execution} executions')

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        self.close()

    def __repr__(self) -> str:
        return f'Query(id={self.id!r}, mode={self.statement_mode!r}, state={self.state.value!r})'
