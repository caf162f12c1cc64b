"""
Transaction handling for database operations.
"""
import logging
import threading
from typing import TYPE_CHECKING, Any

from dbclient.options import use_iterdict_data_loader
from dbclient.query import Query

from libb import attrdict

if TYPE_CHECKING:
    from dbclient.connection import Client

logger = logging.getLogger(__name__)

__all__ = ['Transaction']


_local = threading.local()


class Transaction:
    """Context manager for running multiple statements in a transaction.

    Thread-local storage tracks which clients have an open transaction;
    nested transactions on the same client within one thread are not
    supported. A lost connection is never retried inside the transaction.

    Examples
        with Transaction(client) as tx:
            tx.execute('delete from t where id = ?', 5)
            tx.execute('update t set x = ? where id = ?', 'a', 6)
    """

    def __init__(self, client: 'Client') -> None:
        self.client = client

        if not hasattr(_local, 'active_transactions'):
            _local.active_transactions = {}

        if id(client) in _local.active_transactions or client.in_transaction:
            raise RuntimeError('Nested transactions are not supported')

    def __enter__(self):
        self.client.transaction_start()
        _local.active_transactions[id(self.client)] = True
        logger.debug(f'Started transaction for client {id(self.client)}')
        return self

    def __exit__(self, exc_type: type | None, value: Exception | None, traceback: Any | None) -> None:
        try:
            if exc_type is not None:
                if self.client.in_transaction:
                    self.client.transaction_rollback()
                logger.warning('Rolling back the current transaction')
            else:
                self.client.transaction_commit()
                logger.debug(f'Committed transaction for client {id(self.client)}')
        finally:
            _local.active_transactions.pop(id(self.client), None)
            logger.debug(f'Transaction cleanup complete for client {id(self.client)}')

    def query(self, sql: str, **options: Any) -> Query:
        return self.client.query(sql, **options)

    def _run(self, sql: str, args: tuple, options: dict[str, Any]) -> Query:
        query = self.client.query(sql, **options)
        query.parameters('', list(args))
        return query

    def execute(self, sql: str, *args: Any, **options: Any) -> int:
        """Execute a statement with inferred argument types, return affected rows."""
        with self._run(sql, args, options) as query:
            return query.execute().affected_rows()

    def select(self, sql: str, *args: Any, return_all: bool = False, **options: Any) -> Any:
        """Execute a query, return rows through the client's data loader.

        Returns the first set, or with `return_all` a list with every set
        that has columns.
        """
        with self._run(sql, args, options) as query:
            result = query.execute()
            if not return_all:
                return result.fetch_data()
            sets = []
            while result.next_set():
                if result.num_columns():
                    sets.append(result.fetch_data())
            return sets

    def select_column(self, sql: str, *args: Any, **options: Any) -> list[Any]:
        """Execute a query and return the first column as a list."""
        with self._run(sql, args, options) as query:
            return query.execute().fetch_field_all()

    @use_iterdict_data_loader
    def select_row(self, sql: str, *args: Any, **options: Any) -> attrdict:
        """Execute a query and return a single row

        Raises an assertion error if more than one row is returned.
        """
        data = self.select(sql, *args, **options)
        assert len(data) == 1, f'Expected one row, got {len(data)}'
        return attrdict(data[0])

    @use_iterdict_data_loader
    def select_row_or_none(self, sql: str, *args: Any, **options: Any) -> attrdict | None:
        """Execute a query and return a single row or None if no rows found"""
        data = self.select(sql, *args, **options)
        if not data:
            return None
        assert len(data) == 1, f'Expected one row, got {len(data)}'
        return attrdict(data[0])
