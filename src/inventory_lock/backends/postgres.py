from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.db import DEFAULT_DB_ALIAS, Error, connections
from django.db.transaction import TransactionManagementError

from ..exceptions import LockTimeout, StorageFault
from ..models import Record

if TYPE_CHECKING:
    from django.db.backends.base.base import BaseDatabaseWrapper

logger = logging.getLogger(__name__)

# SQLSTATE raised by PostgreSQL when lock_timeout expires.
LOCK_NOT_AVAILABLE = "55P03"


@dataclass
class PostgresTransaction:
    connection: BaseDatabaseWrapper
    locked: set[int]


def _sqlstate(exc: BaseException) -> str | None:
    """Extract the SQLSTATE from a Django-wrapped psycopg2 or psycopg error."""
    cause = exc.__cause__
    return getattr(cause, "sqlstate", None) or getattr(cause, "pgcode", None)


class PostgresRowLockBackend:
    """
    PostgreSQL row lock backend.

    This backend provides mutual exclusion on inventory rows using
    ``SELECT ... FOR UPDATE`` on the current thread's Django connection.

    Key properties
    --------------
    - Transaction-scoped: the row lock is held until the transaction commits
      or rolls back. If the connection is closed (e.g. process crash),
      PostgreSQL rolls back and releases the lock.
    - Thread-bound: Django connections are per thread, so every actor running
      in its own thread gets its own transaction and contends for the row.
    - Native blocking: waiting for the lock happens inside PostgreSQL; there is
      no polling in the application.

    Timeout behavior
    ----------------
    - timeout=None:
        Blocks until the lock is granted.

    - timeout=float:
        Sets a transaction-local ``lock_timeout``. PostgreSQL aborts the wait
        with SQLSTATE 55P03, which is raised as `LockTimeout`.

    Table layout
    ------------
    A single table with columns ``id`` (primary key), ``label`` and
    ``quantity``. Provisioning it is left to migrations.
    """

    def __init__(self, table: str = "inventory_record", using: str = DEFAULT_DB_ALIAS) -> None:
        self.table = table
        self.using = using

    def check(self) -> None:
        """Open the connection for the current thread, raising `StorageFault` if unreachable."""
        try:
            connections[self.using].ensure_connection()
        except Error as e:
            raise StorageFault(f"database '{self.using}' is unreachable: {e}") from e

    def get(self, record_id: int) -> Record | None:
        """Return the committed state of a record without locking it."""
        connection = connections[self.using]
        table = connection.ops.quote_name(self.table)
        try:
            with connection.cursor() as cursor:
                cursor.execute(f"SELECT id, label, quantity FROM {table} WHERE id = %s;", [record_id])
                row = cursor.fetchone()
        except Error as e:
            raise StorageFault(f"could not read record {record_id}: {e}") from e
        return None if row is None else Record(id=row[0], label=row[1], quantity=row[2])

    def begin(self) -> PostgresTransaction:
        connection = connections[self.using]
        try:
            connection.set_autocommit(False)
        except (Error, TransactionManagementError) as e:
            raise StorageFault(f"could not begin transaction: {e}") from e
        return PostgresTransaction(connection=connection, locked=set())

    def lock_for_update(
        self, tx: PostgresTransaction, record_id: int, timeout: float | None = None
    ) -> Record | None:
        """
        Lock the row for ``record_id`` and return its current values.

        Returns
        -------
        Record | None
            The row as seen under the lock, or None if no such row exists.
        """
        table = tx.connection.ops.quote_name(self.table)
        logger.debug("lock requested for record %s", record_id)

        try:
            with tx.connection.cursor() as cursor:
                if timeout is not None:
                    cursor.execute(
                        "SELECT set_config('lock_timeout', %s, true);",
                        [f"{max(int(timeout * 1000), 1)}ms"],
                    )
                cursor.execute(
                    f"SELECT id, label, quantity FROM {table} WHERE id = %s FOR UPDATE;",
                    [record_id],
                )
                row = cursor.fetchone()
        except Error as e:
            if _sqlstate(e) == LOCK_NOT_AVAILABLE:
                raise LockTimeout(
                    f"Failed to lock record {record_id} within timeout={timeout}s"
                ) from e
            raise StorageFault(f"could not lock record {record_id}: {e}") from e

        if row is None:
            return None

        tx.locked.add(record_id)
        logger.debug("lock granted for record %s", record_id)
        return Record(id=row[0], label=row[1], quantity=row[2])

    def write_quantity(self, tx: PostgresTransaction, record_id: int, new_quantity: int) -> None:
        if record_id not in tx.locked:
            raise StorageFault(f"record {record_id} is not locked by this transaction")

        table = tx.connection.ops.quote_name(self.table)
        try:
            with tx.connection.cursor() as cursor:
                cursor.execute(
                    f"UPDATE {table} SET quantity = %s WHERE id = %s;",
                    [new_quantity, record_id],
                )
                updated = cursor.rowcount
        except Error as e:
            raise StorageFault(f"could not write record {record_id}: {e}") from e

        if updated != 1:
            raise StorageFault(f"write to record {record_id} affected {updated} rows")

    def commit(self, tx: PostgresTransaction) -> None:
        try:
            tx.connection.commit()
        except Error as e:
            # A failed COMMIT leaves the transaction aborted; roll back so the
            # connection is usable and the row lock is gone.
            self._close_quietly(tx)
            raise StorageFault(f"could not commit transaction: {e}") from e
        finally:
            tx.locked.clear()
        self._restore_autocommit(tx)

    def rollback(self, tx: PostgresTransaction) -> None:
        try:
            tx.connection.rollback()
        except Error as e:
            # Closing the connection makes PostgreSQL drop the transaction.
            self._discard_connection(tx)
            raise StorageFault(f"could not roll back transaction: {e}") from e
        finally:
            tx.locked.clear()
        self._restore_autocommit(tx)

    def _close_quietly(self, tx: PostgresTransaction) -> None:
        try:
            tx.connection.rollback()
            tx.connection.set_autocommit(True)
        except Error:
            logger.exception("rollback after failed commit did not succeed; closing connection")
            self._discard_connection(tx)

    def _restore_autocommit(self, tx: PostgresTransaction) -> None:
        """
        Put the connection back into autocommit mode after the transaction ended.

        The transaction is already closed at this point, so a failure here does
        not change its result. The connection is dropped instead; Django opens
        a fresh one, in autocommit mode, on next use.
        """
        try:
            tx.connection.set_autocommit(True)
        except Error:
            logger.warning("could not restore autocommit; closing connection", exc_info=True)
            self._discard_connection(tx)

    def _discard_connection(self, tx: PostgresTransaction) -> None:
        try:
            tx.connection.close()
        except Error:
            logger.warning("closing a broken connection failed", exc_info=True)
