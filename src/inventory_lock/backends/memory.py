from __future__ import annotations

import itertools
import logging
import threading
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Iterable

from ..exceptions import LockTimeout, StorageFault
from ..models import Record

logger = logging.getLogger(__name__)


@dataclass
class MemoryTransaction:
    id: int
    locked: set[int] = field(default_factory=set)
    staged: dict[int, int] = field(default_factory=dict)
    closed: bool = False


class InMemoryRowLockBackend:
    """
    In-memory backend emulating exclusive, blocking row locks.

    Every record has at most one owning transaction. Waiters park on a
    shared condition variable and are woken when any lock is released, so
    the grant order is whatever the thread scheduler produces.

    Writes are staged on the transaction and only become visible on commit;
    rollback discards them. Both release the transaction's locks.

    Intended for tests and demos within a single process.
    """

    def __init__(self, records: Iterable[Record] = ()) -> None:
        self._cond = threading.Condition()
        self._records: dict[int, Record] = {r.id: r for r in records}
        self._owners: dict[int, int] = {}
        self._faults: Counter[int] = Counter()
        self._ids = itertools.count(1)

    def put(self, record: Record) -> None:
        """Insert or replace a committed record."""
        with self._cond:
            self._records[record.id] = record

    def get(self, record_id: int) -> Record | None:
        """Return the committed state of a record, ignoring locks."""
        with self._cond:
            return self._records.get(record_id)

    def inject_write_fault(self, record_id: int, times: int = 1) -> None:
        """Make the next ``times`` writes to ``record_id`` raise `StorageFault`."""
        with self._cond:
            self._faults[record_id] += times

    def begin(self) -> MemoryTransaction:
        return MemoryTransaction(id=next(self._ids))

    def lock_for_update(
        self, tx: MemoryTransaction, record_id: int, timeout: float | None = None
    ) -> Record | None:
        with self._cond:
            self._check_open(tx)
            if record_id not in self._records:
                return None

            logger.debug("tx %s waiting for record %s", tx.id, record_id)
            granted = self._cond.wait_for(
                lambda: self._owners.get(record_id, tx.id) == tx.id,
                timeout=timeout,
            )
            if not granted:
                raise LockTimeout(
                    f"Failed to lock record {record_id} within timeout={timeout}s"
                )

            self._owners[record_id] = tx.id
            tx.locked.add(record_id)
            logger.debug("tx %s holds record %s", tx.id, record_id)

            record = self._records[record_id]
            if record_id in tx.staged:
                record = replace(record, quantity=tx.staged[record_id])
            return record

    def write_quantity(self, tx: MemoryTransaction, record_id: int, new_quantity: int) -> None:
        with self._cond:
            self._check_open(tx)
            if record_id not in tx.locked:
                raise StorageFault(f"record {record_id} is not locked by this transaction")
            if self._faults[record_id] > 0:
                self._faults[record_id] -= 1
                raise StorageFault(f"simulated I/O error writing record {record_id}")
            tx.staged[record_id] = new_quantity

    def commit(self, tx: MemoryTransaction) -> None:
        with self._cond:
            self._check_open(tx)
            for record_id, quantity in tx.staged.items():
                self._records[record_id] = replace(self._records[record_id], quantity=quantity)
            self._release(tx)

    def rollback(self, tx: MemoryTransaction) -> None:
        with self._cond:
            self._check_open(tx)
            self._release(tx)

    def _check_open(self, tx: MemoryTransaction) -> None:
        if tx.closed:
            raise StorageFault(f"transaction {tx.id} is already closed")

    def _release(self, tx: MemoryTransaction) -> None:
        # Caller holds self._cond.
        for record_id in tx.locked:
            del self._owners[record_id]
        tx.locked.clear()
        tx.staged.clear()
        tx.closed = True
        self._cond.notify_all()
