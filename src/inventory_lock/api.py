from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Protocol

from .backends.postgres import PostgresRowLockBackend
from .exceptions import StorageFault
from .models import Record

logger = logging.getLogger(__name__)


class StorageBackend(Protocol):
    """
    Protocol describing the storage collaborator.

    A backend owns the transactional row store. Handles returned by `begin`
    are opaque to callers and are closed by exactly one `commit` or
    `rollback`, each of which releases every lock the handle holds.

    ``lock_for_update`` blocks until the exclusive lock is granted, returning
    ``None`` when the record does not exist. With a timeout it raises
    `LockTimeout` instead of waiting forever.
    """
    def begin(self) -> Any: ...
    def lock_for_update(
        self, tx: Any, record_id: int, timeout: float | None = None
    ) -> Record | None: ...
    def write_quantity(self, tx: Any, record_id: int, new_quantity: int) -> None: ...
    def commit(self, tx: Any) -> None: ...
    def rollback(self, tx: Any) -> None: ...


# Default backend used when none is explicitly provided.
_default_backend: StorageBackend = PostgresRowLockBackend()


def get_default_backend() -> StorageBackend:
    return _default_backend


def set_default_backend(backend: StorageBackend) -> None:
    """Replace the process-wide backend used when callers pass none."""
    global _default_backend
    _default_backend = backend


class Transaction:
    """
    A backend handle bound to its backend, closed at most once.

    After `commit` or `rollback` every further call raises `StorageFault`,
    except repeated closing which is ignored.
    """

    def __init__(self, backend: StorageBackend) -> None:
        self.backend = backend
        self.handle = backend.begin()
        self.closed = False

    def _ensure_open(self) -> None:
        if self.closed:
            raise StorageFault("transaction is already closed")

    def lock_for_update(self, record_id: int, timeout: float | None = None) -> Record | None:
        self._ensure_open()
        return self.backend.lock_for_update(self.handle, record_id, timeout)

    def write_quantity(self, record_id: int, new_quantity: int) -> None:
        self._ensure_open()
        self.backend.write_quantity(self.handle, record_id, new_quantity)

    def commit(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.backend.commit(self.handle)
        logger.debug("transaction committed")

    def rollback(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.backend.rollback(self.handle)
        logger.debug("transaction rolled back")


@contextmanager
def transaction(backend: StorageBackend | None = None) -> Iterator[Transaction]:
    """
    Open a transaction on the given backend.

    The transaction commits when the block exits normally and rolls back when
    it raises. A block may close the transaction itself (for example rolling
    back after a failed validation), in which case nothing happens on exit.

    Parameters
    ----------
    backend : StorageBackend | None
        Optional backend override. Defaults to the process-wide backend.

    Example
    -------
    >>> with transaction(backend) as tx:
    ...     record = tx.lock_for_update(42)
    ...     tx.write_quantity(42, record.quantity - 1)

    Notes
    -----
    The lock taken by `lock_for_update` lives until the transaction closes,
    so it is released on every exit path.
    """
    tx = Transaction(backend or _default_backend)

    try:
        yield tx
    except BaseException:
        tx.rollback()
        raise

    tx.commit()
