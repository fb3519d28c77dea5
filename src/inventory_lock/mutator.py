from __future__ import annotations

import logging

from .api import StorageBackend, get_default_backend, transaction
from .exceptions import InventoryLockError
from .models import (
    INSUFFICIENT_QUANTITY,
    NOT_FOUND,
    AdjustmentOutcome,
    AdjustmentRequest,
    Applied,
    Failed,
    Rejected,
)

logger = logging.getLogger(__name__)


class LockedMutator:
    """
    Apply quantity adjustments under an exclusive row lock.

    Each `apply` call runs one transaction: lock the record, read it, validate
    the new quantity, write it and commit. Concurrent calls on the same record
    are serialized by the backend's lock; the lock is released by commit or
    rollback on every exit path.

    Parameters
    ----------
    backend : StorageBackend | None
        Storage collaborator. Defaults to the process-wide backend at the time
        `apply` is called.

    lock_timeout : float | None, default=None
        Maximum time (in seconds) to wait for the record lock.

        - None: wait until the lock is granted.
        - float: report ``Failed(cause=LockTimeout)`` if exceeded. Must be
          positive; anything else raises ValueError.
    """

    def __init__(
        self,
        backend: StorageBackend | None = None,
        *,
        lock_timeout: float | None = None,
    ) -> None:
        if lock_timeout is not None and lock_timeout <= 0:
            raise ValueError(f"lock_timeout must be positive or None, got {lock_timeout!r}")
        self.backend = backend
        self.lock_timeout = lock_timeout

    def apply(self, request: AdjustmentRequest) -> AdjustmentOutcome:
        """
        Adjust one record's quantity by ``request.delta``.

        Returns
        -------
        AdjustmentOutcome
            - Applied: the new quantity was committed.
            - Rejected("not_found"): no such record; nothing was written.
            - Rejected("insufficient_quantity"): the result would be negative;
              the transaction was rolled back.
            - Failed: the backend raised an `InventoryLockError`; the
              transaction was rolled back.

        Exceptions outside the `InventoryLockError` hierarchy roll back the
        transaction and propagate.
        """
        backend = self.backend or get_default_backend()

        try:
            with transaction(backend) as tx:
                record = tx.lock_for_update(request.record_id, timeout=self.lock_timeout)

                if record is None:
                    tx.rollback()
                    return Rejected(
                        actor_id=request.actor_id,
                        reason=NOT_FOUND,
                        current_quantity=None,
                        attempted_delta=request.delta,
                    )

                new_quantity = record.quantity + request.delta

                if new_quantity < 0:
                    tx.rollback()
                    return Rejected(
                        actor_id=request.actor_id,
                        reason=INSUFFICIENT_QUANTITY,
                        current_quantity=record.quantity,
                        attempted_delta=request.delta,
                    )

                tx.write_quantity(request.record_id, new_quantity)
        except InventoryLockError as e:
            logger.warning(
                "%s: adjustment of record %s by %s failed: %s",
                request.actor_id, request.record_id, request.delta, e,
            )
            return Failed(actor_id=request.actor_id, cause=e)

        return Applied(actor_id=request.actor_id, new_quantity=new_quantity)


def adjust(
    record_id: int,
    delta: int,
    *,
    backend: StorageBackend | None = None,
    lock_timeout: float | None = None,
) -> AdjustmentOutcome:
    """
    Shortcut for a single adjustment.

    >>> adjust(42, -1)
    Applied(actor_id='main', new_quantity=4)
    """
    mutator = LockedMutator(backend, lock_timeout=lock_timeout)
    return mutator.apply(AdjustmentRequest(record_id=record_id, delta=delta))
