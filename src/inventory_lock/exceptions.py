"""
Exception hierarchy for inventory_lock.

Only storage-level failures are exceptions. Business rejections (record not
found, insufficient quantity) are returned as `Rejected` outcomes by
`LockedMutator.apply` and are never raised.

Catch `InventoryLockError` to handle every failure raised by a backend, or
`LockTimeout` when a bounded lock wait needs separate handling.
"""


class InventoryLockError(Exception):
    """
    Base exception for all inventory_lock errors.

    Example
    -------
    >>> try:
    ...     with transaction(backend) as tx:
    ...         tx.lock_for_update(42)
    ... except InventoryLockError:
    ...     handle_failure()
    """

    #: Error code for programmatic handling.
    code: str = "inventory_lock_error"

    def __init__(self, message: str | None = None) -> None:
        if message is None:
            message = "An unspecified inventory_lock error occurred."
        super().__init__(message)


class StorageFault(InventoryLockError):
    """
    Raised when the underlying datastore fails.

    Common causes
    -------------
    - The database connection dropped or could not be opened
    - A write statement affected no row
    - A transaction handle was used after commit or rollback

    Backends chain the original driver error as ``__cause__``.
    """

    code: str = "storage_fault"


class LockTimeout(StorageFault):
    """
    Raised when an exclusive record lock is not granted within the timeout.

    This typically indicates that another actor holds the lock for longer
    than the caller is prepared to wait.
    """

    code: str = "lock_timeout"
