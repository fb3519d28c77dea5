from .api import get_default_backend, set_default_backend, transaction
from .dispatcher import Dispatcher
from .exceptions import InventoryLockError, LockTimeout, StorageFault
from .models import AdjustmentRequest, Applied, Failed, Record, Rejected
from .mutator import LockedMutator, adjust

__all__ = [
    "adjust",
    "transaction",
    "get_default_backend",
    "set_default_backend",
    "LockedMutator",
    "Dispatcher",
    "AdjustmentRequest",
    "Applied",
    "Rejected",
    "Failed",
    "Record",
    "InventoryLockError",
    "StorageFault",
    "LockTimeout",
]
