import threading

import pytest

from inventory_lock import LockedMutator, adjust
from inventory_lock.api import transaction
from inventory_lock.backends.memory import InMemoryRowLockBackend
from inventory_lock.exceptions import LockTimeout, StorageFault
from inventory_lock.models import AdjustmentRequest, Applied, Failed, Record, Rejected


@pytest.fixture
def backend():
    return InMemoryRowLockBackend([Record(id=1, label="widget", quantity=5)])


def test_applied_commits_new_quantity(backend):
    outcome = LockedMutator(backend).apply(AdjustmentRequest(record_id=1, delta=-2, actor_id="a"))

    assert outcome == Applied(actor_id="a", new_quantity=3)
    assert backend.get(1).quantity == 3
    assert backend.get(1).label == "widget"


def test_increment(backend):
    assert adjust(1, 4, backend=backend) == Applied(actor_id="main", new_quantity=9)


def test_draining_to_zero_is_allowed(backend):
    outcome = adjust(1, -5, backend=backend)

    assert outcome == Applied(actor_id="main", new_quantity=0)
    assert backend.get(1).quantity == 0


def test_insufficient_quantity_is_rejected_and_rolled_back(backend):
    outcome = adjust(1, -6, backend=backend)

    assert outcome == Rejected(
        actor_id="main",
        reason="insufficient_quantity",
        current_quantity=5,
        attempted_delta=-6,
    )
    assert backend.get(1).quantity == 5


def test_rejection_is_repeatable(backend):
    outcomes = [adjust(1, -10, backend=backend) for _ in range(5)]

    assert all(o.reason == "insufficient_quantity" for o in outcomes)
    assert backend.get(1).quantity == 5
    # The lock was released every time.
    assert adjust(1, -1, backend=backend) == Applied(actor_id="main", new_quantity=4)


def test_missing_record_is_rejected(backend):
    outcome = adjust(99, -1, backend=backend)

    assert outcome == Rejected(
        actor_id="main", reason="not_found", current_quantity=None, attempted_delta=-1
    )
    assert backend.get(99) is None
    assert backend.get(1).quantity == 5


def test_storage_fault_during_write_fails_and_keeps_quantity(backend):
    backend.inject_write_fault(1)

    outcome = adjust(1, -1, backend=backend)

    assert isinstance(outcome, Failed)
    assert isinstance(outcome.cause, StorageFault)
    assert outcome.cause.code == "storage_fault"
    assert backend.get(1).quantity == 5
    # The fault was one-shot and the lock was not leaked.
    assert adjust(1, -1, backend=backend) == Applied(actor_id="main", new_quantity=4)


def test_lock_timeout_fails_without_touching_record(backend):
    held = threading.Event()
    release = threading.Event()

    def holder():
        with transaction(backend) as tx:
            tx.lock_for_update(1)
            held.set()
            release.wait(timeout=2.0)

    t = threading.Thread(target=holder, name="lock-holder")
    t.start()
    try:
        assert held.wait(timeout=2.0)
        outcome = adjust(1, -1, backend=backend, lock_timeout=0.1)
    finally:
        release.set()
        t.join(timeout=5.0)

    assert isinstance(outcome, Failed)
    assert isinstance(outcome.cause, LockTimeout)
    assert backend.get(1).quantity == 5


class ExplodingBackend(InMemoryRowLockBackend):
    def write_quantity(self, tx, record_id, new_quantity):
        raise ZeroDivisionError("bug")


def test_unexpected_error_rolls_back_and_propagates():
    be = ExplodingBackend([Record(id=1, label="widget", quantity=5)])

    with pytest.raises(ZeroDivisionError):
        adjust(1, -1, backend=be)

    # Rolled back: the lock is free again.
    with transaction(be) as tx:
        assert tx.lock_for_update(1, timeout=0.5).quantity == 5


@pytest.mark.parametrize("value", [0, -1, -0.5])
def test_non_positive_lock_timeout_is_rejected(backend, value):
    with pytest.raises(ValueError):
        LockedMutator(backend, lock_timeout=value)
