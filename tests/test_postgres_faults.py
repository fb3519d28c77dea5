"""
Fault handling of the PostgreSQL backend, without a database.

A fake connection stands in for Django's per-thread connection so that
driver errors can be raised at chosen points.
"""

import pytest
from django.db import InterfaceError, OperationalError

import inventory_lock.backends.postgres as pg
from inventory_lock import Dispatcher, LockedMutator, adjust
from inventory_lock.backends.postgres import PostgresRowLockBackend
from inventory_lock.models import Applied, Failed


class DummyOps:
    def quote_name(self, name):
        return f'"{name}"'


class DummyCursor:
    def __init__(self, connection):
        self.connection = connection
        self.rowcount = 0
        self._row = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        self.connection.statements.append(sql)
        if sql.startswith("SELECT id, label, quantity"):
            self._row = (params[0], "widget", self.connection.quantity)
        elif sql.startswith("UPDATE"):
            self.connection.staged = params[0]
            self.rowcount = 1

    def fetchone(self):
        return self._row


class DummyConnection:
    def __init__(self, quantity=5):
        self.ops = DummyOps()
        self.quantity = quantity
        self.staged = None
        self.autocommit = True
        self.statements = []
        self.calls = []

    def set_autocommit(self, value):
        self.calls.append(("set_autocommit", value))
        self.autocommit = value

    def cursor(self):
        return DummyCursor(self)

    def commit(self):
        self.calls.append("commit")
        if self.staged is not None:
            self.quantity = self.staged
            self.staged = None

    def rollback(self):
        self.calls.append("rollback")
        self.staged = None

    def close(self):
        self.calls.append("close")


class ClosedConnection(DummyConnection):
    def cursor(self):
        raise InterfaceError("connection already closed")


class StuckAutocommitConnection(DummyConnection):
    def set_autocommit(self, value):
        if value:
            raise OperationalError("server closed the connection unexpectedly")
        super().set_autocommit(value)


def _use(monkeypatch, connection):
    monkeypatch.setattr(pg, "connections", {"default": connection})
    return PostgresRowLockBackend()


def test_interface_error_becomes_failed_outcome(monkeypatch):
    connection = ClosedConnection()
    backend = _use(monkeypatch, connection)

    outcome = adjust(1, -1, backend=backend)

    assert isinstance(outcome, Failed)
    assert outcome.cause.code == "storage_fault"
    assert isinstance(outcome.cause.__cause__, InterfaceError)
    assert "rollback" in connection.calls


def test_interface_error_does_not_stop_the_dispatcher(monkeypatch):
    backend = _use(monkeypatch, ClosedConnection())

    outcomes = Dispatcher(LockedMutator(backend)).run(1, [-1, -1])

    assert len(outcomes) == 2
    assert all(isinstance(o, Failed) for o in outcomes)


def test_begin_on_closed_connection_is_a_storage_fault(monkeypatch):
    class RefusingConnection(DummyConnection):
        def set_autocommit(self, value):
            raise InterfaceError("connection already closed")

    backend = _use(monkeypatch, RefusingConnection())

    outcome = adjust(1, -1, backend=backend)

    assert isinstance(outcome, Failed)
    assert isinstance(outcome.cause.__cause__, InterfaceError)


def test_committed_write_is_applied_even_if_autocommit_restore_fails(monkeypatch):
    connection = StuckAutocommitConnection(quantity=5)
    backend = _use(monkeypatch, connection)

    outcome = adjust(1, -2, backend=backend)

    assert outcome == Applied(actor_id="main", new_quantity=3)
    assert connection.quantity == 3
    assert connection.calls[-1] == "close"


def test_rejection_survives_autocommit_restore_failure(monkeypatch):
    connection = StuckAutocommitConnection(quantity=1)
    backend = _use(monkeypatch, connection)

    outcome = adjust(1, -2, backend=backend)

    assert outcome.reason == "insufficient_quantity"
    assert connection.quantity == 1
    assert "close" in connection.calls


def test_get_on_closed_connection_is_a_storage_fault(monkeypatch):
    backend = _use(monkeypatch, ClosedConnection())

    with pytest.raises(pg.StorageFault):
        backend.get(1)
