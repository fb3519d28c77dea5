from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Union

from .exceptions import InventoryLockError

RejectReason = Literal["not_found", "insufficient_quantity"]

NOT_FOUND: RejectReason = "not_found"
INSUFFICIENT_QUANTITY: RejectReason = "insufficient_quantity"


@dataclass(frozen=True)
class Record:
    """
    A contended inventory row: ``{id, label, quantity}``.

    Instances are snapshots taken under a lock. They are never updated in
    place and must not be reused across transactions.
    """
    id: int
    label: str
    quantity: int


@dataclass(frozen=True)
class AdjustmentRequest:
    """
    One unit of work: add ``delta`` (possibly negative) to a record's quantity.
    """
    record_id: int
    delta: int
    actor_id: str = "main"


@dataclass(frozen=True)
class Applied:
    actor_id: str
    new_quantity: int

    def describe(self) -> str:
        return f"{self.actor_id} applied: quantity={self.new_quantity}"


@dataclass(frozen=True)
class Rejected:
    """
    The request was refused without mutating the record.

    ``current_quantity`` is ``None`` when the record does not exist.
    """
    actor_id: str
    reason: RejectReason
    current_quantity: int | None
    attempted_delta: int

    def describe(self) -> str:
        if self.reason == NOT_FOUND:
            return f"{self.actor_id} rejected ({self.reason}): delta={self.attempted_delta}"
        return (
            f"{self.actor_id} rejected ({self.reason}): "
            f"quantity={self.current_quantity} delta={self.attempted_delta}"
        )


@dataclass(frozen=True)
class Failed:
    actor_id: str
    cause: InventoryLockError

    def describe(self) -> str:
        return f"{self.actor_id} failed ({self.cause.code}): {self.cause}"


AdjustmentOutcome = Union[Applied, Rejected, Failed]
