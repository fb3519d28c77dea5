"""
Command-line demonstration: contend for one record with many actors.

    inventory-lock 1 -1 -2 -2 +2 -1 --memory 5
    DATABASE_URL=postgres://... inventory-lock 1 -1 -2 -2 +2 -1

Prints an "entered" line and an outcome line per actor, then the final
quantity. Rejected and failed adjustments do not change the exit status.
"""
from __future__ import annotations

import argparse
import logging
import sys
import threading
from typing import Sequence, TextIO

from django.core.exceptions import ImproperlyConfigured

from .backends.memory import InMemoryRowLockBackend
from .backends.postgres import PostgresRowLockBackend
from .dispatcher import Dispatcher
from .exceptions import StorageFault
from .models import AdjustmentOutcome, AdjustmentRequest, Record
from .mutator import LockedMutator
from .settings import Settings, configure_django

logger = logging.getLogger(__name__)


class PrintObserver:
    """Writes one line per notification; lines from different actors never interleave."""

    def __init__(self, stream: TextIO) -> None:
        self.stream = stream
        self._lock = threading.Lock()

    def _write(self, line: str) -> None:
        with self._lock:
            print(line, file=self.stream, flush=True)

    def entered(self, request: AdjustmentRequest) -> None:
        self._write(f"{request.actor_id} entered: delta={request.delta:+d}")

    def completed(self, request: AdjustmentRequest, outcome: AdjustmentOutcome) -> None:
        self._write(outcome.describe())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="inventory-lock",
        description="Apply concurrent quantity adjustments to one inventory record.",
    )
    parser.add_argument("record_id", type=int, help="id of the record to adjust")
    parser.add_argument("deltas", type=int, nargs="+", metavar="DELTA", help="signed adjustment per actor")
    parser.add_argument(
        "--memory",
        type=int,
        metavar="QUANTITY",
        help="use an in-memory store seeded with this quantity instead of PostgreSQL",
    )
    parser.add_argument("--database-url", help="PostgreSQL URL (default: $DATABASE_URL)")
    parser.add_argument("--table", help="inventory table name (default: $INVENTORY_LOCK_TABLE or inventory_record)")
    parser.add_argument("--lock-timeout", type=float, help="seconds to wait for the row lock (default: forever)")
    parser.add_argument("--workers", type=int, help="thread pool size (default: one per delta)")
    parser.add_argument("-v", "--verbose", action="count", default=0)
    return parser


def main(argv: Sequence[str] | None = None, stdout: TextIO | None = None) -> int:
    args = build_parser().parse_args(argv)
    out = stdout or sys.stdout

    logging.basicConfig(
        level=logging.DEBUG if args.verbose > 1 else logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(threadName)s %(name)s %(levelname)s %(message)s",
    )

    try:
        settings = Settings.from_env()
    except ImproperlyConfigured as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    lock_timeout = args.lock_timeout if args.lock_timeout is not None else settings.lock_timeout
    on_actor_exit = None

    if args.memory is not None:
        backend = InMemoryRowLockBackend([Record(id=args.record_id, label="demo", quantity=args.memory)])
    else:
        try:
            configure_django(args.database_url or settings.database_url)
            backend = PostgresRowLockBackend(table=args.table or settings.table)
            backend.check()
        except (ImproperlyConfigured, StorageFault) as e:
            print(f"error: {e}", file=sys.stderr)
            return 1

        from django.db import connections

        on_actor_exit = connections.close_all

    dispatcher = Dispatcher(
        LockedMutator(backend, lock_timeout=lock_timeout),
        max_workers=args.workers,
        observer=PrintObserver(out),
        on_actor_exit=on_actor_exit,
    )
    dispatcher.run(args.record_id, args.deltas)

    try:
        record = backend.get(args.record_id)
    except StorageFault as e:
        logger.warning("could not read final quantity: %s", e)
        return 0

    if record is None:
        print(f"record {args.record_id} not found", file=out)
    else:
        print(f"final quantity: {record.quantity}", file=out)
    return 0
