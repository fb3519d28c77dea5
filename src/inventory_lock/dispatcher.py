from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Protocol, Sequence

from .models import AdjustmentOutcome, AdjustmentRequest
from .mutator import LockedMutator

logger = logging.getLogger(__name__)


class DispatchObserver(Protocol):
    """
    Receives diagnostic notifications from dispatcher actors.

    Called from worker threads; implementations must be thread-safe.
    """
    def entered(self, request: AdjustmentRequest) -> None: ...
    def completed(self, request: AdjustmentRequest, outcome: AdjustmentOutcome) -> None: ...


class LoggingObserver:
    def entered(self, request: AdjustmentRequest) -> None:
        logger.info("%s entered: record=%s delta=%s", request.actor_id, request.record_id, request.delta)

    def completed(self, request: AdjustmentRequest, outcome: AdjustmentOutcome) -> None:
        logger.info("%s", outcome.describe())


class Dispatcher:
    """
    Run many adjustments against one record concurrently.

    Each delta becomes its own actor: a task on a thread pool that calls
    `LockedMutator.apply`. The dispatcher does not order or serialize actors;
    the record lock is the only thing that does.

    Parameters
    ----------
    mutator : LockedMutator
        Shared by all actors. It holds no per-call state.

    max_workers : int | None
        Pool size. Defaults to one thread per delta so that every actor
        contends for the lock at once.

    observer : DispatchObserver | None
        Receives "entered" and "completed" notifications. Defaults to logging.

    on_actor_exit : Callable[[], None] | None
        Called in the worker thread after each actor, e.g. to close the
        thread's database connection.
    """

    def __init__(
        self,
        mutator: LockedMutator,
        *,
        max_workers: int | None = None,
        observer: DispatchObserver | None = None,
        on_actor_exit: Callable[[], None] | None = None,
    ) -> None:
        self.mutator = mutator
        self.max_workers = max_workers
        self.observer = observer or LoggingObserver()
        self.on_actor_exit = on_actor_exit

    def run(self, record_id: int, deltas: Sequence[int]) -> list[AdjustmentOutcome]:
        """
        Launch one actor per delta and wait for all of them.

        Returns
        -------
        list[AdjustmentOutcome]
            One outcome per delta, in completion order. Actor ``i`` (1-based,
            following ``deltas``) is named ``actor-i``.
        """
        requests = [
            AdjustmentRequest(record_id=record_id, delta=delta, actor_id=f"actor-{i}")
            for i, delta in enumerate(deltas, start=1)
        ]
        if not requests:
            return []

        workers = self.max_workers or len(requests)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="inventory-actor") as pool:
            futures = [pool.submit(self._run_actor, request) for request in requests]
            return [future.result() for future in as_completed(futures)]

    def _run_actor(self, request: AdjustmentRequest) -> AdjustmentOutcome:
        try:
            self.observer.entered(request)
            outcome = self.mutator.apply(request)
            self.observer.completed(request, outcome)
            return outcome
        finally:
            if self.on_actor_exit is not None:
                self.on_actor_exit()
