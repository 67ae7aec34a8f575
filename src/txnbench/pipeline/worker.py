# txnbench/pipeline/worker.py
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from setproctitle import setthreadtitle

from txnbench.keys import KeySequence, RowFactory
from txnbench.store.base import StoreError, TransactionalStore
from txnbench.types import Outcome, WorkerStats
from .session import TransactionSession

logger = logging.getLogger(__name__)

__all__ = ["Worker"]


class Worker:
    """
    Drives one thread's share of the workload against the store.

    ``per-op`` mode opens a transaction per generated row and commits it;
    the buffer only reaches the store when it fills up (or at cleanup).
    ``batch`` mode fills the buffer to ``batch_size`` inside each
    transaction, carrying aborted rows into the next one.

    Stats are written only by the thread running ``run``.
    """

    def __init__(
        self,
        worker_id: int,
        store: TransactionalStore,
        key_sequence: KeySequence,
        ops_count: int,
        *,
        batch_size: int = 1,
        row_factory: Optional[RowFactory] = None,
        mode: str = "per-op",
        overflow_policy: str = "flush",
        requeue_aborted: bool = True,
        cleanup_retries: int = 3,
        cleanup_retry_delay_s: float = 0.1,
        max_batch_failures: int = 100,
        stop_event: Optional[threading.Event] = None,
        on_op: Optional[Callable[[int], None]] = None,
    ):
        self.worker_id = worker_id
        self.store = store
        self.key_sequence = key_sequence
        self.ops_count = ops_count
        self.row_factory = row_factory or RowFactory()
        self.mode = mode
        self.max_batch_failures = max_batch_failures
        self.stop_event = stop_event or threading.Event()
        self.on_op = on_op

        self.stats = WorkerStats(worker_id=worker_id)
        self.session = TransactionSession(
            store,
            batch_size,
            stats=self.stats,
            overflow_policy=overflow_policy,
            requeue_aborted=requeue_aborted,
            cleanup_retries=cleanup_retries,
            cleanup_retry_delay_s=cleanup_retry_delay_s,
        )

    def init(self) -> None:
        """
        Name the thread and check that the store answers.

        Raises:
            StoreError: If the store cannot be reached
        """
        setthreadtitle(f"txb:worker[{self.worker_id:03d}]")
        self.store.ping()

    def run(self) -> WorkerStats:
        """Run the whole budget, then flush leftovers. Returns the stats."""
        try:
            self.init()
        except StoreError as exc:
            logger.error("Worker %s: initialization failed: %s", self.worker_id, exc)
            return self.stats

        logger.info(
            "Worker %s: starting %s ops (%s mode, batch size %d)",
            self.worker_id, f"{self.ops_count:,}", self.mode, self.session.batch_size,
        )
        try:
            if self.mode == "batch":
                self._run_batched()
            else:
                self._run_per_op()
        finally:
            self.session.cleanup_flush()

        logger.info(
            "Worker %s: completed %d ops, %d rows committed, %d aborted transactions",
            self.worker_id, self.stats.ops_done,
            self.stats.rows_committed, self.stats.aborted_count,
        )
        return self.stats

    def _stopped(self) -> bool:
        if self.stop_event.is_set():
            logger.info(
                "Worker %s: stop requested after %d/%d ops",
                self.worker_id, self.stats.ops_done, self.ops_count,
            )
            return True
        return False

    def _op_done(self, n: int = 1) -> None:
        self.stats.ops_done += n
        if self.on_op is not None:
            self.on_op(n)

    def _next_row(self):
        return self.row_factory.build(self.key_sequence.next_value())

    def _run_per_op(self) -> None:
        session = self.session
        while self.stats.ops_done < self.ops_count and not self._stopped():
            try:
                session.start()
            except StoreError as exc:
                logger.error("Worker %s: cannot start transaction: %s", self.worker_id, exc)
                self.stats.error_count += 1
                self._op_done()
                continue

            outcome = session.insert(self._next_row())
            if outcome in (Outcome.BATCHED, Outcome.COMMITTED):
                session.commit()
            else:
                logger.info("Worker %s: insert returned %s; aborting", self.worker_id, outcome.value)
                session.abort()
            # Counted whether or not the commit landed
            self._op_done()

    def _run_batched(self) -> None:
        session = self.session
        failures = 0
        while self.stats.ops_done < self.ops_count and not self._stopped():
            try:
                session.start()
            except StoreError as exc:
                logger.error("Worker %s: cannot start transaction: %s", self.worker_id, exc)
                self.stats.error_count += 1
                # Nothing generated yet; count the attempt so the loop stays bounded
                self._op_done()
                continue

            # Top up rows carried over from an aborted attempt
            outcome = Outcome.BATCHED
            while (
                outcome is Outcome.BATCHED
                and session.buffer.has_room()
                and self.stats.ops_done < self.ops_count
            ):
                outcome = session.insert(self._next_row())
                self._op_done()

            if outcome is Outcome.BATCHED:
                # Carry-over already full, or budget spent mid-batch
                outcome = session.flush()
            if outcome is Outcome.COMMITTED and session.commit().ok:
                failures = 0
                continue
            if outcome is not Outcome.COMMITTED:
                session.abort()
            failures += 1
            if self.max_batch_failures and failures >= self.max_batch_failures:
                logger.error(
                    "Worker %s: %d consecutive failed batch transactions; giving up with %d rows pending",
                    self.worker_id, failures, session.pending_rows,
                )
                break
