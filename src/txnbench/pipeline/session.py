# txnbench/pipeline/session.py
"""Per-worker mutation buffer and transaction session."""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import List, Optional, Sequence

from txnbench.store.base import (
    StoreError,
    TransactionHandle,
    TransactionalStore,
    WriteRejected,
)
from txnbench.types import CommitResult, ErrorKind, Outcome, Row, WorkerStats

logger = logging.getLogger(__name__)

__all__ = ["MutationBuffer", "SessionState", "TransactionSession"]


class MutationBuffer:
    """Ordered rows waiting to be handed to a transaction."""

    def __init__(self, batch_size: int):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.batch_size = batch_size
        self.rows: List[Row] = []

    def __len__(self) -> int:
        return len(self.rows)

    def has_room(self) -> bool:
        return len(self.rows) < self.batch_size

    def append(self, row: Row) -> None:
        self.rows.append(row)

    def requeue(self, rows: Sequence[Row]) -> None:
        """Put rows back at the front so they go out with the next flush."""
        self.rows[:0] = rows

    def clear(self) -> None:
        self.rows.clear()


class SessionState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    COMMITTED = "committed"
    ABORTED = "aborted"


class TransactionSession:
    """
    One worker's view of the store: its buffer plus the open transaction.

    Rows move buffer -> in-flight (submitted to the open transaction) ->
    committed. When a transaction is aborted its in-flight rows go back to
    the front of the buffer (``requeue_aborted``) so the next transaction
    carries them; otherwise they are counted as dropped.
    """

    def __init__(
        self,
        store: TransactionalStore,
        batch_size: int,
        *,
        stats: Optional[WorkerStats] = None,
        overflow_policy: str = "flush",
        requeue_aborted: bool = True,
        cleanup_retries: int = 3,
        cleanup_retry_delay_s: float = 0.1,
    ):
        if cleanup_retries < 1:
            raise ValueError("cleanup_retries must be >= 1")
        self.store = store
        self.buffer = MutationBuffer(batch_size)
        self.stats = stats if stats is not None else WorkerStats()
        self.overflow_policy = overflow_policy
        self.requeue_aborted = requeue_aborted
        self.cleanup_retries = cleanup_retries
        self.cleanup_retry_delay_s = cleanup_retry_delay_s

        self.state = SessionState.CLOSED
        self.handle: Optional[TransactionHandle] = None
        self.in_flight: List[Row] = []

    @property
    def batch_size(self) -> int:
        return self.buffer.batch_size

    @property
    def opened_at(self) -> Optional[float]:
        return self.handle.opened_at if self.handle is not None else None

    @property
    def pending_rows(self) -> int:
        """Rows this worker still owes the store."""
        return len(self.buffer) + len(self.in_flight)

    # -- lifecycle ----------------------------------------------------------

    def start(self) -> None:
        """
        Begin a new transaction.

        Raises:
            StoreUnavailable: If the store cannot open a transaction
        """
        if self.state is SessionState.OPEN:
            logger.warning(
                "Worker %s: start() with transaction %s still open; aborting it",
                self.stats.worker_id, self.handle.txn_id,
            )
            self.abort()
        self.handle = self.store.begin_transaction()
        self.state = SessionState.OPEN

    def insert(self, row: Row) -> Outcome:
        """Buffer a row, flushing into the open transaction at batch_size."""
        self._require_open("insert")
        if self.buffer.has_room():
            self.buffer.append(row)
        elif self.overflow_policy == "drop":
            logger.warning(
                "Worker %s: limit of %d buffered mutations reached; row %s is ignored",
                self.stats.worker_id, self.batch_size, row.primary_key,
            )
            self.stats.rows_dropped += 1
        else:
            # Full buffer: hand it to the transaction first, then take the row
            error = self._flush()
            self.buffer.append(row)
            if error is not None:
                return Outcome.ERROR

        if self.buffer.has_room():
            return Outcome.BATCHED
        return Outcome.COMMITTED if self._flush() is None else Outcome.ERROR

    def flush(self) -> Outcome:
        """Hand the buffer to the open transaction now, full or not."""
        return Outcome.COMMITTED if self._flush() is None else Outcome.ERROR

    def commit(self) -> CommitResult:
        """Commit the open transaction and report how it went."""
        self._require_open("commit")
        self.stats.transactions += 1
        result = self._commit()
        if result.aborted:
            self.stats.aborted_count += 1
        return result

    def abort(self) -> None:
        """Close the open transaction without committing; safe to repeat."""
        if self.handle is None:
            return
        logger.info(
            "Worker %s: aborting transaction %s, %d buffered and %d in-flight rows",
            self.stats.worker_id, self.handle.txn_id,
            len(self.buffer), len(self.in_flight),
        )
        self._close_handle()
        self.state = SessionState.ABORTED
        self._release_in_flight(retry=True)

    def cleanup_flush(self) -> CommitResult:
        """
        Commit whatever is still buffered in one final transaction.

        Retries transient failures with exponential backoff. A final failure
        is logged and the rows are counted as dropped; nothing is raised.
        """
        if self.state is SessionState.OPEN:
            self.abort()
        if not self.buffer:
            return CommitResult()

        result = CommitResult()
        delay = self.cleanup_retry_delay_s
        for attempt in range(1, self.cleanup_retries + 1):
            rows = len(self.buffer)
            try:
                self.start()
            except StoreError as exc:
                result = CommitResult(error=ErrorKind.UNAVAILABLE, rows=rows, detail=str(exc))
            else:
                error = self._flush()
                if error is None:
                    result = self._commit()
                    if result.aborted:
                        self.stats.cleanup_aborts += 1
                else:
                    self.abort()
                    result = CommitResult(error=error, rows=rows)

            if result.ok:
                logger.info(
                    "Worker %s: cleanup flush committed %d rows (attempt %d)",
                    self.stats.worker_id, result.rows, attempt,
                )
                return result
            if result.error is ErrorKind.REJECTED or not self.buffer:
                break
            if attempt < self.cleanup_retries:
                logger.warning(
                    "Worker %s: cleanup flush failed (attempt %d/%d, %s); retrying in %.2fs",
                    self.stats.worker_id, attempt, self.cleanup_retries,
                    result.error.value, delay,
                )
                time.sleep(delay)
                delay *= 2

        lost = len(self.buffer)
        if lost:
            logger.error(
                "Worker %s: cleanup flush gave up; %d rows were not committed (%s)",
                self.stats.worker_id, lost, result.detail or result.error.value,
            )
            self.stats.rows_dropped += lost
            self.buffer.clear()
        return result

    # -- internals ----------------------------------------------------------

    def _commit(self) -> CommitResult:
        """Commit without touching the loop counters; always releases the handle."""
        self._require_open("commit")
        handle = self.handle
        rows = len(self.in_flight)
        try:
            self.store.commit(handle)
        except WriteRejected as exc:
            self.state = SessionState.ABORTED
            self.stats.error_count += 1
            logger.error(
                "Worker %s: commit of transaction %s rejected: %s",
                self.stats.worker_id, handle.txn_id, exc,
            )
            self._release_in_flight(retry=False)
            return CommitResult(error=ErrorKind.REJECTED, rows=rows, detail=str(exc))
        except StoreError as exc:
            self.state = SessionState.ABORTED
            self._release_in_flight(retry=True)
            if exc.retryable:
                logger.info(
                    "Worker %s: transaction %s aborted (%d in-flight rows): %s",
                    self.stats.worker_id, handle.txn_id, rows, exc,
                )
                return CommitResult(error=ErrorKind.ABORTED, rows=rows, detail=str(exc))
            self.stats.error_count += 1
            logger.error(
                "Worker %s: commit of transaction %s failed: %s",
                self.stats.worker_id, handle.txn_id, exc,
            )
            return CommitResult(error=ErrorKind.UNAVAILABLE, rows=rows, detail=str(exc))
        finally:
            self._close_handle()

        self.state = SessionState.COMMITTED
        self.stats.rows_committed += rows
        self.in_flight.clear()
        return CommitResult(rows=rows)

    def _flush(self) -> Optional[ErrorKind]:
        """Submit the whole buffer into the open transaction."""
        self._require_open("flush")
        rows = list(self.buffer.rows)
        try:
            self.store.submit_writes(self.handle, rows)
        except WriteRejected as exc:
            logger.error(
                "Worker %s: store rejected %d rows; dropping them: %s",
                self.stats.worker_id, len(rows), exc,
            )
            self.stats.error_count += 1
            self.stats.rows_dropped += len(rows)
            self.buffer.clear()
            return ErrorKind.REJECTED
        except StoreError as exc:
            logger.error(
                "Worker %s: submitting %d rows failed: %s",
                self.stats.worker_id, len(rows), exc,
            )
            self.stats.error_count += 1
            return ErrorKind.UNAVAILABLE

        self.in_flight.extend(rows)
        self.buffer.clear()
        return None

    def _release_in_flight(self, *, retry: bool) -> None:
        if not self.in_flight:
            return
        if retry and self.requeue_aborted:
            self.buffer.requeue(self.in_flight)
        else:
            self.stats.rows_dropped += len(self.in_flight)
        self.in_flight = []

    def _close_handle(self) -> None:
        handle, self.handle = self.handle, None
        if handle is None:
            return
        try:
            self.store.close(handle)
        except StoreError as exc:
            logger.warning(
                "Worker %s: error closing transaction %s: %s",
                self.stats.worker_id, handle.txn_id, exc,
            )

    def _require_open(self, op: str) -> None:
        if self.state is not SessionState.OPEN or self.handle is None:
            raise RuntimeError(f"{op}() requires an open transaction; call start() first")
