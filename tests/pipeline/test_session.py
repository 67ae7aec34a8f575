# tests/pipeline/test_session.py
from __future__ import annotations

import logging

import pytest

import txnbench.pipeline.session as session_mod
from txnbench.keys import RowFactory
from txnbench.pipeline.session import SessionState, TransactionSession
from txnbench.store.base import StoreError, StoreUnavailable, WriteRejected
from txnbench.store.memory import MemoryStore
from txnbench.types import ErrorKind, Outcome


# --- helpers -----------------------------------------------------------------

ROWS = RowFactory()


def _row(i: int):
    return ROWS.build(i)


class FlakySubmitStore(MemoryStore):
    """Fails the first ``failures`` submissions with ``exc_type``."""

    def __init__(self, failures: int = 1, exc_type=StoreUnavailable, **kwargs):
        super().__init__(**kwargs)
        self.failures = failures
        self.exc_type = exc_type
        self.submitted: list[list[str]] = []

    def submit_writes(self, handle, rows):
        if self.failures > 0:
            self.failures -= 1
            raise self.exc_type("submit failed")
        self.submitted.append([r.primary_key for r in rows])
        super().submit_writes(handle, rows)


class UnavailableCommitStore(MemoryStore):
    def commit(self, handle):
        raise StoreUnavailable("connection reset")


class RetryLaterError(StoreError):
    retryable = True


class RetryLaterCommitStore(MemoryStore):
    def commit(self, handle):
        self.close(handle)
        raise RetryLaterError("session expired")


# --- insert ------------------------------------------------------------------


@pytest.mark.parametrize("batch_size", [1, 2, 5])
def test_bth_insert_commits_and_earlier_ones_batch(batch_size):
    store = MemoryStore()
    s = TransactionSession(store, batch_size)
    s.start()

    outcomes = [s.insert(_row(i)) for i in range(batch_size)]

    assert outcomes == [Outcome.BATCHED] * (batch_size - 1) + [Outcome.COMMITTED]
    assert len(s.buffer) == 0
    assert len(s.in_flight) == batch_size

    result = s.commit()
    assert result.ok and result.rows == batch_size
    assert s.state is SessionState.COMMITTED
    assert s.stats.rows_committed == batch_size
    assert len(store) == batch_size


def test_batched_insert_makes_no_store_call():
    store = FlakySubmitStore(failures=0)
    s = TransactionSession(store, 3)
    s.start()
    assert s.insert(_row(0)) is Outcome.BATCHED
    assert store.submitted == []


@pytest.mark.parametrize("retries", [0, -1])
def test_cleanup_retries_must_be_positive(retries):
    with pytest.raises(ValueError, match="cleanup_retries"):
        TransactionSession(MemoryStore(), 2, cleanup_retries=retries)


def test_insert_before_start_raises():
    s = TransactionSession(MemoryStore(), 2)
    with pytest.raises(RuntimeError):
        s.insert(_row(0))


def test_commit_before_start_raises():
    s = TransactionSession(MemoryStore(), 2)
    with pytest.raises(RuntimeError):
        s.commit()


def test_submit_failure_returns_error_and_keeps_buffer(caplog):
    store = FlakySubmitStore(failures=1)
    s = TransactionSession(store, 1)
    s.start()
    caplog.set_level(logging.ERROR)

    assert s.insert(_row(0)) is Outcome.ERROR
    assert [r.primary_key for r in s.buffer.rows] == ["user0"]
    assert s.stats.error_count == 1
    assert any("submitting 1 rows failed" in r.getMessage() for r in caplog.records)


def test_rejected_rows_are_dropped_not_retried():
    store = FlakySubmitStore(failures=1, exc_type=WriteRejected)
    s = TransactionSession(store, 1)
    s.start()

    assert s.insert(_row(0)) is Outcome.ERROR
    assert len(s.buffer) == 0
    assert s.stats.rows_dropped == 1
    assert s.stats.error_count == 1


# --- overflow ----------------------------------------------------------------


def test_overflow_drop_policy_rejects_row_with_warning(caplog):
    store = FlakySubmitStore(failures=1)
    s = TransactionSession(store, 1, overflow_policy="drop")
    s.start()
    caplog.set_level(logging.WARNING)

    assert s.insert(_row(0)) is Outcome.ERROR  # flush failed, buffer stays full
    assert s.insert(_row(1)) is Outcome.COMMITTED

    assert [r.primary_key for r in s.in_flight] == ["user0"]
    assert s.stats.rows_dropped == 1
    assert any("user1 is ignored" in r.getMessage() for r in caplog.records)


def test_overflow_flush_policy_defers_row_to_next_flush():
    store = FlakySubmitStore(failures=1)
    s = TransactionSession(store, 1)
    s.start()

    assert s.insert(_row(0)) is Outcome.ERROR
    assert s.insert(_row(1)) is Outcome.COMMITTED

    # full buffer flushed first, then the new row
    assert store.submitted == [["user0"], ["user1"]]
    assert s.stats.rows_dropped == 0
    assert s.commit().ok
    assert sorted(store.keys()) == ["user0", "user1"]


def test_overflow_flush_failure_still_keeps_new_row():
    store = FlakySubmitStore(failures=2)
    s = TransactionSession(store, 1)
    s.start()

    assert s.insert(_row(0)) is Outcome.ERROR
    assert s.insert(_row(1)) is Outcome.ERROR
    assert [r.primary_key for r in s.buffer.rows] == ["user0", "user1"]


# --- commit / abort ----------------------------------------------------------


def test_aborted_commit_requeues_in_flight_rows():
    store = MemoryStore(abort_probability=1.0)
    s = TransactionSession(store, 2)
    s.start()
    s.insert(_row(0))
    s.insert(_row(1))

    result = s.commit()

    assert result.aborted and result.error is ErrorKind.ABORTED
    assert result.rows == 2
    assert s.state is SessionState.ABORTED
    assert s.stats.aborted_count == 1
    assert s.stats.transactions == 1
    assert [r.primary_key for r in s.buffer.rows] == ["user0", "user1"]
    assert s.in_flight == []
    assert store.open_transactions == 0


def test_aborted_commit_without_requeue_counts_dropped_rows():
    store = MemoryStore(abort_probability=1.0)
    s = TransactionSession(store, 2, requeue_aborted=False)
    s.start()
    s.insert(_row(0))
    s.insert(_row(1))

    assert s.commit().aborted
    assert len(s.buffer) == 0
    assert s.stats.rows_dropped == 2


def test_unavailable_commit_is_reported_as_fatal_kind():
    store = UnavailableCommitStore()
    s = TransactionSession(store, 1)
    s.start()
    s.insert(_row(0))

    result = s.commit()
    assert result.error is ErrorKind.UNAVAILABLE
    assert s.stats.error_count == 1
    assert s.stats.aborted_count == 0
    assert len(s.buffer) == 1


def test_retryable_store_error_is_treated_as_abort():
    store = RetryLaterCommitStore()
    s = TransactionSession(store, 1)
    s.start()
    s.insert(_row(0))

    result = s.commit()

    assert result.aborted
    assert s.stats.aborted_count == 1
    assert s.stats.error_count == 0
    assert [r.primary_key for r in s.buffer.rows] == ["user0"]


def test_abort_is_idempotent_and_keeps_buffer():
    store = MemoryStore()
    s = TransactionSession(store, 3)
    s.abort()  # nothing open yet

    s.start()
    s.insert(_row(0))
    s.insert(_row(1))
    s.abort()
    s.abort()

    assert s.state is SessionState.ABORTED
    assert [r.primary_key for r in s.buffer.rows] == ["user0", "user1"]
    assert store.open_transactions == 0


def test_abort_returns_submitted_rows_to_buffer():
    store = MemoryStore()
    s = TransactionSession(store, 1)
    s.start()
    assert s.insert(_row(0)) is Outcome.COMMITTED
    s.abort()

    assert [r.primary_key for r in s.buffer.rows] == ["user0"]
    assert len(store) == 0


def test_start_while_open_closes_previous_transaction(caplog):
    store = MemoryStore()
    s = TransactionSession(store, 2)
    caplog.set_level(logging.WARNING)

    s.start()
    first = s.handle
    s.start()

    assert first.closed
    assert s.handle is not first
    assert store.open_transactions == 1
    assert any("still open" in r.getMessage() for r in caplog.records)


# --- cleanup flush -----------------------------------------------------------


def test_cleanup_flush_is_noop_when_buffer_empty():
    store = MemoryStore()
    s = TransactionSession(store, 2)
    result = s.cleanup_flush()
    assert result.ok and result.rows == 0
    assert store.commits == 0


def test_cleanup_flush_commits_partial_batch():
    store = MemoryStore()
    s = TransactionSession(store, 3)
    s.start()
    assert s.insert(_row(0)) is Outcome.BATCHED
    assert s.commit().ok  # nothing in flight yet

    result = s.cleanup_flush()

    assert result.ok and result.rows == 1
    assert store.get("user0") == {"field0": "1000"}
    assert s.stats.rows_committed == 1
    assert len(s.buffer) == 0


def test_cleanup_flush_aborts_open_transaction_first():
    store = MemoryStore()
    s = TransactionSession(store, 1)
    s.start()
    s.insert(_row(0))  # submitted, never committed

    assert s.cleanup_flush().ok
    assert list(store.keys()) == ["user0"]
    assert store.open_transactions == 0


def test_cleanup_flush_retries_with_backoff_then_gives_up(monkeypatch, caplog):
    sleeps: list[float] = []
    monkeypatch.setattr(session_mod.time, "sleep", lambda s: sleeps.append(s))

    store = MemoryStore(abort_probability=1.0)
    s = TransactionSession(store, 2, cleanup_retries=3, cleanup_retry_delay_s=0.5)
    s.start()
    s.insert(_row(0))
    s.abort()
    caplog.set_level(logging.WARNING)

    result = s.cleanup_flush()

    assert result.aborted
    assert sleeps == [0.5, 1.0]
    # shutdown aborts are kept apart from the loop's abort count
    assert s.stats.cleanup_aborts == 3
    assert s.stats.aborted_count == 0
    assert s.stats.transactions == 0
    assert s.stats.rows_dropped == 1
    assert len(s.buffer) == 0
    assert any("gave up" in r.getMessage() for r in caplog.records)


def test_cleanup_flush_recovers_after_transient_failure(monkeypatch):
    monkeypatch.setattr(session_mod.time, "sleep", lambda s: None)

    store = FlakySubmitStore(failures=1)
    s = TransactionSession(store, 5, cleanup_retries=2)
    s.start()
    s.insert(_row(0))
    s.insert(_row(1))
    s.abort()

    result = s.cleanup_flush()

    assert result.ok and result.rows == 2
    assert sorted(store.keys()) == ["user0", "user1"]
    assert s.stats.rows_dropped == 0
