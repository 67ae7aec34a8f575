# tests/test_keys.py
from __future__ import annotations

import dataclasses
from concurrent.futures import ThreadPoolExecutor

import pytest

from txnbench.keys import KeySequence, RowFactory
from txnbench.types import CommitResult, ErrorKind, Row, RunResult, WorkerStats


def test_key_sequence_starts_at_given_value():
    seq = KeySequence(42)
    assert seq.peek == 42
    assert [seq.next_value() for _ in range(3)] == [42, 43, 44]
    assert seq.peek == 45


def test_key_sequence_is_distinct_across_threads():
    seq = KeySequence()

    def take(_):
        return [seq.next_value() for _ in range(500)]

    with ThreadPoolExecutor(max_workers=8) as ex:
        chunks = list(ex.map(take, range(8)))

    values = [v for chunk in chunks for v in chunk]
    assert len(values) == len(set(values)) == 4000
    assert sorted(values) == list(range(4000))


def test_row_factory_defaults():
    row = RowFactory().build(7)
    assert row.primary_key == "user7"
    assert dict(row.column_values) == {"field0": "1000"}


def test_row_factory_custom_shape():
    row = RowFactory(key_prefix="k", column_name="c", column_value="v").build(1)
    assert row == Row("k1", {"c": "v"})


def test_row_is_immutable():
    payload = {"field0": "1000"}
    row = Row("user1", payload)

    with pytest.raises(dataclasses.FrozenInstanceError):
        row.primary_key = "user2"
    with pytest.raises(TypeError):
        row.column_values["field0"] = "x"

    # later changes to the source dict do not leak in
    payload["field0"] = "changed"
    assert row.column_values["field0"] == "1000"


def test_commit_result_flags():
    assert CommitResult().ok
    aborted = CommitResult(error=ErrorKind.ABORTED, rows=3)
    assert aborted.aborted and not aborted.ok
    rejected = CommitResult(error=ErrorKind.REJECTED)
    assert not rejected.aborted and not rejected.ok


def test_run_result_aggregates_workers():
    result = RunResult(
        workers=[
            WorkerStats(worker_id=1, ops_done=10, aborted_count=1, transactions=10),
            WorkerStats(worker_id=2, ops_done=6, aborted_count=3, transactions=6,
                        cleanup_aborts=2),
        ],
        elapsed_s=4.0,
    )
    assert result.ops_done == 16
    assert result.aborted_count == 4
    # cleanup aborts do not feed the abort rate
    assert result.cleanup_aborts == 2
    assert result.throughput == 4.0
    assert result.abort_rate == 0.25
