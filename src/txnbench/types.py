# txnbench/types.py
"""Shared types for the load harness."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import List, Mapping, Optional

__all__ = [
    "Row",
    "Outcome",
    "ErrorKind",
    "CommitResult",
    "WorkerStats",
    "RunResult",
]


@dataclass(frozen=True)
class Row:
    """One keyed insert destined for the benchmark table."""

    primary_key: str
    """Row key, e.g. ``user42``"""

    column_values: Mapping[str, str]
    """Payload columns (name -> value)"""

    def __post_init__(self) -> None:
        # Freeze the payload so a Row cannot change after construction
        object.__setattr__(
            self, "column_values", MappingProxyType(dict(self.column_values))
        )


class Outcome(Enum):
    """Result of buffering one insert."""

    BATCHED = "batched"      # buffered, no store call yet
    COMMITTED = "committed"  # buffer handed to the open transaction
    ERROR = "error"          # submission failed; caller aborts


class ErrorKind(Enum):
    """Why a commit (or cleanup commit) did not succeed."""

    ABORTED = "aborted"          # contention; retry with a new transaction
    UNAVAILABLE = "unavailable"  # store unreachable
    REJECTED = "rejected"        # malformed payload


@dataclass(frozen=True)
class CommitResult:
    """Explicit result of ``TransactionSession.commit``."""

    error: Optional[ErrorKind] = None
    rows: int = 0
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def aborted(self) -> bool:
        return self.error is ErrorKind.ABORTED


@dataclass
class WorkerStats:
    """Counters owned by a single worker.

    Only the owning worker writes these; the orchestrator reads them after
    the worker has finished.
    """

    worker_id: int = 0
    ops_done: int = 0         # loop iterations (attempted ops)
    aborted_count: int = 0    # aborted loop commits
    rows_committed: int = 0   # rows in successfully committed transactions
    transactions: int = 0     # loop commit attempts
    error_count: int = 0      # non-abort failures
    rows_dropped: int = 0     # rows given up on without a commit
    cleanup_aborts: int = 0   # aborted commits of the shutdown flush


@dataclass
class RunResult:
    """Aggregated outcome of one harness run."""

    workers: List[WorkerStats] = field(default_factory=list)
    elapsed_s: float = 0.0
    failed_workers: int = 0
    interrupted: bool = False
    next_key: Optional[int] = None  # first key value a follow-up run can start at

    @property
    def ops_done(self) -> int:
        return sum(w.ops_done for w in self.workers)

    @property
    def aborted_count(self) -> int:
        return sum(w.aborted_count for w in self.workers)

    @property
    def rows_committed(self) -> int:
        return sum(w.rows_committed for w in self.workers)

    @property
    def transactions(self) -> int:
        return sum(w.transactions for w in self.workers)

    @property
    def error_count(self) -> int:
        return sum(w.error_count for w in self.workers)

    @property
    def rows_dropped(self) -> int:
        return sum(w.rows_dropped for w in self.workers)

    @property
    def cleanup_aborts(self) -> int:
        return sum(w.cleanup_aborts for w in self.workers)

    @property
    def throughput(self) -> float:
        """Attempted ops per second."""
        if self.elapsed_s <= 0:
            return 0.0
        return self.ops_done / self.elapsed_s

    @property
    def abort_rate(self) -> float:
        """Fraction of loop commit attempts that aborted."""
        if self.transactions == 0:
            return 0.0
        return self.aborted_count / self.transactions
