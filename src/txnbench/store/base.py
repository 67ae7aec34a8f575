# txnbench/store/base.py
"""Contract between the harness and a transactional table store."""
from __future__ import annotations

import itertools
import time
from dataclasses import dataclass, field
from typing import Any, List, Protocol, Sequence, runtime_checkable

from txnbench.types import Row

__all__ = [
    "StoreError",
    "StoreUnavailable",
    "WriteRejected",
    "TransactionAborted",
    "TransactionHandle",
    "TransactionalStore",
    "validate_rows",
]


class StoreError(Exception):
    """Base class for errors raised by a store backend."""

    retryable = False


class StoreUnavailable(StoreError):
    """No session could be acquired, or the store stopped answering."""


class WriteRejected(StoreError):
    """The store refused the payload (malformed row)."""


class TransactionAborted(StoreError):
    """The store aborted the transaction; expected under contention."""

    retryable = True


_handle_ids = itertools.count(1)


@dataclass
class TransactionHandle:
    """One open transaction; backends hang their own state off ``native``."""

    txn_id: int = field(default_factory=lambda: next(_handle_ids))
    opened_at: float = field(default_factory=time.monotonic)
    writes: List[Row] = field(default_factory=list)
    native: Any = None
    closed: bool = False


@runtime_checkable
class TransactionalStore(Protocol):
    """Serializable store whose transactions may abort and must be retried."""

    def ping(self) -> None:
        """Raise StoreUnavailable if the store cannot be reached."""

    def begin_transaction(self) -> TransactionHandle:
        ...

    def submit_writes(self, handle: TransactionHandle, rows: Sequence[Row]) -> None:
        ...

    def commit(self, handle: TransactionHandle) -> None:
        ...

    def close(self, handle: TransactionHandle) -> None:
        """Release the transaction; safe to call more than once."""

    def shutdown(self) -> None:
        """Release the store itself."""


def validate_rows(rows: Sequence[Row]) -> None:
    """
    Reject payloads the benchmark table cannot hold.

    Raises:
        WriteRejected: On an empty key or a non-string column name/value
    """
    for row in rows:
        if not isinstance(row, Row):
            raise WriteRejected(f"Expected Row, got {type(row).__name__}")
        if not isinstance(row.primary_key, str) or not row.primary_key:
            raise WriteRejected(f"Invalid primary key: {row.primary_key!r}")
        for name, value in row.column_values.items():
            if not isinstance(name, str) or not isinstance(value, str):
                raise WriteRejected(
                    f"Row {row.primary_key}: column {name!r} has invalid value {value!r}"
                )
