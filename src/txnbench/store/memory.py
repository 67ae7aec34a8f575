# txnbench/store/memory.py
"""In-process transactional store with optimistic concurrency control."""
from __future__ import annotations

import logging
import random
import threading
from typing import Dict, Iterable, Iterator, Mapping, Optional, Sequence

from txnbench.types import Row
from .base import (
    StoreUnavailable,
    TransactionAborted,
    TransactionHandle,
    validate_rows,
)

logger = logging.getLogger(__name__)

__all__ = ["MemoryStore"]


class MemoryStore:
    """
    Thread-safe dict-backed store with first-committer-wins conflicts.

    Each transaction remembers the commit version current when it began. At
    commit time, if any key in its write set was committed by another
    transaction after that version, the commit raises TransactionAborted.
    Key versions are kept only while an open transaction could still
    conflict with them, so tracking stays bounded by the concurrent write
    sets rather than by the total rows committed.
    ``abort_probability`` injects additional aborts (seeded by
    ``random_seed``) to exercise retry paths without real contention.

    Subclasses persist committed rows by overriding ``_persist`` and
    ``_lookup``.
    """

    def __init__(
        self,
        *,
        abort_probability: float = 0.0,
        random_seed: Optional[int] = None,
    ):
        self.abort_probability = abort_probability
        self.available = True

        self._rng = random.Random(random_seed)
        self._lock = threading.Lock()
        self._version = 0
        self._key_versions: Dict[str, int] = {}
        self._data: Dict[str, Dict[str, str]] = {}
        self._open: Dict[int, TransactionHandle] = {}

        self.commits = 0
        self.aborts = 0

    # -- contract -----------------------------------------------------------

    def ping(self) -> None:
        if not self.available:
            raise StoreUnavailable(f"{type(self).__name__} is not available")

    def begin_transaction(self) -> TransactionHandle:
        self.ping()
        with self._lock:
            handle = TransactionHandle(native=self._version)
            self._open[handle.txn_id] = handle
        return handle

    def submit_writes(self, handle: TransactionHandle, rows: Sequence[Row]) -> None:
        self._check_open(handle)
        validate_rows(rows)
        handle.writes.extend(rows)

    def commit(self, handle: TransactionHandle) -> None:
        self._check_open(handle)
        self.ping()
        with self._lock:
            read_version = handle.native
            conflicts = [
                row.primary_key
                for row in handle.writes
                if self._key_versions.get(row.primary_key, -1) > read_version
            ]
            injected = (
                self.abort_probability > 0
                and self._rng.random() < self.abort_probability
            )
            if conflicts or injected:
                self.aborts += 1
                handle.closed = True
                self._open.pop(handle.txn_id, None)
                self._prune_versions()
                logger.debug(
                    "Aborting transaction %d (conflicts=%d, injected=%s)",
                    handle.txn_id, len(conflicts), injected,
                )
                if conflicts:
                    raise TransactionAborted(
                        f"Transaction {handle.txn_id} conflicts on {len(conflicts)} key(s), "
                        f"first {conflicts[0]!r}"
                    )
                raise TransactionAborted(f"Transaction {handle.txn_id} aborted")

            if handle.writes:
                self._persist(handle.writes)
                self._version += 1
                for row in handle.writes:
                    # re-insert so the dict stays ordered by version
                    self._key_versions.pop(row.primary_key, None)
                    self._key_versions[row.primary_key] = self._version
            self.commits += 1
            handle.closed = True
            self._open.pop(handle.txn_id, None)
            self._prune_versions()

    def close(self, handle: TransactionHandle) -> None:
        with self._lock:
            handle.closed = True
            self._open.pop(handle.txn_id, None)
            self._prune_versions()

    def shutdown(self) -> None:
        with self._lock:
            for handle in self._open.values():
                handle.closed = True
            self._open.clear()
            self._key_versions.clear()
        self.available = False

    # -- inspection ---------------------------------------------------------

    def get(self, key: str) -> Optional[Mapping[str, str]]:
        with self._lock:
            return self._lookup(key)

    def keys(self) -> Iterator[str]:
        with self._lock:
            return iter(sorted(self._stored_keys()))

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for _ in self._stored_keys())

    @property
    def open_transactions(self) -> int:
        with self._lock:
            return len(self._open)

    @property
    def tracked_keys(self) -> int:
        """Keys whose commit version is still kept for conflict checks."""
        with self._lock:
            return len(self._key_versions)

    # -- hooks --------------------------------------------------------------

    def _persist(self, rows: Sequence[Row]) -> None:
        """Apply committed rows; called with the store lock held."""
        for row in rows:
            self._data[row.primary_key] = dict(row.column_values)

    def _lookup(self, key: str) -> Optional[Mapping[str, str]]:
        return self._data.get(key)

    def _stored_keys(self) -> Iterable[str]:
        return self._data.keys()

    def _prune_versions(self) -> None:
        """Forget versions no open transaction can conflict with; lock held."""
        horizon = min((h.native for h in self._open.values()), default=self._version)
        while self._key_versions:
            key, version = next(iter(self._key_versions.items()))
            if version > horizon:
                break
            del self._key_versions[key]

    def _check_open(self, handle: TransactionHandle) -> None:
        if handle.closed:
            raise StoreUnavailable(f"Transaction {handle.txn_id} is closed")
