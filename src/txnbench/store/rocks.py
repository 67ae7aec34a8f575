# txnbench/store/rocks.py
from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Iterator, Mapping, Optional, Sequence

from rocksdict import Options, Rdict, WriteBatch  # type: ignore

from txnbench.types import Row
from .base import StoreUnavailable
from .memory import MemoryStore

logger = logging.getLogger(__name__)

__all__ = ["make_default_options", "setup_rocksdb", "RocksStore"]


def make_default_options(
    *,
    create_if_missing: bool = True,
    background_jobs: Optional[int] = None,
    write_buffer_size: int = 64 * 1024 * 1024,
    l0_compaction_trigger: int = 8,
) -> Options:
    """
    Defaults for a small-row insert workload. Adjust as needed.
    """
    opts = Options()
    if create_if_missing:
        opts.create_if_missing(True)

    if background_jobs is None:
        background_jobs = max(2, (os.cpu_count() or 2))
    opts.set_max_background_jobs(int(background_jobs))

    opts.set_write_buffer_size(write_buffer_size)
    opts.set_level_zero_file_num_compaction_trigger(l0_compaction_trigger)
    return opts


def setup_rocksdb(
    db_path: str | Path,
    *,
    options: Optional[Options] = None,
    retries: int = 1,
    delay_seconds: float = 0.2,
    backoff: float = 2.0,
) -> Rdict:
    """
    Open a RocksDB at `db_path`, creating parents as needed.

    Retries only on lock-related errors (common after crashed runs).

    Parameters
    ----------
    db_path : str | Path
        Directory for the RocksDB instance.
    options : rocksdict.Options | None
        If None, uses `make_default_options()`.
    retries : int
        Additional attempts after the first (total tries = retries + 1).
    delay_seconds : float
        Initial sleep between retries.
    backoff : float
        Multiplicative backoff factor for subsequent sleeps.

    Raises
    ------
    StoreUnavailable
        If the database cannot be opened.
    """
    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)

    opts = options or make_default_options()

    attempt = 1
    delay = delay_seconds
    while True:
        try:
            db = Rdict(str(path), opts)
            logger.info("Opened RocksDB at %s (attempt %d)", path, attempt)
            return db
        except Exception as exc:
            lock_issue = "lock" in str(exc).lower()
            if not lock_issue or attempt > retries:
                logger.error("Failed to open RocksDB at %s: %s", path, exc)
                raise StoreUnavailable(f"Cannot open RocksDB at {path}: {exc}") from exc

            logger.warning(
                "RocksDB lock issue opening %s (attempt %d/%d): %s",
                path,
                attempt,
                retries + 1,
                exc,
            )
            time.sleep(delay)
            delay *= backoff
            attempt += 1


class RocksStore(MemoryStore):
    """
    Optimistic transactional store persisting committed rows to RocksDB.

    Conflict detection is the in-process one from MemoryStore; each commit
    lands as one atomic WriteBatch. Keys are UTF-8 row keys, values are the
    JSON-encoded column map. Only conflict bookkeeping for open transactions
    is held in memory; committed rows live in RocksDB alone.
    """

    def __init__(
        self,
        db_path: str | Path,
        *,
        db: Optional[Rdict] = None,
        abort_probability: float = 0.0,
        random_seed: Optional[int] = None,
    ):
        super().__init__(abort_probability=abort_probability, random_seed=random_seed)
        self.db_path = Path(db_path)
        self.db = db if db is not None else setup_rocksdb(self.db_path)

    def shutdown(self) -> None:
        super().shutdown()
        try:
            self.db.close()
            logger.info("Closed RocksDB at %s", self.db_path)
        except Exception as exc:
            logger.warning("Error closing RocksDB at %s: %s", self.db_path, exc)

    def _persist(self, rows: Sequence[Row]) -> None:
        wb = WriteBatch()
        try:
            for row in rows:
                wb.put(
                    row.primary_key.encode("utf-8"),
                    json.dumps(dict(row.column_values), sort_keys=True).encode("utf-8"),
                )
            self.db.write(wb)
        except Exception as exc:
            logger.exception("Error writing batch of %d rows", len(rows))
            raise StoreUnavailable(f"RocksDB write failed: {exc}") from exc

    def _lookup(self, key: str) -> Optional[Mapping[str, str]]:
        raw = self.db.get(key.encode("utf-8"))
        if raw is None:
            return None
        return json.loads(raw)

    def _stored_keys(self) -> Iterator[str]:
        return (key.decode("utf-8") for key in self.db.keys())
