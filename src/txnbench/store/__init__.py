"""Transactional store backends."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from txnbench.config import HarnessConfig
from .base import (
    StoreError,
    StoreUnavailable,
    TransactionAborted,
    TransactionHandle,
    TransactionalStore,
    WriteRejected,
)
from .memory import MemoryStore

logger = logging.getLogger(__name__)

__all__ = [
    "open_store",
    "create_store",
    "MemoryStore",
    "StoreError",
    "StoreUnavailable",
    "TransactionAborted",
    "TransactionHandle",
    "TransactionalStore",
    "WriteRejected",
]


def create_store(config: HarnessConfig) -> TransactionalStore:
    """Build the backend named by ``config.backend``."""
    if config.backend == "memory":
        return MemoryStore(
            abort_probability=config.abort_probability,
            random_seed=config.random_seed,
        )
    if config.backend == "rocks":
        from .rocks import RocksStore

        return RocksStore(
            config.db_path,
            abort_probability=config.abort_probability,
            random_seed=config.random_seed,
        )
    if config.backend == "spanner":
        from .spanner import SpannerStore, connect_database

        database, pool = connect_database(
            config.spanner_instance,
            config.spanner_database,
            project=config.spanner_project,
            pool_size=config.thread_count,
        )
        return SpannerStore(
            database, pool, table=config.table, key_column=config.key_column
        )
    raise ValueError(f"Unknown backend: {config.backend!r}")


@contextmanager
def open_store(config: HarnessConfig) -> Iterator[TransactionalStore]:
    """
    Open the configured store and always shut it down on exit.

    Args:
        config: Harness configuration naming the backend
    """
    store = create_store(config)
    logger.info("Opened %s store", config.backend)
    try:
        yield store
    finally:
        try:
            store.shutdown()
        except Exception:
            logger.exception("Error shutting down %s store", config.backend)
