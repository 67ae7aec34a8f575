# txnbench/store/spanner.py
"""Cloud Spanner backend using the google-cloud-spanner client."""
from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

from google.api_core import exceptions as api_exceptions
from google.cloud import spanner

from txnbench.types import Row
from .base import (
    StoreUnavailable,
    TransactionAborted,
    TransactionHandle,
    WriteRejected,
    validate_rows,
)

logger = logging.getLogger(__name__)

__all__ = ["SpannerStore", "connect_database"]


def connect_database(
    instance_id: str,
    database_id: str,
    *,
    project: Optional[str] = None,
    pool_size: int = 1,
):
    """
    Open a Spanner database handle backed by a fixed-size session pool.

    The pool is sized to the worker count so every worker can hold a session
    without waiting on another.
    """
    try:
        client = spanner.Client(project=project)
        instance = client.instance(instance_id)
        pool = spanner.FixedSizePool(size=pool_size)
        database = instance.database(database_id, pool=pool)
    except api_exceptions.GoogleAPICallError as exc:
        raise StoreUnavailable(f"Cannot connect to Spanner: {exc}") from exc
    logger.info(
        "Connected to Spanner %s/%s/%s (pool size %d)",
        client.project, instance_id, database_id, pool_size,
    )
    return database, pool


class SpannerStore:
    """
    TransactionalStore over Cloud Spanner read-write transactions.

    Rows are buffered client-side as ``insert_or_update`` mutations and sent
    with the commit. Spanner's ``Aborted`` becomes TransactionAborted.
    """

    def __init__(
        self,
        database: Any,
        pool: Any,
        *,
        table: str = "usertable",
        key_column: str = "id",
    ):
        self.database = database
        self.pool = pool
        self.table = table
        self.key_column = key_column

    def ping(self) -> None:
        try:
            if not self.database.exists():
                raise StoreUnavailable(f"Spanner database {self.database.name} does not exist")
        except api_exceptions.GoogleAPICallError as exc:
            raise StoreUnavailable(f"Spanner unreachable: {exc}") from exc

    def begin_transaction(self) -> TransactionHandle:
        try:
            session = self.pool.get()
        except Exception as exc:
            raise StoreUnavailable(f"No Spanner session available: {exc}") from exc
        try:
            txn = session.transaction()
            txn.begin()
        except api_exceptions.GoogleAPICallError as exc:
            self.pool.put(session)
            raise StoreUnavailable(f"Cannot begin transaction: {exc}") from exc
        return TransactionHandle(native=(session, txn))

    def submit_writes(self, handle: TransactionHandle, rows: Sequence[Row]) -> None:
        if handle.closed:
            raise StoreUnavailable(f"Transaction {handle.txn_id} is closed")
        validate_rows(rows)
        if not rows:
            return
        _, txn = handle.native
        columns = [self.key_column, *rows[0].column_values.keys()]
        values = []
        for row in rows:
            if [self.key_column, *row.column_values.keys()] != columns:
                raise WriteRejected(f"Row {row.primary_key} has a different column set")
            values.append([row.primary_key, *row.column_values.values()])
        try:
            txn.insert_or_update(table=self.table, columns=columns, values=values)
        except ValueError as exc:
            raise WriteRejected(str(exc)) from exc
        handle.writes.extend(rows)

    def commit(self, handle: TransactionHandle) -> None:
        if handle.closed:
            raise StoreUnavailable(f"Transaction {handle.txn_id} is closed")
        _, txn = handle.native
        try:
            txn.commit()
        except api_exceptions.Aborted as exc:
            raise TransactionAborted(str(exc)) from exc
        except (api_exceptions.InvalidArgument, api_exceptions.FailedPrecondition) as exc:
            raise WriteRejected(str(exc)) from exc
        except api_exceptions.GoogleAPICallError as exc:
            raise StoreUnavailable(str(exc)) from exc
        finally:
            self.close(handle)

    def close(self, handle: TransactionHandle) -> None:
        if handle.closed:
            return
        handle.closed = True
        session, txn = handle.native
        if getattr(txn, "committed", None) is None and not getattr(txn, "rolled_back", False):
            try:
                txn.rollback()
            except api_exceptions.GoogleAPICallError as exc:
                logger.debug("Rollback of transaction %d failed: %s", handle.txn_id, exc)
        self.pool.put(session)

    def shutdown(self) -> None:
        try:
            self.pool.clear()
            logger.info("Released Spanner session pool")
        except api_exceptions.GoogleAPICallError as exc:
            logger.warning("Error releasing Spanner sessions: %s", exc)
