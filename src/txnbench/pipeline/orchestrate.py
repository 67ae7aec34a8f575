# txnbench/pipeline/orchestrate.py
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import datetime
from typing import Callable, List, Optional

from tqdm import tqdm

from txnbench.config import HarnessConfig
from txnbench.keys import KeySequence, RowFactory
from txnbench.pipeline.report import (
    log_final_report,
    log_run_summary,
    print_final_report,
    print_run_summary,
)
from txnbench.pipeline.worker import Worker
from txnbench.store import open_store
from txnbench.store.base import TransactionalStore
from txnbench.types import RunResult

logger = logging.getLogger(__name__)

__all__ = ["partition_ops", "build_workers", "run_load", "run_from_config"]


def partition_ops(ops_count: int, thread_count: int) -> List[int]:
    """
    Split ``ops_count`` over ``thread_count`` workers.

    The first ``ops_count % thread_count`` workers take one extra op, so the
    shares sum to ``ops_count`` and differ by at most one.
    """
    if thread_count < 1:
        raise ValueError("thread_count must be >= 1")
    if ops_count < 0:
        raise ValueError("ops_count must be >= 0")
    base, extra = divmod(ops_count, thread_count)
    return [base + (1 if i < extra else 0) for i in range(thread_count)]


def build_workers(
    config: HarnessConfig,
    store: TransactionalStore,
    key_sequence: KeySequence,
    *,
    stop_event: Optional[threading.Event] = None,
    on_op: Optional[Callable[[int], None]] = None,
) -> List[Worker]:
    """One Worker per partition, all sharing the store and key sequence."""
    row_factory = RowFactory(
        key_prefix=config.key_prefix,
        column_name=config.column_name,
        column_value=config.column_value,
    )
    return [
        Worker(
            worker_id,
            store,
            key_sequence,
            share,
            batch_size=config.batch_size,
            row_factory=row_factory,
            mode=config.mode,
            overflow_policy=config.overflow_policy,
            requeue_aborted=config.requeue_aborted,
            cleanup_retries=config.cleanup_retries,
            cleanup_retry_delay_s=config.cleanup_retry_delay_s,
            max_batch_failures=config.max_batch_failures,
            stop_event=stop_event,
            on_op=on_op,
        )
        for worker_id, share in enumerate(
            partition_ops(config.ops_count, config.thread_count), start=1
        )
    ]


def run_load(
    config: HarnessConfig,
    store: TransactionalStore,
    *,
    key_sequence: Optional[KeySequence] = None,
    stop_event: Optional[threading.Event] = None,
    on_op: Optional[Callable[[int], None]] = None,
) -> RunResult:
    """
    Run every worker to completion and aggregate their stats.

    Worker stats are read only after all worker threads have finished. A
    worker that raised is logged and counted in ``failed_workers``; its
    stats up to the failure are still included. Ctrl-C sets ``stop_event``
    and waits for the workers to wind down.
    """
    key_sequence = key_sequence or KeySequence(config.starting_key)
    stop_event = stop_event or threading.Event()
    workers = build_workers(
        config, store, key_sequence, stop_event=stop_event, on_op=on_op
    )

    result = RunResult()
    start = time.perf_counter()
    executor = ThreadPoolExecutor(
        max_workers=config.thread_count, thread_name_prefix="txb-worker"
    )
    try:
        futures = [executor.submit(w.run) for w in workers]
        try:
            wait(futures)
        except KeyboardInterrupt:
            logger.warning("Interrupted; asking %d workers to stop", len(workers))
            stop_event.set()
            result.interrupted = True
            wait(futures)
    finally:
        executor.shutdown(wait=True)
    result.elapsed_s = time.perf_counter() - start

    for worker, fut in zip(workers, futures):
        exc = fut.exception()
        if exc is not None:
            result.failed_workers += 1
            logger.error(
                "Worker %s failed: %s", worker.worker_id, exc, exc_info=exc
            )
        result.workers.append(worker.stats)
    result.next_key = key_sequence.peek

    logger.info(
        "%d operations done, %d aborted transactions, %d cleanup aborts, next key %d",
        result.ops_done, result.aborted_count, result.cleanup_aborts, result.next_key,
    )
    return result


def run_from_config(config: HarnessConfig, *, color: bool = True) -> RunResult:
    """
    Open the configured store, run the load and report.

    Process
    -------
    1. Partition the workload and print a run summary
    2. Open the store (always released on exit)
    3. Run the workers with a progress bar
    4. Print and log the final report
    """
    start_time = datetime.now()
    partitions = partition_ops(config.ops_count, config.thread_count)

    print_run_summary(config, partitions=partitions, start_time=start_time, color=color)
    log_run_summary(config, partitions=partitions, start_time=start_time)

    with open_store(config) as store:
        with tqdm(
            total=config.ops_count,
            desc="Inserting",
            unit="ops",
            colour="blue",
            disable=not config.show_progress,
        ) as pbar:
            lock = threading.Lock()

            def on_op(n: int) -> None:
                with lock:
                    pbar.update(n)

            result = run_load(config, store, on_op=on_op)

    print_final_report(result, color=color)
    log_final_report(result)
    return result
