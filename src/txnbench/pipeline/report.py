# txnbench/pipeline/report.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Sequence

from txnbench.config import HarnessConfig
from txnbench.types import RunResult

logger = logging.getLogger(__name__)


def _heading(text: str, color: bool, code: str = "31") -> str:
    return f"\033[{code}m{text}\033[0m" if color else text


def format_run_summary(
    config: HarnessConfig,
    *,
    partitions: Sequence[int],
    start_time: datetime,
    color: bool = True,
) -> str:
    """
    Build a formatted, human-readable summary of the planned run.
    """
    title = "Load Configuration"
    lines = [
        _heading(f"Start Time: {start_time:%Y-%m-%d %H:%M:%S}", color),
        f"\033[4m{title}\033[0m" if color else title,
        f"Store backend:              {config.backend}",
    ]
    if config.backend == "rocks":
        lines.append(f"RocksDB database path:      {config.db_path}")
    elif config.backend == "spanner":
        lines.append(
            f"Spanner database:           {config.spanner_instance}/{config.spanner_database}"
        )
    if config.abort_probability:
        lines.append(f"Injected abort rate:        {config.abort_probability:.2%}")

    lines += [
        f"Table:                      {config.table}",
        f"Total operations:           {config.ops_count:,}",
        f"Worker threads:             {config.thread_count}",
        f"Ops per worker:             {_describe_partitions(partitions)}",
        f"Batch size:                 {config.batch_size:,}",
        f"Worker mode:                {config.mode}",
        f"Overflow policy:            {config.overflow_policy}",
        f"Requeue aborted rows:       {config.requeue_aborted}",
        f"Starting key:               {config.key_prefix}{config.starting_key}",
    ]
    return "\n".join(lines) + "\n"


def _describe_partitions(partitions: Sequence[int]) -> str:
    if not partitions:
        return "-"
    lo, hi = min(partitions), max(partitions)
    return f"{lo:,}" if lo == hi else f"{lo:,} to {hi:,}"


def format_final_report(result: RunResult, *, color: bool = True) -> str:
    """Totals and derived rates for a finished run."""
    lines = [
        _heading("\nLoad completed!", color, "32"),
        f"Operations done:            {result.ops_done:,}",
        f"Rows committed:             {result.rows_committed:,}",
        f"Transactions attempted:     {result.transactions:,}",
        f"Aborted transactions:       {result.aborted_count:,}",
    ]
    if result.error_count:
        lines.append(_heading(f"Store errors:               {result.error_count:,}", color))
    if result.cleanup_aborts:
        lines.append(f"Cleanup flush aborts:       {result.cleanup_aborts:,}")
    if result.rows_dropped:
        lines.append(_heading(f"Rows not committed:         {result.rows_dropped:,}", color))
    if result.failed_workers:
        lines.append(_heading(f"Failed workers:             {result.failed_workers}", color))
    lines += [
        f"Elapsed:                    {result.elapsed_s:.2f}s",
        _heading(f"Throughput:                 {result.throughput:,.1f} ops/s", color, "34"),
        _heading(f"Abort rate:                 {result.abort_rate:.2%}", color, "34"),
    ]
    if result.next_key is not None:
        lines.append(f"Next starting key:          {result.next_key}")
    return "\n".join(lines) + "\n"


def print_run_summary(config: HarnessConfig, **kwargs) -> None:
    """Print the run summary to stdout (CLI usage)."""
    print(format_run_summary(config, **kwargs), end="")


def log_run_summary(config: HarnessConfig, *, color: bool = False, **kwargs) -> None:
    """Log the run summary at INFO level."""
    summary = format_run_summary(config, color=color, **kwargs)
    for line in summary.rstrip("\n").splitlines():
        logger.info(line)


def print_final_report(result: RunResult, *, color: bool = True) -> None:
    print(format_final_report(result, color=color), end="")


def log_final_report(result: RunResult) -> None:
    for line in format_final_report(result, color=False).strip("\n").splitlines():
        logger.info(line)
