#!/usr/bin/env python3
"""
txnbench command line.

Examples:
  txnbench --threads 8 --ops 100000 --batch-size 50
  txnbench --properties application.properties --log-dir logs
  txnbench --backend rocks --db-path /tmp/txnbench-db --ops 10000 --abort-probability 0.05
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from txnbench.config import ConfigError, config_from_properties, load_properties
from txnbench.pipeline.logger import LOG_FORMAT, setup_logger
from txnbench.pipeline.orchestrate import run_from_config
from txnbench.store.base import StoreError

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Batched-insert transaction load generator for transactional stores."
    )
    p.add_argument("--properties", type=Path, default=None,
                   help="Java-style .properties file (threadcount, opsCount, cloudspanner.*)")
    p.add_argument("--threads", dest="thread_count", type=int, default=None,
                   help="Worker threads (default: 1)")
    p.add_argument("--ops", dest="ops_count", type=int, default=None,
                   help="Total operations across all workers (default: 1)")
    p.add_argument("--batch-size", type=int, default=None,
                   help="Rows buffered per transaction before a flush (default: 1)")
    p.add_argument("--starting-key", type=int, default=None,
                   help="First key sequence value (default: 0)")
    p.add_argument("--mode", choices=("per-op", "batch"), default=None,
                   help="Worker loop (default: per-op)")
    p.add_argument("--overflow-policy", choices=("flush", "drop"), default=None,
                   help="What to do with a row that arrives at a full buffer (default: flush)")
    p.add_argument("--no-requeue", dest="requeue_aborted", action="store_const", const=False,
                   default=None, help="Drop rows of aborted transactions instead of retrying them")
    p.add_argument("--backend", choices=("memory", "rocks", "spanner"), default=None,
                   help="Store backend (default: memory)")
    p.add_argument("--db-path", type=Path, default=None, help="RocksDB directory (rocks backend)")
    p.add_argument("--spanner-project", default=None, help="GCP project (spanner backend)")
    p.add_argument("--spanner-instance", default=None, help="Spanner instance id")
    p.add_argument("--spanner-database", default=None, help="Spanner database id")
    p.add_argument("--table", default=None, help="Target table (default: usertable)")
    p.add_argument("--abort-probability", type=float, default=None,
                   help="Injected commit abort rate for memory/rocks backends (default: 0)")
    p.add_argument("--seed", dest="random_seed", type=int, default=None,
                   help="Seed for injected aborts")
    p.add_argument("--log-dir", type=Path, default=None,
                   help="Write a timestamped log file into this directory")
    p.add_argument("--log-console", action="store_true",
                   help="Also echo the log to stderr (with --log-dir)")
    p.add_argument("--no-progress", dest="show_progress", action="store_const", const=False,
                   default=None, help="Disable the progress bar")
    p.add_argument("--no-color", action="store_true", help="Disable ANSI colors")
    p.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")
    return p.parse_args(argv)


_OVERRIDES = (
    "thread_count", "ops_count", "batch_size", "starting_key", "mode",
    "overflow_policy", "requeue_aborted", "backend", "db_path",
    "spanner_project", "spanner_instance", "spanner_database", "table",
    "abort_probability", "random_seed", "show_progress",
)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    try:
        props = load_properties(args.properties) if args.properties else {}
        config = config_from_properties(
            props, **{name: getattr(args, name) for name in _OVERRIDES}
        )
    except ConfigError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2

    if args.log_dir is not None:
        setup_logger(
            args.log_dir,
            config,
            level=logging.DEBUG if args.verbose else logging.INFO,
            console=args.log_console,
        )
    else:
        logging.basicConfig(
            level=logging.DEBUG if args.verbose else logging.WARNING,
            format=LOG_FORMAT,
        )

    try:
        result = run_from_config(config, color=not args.no_color)
    except StoreError as exc:
        logger.error("Store error: %s", exc)
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    if result.interrupted:
        return 130
    return 1 if result.failed_workers else 0


if __name__ == "__main__":
    sys.exit(main())
