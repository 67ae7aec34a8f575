# txnbench/pipeline/logger.py
from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from txnbench.config import HarnessConfig

__all__ = ["LOG_FORMAT", "log_file_name", "setup_logger"]

LOG_FORMAT = "%(asctime)s %(levelname)s %(threadName)s %(name)s: %(message)s"

# Client libraries that log every RPC at DEBUG
_CHATTY_LOGGERS = ("google", "grpc", "urllib3")


def log_file_name(config: HarnessConfig, started: datetime) -> str:
    """e.g. ``txnbench_rocks_t8_b50_20250818_123456.log``"""
    return (
        f"txnbench_{config.backend}_t{config.thread_count}_b{config.batch_size}"
        f"_{started:%Y%m%d_%H%M%S}.log"
    )


def setup_logger(
    log_dir: str | Path,
    config: HarnessConfig,
    *,
    level: int = logging.INFO,
    console: bool = False,
    started: Optional[datetime] = None,
) -> Path:
    """
    Route root logging for one run into a file under ``log_dir``.

    Replaces any handlers already on the root logger. The file is named after
    the run (backend, threads, batch size, start time) and opens with a line
    describing the workload, so logs from several runs can be told apart.
    Client-library loggers stay at WARNING unless ``level`` is DEBUG.

    Returns the log file path.
    """
    log_dir = Path(log_dir).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / log_file_name(config, started or datetime.now())

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    root.setLevel(level)

    fmt = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    handlers = [logging.FileHandler(log_file, mode="w", encoding="utf-8")]
    if console:
        handlers.append(logging.StreamHandler())
    for h in handlers:
        h.setLevel(level)
        h.setFormatter(fmt)
        root.addHandler(h)

    quiet = logging.WARNING if level > logging.DEBUG else logging.NOTSET
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(quiet)

    root.info("Logging to: %s", log_file)
    root.info(
        "Run: backend=%s threads=%d ops=%d batch=%d mode=%s",
        config.backend, config.thread_count, config.ops_count,
        config.batch_size, config.mode,
    )
    return log_file
