"""Multi-threaded batched-insert load harness for transactional stores."""

from .config import ConfigError, HarnessConfig, config_from_properties, load_properties
from .keys import KeySequence, RowFactory
from .types import CommitResult, ErrorKind, Outcome, Row, RunResult, WorkerStats

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "HarnessConfig",
    "ConfigError",
    "load_properties",
    "config_from_properties",

    # Keys and rows
    "KeySequence",
    "RowFactory",
    "Row",

    # Results
    "Outcome",
    "ErrorKind",
    "CommitResult",
    "WorkerStats",
    "RunResult",
]
