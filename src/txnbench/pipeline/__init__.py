"""Worker engine and run orchestration."""

from .orchestrate import partition_ops, run_from_config, run_load
from .session import MutationBuffer, SessionState, TransactionSession
from .worker import Worker

__all__ = [
    "partition_ops",
    "run_load",
    "run_from_config",
    "MutationBuffer",
    "SessionState",
    "TransactionSession",
    "Worker",
]
