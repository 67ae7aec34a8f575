# txnbench/keys.py
"""Shared key sequence and row construction."""

from __future__ import annotations

import threading

from txnbench.types import Row

__all__ = ["KeySequence", "RowFactory"]


class KeySequence:
    """
    Monotonic counter shared by every worker in a run.

    Each call to ``next_value`` hands out a distinct integer; values are
    never reused, gaps are allowed.
    """

    def __init__(self, start: int = 0):
        self._next = int(start)
        self._lock = threading.Lock()

    def next_value(self) -> int:
        with self._lock:
            value = self._next
            self._next += 1
        return value

    @property
    def peek(self) -> int:
        """Value the next caller will receive."""
        with self._lock:
            return self._next


class RowFactory:
    """Builds fixed-shape rows from key sequence values."""

    def __init__(
        self,
        key_prefix: str = "user",
        column_name: str = "field0",
        column_value: str = "1000",
    ):
        self.key_prefix = key_prefix
        self.column_name = column_name
        self.column_value = column_value

    def build(self, value: int) -> Row:
        return Row(
            primary_key=f"{self.key_prefix}{value}",
            column_values={self.column_name: self.column_value},
        )
