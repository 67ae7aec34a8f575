# txnbench/config.py
"""Configuration for load harness runs."""
from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Dict, Literal, Mapping, Optional, Union

logger = logging.getLogger(__name__)

__all__ = [
    "ConfigError",
    "HarnessConfig",
    "load_properties",
    "config_from_properties",
]

PathLike = Union[str, Path]

BACKENDS = ("memory", "rocks", "spanner")
MODES = ("per-op", "batch")
OVERFLOW_POLICIES = ("flush", "drop")


class ConfigError(ValueError):
    """Raised for invalid or incomplete harness configuration."""


@dataclass(frozen=True)
class HarnessConfig:
    """Everything a run needs: workload shape, worker policy and backend."""

    # Workload
    thread_count: int = 1
    ops_count: int = 1  # total across all workers
    batch_size: int = 1  # rows buffered per transaction before a flush
    starting_key: int = 0

    # Row shape
    key_prefix: str = "user"
    table: str = "usertable"
    key_column: str = "id"
    column_name: str = "field0"
    column_value: str = "1000"

    # Worker policy
    mode: Literal["per-op", "batch"] = "per-op"
    overflow_policy: Literal["flush", "drop"] = "flush"
    requeue_aborted: bool = True  # return aborted in-flight rows to the buffer
    cleanup_retries: int = 3  # total attempts for the shutdown flush
    cleanup_retry_delay_s: float = 0.1
    max_batch_failures: int = 100  # batch mode: consecutive failures before giving up, 0 = never

    # Backend
    backend: Literal["memory", "rocks", "spanner"] = "memory"
    db_path: Optional[Path] = None  # rocks only
    spanner_project: Optional[str] = None
    spanner_instance: Optional[str] = None
    spanner_database: Optional[str] = None
    abort_probability: float = 0.0  # memory/rocks fault injection
    random_seed: Optional[int] = None

    # Reporting
    show_progress: bool = True

    def __post_init__(self) -> None:
        if self.thread_count < 1:
            raise ConfigError("thread_count must be >= 1")
        if self.ops_count < 0:
            raise ConfigError("ops_count must be >= 0")
        if self.batch_size < 1:
            raise ConfigError("batch_size must be >= 1")
        if self.cleanup_retries < 1:
            raise ConfigError("cleanup_retries must be >= 1")
        if self.max_batch_failures < 0:
            raise ConfigError("max_batch_failures must be >= 0")
        if self.cleanup_retry_delay_s < 0:
            raise ConfigError("cleanup_retry_delay_s must be >= 0")
        if not 0.0 <= self.abort_probability <= 1.0:
            raise ConfigError("abort_probability must be within [0, 1]")
        if self.mode not in MODES:
            raise ConfigError(f"mode must be one of {MODES}, got {self.mode!r}")
        if self.overflow_policy not in OVERFLOW_POLICIES:
            raise ConfigError(
                f"overflow_policy must be one of {OVERFLOW_POLICIES}, "
                f"got {self.overflow_policy!r}"
            )
        if self.backend not in BACKENDS:
            raise ConfigError(
                f"backend must be one of {BACKENDS}, got {self.backend!r}"
            )
        if self.backend == "rocks" and self.db_path is None:
            raise ConfigError("backend 'rocks' requires db_path")
        if self.backend == "spanner" and not (
            self.spanner_instance and self.spanner_database
        ):
            raise ConfigError(
                "backend 'spanner' requires spanner_instance and spanner_database"
            )
        if self.db_path is not None and not isinstance(self.db_path, Path):
            object.__setattr__(self, "db_path", Path(self.db_path).expanduser())


# Keys understood in .properties files. The cloudspanner.* and threadcount /
# opsCount names match the property files the harness has always accepted.
_PROPERTY_KEYS: Dict[str, str] = {
    "threadcount": "thread_count",
    "opsCount": "ops_count",
    "cloudspanner.batchinserts": "batch_size",
    "cloudspanner.table": "table",
    "cloudspanner.instance": "spanner_instance",
    "cloudspanner.database": "spanner_database",
    "cloudspanner.project": "spanner_project",
    "txnbench.startingkey": "starting_key",
    "txnbench.keyprefix": "key_prefix",
    "txnbench.mode": "mode",
    "txnbench.overflowpolicy": "overflow_policy",
    "txnbench.requeueaborted": "requeue_aborted",
    "txnbench.cleanupretries": "cleanup_retries",
    "txnbench.cleanupretrydelay": "cleanup_retry_delay_s",
    "txnbench.maxbatchfailures": "max_batch_failures",
    "txnbench.backend": "backend",
    "txnbench.dbpath": "db_path",
    "txnbench.abortprobability": "abort_probability",
    "txnbench.seed": "random_seed",
}


def load_properties(path: PathLike) -> Dict[str, str]:
    """
    Parse a Java-style ``.properties`` file.

    Supports ``key=value`` and ``key: value`` lines, ``#`` and ``!`` comments,
    and trailing-backslash line continuations. Later keys win.
    """
    p = Path(path).expanduser()
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot read properties file {p}: {exc}") from exc

    props: Dict[str, str] = {}
    pending = ""
    for raw in text.splitlines():
        line = raw.strip()
        if not pending and (not line or line[0] in "#!"):
            continue
        if line.endswith("\\"):
            pending += line[:-1]
            continue
        line = pending + line
        pending = ""

        sep = min(
            (i for i in (line.find("="), line.find(":")) if i >= 0),
            default=-1,
        )
        if sep < 0:
            key, value = line, ""
        else:
            key, value = line[:sep], line[sep + 1:]
        props[key.strip()] = value.strip()

    logger.debug("Loaded %d properties from %s", len(props), p)
    return props


def _coerce(name: str, raw: str):
    """Convert a property string to the type of the HarnessConfig field."""
    if name in ("thread_count", "ops_count", "batch_size", "starting_key",
                "cleanup_retries", "max_batch_failures", "random_seed"):
        try:
            return int(raw)
        except ValueError as exc:
            raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
    if name in ("cleanup_retry_delay_s", "abort_probability"):
        try:
            return float(raw)
        except ValueError as exc:
            raise ConfigError(f"{name} must be a number, got {raw!r}") from exc
    if name == "requeue_aborted":
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if name == "db_path":
        return Path(raw).expanduser()
    return raw


def config_from_properties(
    props: Mapping[str, str],
    **overrides,
) -> HarnessConfig:
    """
    Build a HarnessConfig from parsed properties.

    Keyword overrides (HarnessConfig field names) take precedence; ``None``
    overrides are ignored so CLI defaults do not mask file values.
    """
    values = {}
    for key, raw in props.items():
        name = _PROPERTY_KEYS.get(key)
        if name is None:
            logger.debug("Ignoring unknown property %s", key)
            continue
        values[name] = _coerce(name, raw)

    known = {f.name for f in fields(HarnessConfig)}
    for name, value in overrides.items():
        if name not in known:
            raise ConfigError(f"Unknown configuration field: {name}")
        if value is not None:
            values[name] = value

    # Spanner properties alone imply the spanner backend
    if "backend" not in values and values.get("spanner_instance"):
        values["backend"] = "spanner"

    return HarnessConfig(**values)
