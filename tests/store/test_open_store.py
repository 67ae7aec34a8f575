# tests/store/test_open_store.py
from __future__ import annotations

import logging
from pathlib import Path

import pytest

import txnbench.store as store_pkg
from txnbench.config import HarnessConfig
from txnbench.store import MemoryStore, create_store, open_store


def test_create_store_memory_uses_fault_injection_settings():
    store = create_store(HarnessConfig(abort_probability=0.2, random_seed=1))
    assert isinstance(store, MemoryStore)
    assert store.abort_probability == 0.2


def test_create_store_rocks(tmp_path: Path):
    from txnbench.store.rocks import RocksStore

    store = create_store(HarnessConfig(backend="rocks", db_path=tmp_path / "db"))
    try:
        assert isinstance(store, RocksStore)
        assert store.db_path == tmp_path / "db"
    finally:
        store.shutdown()


def test_open_store_shuts_down_on_normal_exit():
    with open_store(HarnessConfig()) as store:
        store.ping()
    assert not store.available


def test_open_store_shuts_down_when_body_raises():
    with pytest.raises(RuntimeError):
        with open_store(HarnessConfig()) as store:
            raise RuntimeError("worker blew up")
    assert not store.available


def test_open_store_logs_shutdown_errors(monkeypatch, caplog):
    class BadShutdownStore(MemoryStore):
        def shutdown(self):
            raise OSError("disk gone")

    monkeypatch.setattr(store_pkg, "create_store", lambda config: BadShutdownStore())
    caplog.set_level(logging.ERROR)

    with open_store(HarnessConfig()):
        pass

    assert any("Error shutting down memory store" in r.getMessage() for r in caplog.records)
