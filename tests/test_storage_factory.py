from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fieldops.core.config import get_settings
from fieldops.domain.errors import StorageConnectionError
from fieldops.repositories import factory
from fieldops.repositories.factory import initialize_storage
from fieldops.repositories.json_storage import JSONFileRepository
from fieldops.repositories.memory import MemoryRepository
from fieldops.repositories.sql_repository import SQLRepository


@pytest.fixture()
def env(tmp_path, monkeypatch):
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("USE_DATABASE", raising=False)
    monkeypatch.delenv("USE_MONGODB", raising=False)
    return monkeypatch


def test_database_is_preferred_when_reachable(env, tmp_path):
    env.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'fieldops.db'}")
    storage = initialize_storage(get_settings())
    try:
        assert isinstance(storage, SQLRepository)
        assert storage.backend_name == "database"
    finally:
        storage.close()


def test_missing_database_url_falls_back_to_files(env, tmp_path):
    storage = initialize_storage(get_settings())
    assert isinstance(storage, JSONFileRepository)
    assert storage.data_dir == tmp_path / "data"


def test_unreachable_database_falls_back_to_files(env, tmp_path):
    env.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'missing' / 'dir' / 'fieldops.db'}")
    storage = initialize_storage(get_settings())
    assert isinstance(storage, JSONFileRepository)


def test_database_can_be_disabled(env, tmp_path):
    env.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'fieldops.db'}")
    env.setenv("USE_DATABASE", "false")
    assert isinstance(initialize_storage(get_settings()), JSONFileRepository)


def test_legacy_switch_name_is_honoured(env, tmp_path):
    env.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'fieldops.db'}")
    env.setenv("USE_MONGODB", "0")
    assert get_settings().use_database is False
    assert isinstance(initialize_storage(get_settings()), JSONFileRepository)


def test_unusable_data_dir_falls_back_to_memory(env, tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("x", encoding="utf-8")
    env.setenv("DATA_DIR", str(blocker / "data"))
    storage = initialize_storage(get_settings())
    assert type(storage) is MemoryRepository


def test_connect_rejects_empty_url():
    with pytest.raises(StorageConnectionError):
        SQLRepository.connect("  ")


def test_connect_failure_is_a_connection_error(monkeypatch):
    def refuse(url):
        raise ImportError("no driver for this dialect")

    monkeypatch.setattr("fieldops.repositories.sql_repository.build_engine", refuse)
    with pytest.raises(StorageConnectionError):
        SQLRepository.connect("postgresql://nowhere/fieldops")


def test_factory_logs_each_fallback_step(env, monkeypatch):
    events = []

    class Recorder:
        def info(self, event, **kw):
            events.append(event)

        warning = error = info

    monkeypatch.setattr(factory, "logger", Recorder())
    initialize_storage(get_settings())
    assert events == ["database_unavailable", "storage_selected"]
