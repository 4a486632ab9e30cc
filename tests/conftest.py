"""
Shared fixtures: one storage instance per backend plus a few seeded entities.
"""
from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Make the fieldops package importable during local test runs
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fieldops.core import config as core_config
from fieldops.db import models
from fieldops.db import session as db_session
from fieldops.domain.models import NewTeam, NewUser, Role, TeamStatus
from fieldops.repositories import memory as memory_module
from fieldops.repositories import sql_repository as sql_module
from fieldops.repositories.json_storage import JSONFileRepository
from fieldops.repositories.memory import MemoryRepository
from fieldops.repositories.sql_repository import SQLRepository


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    core_config.get_settings.cache_clear()
    yield
    core_config.get_settings.cache_clear()


@pytest.fixture(autouse=True)
def ticking_clock(monkeypatch):
    """Each timestamp the backends take is one second after the previous one."""
    state = {"now": datetime(2024, 1, 1, tzinfo=timezone.utc)}

    def _tick():
        state["now"] += timedelta(seconds=1)
        return state["now"]

    monkeypatch.setattr(memory_module, "utcnow", _tick)
    monkeypatch.setattr(sql_module, "utcnow", _tick)
    return state


@pytest.fixture()
def temp_db(tmp_path, monkeypatch):
    """Temporary SQLite database wired through DATABASE_URL and the cached engine."""
    db_file = tmp_path / "test.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_file}")
    core_config.get_settings.cache_clear()
    db_session.get_engine.cache_clear()
    db_session._get_sessionmaker.cache_clear()  # type: ignore[attr-defined]

    engine = db_session.get_engine()
    models.Base.metadata.drop_all(bind=engine)
    models.Base.metadata.create_all(bind=engine)

    yield db_file

    engine.dispose()
    db_session.get_engine.cache_clear()
    db_session._get_sessionmaker.cache_clear()  # type: ignore[attr-defined]


@pytest.fixture()
def sql_repo(temp_db):
    return SQLRepository()


@pytest.fixture()
def file_repo(tmp_path):
    return JSONFileRepository(tmp_path / "data")


@pytest.fixture()
def memory_repo():
    return MemoryRepository()


@pytest.fixture(params=["memory", "file", "database"])
def storage(request):
    """Every backend, for behaviour that belongs to the mandatory contract."""
    return request.getfixturevalue({"memory": "memory_repo", "file": "file_repo", "database": "sql_repo"}[request.param])


@pytest.fixture(params=["file", "database"])
def extended_storage(request):
    """Backends offering geospatial, analytics, search and bulk operations."""
    return request.getfixturevalue({"file": "file_repo", "database": "sql_repo"}[request.param])


def _populate(storage):
    supervisor = storage.create_user(
        NewUser(username="boss", password="secret", name="Boss", email="boss@example.com", role=Role.SUPERVISOR)
    )
    team = storage.create_team(NewTeam(name="Alpha", created_by=supervisor.id, status=TeamStatus.APPROVED))
    worker = storage.create_user(
        NewUser(username="walker", password="secret", name="Walker", email="w@example.com", team_id=team.id)
    )
    return {"supervisor": supervisor, "team": team, "worker": worker}


@pytest.fixture()
def people(storage):
    return _populate(storage)


@pytest.fixture()
def ext_people(extended_storage):
    return _populate(extended_storage)
