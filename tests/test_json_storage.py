from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fieldops.domain.errors import PersistenceError
from fieldops.domain.geo import Point
from fieldops.domain.models import FeatureState, FeatureStatus, NewFeature, NewTask, NewUser, Role, TaskStatus
from fieldops.repositories import json_storage
from fieldops.repositories.json_storage import JSONFileRepository


def _supervisor(repo):
    return repo.create_user(
        NewUser(username="boss", password="secret", name="Boss", email="b@example.com", role=Role.SUPERVISOR)
    )


def test_everything_survives_a_restart(tmp_path):
    data_dir = tmp_path / "data"
    repo = JSONFileRepository(data_dir)
    boss = _supervisor(repo)
    boss = repo.update_user_location(boss.id, Point((2.5, 48.8)))
    feature = repo.create_feature(
        NewFeature(
            name="Mast",
            fea_no="M-1",
            fea_state=FeatureState.PLAN,
            fea_status=FeatureStatus.NEW,
            fea_type="Tower",
            specific_type="Mono",
            geometry={"type": "LineString", "coordinates": [[0, 0], [1, 1]]},
        )
    )
    task = repo.create_task(NewTask(title="Climb", assigned_to=boss.id, due_date="2024-05-01T10:00:00Z"))
    repo.update_task_status(task.id, TaskStatus.IN_PROGRESS, boss.id)

    reloaded = JSONFileRepository(data_dir)

    assert reloaded.get_user(boss.id) == boss
    assert reloaded.get_feature(feature.id) == feature
    assert reloaded.get_task(task.id) == repo.get_task(task.id)
    assert reloaded.get_task_updates(task.id) == repo.get_task_updates(task.id)


def test_snapshot_layout(file_repo):
    boss = _supervisor(file_repo)
    path = file_repo.collection_path("users")
    with path.open(encoding="utf-8") as f:
        data = json.load(f)
    (doc,) = data["users"]
    assert doc["_id"] == boss.id
    assert doc["role"] == "Supervisor"
    assert "createdAt" in doc and "updatedAt" in doc
    assert "teamId" not in doc


def test_writes_leave_no_temporary_files(file_repo):
    _supervisor(file_repo)
    leftovers = [p.name for p in file_repo.data_dir.iterdir() if p.suffix == ".tmp"]
    assert leftovers == []


def test_failed_write_keeps_old_snapshot_and_memory_state(file_repo, monkeypatch):
    boss = _supervisor(file_repo)
    before = file_repo.collection_path("users").read_text(encoding="utf-8")

    def broken_replace(src, dst):
        raise OSError("read-only filesystem")

    monkeypatch.setattr(json_storage.os, "replace", broken_replace)

    with pytest.raises(PersistenceError):
        file_repo.update_user_last_active(boss.id)

    assert file_repo.get_user(boss.id) == boss
    assert file_repo.collection_path("users").read_text(encoding="utf-8") == before
    assert [p for p in file_repo.data_dir.iterdir() if p.suffix == ".tmp"] == []


def test_failed_create_is_not_visible(file_repo, monkeypatch):
    def broken_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(json_storage.os, "replace", broken_replace)
    with pytest.raises(PersistenceError):
        _supervisor(file_repo)
    monkeypatch.undo()
    assert file_repo.get_user_by_username("boss") is None


def test_corrupt_snapshot_raises_persistence_error(tmp_path):
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    (data_dir / "tasks.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(PersistenceError):
        JSONFileRepository(data_dir)


def test_snapshot_missing_collection_key_is_rejected(tmp_path):
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    (data_dir / "teams.json").write_text(json.dumps({"other": []}), encoding="utf-8")
    with pytest.raises(PersistenceError):
        JSONFileRepository(data_dir)


@pytest.mark.parametrize(
    "document",
    [
        {"username": "ghost"},
        {"_id": "not-an-id", "username": "ghost"},
        {"_id": "0" * 24, "username": "ghost", "name": "Ghost", "email": "g@example.com", "role": "Field"},
        "ghost",
    ],
)
def test_snapshot_with_incomplete_records_is_rejected(tmp_path, document):
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    (data_dir / "users.json").write_text(json.dumps({"users": [document]}), encoding="utf-8")
    with pytest.raises(PersistenceError):
        JSONFileRepository(data_dir)


def test_snapshot_without_updated_at_is_backfilled(tmp_path):
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    document = {
        "_id": "0" * 24,
        "taskId": "1" * 24,
        "comment": "legacy",
        "createdAt": "2024-01-01T00:00:00Z",
    }
    (data_dir / "taskUpdates.json").write_text(json.dumps({"taskUpdates": [document]}), encoding="utf-8")
    (update,) = JSONFileRepository(data_dir).export_collection("taskUpdates")
    assert update.updated_at == update.created_at


def test_export_collection_is_oldest_first(file_repo):
    first = _supervisor(file_repo)
    second = file_repo.create_user(
        NewUser(username="deputy", password="secret", name="Deputy", email="d@example.com", role=Role.SUPERVISOR)
    )
    assert [u.id for u in file_repo.export_collection("users")] == [first.id, second.id]


def test_data_dir_that_cannot_be_created_is_reported(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")
    with pytest.raises(PersistenceError):
        JSONFileRepository(blocker / "data")
