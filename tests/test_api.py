"""
HTTP boundary: status codes, error mapping and password hiding.
"""
from __future__ import annotations

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fieldops.app import create_app
from fieldops.domain.errors import PersistenceError

UNKNOWN_ID = "0" * 24
SQUARE = {"type": "Polygon", "coordinates": [[[0, 0], [10, 0], [10, 10], [0, 10], [0, 0]]]}


@pytest.fixture()
def client(file_repo):
    with TestClient(create_app(storage=file_repo)) as c:
        yield c


@pytest.fixture()
def memory_client(memory_repo):
    with TestClient(create_app(storage=memory_repo)) as c:
        yield c


def _supervisor(client, username="boss"):
    resp = client.post(
        "/api/users",
        json={"username": username, "password": "secret", "name": "Boss", "email": "b@example.com", "role": "Supervisor"},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_health_reports_backend(client):
    assert client.get("/api/health").json() == {"ok": True, "backend": "file"}


def test_created_user_hides_password(client):
    user = _supervisor(client)
    assert "password" not in user
    assert len(user["_id"]) == 24
    fetched = client.get(f"/api/users/{user['_id']}").json()
    assert "password" not in fetched
    assert fetched["username"] == "boss"


def test_error_mapping(client):
    _supervisor(client)
    dup = client.post(
        "/api/users",
        json={"username": "BOSS", "password": "x", "name": "B", "email": "b@example.com", "role": "Supervisor"},
    )
    assert dup.status_code == 409
    assert dup.json()["error"] == "ConflictError"

    bad_enum = client.post("/api/users", json={"username": "x", "password": "x", "name": "X", "email": "x@x", "role": "God"})
    assert bad_enum.status_code == 400
    assert bad_enum.json()["field"] == "role"

    missing = client.get(f"/api/users/{UNKNOWN_ID}")
    assert missing.status_code == 404

    bad_ref = client.post("/api/teams", json={"name": "Ghosts", "createdBy": UNKNOWN_ID})
    assert bad_ref.status_code == 400
    assert bad_ref.json()["error"] == "ReferentialIntegrityError"

    unknown_field = client.post("/api/teams", json={"name": "X", "createdBy": UNKNOWN_ID, "color": "red"})
    assert unknown_field.status_code == 400


def test_task_status_flow(client):
    boss = _supervisor(client)
    task = client.post("/api/tasks", json={"title": "Survey", "createdBy": boss["_id"]}).json()
    assert task["status"] == "Unassigned"

    resp = client.patch(f"/api/tasks/{task['_id']}/status", json={"status": "In Progress", "userId": boss["_id"]})
    assert resp.status_code == 200
    assert resp.json()["status"] == "In Progress"

    updates = client.get(f"/api/tasks/{task['_id']}/updates").json()
    assert len(updates) == 1
    assert updates[0]["oldStatus"] == "Unassigned"
    assert updates[0]["newStatus"] == "In Progress"

    assert client.patch(f"/api/tasks/{task['_id']}/status", json={"status": "Lost"}).status_code == 400
    assert client.patch(f"/api/tasks/{UNKNOWN_ID}/status", json={"status": "Completed"}).status_code == 404


def test_bulk_status_fast_fail_reports_bad_ids(client):
    task = client.post("/api/tasks", json={"title": "Survey"}).json()
    resp = client.post("/api/tasks/bulk-status", json={"taskIds": [task["_id"], "nope"], "status": "Completed"})
    assert resp.status_code == 400
    assert resp.json()["details"] == ["nope"]

    ok = client.post("/api/tasks/bulk-status", json={"taskIds": [task["_id"]], "status": "Completed"})
    assert ok.json() == {"updated": 1}

    not_a_list = client.post("/api/tasks/bulk-status", json={"taskIds": 5, "status": "Completed"})
    assert not_a_list.status_code == 400
    assert not_a_list.json()["field"] == "task_ids"


def test_feature_crud(client):
    created = client.post(
        "/api/features",
        json={
            "name": "Tower",
            "feaNo": "T-1",
            "feaState": "Plan",
            "feaStatus": "New",
            "feaType": "Tower",
            "specificType": "Lattice",
            "geometry": {"type": "Point", "coordinates": [1, 1]},
        },
    )
    assert created.status_code == 201, created.text
    feature_id = created.json()["_id"]

    patched = client.patch(f"/api/features/{feature_id}", json={"remarks": "painted"})
    assert patched.json()["remarks"] == "painted"

    assert client.get("/api/features", params={"type": "Tower"}).json()[0]["_id"] == feature_id
    assert client.delete(f"/api/features/{feature_id}").status_code == 204
    assert client.delete(f"/api/features/{feature_id}").status_code == 404


def test_boundary_containment_route(client):
    boundary = client.post("/api/boundaries", json={"name": "Zone", "geometry": SQUARE}).json()
    client.post("/api/tasks", json={"title": "in", "location": {"type": "Point", "coordinates": [1, 1]}})
    tasks = client.get(f"/api/boundaries/{boundary['_id']}/tasks").json()
    assert [t["title"] for t in tasks] == ["in"]

    bad = client.post("/api/boundaries", json={"name": "Open", "geometry": {"type": "Polygon", "coordinates": [[[0, 0], [1, 0], [1, 1], [0, 1]]]}})
    assert bad.status_code == 400


def test_extended_routes_return_501_on_memory_backend(memory_client):
    assert memory_client.get("/api/users/nearby", params={"lng": 0, "lat": 0}).status_code == 501
    assert memory_client.get("/api/tasks/search", params={"q": "x"}).status_code == 501
    assert memory_client.get("/api/analytics/features/by-type").status_code == 501
    assert memory_client.get("/api/teams").status_code == 200


def test_persistence_failure_maps_to_500(client, file_repo, monkeypatch):
    def broken(collection):
        raise PersistenceError("disk full")

    monkeypatch.setattr(file_repo, "_persist", broken)
    resp = client.post("/api/tasks", json={"title": "Survey"})
    assert resp.status_code == 500
    assert resp.json()["error"] == "PersistenceError"
