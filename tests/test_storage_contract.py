"""
Mandatory contract behaviour, run against every backend.
"""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fieldops.core.security import verify_password
from fieldops.domain.errors import (
    ConflictError,
    NotFoundError,
    ReferentialIntegrityError,
    ValidationError,
)
from fieldops.domain.geo import Point
from fieldops.domain.ids import is_valid_object_id
from fieldops.domain.models import (
    BoundaryStatus,
    FeatureState,
    FeatureStatus,
    Maintenance,
    NewBoundary,
    NewFeature,
    NewTask,
    NewTaskEvidence,
    NewTaskUpdate,
    NewTeam,
    NewUser,
    Role,
    TaskStatus,
    TeamStatus,
)

UNKNOWN_ID = "0" * 24
SQUARE = {"type": "Polygon", "coordinates": [[[0, 0], [10, 0], [10, 10], [0, 10], [0, 0]]]}


def _feature(**overrides):
    values = dict(
        name="Tower 1",
        fea_no="T-001",
        fea_state=FeatureState.PLAN,
        fea_status=FeatureStatus.NEW,
        fea_type="Tower",
        specific_type="Lattice",
        geometry={"type": "Point", "coordinates": [1, 1]},
    )
    values.update(overrides)
    return NewFeature(**values)


# -------------------------- users --------------------------
def test_create_user_assigns_id_and_hashes_password(storage, people):
    worker = people["worker"]
    assert is_valid_object_id(worker.id)
    assert worker.password != "secret"
    assert verify_password("secret", worker.password)
    assert worker.role is Role.FIELD
    assert worker.created_at == worker.updated_at
    assert storage.get_user(worker.id) == worker


def test_username_lookup_is_case_insensitive_and_unique(storage, people):
    assert storage.get_user_by_username("WALKER") == people["worker"]
    assert storage.get_user_by_username("nobody") is None
    with pytest.raises(ConflictError):
        storage.create_user(NewUser(username="Walker", password="x", name="W", email="w2@example.com"))


def test_get_user_with_malformed_or_unknown_id_returns_none(storage):
    assert storage.get_user("not-an-id") is None
    assert storage.get_user(UNKNOWN_ID) is None


def test_field_user_needs_an_approved_team(storage, people):
    pending = storage.create_team(NewTeam(name="Pending", created_by=people["supervisor"].id))
    assert pending.status is TeamStatus.PENDING
    with pytest.raises(ReferentialIntegrityError):
        storage.create_user(NewUser(username="late", password="x", name="L", email="l@example.com", team_id=pending.id))
    with pytest.raises(ReferentialIntegrityError):
        storage.create_user(NewUser(username="lost", password="x", name="L", email="l@example.com", team_id=UNKNOWN_ID))
    with pytest.raises(ReferentialIntegrityError):
        storage.assign_user_to_team(people["worker"].id, pending.id)


def test_update_location_sets_last_active(storage, people):
    user = storage.update_user_location(people["worker"].id, {"type": "Point", "coordinates": [3, 4]})
    assert user.current_location == Point((3, 4))
    assert user.last_active is not None
    assert storage.get_user(user.id).current_location == Point((3, 4))
    with pytest.raises(ValidationError):
        storage.update_user_location(user.id, {"type": "Point", "coordinates": [300, 4]})
    with pytest.raises(NotFoundError):
        storage.update_user_location(UNKNOWN_ID, Point((1, 1)))


def test_update_last_active(storage, people):
    user = storage.update_user_last_active(people["worker"].id)
    assert user.last_active is not None
    with pytest.raises(ValidationError):
        storage.update_user_last_active("bad")


def test_get_all_field_users_excludes_supervisors(storage, people):
    assert [u.username for u in storage.get_all_field_users()] == ["walker"]


# -------------------------- teams --------------------------
def test_team_lifecycle(storage, people):
    supervisor = people["supervisor"]
    team = storage.create_team(NewTeam(name="Bravo", description="second", created_by=supervisor.id))
    assert storage.get_team(team.id) == team
    assert storage.get_team_by_name("bravo") == team

    approved = storage.update_team_status(team.id, TeamStatus.APPROVED, supervisor.id)
    assert approved.status is TeamStatus.APPROVED
    assert approved.approved_by == supervisor.id

    moved = storage.assign_user_to_team(people["worker"].id, team.id)
    assert moved.team_id == team.id
    assert [u.id for u in storage.get_users_by_team(team.id)] == [moved.id]
    assert storage.get_users_by_team("bad") == []
    assert [t.name for t in storage.get_all_teams()] == ["Alpha", "Bravo"]


def test_name_lookups_fold_non_ascii_case(storage, people):
    team = storage.create_team(NewTeam(name="Équipe Nord", created_by=people["supervisor"].id))
    assert storage.get_team_by_name("équipe nord") == team
    assert storage.get_team_by_name("ÉQUIPE NORD") == team

    strasse = storage.create_user(
        NewUser(username="Straße", password="x", name="S", email="s@example.com", role=Role.SUPERVISOR)
    )
    assert storage.get_user_by_username("STRASSE") == strasse


def test_team_creator_must_exist(storage):
    with pytest.raises(ReferentialIntegrityError):
        storage.create_team(NewTeam(name="Ghost", created_by=UNKNOWN_ID))


def test_update_team_status_rejects_unknown_status(storage, people):
    with pytest.raises(ValidationError):
        storage.update_team_status(people["team"].id, "Archived")


# -------------------------- tasks --------------------------
def test_task_default_status_follows_assignment(storage, people):
    loose = storage.create_task(NewTask(title="Survey"))
    assert loose.status is TaskStatus.UNASSIGNED
    owned = storage.create_task(NewTask(title="Inspect", assigned_to=people["worker"].id))
    assert owned.status is TaskStatus.ASSIGNED
    assert storage.get_task(owned.id) == owned


def test_task_references_must_exist(storage, people):
    with pytest.raises(ReferentialIntegrityError):
        storage.create_task(NewTask(title="x", assigned_to=UNKNOWN_ID))
    with pytest.raises(ReferentialIntegrityError):
        storage.create_task(NewTask(title="x", boundary_id=UNKNOWN_ID))
    with pytest.raises(ValidationError):
        storage.create_task(NewTask(title="x", feature_id="nope"))


def test_assign_task_forces_assigned_without_audit(storage, people):
    task = storage.create_task(NewTask(title="Dig", created_by=people["supervisor"].id))
    storage.update_task_status(task.id, TaskStatus.IN_PROGRESS, None)
    assigned = storage.assign_task(task.id, people["worker"].id)
    assert assigned.assigned_to == people["worker"].id
    assert assigned.status is TaskStatus.ASSIGNED
    assert len(storage.get_task_updates(task.id)) == 1
    with pytest.raises(ReferentialIntegrityError):
        storage.assign_task(task.id, UNKNOWN_ID)
    with pytest.raises(NotFoundError):
        storage.assign_task(UNKNOWN_ID, people["worker"].id)


def test_task_queries(storage, people):
    supervisor, worker = people["supervisor"], people["worker"]
    first = storage.create_task(NewTask(title="One", created_by=supervisor.id, assigned_to=worker.id))
    second = storage.create_task(NewTask(title="Two", created_by=supervisor.id))
    assert [t.id for t in storage.get_tasks_by_assignee(worker.id)] == [first.id]
    assert {t.id for t in storage.get_tasks_by_creator(supervisor.id)} == {first.id, second.id}
    assert storage.get_tasks_by_assignee("bad") == []
    assert [t.id for t in storage.get_all_tasks()] == [second.id, first.id]


# -------------------------- features --------------------------
def test_feature_update_merges_and_touches_timestamps(storage, people):
    feature = storage.create_feature(_feature(created_by=people["supervisor"].id))
    assert feature.maintenance is Maintenance.NONE
    assert feature.last_updated == feature.created_at

    updated = storage.update_feature(feature.id, {"fea_status": "Active", "remarks": "checked", "name": None})
    assert updated.fea_status is FeatureStatus.ACTIVE
    assert updated.remarks == "checked"
    assert updated.name == "Tower 1"
    assert updated.updated_at >= feature.updated_at
    assert updated.last_updated == updated.updated_at
    assert storage.get_feature(feature.id) == updated

    with pytest.raises(ValidationError):
        storage.update_feature(feature.id, {"id": UNKNOWN_ID})
    with pytest.raises(ValidationError):
        storage.update_feature(feature.id, {"fea_state": "Melted"})
    with pytest.raises(NotFoundError):
        storage.update_feature(UNKNOWN_ID, {"remarks": "x"})


def test_feature_filters(storage):
    tower = storage.create_feature(_feature())
    storage.create_feature(_feature(name="Pole", fea_no="P-1", fea_type="Pole", fea_status=FeatureStatus.ACTIVE))
    assert [f.id for f in storage.get_features_by_type("Tower")] == [tower.id]
    assert [f.name for f in storage.get_features_by_status(FeatureStatus.ACTIVE)] == ["Pole"]
    assert len(storage.get_all_features()) == 2


def test_delete_feature(storage):
    feature = storage.create_feature(_feature())
    assert storage.delete_feature(feature.id) is True
    assert storage.get_feature(feature.id) is None
    assert storage.delete_feature(feature.id) is False
    assert storage.delete_feature("bad") is False


def test_feature_boundary_reference_must_exist(storage):
    with pytest.raises(ReferentialIntegrityError):
        storage.create_feature(_feature(boundary_id=UNKNOWN_ID))


# -------------------------- boundaries --------------------------
def test_boundary_lifecycle(storage, people):
    boundary = storage.create_boundary(NewBoundary(name="Zone A", geometry=SQUARE))
    assert boundary.status is BoundaryStatus.NEW
    assert storage.get_boundary(boundary.id) == boundary

    reviewed = storage.update_boundary_status(boundary.id, BoundaryStatus.UNDER_REVIEW)
    assert reviewed.status is BoundaryStatus.UNDER_REVIEW
    assigned = storage.assign_boundary(boundary.id, people["worker"].id)
    assert assigned.assigned_to == people["worker"].id
    assert [b.id for b in storage.get_all_boundaries()] == [boundary.id]

    with pytest.raises(ReferentialIntegrityError):
        storage.assign_boundary(boundary.id, UNKNOWN_ID)


def test_boundary_geometry_must_be_polygon():
    with pytest.raises(ValidationError):
        NewBoundary(name="Line", geometry={"type": "LineString", "coordinates": [[0, 0], [1, 1]]})
    with pytest.raises(ValidationError):
        NewBoundary(name="Nothing", geometry=None)


# -------------------------- evidence / manual updates --------------------------
def test_task_evidence_and_manual_updates(storage, people):
    worker = people["worker"]
    task = storage.create_task(NewTask(title="Photo", assigned_to=worker.id))
    first = storage.add_task_evidence(NewTaskEvidence(task_id=task.id, user_id=worker.id, image_url="a.jpg"))
    second = storage.add_task_evidence(NewTaskEvidence(task_id=task.id, user_id=worker.id, image_url="b.jpg"))
    assert [e.id for e in storage.get_task_evidence(task.id)] == [second.id, first.id]

    note = storage.create_task_update(NewTaskUpdate(task_id=task.id, user_id=worker.id, comment="on site"))
    assert storage.get_task_updates(task.id) == [note]
    assert storage.get_task(task.id).status is TaskStatus.ASSIGNED

    with pytest.raises(ReferentialIntegrityError):
        storage.add_task_evidence(NewTaskEvidence(task_id=UNKNOWN_ID, user_id=worker.id, image_url="c.jpg"))
    with pytest.raises(ReferentialIntegrityError):
        storage.create_task_update(NewTaskUpdate(task_id=UNKNOWN_ID))
