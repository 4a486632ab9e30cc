"""
Volatile storage backend.

Entities live in per-collection dicts guarded by a re-entrant lock. The
file-snapshot backend extends this class and persists a collection through
the `_persist` hook after every mutation.
"""
from __future__ import annotations

import functools
import threading
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

import structlog

from fieldops.domain.errors import (
    ConflictError,
    NotFoundError,
    PersistenceError,
    ReferentialIntegrityError,
)
from fieldops.domain.geo import Point, geometry_from_dict
from fieldops.domain.ids import is_valid_object_id, new_object_id
from fieldops.domain.models import (
    Boundary,
    BoundaryStatus,
    Feature,
    FeatureStatus,
    NewBoundary,
    NewFeature,
    NewTask,
    NewTaskEvidence,
    NewTaskUpdate,
    NewTeam,
    NewUser,
    Role,
    Task,
    TaskEvidence,
    TaskStatus,
    TaskUpdate,
    Team,
    TeamStatus,
    User,
    coerce_enum,
    merge_feature,
    normalize_feature_changes,
    optional_object_id,
    require_object_id,
    utcnow,
)
from fieldops.domain.queries import (
    feature_search_fields,
    feature_stats,
    features_within,
    nearest_first,
    normalize_query,
    task_search_fields,
    task_stats,
    tasks_within,
    text_matches,
    validate_center,
)
from fieldops.domain.serialization import COLLECTIONS

from .base import ExtendedStorage, Storage, check_ids, status_comment

logger = structlog.get_logger(__name__)

USERS = "users"
TEAMS = "teams"
TASKS = "tasks"
FEATURES = "features"
BOUNDARIES = "boundaries"
TASK_UPDATES = "taskUpdates"
TASK_EVIDENCE = "taskEvidence"


def synchronized(method: Callable) -> Callable:
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)

    return wrapper


def _oldest_first(items: Iterable) -> List:
    return sorted(items, key=lambda e: (e.created_at, e.id))


def _newest_first(items: Iterable) -> List:
    return sorted(items, key=lambda e: (e.created_at, e.id), reverse=True)


class MemoryRepository(Storage):
    """Process-local storage; nothing survives a restart."""

    backend_name = "memory"

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._collections: Dict[str, Dict[str, Any]] = {name: {} for name in COLLECTIONS}

    # -------------------------- internals --------------------------
    def _persist(self, collection: str) -> None:
        """Durable subclasses write `collection` here; raise PersistenceError on failure."""

    def _new_id(self, collection: str) -> str:
        return new_object_id(lambda candidate: candidate in self._collections[collection])

    def _write(self, collection: str, entity):
        records = self._collections[collection]
        previous = records.get(entity.id)
        records[entity.id] = entity
        try:
            self._persist(collection)
        except PersistenceError:
            if previous is None:
                records.pop(entity.id, None)
            else:
                records[entity.id] = previous
            raise
        return entity

    def _remove(self, collection: str, entity_id: str) -> bool:
        records = self._collections[collection]
        previous = records.pop(entity_id, None)
        if previous is None:
            return False
        try:
            self._persist(collection)
        except PersistenceError:
            records[entity_id] = previous
            raise
        return True

    def _lookup(self, collection: str, entity_id: Any):
        if not is_valid_object_id(entity_id):
            return None
        return self._collections[collection].get(entity_id)

    def _require(self, collection: str, entity_id: Any, entity: str, field: str):
        require_object_id(entity_id, field)
        found = self._collections[collection].get(entity_id)
        if found is None:
            raise NotFoundError(entity, entity_id)
        return found

    def _reference(self, collection: str, entity_id: str, entity: str):
        found = self._collections[collection].get(entity_id)
        if found is None:
            raise ReferentialIntegrityError(f"{entity} {entity_id} does not exist")
        return found

    def _check_team_membership(self, role: Role, team_id: Optional[str]) -> None:
        if team_id is None:
            return
        team = self._reference(TEAMS, team_id, "Team")
        if role is Role.FIELD and team.status is not TeamStatus.APPROVED:
            raise ReferentialIntegrityError("Team is not approved for registration")

    def _values(self, collection: str) -> List:
        return list(self._collections[collection].values())

    def _filter(self, collection: str, predicate: Callable[[Any], bool]) -> List:
        return _oldest_first(e for e in self._collections[collection].values() if predicate(e))

    @synchronized
    def export_collection(self, collection: str) -> List:
        """Every entity of `collection` (a snapshot file name), oldest first."""
        return _oldest_first(self._values(collection))

    # -------------------------- users --------------------------
    @synchronized
    def get_user(self, user_id: str) -> Optional[User]:
        return self._lookup(USERS, user_id)

    @synchronized
    def get_user_by_username(self, username: str) -> Optional[User]:
        if not isinstance(username, str):
            return None
        key = username.strip().casefold()
        for user in self._values(USERS):
            if user.username.casefold() == key:
                return user
        return None

    @synchronized
    def create_user(self, data: NewUser) -> User:
        if self.get_user_by_username(data.username) is not None:
            raise ConflictError(f"Username {data.username!r} is already taken", "username")
        self._check_team_membership(data.role, data.team_id)
        user = data.to_entity(self._new_id(USERS), utcnow())
        return self._write(USERS, user)

    @synchronized
    def update_user_location(self, user_id: str, location: Point) -> User:
        location = geometry_from_dict(location, allowed=("Point",))
        user = self._require(USERS, user_id, "User", "user_id")
        now = utcnow()
        return self._write(USERS, replace(user, current_location=location, last_active=now, updated_at=now))

    @synchronized
    def update_user_last_active(self, user_id: str) -> User:
        user = self._require(USERS, user_id, "User", "user_id")
        now = utcnow()
        return self._write(USERS, replace(user, last_active=now, updated_at=now))

    @synchronized
    def get_all_field_users(self) -> List[User]:
        return self._filter(USERS, lambda u: u.role is Role.FIELD)

    # -------------------------- teams --------------------------
    @synchronized
    def create_team(self, data: NewTeam) -> Team:
        self._reference(USERS, data.created_by, "User")
        team = data.to_entity(self._new_id(TEAMS), utcnow())
        return self._write(TEAMS, team)

    @synchronized
    def get_team(self, team_id: str) -> Optional[Team]:
        return self._lookup(TEAMS, team_id)

    @synchronized
    def get_team_by_name(self, name: str) -> Optional[Team]:
        if not isinstance(name, str):
            return None
        key = name.strip().casefold()
        for team in _oldest_first(self._values(TEAMS)):
            if team.name.casefold() == key:
                return team
        return None

    @synchronized
    def update_team_status(self, team_id: str, status: TeamStatus, approved_by: Optional[str] = None) -> Team:
        status = coerce_enum(TeamStatus, status, "status")
        approved_by = optional_object_id(approved_by, "approved_by")
        team = self._require(TEAMS, team_id, "Team", "team_id")
        if approved_by:
            self._reference(USERS, approved_by, "User")
        updated = replace(team, status=status, approved_by=approved_by or team.approved_by, updated_at=utcnow())
        return self._write(TEAMS, updated)

    @synchronized
    def get_all_teams(self) -> List[Team]:
        return _oldest_first(self._values(TEAMS))

    @synchronized
    def get_users_by_team(self, team_id: str) -> List[User]:
        if not is_valid_object_id(team_id):
            return []
        return self._filter(USERS, lambda u: u.team_id == team_id)

    @synchronized
    def assign_user_to_team(self, user_id: str, team_id: str) -> User:
        require_object_id(team_id, "team_id")
        user = self._require(USERS, user_id, "User", "user_id")
        self._check_team_membership(user.role, team_id)
        return self._write(USERS, replace(user, team_id=team_id, updated_at=utcnow()))

    # -------------------------- tasks --------------------------
    @synchronized
    def create_task(self, data: NewTask) -> Task:
        for collection, ref, entity in (
            (USERS, data.created_by, "User"),
            (USERS, data.assigned_to, "User"),
            (BOUNDARIES, data.boundary_id, "Boundary"),
            (FEATURES, data.feature_id, "Feature"),
        ):
            if ref:
                self._reference(collection, ref, entity)
        task = data.to_entity(self._new_id(TASKS), utcnow())
        return self._write(TASKS, task)

    @synchronized
    def get_task(self, task_id: str) -> Optional[Task]:
        return self._lookup(TASKS, task_id)

    @synchronized
    def update_task_status(self, task_id: str, status: TaskStatus, user_id: Optional[str]) -> Task:
        status = coerce_enum(TaskStatus, status, "status")
        user_id = optional_object_id(user_id, "user_id")
        task = self._require(TASKS, task_id, "Task", "task_id")
        if user_id:
            self._reference(USERS, user_id, "User")
        now = utcnow()
        updated = self._write(TASKS, replace(task, status=status, updated_at=now))
        audit = NewTaskUpdate(
            task_id=task.id,
            user_id=user_id,
            comment=status_comment(status),
            old_status=task.status,
            new_status=status,
        ).to_entity(self._new_id(TASK_UPDATES), now)
        try:
            self._write(TASK_UPDATES, audit)
        except PersistenceError:
            logger.error("task_status_audit_failed", task_id=task.id, status=status.value, backend=self.backend_name)
            try:
                self._write(TASKS, task)
            except PersistenceError:
                logger.critical("task_status_rollback_failed", task_id=task.id, backend=self.backend_name)
            raise
        return updated

    @synchronized
    def assign_task(self, task_id: str, user_id: str) -> Task:
        require_object_id(user_id, "user_id")
        task = self._require(TASKS, task_id, "Task", "task_id")
        self._reference(USERS, user_id, "User")
        updated = replace(task, assigned_to=user_id, status=TaskStatus.ASSIGNED, updated_at=utcnow())
        return self._write(TASKS, updated)

    @synchronized
    def get_tasks_by_assignee(self, user_id: str) -> List[Task]:
        if not is_valid_object_id(user_id):
            return []
        return self._filter(TASKS, lambda t: t.assigned_to == user_id)

    @synchronized
    def get_tasks_by_creator(self, user_id: str) -> List[Task]:
        if not is_valid_object_id(user_id):
            return []
        return self._filter(TASKS, lambda t: t.created_by == user_id)

    @synchronized
    def get_all_tasks(self) -> List[Task]:
        return _newest_first(self._values(TASKS))

    # -------------------------- features --------------------------
    def _check_feature_refs(self, created_by: Optional[str], boundary_id: Optional[str]) -> None:
        if created_by:
            self._reference(USERS, created_by, "User")
        if boundary_id:
            self._reference(BOUNDARIES, boundary_id, "Boundary")

    @synchronized
    def create_feature(self, data: NewFeature) -> Feature:
        self._check_feature_refs(data.created_by, data.boundary_id)
        feature = data.to_entity(self._new_id(FEATURES), utcnow())
        return self._write(FEATURES, feature)

    @synchronized
    def get_feature(self, feature_id: str) -> Optional[Feature]:
        return self._lookup(FEATURES, feature_id)

    @synchronized
    def update_feature(self, feature_id: str, changes: Mapping[str, Any]) -> Feature:
        feature = self._require(FEATURES, feature_id, "Feature", "feature_id")
        normalized = normalize_feature_changes(changes)
        self._check_feature_refs(normalized.get("created_by"), normalized.get("boundary_id"))
        return self._write(FEATURES, merge_feature(feature, normalized, utcnow()))

    @synchronized
    def delete_feature(self, feature_id: str) -> bool:
        if not is_valid_object_id(feature_id):
            return False
        return self._remove(FEATURES, feature_id)

    @synchronized
    def get_features_by_type(self, fea_type: str) -> List[Feature]:
        return self._filter(FEATURES, lambda f: f.fea_type == fea_type)

    @synchronized
    def get_features_by_status(self, status: FeatureStatus) -> List[Feature]:
        status = coerce_enum(FeatureStatus, status, "status")
        return self._filter(FEATURES, lambda f: f.fea_status is status)

    @synchronized
    def get_all_features(self) -> List[Feature]:
        return _oldest_first(self._values(FEATURES))

    # -------------------------- boundaries --------------------------
    @synchronized
    def create_boundary(self, data: NewBoundary) -> Boundary:
        if data.assigned_to:
            self._reference(USERS, data.assigned_to, "User")
        boundary = data.to_entity(self._new_id(BOUNDARIES), utcnow())
        return self._write(BOUNDARIES, boundary)

    @synchronized
    def get_boundary(self, boundary_id: str) -> Optional[Boundary]:
        return self._lookup(BOUNDARIES, boundary_id)

    @synchronized
    def update_boundary_status(self, boundary_id: str, status: BoundaryStatus) -> Boundary:
        status = coerce_enum(BoundaryStatus, status, "status")
        boundary = self._require(BOUNDARIES, boundary_id, "Boundary", "boundary_id")
        return self._write(BOUNDARIES, replace(boundary, status=status, updated_at=utcnow()))

    @synchronized
    def assign_boundary(self, boundary_id: str, user_id: str) -> Boundary:
        require_object_id(user_id, "user_id")
        boundary = self._require(BOUNDARIES, boundary_id, "Boundary", "boundary_id")
        self._reference(USERS, user_id, "User")
        return self._write(BOUNDARIES, replace(boundary, assigned_to=user_id, updated_at=utcnow()))

    @synchronized
    def get_all_boundaries(self) -> List[Boundary]:
        return _oldest_first(self._values(BOUNDARIES))

    # -------------------------- audit / evidence --------------------------
    @synchronized
    def create_task_update(self, data: NewTaskUpdate) -> TaskUpdate:
        self._reference(TASKS, data.task_id, "Task")
        if data.user_id:
            self._reference(USERS, data.user_id, "User")
        update = data.to_entity(self._new_id(TASK_UPDATES), utcnow())
        return self._write(TASK_UPDATES, update)

    @synchronized
    def get_task_updates(self, task_id: str) -> List[TaskUpdate]:
        if not is_valid_object_id(task_id):
            return []
        return _newest_first(u for u in self._values(TASK_UPDATES) if u.task_id == task_id)

    @synchronized
    def add_task_evidence(self, data: NewTaskEvidence) -> TaskEvidence:
        self._reference(TASKS, data.task_id, "Task")
        self._reference(USERS, data.user_id, "User")
        evidence = data.to_entity(self._new_id(TASK_EVIDENCE), utcnow())
        return self._write(TASK_EVIDENCE, evidence)

    @synchronized
    def get_task_evidence(self, task_id: str) -> List[TaskEvidence]:
        if not is_valid_object_id(task_id):
            return []
        return _newest_first(e for e in self._values(TASK_EVIDENCE) if e.task_id == task_id)


class InMemoryQueriesMixin(ExtendedStorage):
    """Extended capabilities evaluated over the in-process collections."""

    @synchronized
    def get_users_near_location(self, lng: float, lat: float, max_distance: float) -> List[User]:
        lng, lat, max_distance = validate_center(lng, lat, max_distance)
        users = _oldest_first(self._values(USERS))
        return nearest_first(((u, u.current_location) for u in users), lng, lat, max_distance)

    @synchronized
    def get_features_near_location(self, lng: float, lat: float, max_distance: float) -> List[Feature]:
        lng, lat, max_distance = validate_center(lng, lat, max_distance)
        features = _oldest_first(self._values(FEATURES))
        candidates = ((f, f.geometry if isinstance(f.geometry, Point) else None) for f in features)
        return nearest_first(candidates, lng, lat, max_distance)

    @synchronized
    def get_features_in_boundary(self, boundary_id: str) -> List[Feature]:
        boundary = self._require(BOUNDARIES, boundary_id, "Boundary", "boundary_id")
        return features_within(_oldest_first(self._values(FEATURES)), boundary.geometry)

    @synchronized
    def get_tasks_in_boundary(self, boundary_id: str) -> List[Task]:
        boundary = self._require(BOUNDARIES, boundary_id, "Boundary", "boundary_id")
        return tasks_within(_oldest_first(self._values(TASKS)), boundary.geometry)

    @synchronized
    def get_task_stats_by_user(self, user_id: str) -> dict:
        require_object_id(user_id, "user_id")
        return task_stats(t for t in self._values(TASKS) if t.assigned_to == user_id)

    @synchronized
    def get_feature_stats_by_type(self) -> dict:
        return feature_stats(self._values(FEATURES))

    @synchronized
    def search_features(self, query: str) -> List[Feature]:
        needle = normalize_query(query)
        return self._filter(FEATURES, lambda f: text_matches(needle, feature_search_fields(f)))

    @synchronized
    def search_tasks(self, query: str) -> List[Task]:
        needle = normalize_query(query)
        return _newest_first(t for t in self._values(TASKS) if text_matches(needle, task_search_fields(t)))

    @synchronized
    def bulk_update_task_status(self, task_ids: Iterable[str], status: TaskStatus, user_id: Optional[str] = None) -> int:
        ids = check_ids(task_ids, "task_ids")
        status = coerce_enum(TaskStatus, status, "status")
        user_id = optional_object_id(user_id, "user_id")
        if user_id:
            self._reference(USERS, user_id, "User")
        updated = 0
        for task_id in ids:
            if task_id not in self._collections[TASKS]:
                continue
            self.update_task_status(task_id, status, user_id)
            updated += 1
        logger.info(
            "bulk_task_status_updated",
            requested=len(ids),
            updated=updated,
            status=status.value,
            backend=self.backend_name,
        )
        return updated
