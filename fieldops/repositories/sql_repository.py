"""Database storage backend built on SQLAlchemy."""
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Iterable, List, Mapping, Optional

import structlog
from sqlalchemy import func, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fieldops.db.create_tables import create_all
from fieldops.db.models import (
    BoundaryRecord,
    FeatureRecord,
    TaskEvidenceRecord,
    TaskRecord,
    TaskUpdateRecord,
    TeamRecord,
    UserRecord,
)
from fieldops.db.session import _get_sessionmaker, build_engine, make_sessionmaker
from fieldops.domain.errors import (
    ConflictError,
    NotFoundError,
    PersistenceError,
    ReferentialIntegrityError,
    StorageConnectionError,
    StorageError,
)
from fieldops.domain.geo import Point, bounding_box, geometry_from_dict
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
    features_within,
    nearest_first,
    normalize_query,
    task_search_fields,
    tasks_within,
    text_matches,
    validate_center,
)

from .base import ExtendedStorage, Storage, check_ids, status_comment

logger = structlog.get_logger(__name__)


class SQLRepository(Storage, ExtendedStorage):
    """CRUD and query helpers wrapping the SQLAlchemy session."""

    backend_name = "database"

    def __init__(self, engine: Engine | None = None) -> None:
        self._engine = engine
        self._sessions = make_sessionmaker(engine) if engine is not None else _get_sessionmaker()

    @classmethod
    def connect(cls, url: str) -> "SQLRepository":
        """Open the database, verify it answers and create missing tables."""
        if not (url or "").strip():
            raise StorageConnectionError("DATABASE_URL is not configured")
        try:
            engine = build_engine(url)
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            create_all(engine)
        except (SQLAlchemyError, ImportError) as exc:
            raise StorageConnectionError(f"Cannot connect to database: {exc}") from exc
        return cls(engine=engine)

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()

    # -------------------------- internals --------------------------
    @contextmanager
    def _session(self):
        session: Session = self._sessions()
        try:
            yield session
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("database_operation_failed", error=str(exc))
            raise PersistenceError(f"Database operation failed: {exc}") from exc
        except StorageError:
            session.rollback()
            raise
        finally:
            session.close()

    @staticmethod
    def _new_id(session: Session, record_cls) -> str:
        return new_object_id(lambda candidate: session.get(record_cls, candidate) is not None)

    @staticmethod
    def _lookup(session: Session, record_cls, entity_id: Any):
        if not is_valid_object_id(entity_id):
            return None
        return session.get(record_cls, entity_id)

    @staticmethod
    def _require(session: Session, record_cls, entity_id: Any, entity: str, field: str):
        require_object_id(entity_id, field)
        record = session.get(record_cls, entity_id)
        if record is None:
            raise NotFoundError(entity, entity_id)
        return record

    @staticmethod
    def _reference(session: Session, record_cls, entity_id: str, entity: str):
        record = session.get(record_cls, entity_id)
        if record is None:
            raise ReferentialIntegrityError(f"{entity} {entity_id} does not exist")
        return record

    def _check_team_membership(self, session: Session, role: Role, team_id: Optional[str]) -> None:
        if team_id is None:
            return
        team = self._reference(session, TeamRecord, team_id, "Team")
        if role is Role.FIELD and team.status != TeamStatus.APPROVED.value:
            raise ReferentialIntegrityError("Team is not approved for registration")

    def _list(self, record_cls, *criteria, newest_first: bool = False) -> list:
        order = (record_cls.created_at.desc(), record_cls.id.desc()) if newest_first else (
            record_cls.created_at,
            record_cls.id,
        )
        with self._session() as session:
            stmt = select(record_cls).where(*criteria).order_by(*order)
            return [record.to_entity() for record in session.execute(stmt).scalars()]

    def _get(self, record_cls, entity_id: Any):
        with self._session() as session:
            record = self._lookup(session, record_cls, entity_id)
            return record.to_entity() if record else None

    def _save(self, session: Session, record, entity):
        record.update_from(entity)
        session.commit()
        return entity

    def _insert(self, session: Session, record_cls, data):
        entity = data.to_entity(self._new_id(session, record_cls), utcnow())
        session.add(record_cls.from_entity(entity))
        session.commit()
        return entity

    # -------------------------- users --------------------------
    def get_user(self, user_id: str) -> Optional[User]:
        return self._get(UserRecord, user_id)

    def get_user_by_username(self, username: str) -> Optional[User]:
        if not isinstance(username, str):
            return None
        with self._session() as session:
            stmt = select(UserRecord).where(UserRecord.username_key == username.strip().casefold())
            record = session.execute(stmt).scalars().first()
            return record.to_entity() if record else None

    def create_user(self, data: NewUser) -> User:
        with self._session() as session:
            stmt = select(UserRecord.id).where(UserRecord.username_key == data.username.casefold()).limit(1)
            if session.execute(stmt).first() is not None:
                raise ConflictError(f"Username {data.username!r} is already taken", "username")
            self._check_team_membership(session, data.role, data.team_id)
            return self._insert(session, UserRecord, data)

    def update_user_location(self, user_id: str, location: Point) -> User:
        location = geometry_from_dict(location, allowed=("Point",))
        with self._session() as session:
            record = self._require(session, UserRecord, user_id, "User", "user_id")
            now = utcnow()
            user = replace(record.to_entity(), current_location=location, last_active=now, updated_at=now)
            return self._save(session, record, user)

    def update_user_last_active(self, user_id: str) -> User:
        with self._session() as session:
            record = self._require(session, UserRecord, user_id, "User", "user_id")
            now = utcnow()
            return self._save(session, record, replace(record.to_entity(), last_active=now, updated_at=now))

    def get_all_field_users(self) -> List[User]:
        return self._list(UserRecord, UserRecord.role == Role.FIELD.value)

    # -------------------------- teams --------------------------
    def create_team(self, data: NewTeam) -> Team:
        with self._session() as session:
            self._reference(session, UserRecord, data.created_by, "User")
            return self._insert(session, TeamRecord, data)

    def get_team(self, team_id: str) -> Optional[Team]:
        return self._get(TeamRecord, team_id)

    def get_team_by_name(self, name: str) -> Optional[Team]:
        if not isinstance(name, str):
            return None
        with self._session() as session:
            stmt = (
                select(TeamRecord)
                .where(TeamRecord.name_key == name.strip().casefold())
                .order_by(TeamRecord.created_at, TeamRecord.id)
            )
            record = session.execute(stmt).scalars().first()
            return record.to_entity() if record else None

    def update_team_status(self, team_id: str, status: TeamStatus, approved_by: Optional[str] = None) -> Team:
        status = coerce_enum(TeamStatus, status, "status")
        approved_by = optional_object_id(approved_by, "approved_by")
        with self._session() as session:
            record = self._require(session, TeamRecord, team_id, "Team", "team_id")
            if approved_by:
                self._reference(session, UserRecord, approved_by, "User")
            team = record.to_entity()
            updated = replace(team, status=status, approved_by=approved_by or team.approved_by, updated_at=utcnow())
            return self._save(session, record, updated)

    def get_all_teams(self) -> List[Team]:
        return self._list(TeamRecord)

    def get_users_by_team(self, team_id: str) -> List[User]:
        if not is_valid_object_id(team_id):
            return []
        return self._list(UserRecord, UserRecord.team_id == team_id)

    def assign_user_to_team(self, user_id: str, team_id: str) -> User:
        require_object_id(team_id, "team_id")
        with self._session() as session:
            record = self._require(session, UserRecord, user_id, "User", "user_id")
            user = record.to_entity()
            self._check_team_membership(session, user.role, team_id)
            return self._save(session, record, replace(user, team_id=team_id, updated_at=utcnow()))

    # -------------------------- tasks --------------------------
    def create_task(self, data: NewTask) -> Task:
        with self._session() as session:
            for record_cls, ref, entity in (
                (UserRecord, data.created_by, "User"),
                (UserRecord, data.assigned_to, "User"),
                (BoundaryRecord, data.boundary_id, "Boundary"),
                (FeatureRecord, data.feature_id, "Feature"),
            ):
                if ref:
                    self._reference(session, record_cls, ref, entity)
            return self._insert(session, TaskRecord, data)

    def get_task(self, task_id: str) -> Optional[Task]:
        return self._get(TaskRecord, task_id)

    def update_task_status(self, task_id: str, status: TaskStatus, user_id: Optional[str]) -> Task:
        status = coerce_enum(TaskStatus, status, "status")
        user_id = optional_object_id(user_id, "user_id")
        with self._session() as session:
            updated = self._apply_task_status(session, task_id, status, user_id)
            # status write and audit record commit together or not at all
            session.commit()
            return updated

    def _apply_task_status(self, session: Session, task_id: str, status: TaskStatus, user_id: Optional[str]) -> Task:
        record = self._require(session, TaskRecord, task_id, "Task", "task_id")
        if user_id:
            self._reference(session, UserRecord, user_id, "User")
        task = record.to_entity()
        now = utcnow()
        updated = replace(task, status=status, updated_at=now)
        record.update_from(updated)
        audit = NewTaskUpdate(
            task_id=task.id,
            user_id=user_id,
            comment=status_comment(status),
            old_status=task.status,
            new_status=status,
        ).to_entity(self._new_id(session, TaskUpdateRecord), now)
        session.add(TaskUpdateRecord.from_entity(audit))
        session.flush()
        return updated

    def assign_task(self, task_id: str, user_id: str) -> Task:
        require_object_id(user_id, "user_id")
        with self._session() as session:
            record = self._require(session, TaskRecord, task_id, "Task", "task_id")
            self._reference(session, UserRecord, user_id, "User")
            updated = replace(record.to_entity(), assigned_to=user_id, status=TaskStatus.ASSIGNED, updated_at=utcnow())
            return self._save(session, record, updated)

    def get_tasks_by_assignee(self, user_id: str) -> List[Task]:
        if not is_valid_object_id(user_id):
            return []
        return self._list(TaskRecord, TaskRecord.assigned_to == user_id)

    def get_tasks_by_creator(self, user_id: str) -> List[Task]:
        if not is_valid_object_id(user_id):
            return []
        return self._list(TaskRecord, TaskRecord.created_by == user_id)

    def get_all_tasks(self) -> List[Task]:
        return self._list(TaskRecord, newest_first=True)

    # -------------------------- features --------------------------
    def _check_feature_refs(self, session: Session, created_by: Optional[str], boundary_id: Optional[str]) -> None:
        if created_by:
            self._reference(session, UserRecord, created_by, "User")
        if boundary_id:
            self._reference(session, BoundaryRecord, boundary_id, "Boundary")

    def create_feature(self, data: NewFeature) -> Feature:
        with self._session() as session:
            self._check_feature_refs(session, data.created_by, data.boundary_id)
            return self._insert(session, FeatureRecord, data)

    def get_feature(self, feature_id: str) -> Optional[Feature]:
        return self._get(FeatureRecord, feature_id)

    def update_feature(self, feature_id: str, changes: Mapping[str, Any]) -> Feature:
        with self._session() as session:
            record = self._require(session, FeatureRecord, feature_id, "Feature", "feature_id")
            normalized = normalize_feature_changes(changes)
            self._check_feature_refs(session, normalized.get("created_by"), normalized.get("boundary_id"))
            return self._save(session, record, merge_feature(record.to_entity(), normalized, utcnow()))

    def delete_feature(self, feature_id: str) -> bool:
        if not is_valid_object_id(feature_id):
            return False
        with self._session() as session:
            record = session.get(FeatureRecord, feature_id)
            if record is None:
                return False
            session.delete(record)
            session.commit()
            return True

    def get_features_by_type(self, fea_type: str) -> List[Feature]:
        return self._list(FeatureRecord, FeatureRecord.fea_type == fea_type)

    def get_features_by_status(self, status: FeatureStatus) -> List[Feature]:
        status = coerce_enum(FeatureStatus, status, "status")
        return self._list(FeatureRecord, FeatureRecord.fea_status == status.value)

    def get_all_features(self) -> List[Feature]:
        return self._list(FeatureRecord)

    # -------------------------- boundaries --------------------------
    def create_boundary(self, data: NewBoundary) -> Boundary:
        with self._session() as session:
            if data.assigned_to:
                self._reference(session, UserRecord, data.assigned_to, "User")
            return self._insert(session, BoundaryRecord, data)

    def get_boundary(self, boundary_id: str) -> Optional[Boundary]:
        return self._get(BoundaryRecord, boundary_id)

    def update_boundary_status(self, boundary_id: str, status: BoundaryStatus) -> Boundary:
        status = coerce_enum(BoundaryStatus, status, "status")
        with self._session() as session:
            record = self._require(session, BoundaryRecord, boundary_id, "Boundary", "boundary_id")
            return self._save(session, record, replace(record.to_entity(), status=status, updated_at=utcnow()))

    def assign_boundary(self, boundary_id: str, user_id: str) -> Boundary:
        require_object_id(user_id, "user_id")
        with self._session() as session:
            record = self._require(session, BoundaryRecord, boundary_id, "Boundary", "boundary_id")
            self._reference(session, UserRecord, user_id, "User")
            return self._save(session, record, replace(record.to_entity(), assigned_to=user_id, updated_at=utcnow()))

    def get_all_boundaries(self) -> List[Boundary]:
        return self._list(BoundaryRecord)

    # -------------------------- audit / evidence --------------------------
    def create_task_update(self, data: NewTaskUpdate) -> TaskUpdate:
        with self._session() as session:
            self._reference(session, TaskRecord, data.task_id, "Task")
            if data.user_id:
                self._reference(session, UserRecord, data.user_id, "User")
            return self._insert(session, TaskUpdateRecord, data)

    def get_task_updates(self, task_id: str) -> List[TaskUpdate]:
        if not is_valid_object_id(task_id):
            return []
        return self._list(TaskUpdateRecord, TaskUpdateRecord.task_id == task_id, newest_first=True)

    def add_task_evidence(self, data: NewTaskEvidence) -> TaskEvidence:
        with self._session() as session:
            self._reference(session, TaskRecord, data.task_id, "Task")
            self._reference(session, UserRecord, data.user_id, "User")
            return self._insert(session, TaskEvidenceRecord, data)

    def get_task_evidence(self, task_id: str) -> List[TaskEvidence]:
        if not is_valid_object_id(task_id):
            return []
        return self._list(TaskEvidenceRecord, TaskEvidenceRecord.task_id == task_id, newest_first=True)

    # -------------------------- geospatial --------------------------
    def _near(self, record_cls, lng_col, lat_col, lng: float, lat: float, max_distance: float) -> list:
        criteria = [lng_col.is_not(None), lat_col.is_not(None)]
        box = bounding_box(lng, lat, max_distance)
        if box is not None:
            min_lng, min_lat, max_lng, max_lat = box
            criteria += [lng_col.between(min_lng, max_lng), lat_col.between(min_lat, max_lat)]
        return self._list(record_cls, *criteria)

    def get_users_near_location(self, lng: float, lat: float, max_distance: float) -> List[User]:
        lng, lat, max_distance = validate_center(lng, lat, max_distance)
        users = self._near(UserRecord, UserRecord.location_lng, UserRecord.location_lat, lng, lat, max_distance)
        return nearest_first(((u, u.current_location) for u in users), lng, lat, max_distance)

    def get_features_near_location(self, lng: float, lat: float, max_distance: float) -> List[Feature]:
        lng, lat, max_distance = validate_center(lng, lat, max_distance)
        features = self._near(FeatureRecord, FeatureRecord.point_lng, FeatureRecord.point_lat, lng, lat, max_distance)
        return nearest_first(((f, f.geometry) for f in features), lng, lat, max_distance)

    def _boundary_polygon(self, boundary_id: str):
        with self._session() as session:
            record = self._require(session, BoundaryRecord, boundary_id, "Boundary", "boundary_id")
            return record.to_entity().geometry

    def get_features_in_boundary(self, boundary_id: str) -> List[Feature]:
        polygon = self._boundary_polygon(boundary_id)
        return features_within(self._list(FeatureRecord, FeatureRecord.geometry.is_not(None)), polygon)

    def get_tasks_in_boundary(self, boundary_id: str) -> List[Task]:
        polygon = self._boundary_polygon(boundary_id)
        return tasks_within(self._list(TaskRecord, TaskRecord.location.is_not(None)), polygon)

    # -------------------------- analytics / search --------------------------
    def get_task_stats_by_user(self, user_id: str) -> dict:
        require_object_id(user_id, "user_id")
        with self._session() as session:
            stmt = (
                select(TaskRecord.status, func.count())
                .where(TaskRecord.assigned_to == user_id)
                .group_by(TaskRecord.status)
            )
            counts = {status: count for status, count in session.execute(stmt)}
        stats = {status.value: int(counts.get(status.value, 0)) for status in TaskStatus}
        stats["total"] = sum(stats.values())
        return stats

    def get_feature_stats_by_type(self) -> dict:
        with self._session() as session:
            stmt = (
                select(FeatureRecord.fea_type, func.count())
                .group_by(FeatureRecord.fea_type)
                .order_by(FeatureRecord.fea_type)
            )
            return {fea_type: int(count) for fea_type, count in session.execute(stmt)}

    def search_features(self, query: str) -> List[Feature]:
        needle = normalize_query(query)
        return [f for f in self._list(FeatureRecord) if text_matches(needle, feature_search_fields(f))]

    def search_tasks(self, query: str) -> List[Task]:
        needle = normalize_query(query)
        tasks = self._list(TaskRecord, newest_first=True)
        return [t for t in tasks if text_matches(needle, task_search_fields(t))]

    def bulk_update_task_status(self, task_ids: Iterable[str], status: TaskStatus, user_id: Optional[str] = None) -> int:
        ids = check_ids(task_ids, "task_ids")
        status = coerce_enum(TaskStatus, status, "status")
        user_id = optional_object_id(user_id, "user_id")
        updated = 0
        with self._session() as session:
            if user_id:
                self._reference(session, UserRecord, user_id, "User")
            existing = set(session.execute(select(TaskRecord.id).where(TaskRecord.id.in_(ids))).scalars()) if ids else set()
        for task_id in ids:
            if task_id not in existing:
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
