"""
SQLAlchemy records for the database backend.

Columns mirror the entity attributes one to one. Geometry is stored as a
`{type, coordinates}` JSON document; point locations are also copied into
indexed longitude/latitude columns used to pre-filter proximity queries,
and usernames and team names get casefolded key columns for lookups.
References between entities are plain indexed id columns without foreign
key constraints, since a referenced feature may be deleted.
"""
from __future__ import annotations

from dataclasses import fields
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Column, DateTime, Float, JSON, String, Text

from fieldops.domain.geo import Point, geometry_from_dict, geometry_to_dict
from fieldops.domain.models import (
    Boundary,
    BoundaryStatus,
    Feature,
    FeatureState,
    FeatureStatus,
    Maintenance,
    Role,
    Task,
    TaskEvidence,
    TaskPriority,
    TaskStatus,
    TaskUpdate,
    Team,
    TeamStatus,
    User,
)

from .session import Base


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class EntityRecord:
    """Conversion between a record and its frozen entity dataclass."""

    _entity_cls = None
    _enums = {}
    _geometries = frozenset()

    @classmethod
    def from_entity(cls, entity):
        record = cls()
        record.update_from(entity)
        return record

    def update_from(self, entity) -> None:
        for f in fields(entity):
            value = getattr(entity, f.name)
            if value is None:
                pass
            elif f.name in self._geometries:
                value = geometry_to_dict(value)
            elif isinstance(value, Enum):
                value = value.value
            setattr(self, f.name, value)

    def to_entity(self):
        values = {}
        for f in fields(self._entity_cls):
            value = getattr(self, f.name)
            if value is None:
                pass
            elif f.name in self._geometries:
                value = geometry_from_dict(value)
            elif f.name in self._enums:
                value = self._enums[f.name](value)
            elif isinstance(value, datetime):
                value = _aware(value)
            values[f.name] = value
        return self._entity_cls(**values)


def _point_columns(point: Point | None) -> tuple[float | None, float | None]:
    if isinstance(point, Point):
        return point.lng, point.lat
    return None, None


class UserRecord(EntityRecord, Base):
    __tablename__ = "users"
    _entity_cls = User
    _enums = {"role": Role}
    _geometries = frozenset({"current_location"})

    id = Column(String(24), primary_key=True)
    username = Column(String(255), nullable=False)
    username_key = Column(String(255), nullable=False, unique=True, index=True)
    password = Column(Text, nullable=False)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    role = Column(String(32), nullable=False, index=True)
    team_id = Column(String(24), nullable=True, index=True)
    last_active = Column(DateTime(timezone=True), nullable=True)
    current_location = Column(JSON(none_as_null=True), nullable=True)
    location_lng = Column(Float, nullable=True, index=True)
    location_lat = Column(Float, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    def update_from(self, entity: User) -> None:
        super().update_from(entity)
        self.username_key = entity.username.casefold()
        self.location_lng, self.location_lat = _point_columns(entity.current_location)


class TeamRecord(EntityRecord, Base):
    __tablename__ = "teams"
    _entity_cls = Team
    _enums = {"status": TeamStatus}

    id = Column(String(24), primary_key=True)
    name = Column(String(255), nullable=False)
    name_key = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)
    status = Column(String(32), nullable=False)
    created_by = Column(String(24), nullable=False)
    approved_by = Column(String(24), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    def update_from(self, entity: Team) -> None:
        super().update_from(entity)
        self.name_key = entity.name.casefold()


class TaskRecord(EntityRecord, Base):
    __tablename__ = "tasks"
    _entity_cls = Task
    _enums = {"status": TaskStatus, "priority": TaskPriority}
    _geometries = frozenset({"location"})

    id = Column(String(24), primary_key=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(32), nullable=False, index=True)
    priority = Column(String(16), nullable=False)
    created_by = Column(String(24), nullable=True, index=True)
    assigned_to = Column(String(24), nullable=True, index=True)
    due_date = Column(DateTime(timezone=True), nullable=True)
    location = Column(JSON(none_as_null=True), nullable=True)
    boundary_id = Column(String(24), nullable=True, index=True)
    feature_id = Column(String(24), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class FeatureRecord(EntityRecord, Base):
    __tablename__ = "features"
    _entity_cls = Feature
    _enums = {"fea_state": FeatureState, "fea_status": FeatureStatus, "maintenance": Maintenance}
    _geometries = frozenset({"geometry"})

    id = Column(String(24), primary_key=True)
    name = Column(String(255), nullable=False)
    fea_no = Column(String(64), nullable=False)
    fea_state = Column(String(32), nullable=False)
    fea_status = Column(String(32), nullable=False, index=True)
    fea_type = Column(String(128), nullable=False, index=True)
    specific_type = Column(String(128), nullable=False)
    maintenance = Column(String(16), nullable=False)
    maintenance_date = Column(DateTime(timezone=True), nullable=True)
    geometry = Column(JSON(none_as_null=True), nullable=True)
    point_lng = Column(Float, nullable=True, index=True)
    point_lat = Column(Float, nullable=True, index=True)
    remarks = Column(Text, nullable=True)
    created_by = Column(String(24), nullable=True)
    boundary_id = Column(String(24), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    last_updated = Column(DateTime(timezone=True), nullable=False)

    def update_from(self, entity: Feature) -> None:
        super().update_from(entity)
        self.point_lng, self.point_lat = _point_columns(entity.geometry)


class BoundaryRecord(EntityRecord, Base):
    __tablename__ = "boundaries"
    _entity_cls = Boundary
    _enums = {"status": BoundaryStatus}
    _geometries = frozenset({"geometry"})

    id = Column(String(24), primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(32), nullable=False)
    assigned_to = Column(String(24), nullable=True, index=True)
    geometry = Column(JSON(none_as_null=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class TaskUpdateRecord(EntityRecord, Base):
    __tablename__ = "task_updates"
    _entity_cls = TaskUpdate
    _enums = {"old_status": TaskStatus, "new_status": TaskStatus}

    id = Column(String(24), primary_key=True)
    task_id = Column(String(24), nullable=False, index=True)
    user_id = Column(String(24), nullable=True)
    comment = Column(Text, nullable=True)
    old_status = Column(String(32), nullable=True)
    new_status = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class TaskEvidenceRecord(EntityRecord, Base):
    __tablename__ = "task_evidence"
    _entity_cls = TaskEvidence

    id = Column(String(24), primary_key=True)
    task_id = Column(String(24), nullable=False, index=True)
    user_id = Column(String(24), nullable=False)
    image_url = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
