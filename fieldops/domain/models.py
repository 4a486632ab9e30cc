"""
Entities, their enumerations and the validated inputs used to create them.

Entities are frozen dataclasses: backends hand out values, never live
references, and mutate by building a replacement with `dataclasses.replace`.
Cross-entity references are plain id strings resolved through the storage.
"""
from __future__ import annotations

from dataclasses import dataclass, fields, replace
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional, Type, TypeVar

from fieldops.core.security import hash_password, is_password_hash

from .errors import ValidationError
from .geo import Geometry, Point, Polygon, geometry_from_dict
from .ids import is_valid_object_id

E = TypeVar("E", bound=Enum)


class Role(str, Enum):
    SUPERVISOR = "Supervisor"
    FIELD = "Field"


class TeamStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class TaskStatus(str, Enum):
    UNASSIGNED = "Unassigned"
    ASSIGNED = "Assigned"
    IN_PROGRESS = "In Progress"
    IN_COMPLETE = "In-Complete"
    SUBMIT_REVIEW = "Submit-Review"
    REVIEW_IN_PROGRESS = "Review_inprogress"
    REVIEW_ACCEPTED = "Review_Accepted"
    REVIEW_REJECT = "Review_Reject"
    COMPLETED = "Completed"


class TaskPriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class FeatureState(str, Enum):
    PLAN = "Plan"
    UNDER_CONSTRUCTION = "Under Construction"
    AS_BUILT = "As-Built"
    ABANDONED = "Abandoned"


class FeatureStatus(str, Enum):
    NEW = "New"
    ACTIVE = "Active"
    ON_HOLD = "On-Hold"
    SUBMIT_REVIEW = "Submit-Review"
    REVIEW_IN_PROGRESS = "Review_inprogress"
    REVIEW_ACCEPTED = "Review_Accepted"
    REVIEW_REJECT = "Review_Reject"
    COMPLETED = "Completed"


class Maintenance(str, Enum):
    NONE = "None"
    REQUIRED = "Required"
    COMPLETED = "Completed"


class BoundaryStatus(str, Enum):
    NEW = "New"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    UNDER_REVIEW = "Under Review"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def coerce_enum(enum_cls: Type[E], value: Any, field: str) -> E:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {field} {value!r}; expected one of: {allowed}", field) from None


def require_text(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", field)
    return value.strip()


def optional_text(value: Any, field: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", field)
    return value


def require_object_id(value: Any, field: str) -> str:
    if not is_valid_object_id(value):
        raise ValidationError(f"Invalid {field} format", field)
    return value


def optional_object_id(value: Any, field: str) -> Optional[str]:
    if value is None or value == "":
        return None
    return require_object_id(value, field)


def optional_datetime(value: Any, field: str) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(f"{field} must be an ISO 8601 timestamp", field) from None
    else:
        raise ValidationError(f"{field} must be a timestamp", field)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def optional_point(value: Any, field: str) -> Optional[Point]:
    if value is None:
        return None
    try:
        return geometry_from_dict(value, allowed=("Point",))
    except ValidationError as exc:
        raise ValidationError(exc.message, field) from None


# ------------------------------------------------------------------ entities
@dataclass(frozen=True)
class User:
    id: str
    username: str
    password: str
    name: str
    email: str
    role: Role
    created_at: datetime
    updated_at: datetime
    team_id: Optional[str] = None
    last_active: Optional[datetime] = None
    current_location: Optional[Point] = None


@dataclass(frozen=True)
class Team:
    id: str
    name: str
    status: TeamStatus
    created_by: str
    created_at: datetime
    updated_at: datetime
    description: Optional[str] = None
    approved_by: Optional[str] = None


@dataclass(frozen=True)
class Task:
    id: str
    title: str
    status: TaskStatus
    priority: TaskPriority
    created_at: datetime
    updated_at: datetime
    description: Optional[str] = None
    created_by: Optional[str] = None
    assigned_to: Optional[str] = None
    due_date: Optional[datetime] = None
    location: Optional[Point] = None
    boundary_id: Optional[str] = None
    feature_id: Optional[str] = None


@dataclass(frozen=True)
class Feature:
    id: str
    name: str
    fea_no: str
    fea_state: FeatureState
    fea_status: FeatureStatus
    fea_type: str
    specific_type: str
    maintenance: Maintenance
    created_at: datetime
    updated_at: datetime
    last_updated: datetime
    maintenance_date: Optional[datetime] = None
    geometry: Optional[Geometry] = None
    remarks: Optional[str] = None
    created_by: Optional[str] = None
    boundary_id: Optional[str] = None


@dataclass(frozen=True)
class Boundary:
    id: str
    name: str
    status: BoundaryStatus
    geometry: Polygon
    created_at: datetime
    updated_at: datetime
    description: Optional[str] = None
    assigned_to: Optional[str] = None


@dataclass(frozen=True)
class TaskUpdate:
    id: str
    task_id: str
    created_at: datetime
    updated_at: datetime
    user_id: Optional[str] = None
    comment: Optional[str] = None
    old_status: Optional[TaskStatus] = None
    new_status: Optional[TaskStatus] = None


@dataclass(frozen=True)
class TaskEvidence:
    id: str
    task_id: str
    user_id: str
    image_url: str
    created_at: datetime
    updated_at: datetime
    description: Optional[str] = None


# -------------------------------------------------------------------- inputs
@dataclass
class NewUser:
    username: str
    password: str
    name: str
    email: str
    role: Role = Role.FIELD
    team_id: Optional[str] = None

    def __post_init__(self):
        self.username = require_text(self.username, "username")
        if not isinstance(self.password, str) or not self.password:
            raise ValidationError("password is required", "password")
        self.name = require_text(self.name, "name")
        self.email = require_text(self.email, "email")
        self.role = coerce_enum(Role, self.role, "role")
        self.team_id = optional_object_id(self.team_id, "team_id")

    def to_entity(self, entity_id: str, now: datetime) -> User:
        password = self.password if is_password_hash(self.password) else hash_password(self.password)
        return User(
            id=entity_id,
            username=self.username,
            password=password,
            name=self.name,
            email=self.email,
            role=self.role,
            team_id=self.team_id,
            created_at=now,
            updated_at=now,
        )


@dataclass
class NewTeam:
    name: str
    created_by: str
    description: Optional[str] = None
    status: TeamStatus = TeamStatus.PENDING

    def __post_init__(self):
        self.name = require_text(self.name, "name")
        self.created_by = require_object_id(self.created_by, "created_by")
        self.description = optional_text(self.description, "description")
        self.status = coerce_enum(TeamStatus, self.status, "status")

    def to_entity(self, entity_id: str, now: datetime) -> Team:
        return Team(
            id=entity_id,
            name=self.name,
            description=self.description,
            status=self.status,
            created_by=self.created_by,
            created_at=now,
            updated_at=now,
        )


@dataclass
class NewTask:
    title: str
    priority: TaskPriority = TaskPriority.MEDIUM
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    created_by: Optional[str] = None
    assigned_to: Optional[str] = None
    due_date: Optional[datetime] = None
    location: Optional[Point] = None
    boundary_id: Optional[str] = None
    feature_id: Optional[str] = None

    def __post_init__(self):
        self.title = require_text(self.title, "title")
        self.priority = coerce_enum(TaskPriority, self.priority, "priority")
        self.description = optional_text(self.description, "description")
        self.created_by = optional_object_id(self.created_by, "created_by")
        self.assigned_to = optional_object_id(self.assigned_to, "assigned_to")
        if self.status is None:
            self.status = TaskStatus.ASSIGNED if self.assigned_to else TaskStatus.UNASSIGNED
        self.status = coerce_enum(TaskStatus, self.status, "status")
        self.due_date = optional_datetime(self.due_date, "due_date")
        self.location = optional_point(self.location, "location")
        self.boundary_id = optional_object_id(self.boundary_id, "boundary_id")
        self.feature_id = optional_object_id(self.feature_id, "feature_id")

    def to_entity(self, entity_id: str, now: datetime) -> Task:
        return Task(
            id=entity_id,
            title=self.title,
            description=self.description,
            status=self.status,
            priority=self.priority,
            created_by=self.created_by,
            assigned_to=self.assigned_to,
            due_date=self.due_date,
            location=self.location,
            boundary_id=self.boundary_id,
            feature_id=self.feature_id,
            created_at=now,
            updated_at=now,
        )


@dataclass
class NewFeature:
    name: str
    fea_no: str
    fea_state: FeatureState
    fea_status: FeatureStatus
    fea_type: str
    specific_type: str
    maintenance: Maintenance = Maintenance.NONE
    maintenance_date: Optional[datetime] = None
    geometry: Optional[Geometry] = None
    remarks: Optional[str] = None
    created_by: Optional[str] = None
    boundary_id: Optional[str] = None

    def __post_init__(self):
        self.name = require_text(self.name, "name")
        self.fea_no = require_text(self.fea_no, "fea_no")
        self.fea_state = coerce_enum(FeatureState, self.fea_state, "fea_state")
        self.fea_status = coerce_enum(FeatureStatus, self.fea_status, "fea_status")
        self.fea_type = require_text(self.fea_type, "fea_type")
        self.specific_type = require_text(self.specific_type, "specific_type")
        self.maintenance = coerce_enum(Maintenance, self.maintenance or Maintenance.NONE, "maintenance")
        self.maintenance_date = optional_datetime(self.maintenance_date, "maintenance_date")
        if self.geometry is not None:
            self.geometry = geometry_from_dict(self.geometry)
        self.remarks = optional_text(self.remarks, "remarks")
        self.created_by = optional_object_id(self.created_by, "created_by")
        self.boundary_id = optional_object_id(self.boundary_id, "boundary_id")

    def to_entity(self, entity_id: str, now: datetime) -> Feature:
        return Feature(
            id=entity_id,
            name=self.name,
            fea_no=self.fea_no,
            fea_state=self.fea_state,
            fea_status=self.fea_status,
            fea_type=self.fea_type,
            specific_type=self.specific_type,
            maintenance=self.maintenance,
            maintenance_date=self.maintenance_date,
            geometry=self.geometry,
            remarks=self.remarks,
            created_by=self.created_by,
            boundary_id=self.boundary_id,
            created_at=now,
            updated_at=now,
            last_updated=now,
        )


@dataclass
class NewBoundary:
    name: str
    geometry: Polygon
    description: Optional[str] = None
    status: BoundaryStatus = BoundaryStatus.NEW
    assigned_to: Optional[str] = None

    def __post_init__(self):
        self.name = require_text(self.name, "name")
        if self.geometry is None:
            raise ValidationError("geometry is required", "geometry")
        self.geometry = geometry_from_dict(self.geometry, allowed=("Polygon",))
        self.description = optional_text(self.description, "description")
        self.status = coerce_enum(BoundaryStatus, self.status or BoundaryStatus.NEW, "status")
        self.assigned_to = optional_object_id(self.assigned_to, "assigned_to")

    def to_entity(self, entity_id: str, now: datetime) -> Boundary:
        return Boundary(
            id=entity_id,
            name=self.name,
            description=self.description,
            status=self.status,
            assigned_to=self.assigned_to,
            geometry=self.geometry,
            created_at=now,
            updated_at=now,
        )


@dataclass
class NewTaskUpdate:
    task_id: str
    user_id: Optional[str] = None
    comment: Optional[str] = None
    old_status: Optional[TaskStatus] = None
    new_status: Optional[TaskStatus] = None

    def __post_init__(self):
        self.task_id = require_object_id(self.task_id, "task_id")
        self.user_id = optional_object_id(self.user_id, "user_id")
        self.comment = optional_text(self.comment, "comment")
        if self.old_status is not None:
            self.old_status = coerce_enum(TaskStatus, self.old_status, "old_status")
        if self.new_status is not None:
            self.new_status = coerce_enum(TaskStatus, self.new_status, "new_status")

    def to_entity(self, entity_id: str, now: datetime) -> TaskUpdate:
        return TaskUpdate(
            id=entity_id,
            task_id=self.task_id,
            user_id=self.user_id,
            comment=self.comment,
            old_status=self.old_status,
            new_status=self.new_status,
            created_at=now,
            updated_at=now,
        )


@dataclass
class NewTaskEvidence:
    task_id: str
    user_id: str
    image_url: str
    description: Optional[str] = None

    def __post_init__(self):
        self.task_id = require_object_id(self.task_id, "task_id")
        self.user_id = require_object_id(self.user_id, "user_id")
        self.image_url = require_text(self.image_url, "image_url")
        self.description = optional_text(self.description, "description")

    def to_entity(self, entity_id: str, now: datetime) -> TaskEvidence:
        return TaskEvidence(
            id=entity_id,
            task_id=self.task_id,
            user_id=self.user_id,
            image_url=self.image_url,
            description=self.description,
            created_at=now,
            updated_at=now,
        )


# ----------------------------------------------------------- feature merging
FEATURE_MUTABLE_FIELDS = frozenset(
    f.name for f in fields(Feature) if f.name not in {"id", "created_at", "updated_at", "last_updated"}
)

_FEATURE_COERCERS = {
    "name": require_text,
    "fea_no": require_text,
    "fea_type": require_text,
    "specific_type": require_text,
    "fea_state": lambda v, f: coerce_enum(FeatureState, v, f),
    "fea_status": lambda v, f: coerce_enum(FeatureStatus, v, f),
    "maintenance": lambda v, f: coerce_enum(Maintenance, v, f),
    "maintenance_date": optional_datetime,
    "geometry": lambda v, f: geometry_from_dict(v),
    "remarks": optional_text,
    "created_by": optional_object_id,
    "boundary_id": optional_object_id,
}


def normalize_feature_changes(changes: Mapping[str, Any]) -> dict:
    """Validate a partial feature update. Keys set to None keep their current value."""
    if not isinstance(changes, Mapping):
        raise ValidationError("Feature changes must be a mapping")
    unknown = set(changes) - FEATURE_MUTABLE_FIELDS
    if unknown:
        raise ValidationError(f"Unknown or read-only feature fields: {', '.join(sorted(unknown))}")
    normalized = {}
    for key, value in changes.items():
        if value is None:
            continue
        normalized[key] = _FEATURE_COERCERS[key](value, key)
    return normalized


def merge_feature(feature: Feature, changes: Mapping[str, Any], now: datetime) -> Feature:
    return replace(feature, **changes, updated_at=now, last_updated=now)
