"""
Storage contract shared by every backend.

`Storage` is the mandatory capability set. `ExtendedStorage` is the optional
set (geospatial, analytics, search, bulk) and callers check for it with
`supports_extended()` instead of probing for attributes.

Contract-wide rules:
- `get_*` by id returns None for a malformed or unknown id.
- Mutations raise ValidationError for a malformed id and NotFoundError
  when the target does not exist.
- Missing or ineligible referenced entities raise ReferentialIntegrityError.
- Returned entities are immutable values.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from fieldops.domain.errors import CapabilityNotSupportedError, ValidationError
from fieldops.domain.geo import Point
from fieldops.domain.ids import is_valid_object_id
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
    Task,
    TaskEvidence,
    TaskStatus,
    TaskUpdate,
    Team,
    TeamStatus,
    User,
    require_object_id,
)


def status_comment(status: TaskStatus) -> str:
    return f"Status updated to {status.value}"


def check_ids(values: Sequence[Any], field: str) -> List[str]:
    """Validate every id up front; duplicates are dropped, order kept."""
    if not isinstance(values, (list, tuple)):
        raise ValidationError(f"{field} must be a list of ids", field)
    values = list(values)
    invalid = [value for value in values if not is_valid_object_id(value)]
    if invalid:
        raise ValidationError(f"Invalid {field} format", field, details=invalid)
    return list(dict.fromkeys(values))


class Storage(ABC):
    """Mandatory operations every backend implements."""

    backend_name = "abstract"

    # -------------------------- users --------------------------
    @abstractmethod
    def get_user(self, user_id: str) -> Optional[User]: ...

    @abstractmethod
    def get_user_by_username(self, username: str) -> Optional[User]: ...

    @abstractmethod
    def create_user(self, data: NewUser) -> User: ...

    @abstractmethod
    def update_user_location(self, user_id: str, location: Point) -> User: ...

    @abstractmethod
    def update_user_last_active(self, user_id: str) -> User: ...

    @abstractmethod
    def get_all_field_users(self) -> List[User]: ...

    # -------------------------- teams --------------------------
    @abstractmethod
    def create_team(self, data: NewTeam) -> Team: ...

    @abstractmethod
    def get_team(self, team_id: str) -> Optional[Team]: ...

    @abstractmethod
    def get_team_by_name(self, name: str) -> Optional[Team]: ...

    @abstractmethod
    def update_team_status(self, team_id: str, status: TeamStatus, approved_by: Optional[str] = None) -> Team: ...

    @abstractmethod
    def get_all_teams(self) -> List[Team]: ...

    @abstractmethod
    def get_users_by_team(self, team_id: str) -> List[User]: ...

    @abstractmethod
    def assign_user_to_team(self, user_id: str, team_id: str) -> User: ...

    # -------------------------- tasks --------------------------
    @abstractmethod
    def create_task(self, data: NewTask) -> Task: ...

    @abstractmethod
    def get_task(self, task_id: str) -> Optional[Task]: ...

    @abstractmethod
    def update_task_status(self, task_id: str, status: TaskStatus, user_id: Optional[str]) -> Task:
        """Write the status and append exactly one TaskUpdate, atomically."""

    @abstractmethod
    def assign_task(self, task_id: str, user_id: str) -> Task:
        """Set the assignee and force status to Assigned (no audit record)."""

    @abstractmethod
    def get_tasks_by_assignee(self, user_id: str) -> List[Task]: ...

    @abstractmethod
    def get_tasks_by_creator(self, user_id: str) -> List[Task]: ...

    @abstractmethod
    def get_all_tasks(self) -> List[Task]:
        """Newest first."""

    # -------------------------- features --------------------------
    @abstractmethod
    def create_feature(self, data: NewFeature) -> Feature: ...

    @abstractmethod
    def get_feature(self, feature_id: str) -> Optional[Feature]: ...

    @abstractmethod
    def update_feature(self, feature_id: str, changes: Mapping[str, Any]) -> Feature:
        """Merge `changes` over the stored feature; None values keep the current value."""

    @abstractmethod
    def delete_feature(self, feature_id: str) -> bool:
        """False (not an error) when the id is malformed or unknown."""

    @abstractmethod
    def get_features_by_type(self, fea_type: str) -> List[Feature]: ...

    @abstractmethod
    def get_features_by_status(self, status: FeatureStatus) -> List[Feature]: ...

    @abstractmethod
    def get_all_features(self) -> List[Feature]: ...

    # -------------------------- boundaries --------------------------
    @abstractmethod
    def create_boundary(self, data: NewBoundary) -> Boundary: ...

    @abstractmethod
    def get_boundary(self, boundary_id: str) -> Optional[Boundary]: ...

    @abstractmethod
    def update_boundary_status(self, boundary_id: str, status: BoundaryStatus) -> Boundary: ...

    @abstractmethod
    def assign_boundary(self, boundary_id: str, user_id: str) -> Boundary: ...

    @abstractmethod
    def get_all_boundaries(self) -> List[Boundary]: ...

    # -------------------------- audit / evidence --------------------------
    @abstractmethod
    def create_task_update(self, data: NewTaskUpdate) -> TaskUpdate: ...

    @abstractmethod
    def get_task_updates(self, task_id: str) -> List[TaskUpdate]:
        """Newest first."""

    @abstractmethod
    def add_task_evidence(self, data: NewTaskEvidence) -> TaskEvidence: ...

    @abstractmethod
    def get_task_evidence(self, task_id: str) -> List[TaskEvidence]:
        """Newest first."""

    def close(self) -> None:
        """Release backend resources (connections, file handles)."""


class ExtendedStorage(ABC):
    """Optional capability set offered by capability-rich backends."""

    @abstractmethod
    def get_users_near_location(self, lng: float, lat: float, max_distance: float) -> List[User]:
        """Users within `max_distance` meters (inclusive), nearest first."""

    @abstractmethod
    def get_features_near_location(self, lng: float, lat: float, max_distance: float) -> List[Feature]:
        """Point features within `max_distance` meters (inclusive), nearest first."""

    @abstractmethod
    def get_features_in_boundary(self, boundary_id: str) -> List[Feature]: ...

    @abstractmethod
    def get_tasks_in_boundary(self, boundary_id: str) -> List[Task]: ...

    @abstractmethod
    def get_task_stats_by_user(self, user_id: str) -> dict: ...

    @abstractmethod
    def get_feature_stats_by_type(self) -> dict: ...

    @abstractmethod
    def search_features(self, query: str) -> List[Feature]: ...

    @abstractmethod
    def search_tasks(self, query: str) -> List[Task]: ...

    @abstractmethod
    def bulk_update_task_status(self, task_ids: Iterable[str], status: TaskStatus, user_id: Optional[str] = None) -> int:
        """
        Reject the whole call if any id is malformed, then update each existing
        task through `update_task_status` and return how many were updated.
        """


def supports_extended(storage: Storage) -> bool:
    return isinstance(storage, ExtendedStorage)


def require_extended(storage: Storage) -> ExtendedStorage:
    if not supports_extended(storage):
        raise CapabilityNotSupportedError(f"{storage.backend_name} backend does not support this operation")
    return storage  # type: ignore[return-value]


__all__ = [
    "Storage",
    "ExtendedStorage",
    "supports_extended",
    "require_extended",
    "check_ids",
    "status_comment",
    "require_object_id",
]
