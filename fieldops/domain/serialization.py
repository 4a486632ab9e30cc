"""
Document encoding for entities.

Documents use camelCase keys, `_id` for the identifier, ISO 8601 strings for
timestamps and `{type, coordinates}` objects for geometry. The file-snapshot
backend persists these documents and the HTTP layer returns them.
"""
from __future__ import annotations

from dataclasses import MISSING, fields
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Tuple, Type

from .errors import ValidationError
from .geo import geometry_from_dict, geometry_to_dict
from .ids import is_valid_object_id
from .models import (
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


def _encode_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _decode_datetime(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _enum(enum_cls) -> Tuple[Callable, Callable]:
    return (lambda v: v.value, enum_cls)


_TEXT = (lambda v: v, lambda v: v)
_DATETIME = (_encode_datetime, _decode_datetime)
_GEOMETRY = (geometry_to_dict, geometry_from_dict)

# attribute -> (document key, (encode, decode))
_SCHEMAS: Dict[Type, Dict[str, Tuple[str, Tuple[Callable, Callable]]]] = {
    User: {
        "id": ("_id", _TEXT),
        "username": ("username", _TEXT),
        "password": ("password", _TEXT),
        "name": ("name", _TEXT),
        "email": ("email", _TEXT),
        "role": ("role", _enum(Role)),
        "team_id": ("teamId", _TEXT),
        "last_active": ("lastActive", _DATETIME),
        "current_location": ("currentLocation", _GEOMETRY),
        "created_at": ("createdAt", _DATETIME),
        "updated_at": ("updatedAt", _DATETIME),
    },
    Team: {
        "id": ("_id", _TEXT),
        "name": ("name", _TEXT),
        "description": ("description", _TEXT),
        "status": ("status", _enum(TeamStatus)),
        "created_by": ("createdBy", _TEXT),
        "approved_by": ("approvedBy", _TEXT),
        "created_at": ("createdAt", _DATETIME),
        "updated_at": ("updatedAt", _DATETIME),
    },
    Task: {
        "id": ("_id", _TEXT),
        "title": ("title", _TEXT),
        "description": ("description", _TEXT),
        "status": ("status", _enum(TaskStatus)),
        "priority": ("priority", _enum(TaskPriority)),
        "created_by": ("createdBy", _TEXT),
        "assigned_to": ("assignedTo", _TEXT),
        "due_date": ("dueDate", _DATETIME),
        "location": ("location", _GEOMETRY),
        "boundary_id": ("boundaryId", _TEXT),
        "feature_id": ("featureId", _TEXT),
        "created_at": ("createdAt", _DATETIME),
        "updated_at": ("updatedAt", _DATETIME),
    },
    Feature: {
        "id": ("_id", _TEXT),
        "name": ("name", _TEXT),
        "fea_no": ("feaNo", _TEXT),
        "fea_state": ("feaState", _enum(FeatureState)),
        "fea_status": ("feaStatus", _enum(FeatureStatus)),
        "fea_type": ("feaType", _TEXT),
        "specific_type": ("specificType", _TEXT),
        "maintenance": ("maintenance", _enum(Maintenance)),
        "maintenance_date": ("maintenanceDate", _DATETIME),
        "geometry": ("geometry", _GEOMETRY),
        "remarks": ("remarks", _TEXT),
        "created_by": ("createdBy", _TEXT),
        "boundary_id": ("boundaryId", _TEXT),
        "created_at": ("createdAt", _DATETIME),
        "updated_at": ("updatedAt", _DATETIME),
        "last_updated": ("lastUpdated", _DATETIME),
    },
    Boundary: {
        "id": ("_id", _TEXT),
        "name": ("name", _TEXT),
        "description": ("description", _TEXT),
        "status": ("status", _enum(BoundaryStatus)),
        "assigned_to": ("assignedTo", _TEXT),
        "geometry": ("geometry", _GEOMETRY),
        "created_at": ("createdAt", _DATETIME),
        "updated_at": ("updatedAt", _DATETIME),
    },
    TaskUpdate: {
        "id": ("_id", _TEXT),
        "task_id": ("taskId", _TEXT),
        "user_id": ("userId", _TEXT),
        "comment": ("comment", _TEXT),
        "old_status": ("oldStatus", _enum(TaskStatus)),
        "new_status": ("newStatus", _enum(TaskStatus)),
        "created_at": ("createdAt", _DATETIME),
        "updated_at": ("updatedAt", _DATETIME),
    },
    TaskEvidence: {
        "id": ("_id", _TEXT),
        "task_id": ("taskId", _TEXT),
        "user_id": ("userId", _TEXT),
        "image_url": ("imageUrl", _TEXT),
        "description": ("description", _TEXT),
        "created_at": ("createdAt", _DATETIME),
        "updated_at": ("updatedAt", _DATETIME),
    },
}

# collection name as used in snapshot files -> entity type
COLLECTIONS: Dict[str, Type] = {
    "users": User,
    "teams": Team,
    "tasks": Task,
    "features": Feature,
    "boundaries": Boundary,
    "taskUpdates": TaskUpdate,
    "taskEvidence": TaskEvidence,
}

# attributes a stored document must carry; updatedAt and lastUpdated are backfilled
_BACKFILLED = frozenset({"updated_at", "last_updated"})
_REQUIRED: Dict[Type, frozenset] = {
    entity_cls: frozenset(
        f.name for f in fields(entity_cls) if f.default is MISSING and f.name not in _BACKFILLED
    )
    for entity_cls in _SCHEMAS
}


def to_document(entity) -> dict:
    """Encode an entity; None-valued optional fields are omitted."""
    document = {}
    for attr, (key, (encode, _decode)) in _SCHEMAS[type(entity)].items():
        value = getattr(entity, attr)
        if value is not None:
            document[key] = encode(value)
    return document


def from_document(entity_cls: Type, document: Mapping[str, Any]):
    if not isinstance(document, Mapping):
        raise ValidationError(f"{entity_cls.__name__} document must be an object")
    if not is_valid_object_id(document.get("_id")):
        raise ValidationError(f"Invalid {entity_cls.__name__} _id: {document.get('_id')!r}", "_id")
    values = {}
    for attr, (key, (_encode, decode)) in _SCHEMAS[entity_cls].items():
        raw = document.get(key)
        if raw is None and attr in _REQUIRED[entity_cls]:
            raise ValidationError(f"{entity_cls.__name__} {document['_id']} is missing {key}", key)
        values[attr] = decode(raw) if raw is not None else None
    # legacy snapshots predating the audit/evidence updatedAt field
    if values.get("updated_at") is None and values.get("created_at") is not None:
        values["updated_at"] = values["created_at"]
    if entity_cls is Feature and values.get("last_updated") is None:
        values["last_updated"] = values["updated_at"]
    return entity_cls(**values)


def public_document(entity) -> dict:
    """Document safe to return over HTTP (no password hash)."""
    document = to_document(entity)
    document.pop("password", None)
    return document


def payload_to_fields(entity_cls: Type, payload: Mapping[str, Any]) -> dict:
    """Translate camelCase request keys into attribute names of `entity_cls`."""
    if not isinstance(payload, Mapping):
        raise ValidationError("Request body must be a JSON object")
    by_key = {key: attr for attr, (key, _codec) in _SCHEMAS[entity_cls].items()}
    translated = {}
    for key, value in payload.items():
        attr = by_key.get(key, key)
        translated[attr] = value
    return translated
