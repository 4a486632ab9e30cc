"""Error taxonomy raised by the storage contract."""
from __future__ import annotations

from typing import Optional


class StorageError(Exception):
    """Base class for storage-layer failures."""


class ValidationError(StorageError):
    """Malformed id, missing required field or invalid enum value."""

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[list] = None):
        super().__init__(message)
        self.message = message
        self.field = field
        self.details = details or []


class ConflictError(ValidationError):
    """A unique value (e.g. username) is already taken."""


class NotFoundError(StorageError):
    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} with id {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class ReferentialIntegrityError(StorageError):
    """A referenced entity is missing or in the wrong state."""


class PersistenceError(StorageError):
    """The backend could not durably write or read its data."""


class StorageConnectionError(StorageError):
    """The managed database is unreachable."""


class CapabilityNotSupportedError(StorageError):
    """The active backend does not implement the extended capability set."""
