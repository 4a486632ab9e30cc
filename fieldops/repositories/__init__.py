"""
Storage backends.

`base` holds the contract; `memory`, `json_storage` and `sql_repository`
implement it, and `factory.initialize_storage` picks one at startup.
"""
from .base import ExtendedStorage, Storage, require_extended, supports_extended
from .factory import initialize_storage
from .json_storage import JSONFileRepository
from .memory import MemoryRepository
from .sql_repository import SQLRepository

__all__ = [
    "Storage",
    "ExtendedStorage",
    "supports_extended",
    "require_extended",
    "initialize_storage",
    "MemoryRepository",
    "JSONFileRepository",
    "SQLRepository",
]
