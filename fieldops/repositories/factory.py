"""Startup backend selection: database, then file snapshots, then memory."""
from __future__ import annotations

from typing import Optional

import structlog

from fieldops.core.config import Settings, get_settings
from fieldops.domain.errors import PersistenceError, StorageConnectionError

from .base import Storage
from .json_storage import JSONFileRepository
from .memory import MemoryRepository
from .sql_repository import SQLRepository

logger = structlog.get_logger(__name__)


def initialize_storage(settings: Optional[Settings] = None) -> Storage:
    settings = settings or get_settings()

    if settings.use_database:
        try:
            storage = SQLRepository.connect(settings.database_url)
        except StorageConnectionError as exc:
            logger.warning("database_unavailable", error=str(exc), fallback="file")
        else:
            logger.info("storage_selected", backend=storage.backend_name)
            return storage
    else:
        logger.info("database_disabled", fallback="file")

    try:
        storage = JSONFileRepository(settings.data_dir)
    except PersistenceError as exc:
        logger.error("file_storage_unavailable", error=str(exc), data_dir=settings.data_dir, fallback="memory")
    else:
        logger.info("storage_selected", backend=storage.backend_name, data_dir=settings.data_dir)
        return storage

    storage = MemoryRepository()
    logger.warning("storage_selected", backend=storage.backend_name, durable=False)
    return storage
