"""
File-snapshot storage backend.

Each collection lives in `<data_dir>/<collection>.json` as
`{"<collection>": [document, ...]}`. Every collection is loaded fully at
startup and a mutation rewrites the whole collection file. Writes go to a
temporary file in the same directory that then replaces the target, so a
crash leaves either the old or the new snapshot, never a partial one.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path

import structlog

from fieldops.domain.errors import PersistenceError, ValidationError
from fieldops.domain.serialization import COLLECTIONS, from_document, to_document

from .memory import InMemoryQueriesMixin, MemoryRepository

logger = structlog.get_logger(__name__)


class JSONFileRepository(InMemoryQueriesMixin, MemoryRepository):
    """Durable storage backed by one JSON document per collection."""

    backend_name = "file"

    def __init__(self, data_dir: str | os.PathLike) -> None:
        super().__init__()
        self.data_dir = Path(data_dir)
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Cannot create data directory {self.data_dir}: {exc}") from exc
        self._load_all()

    def collection_path(self, collection: str) -> Path:
        return self.data_dir / f"{collection}.json"

    def _load_all(self) -> None:
        for collection in COLLECTIONS:
            self._collections[collection] = self._load(collection)
        logger.info(
            "snapshots_loaded",
            data_dir=str(self.data_dir),
            counts={name: len(records) for name, records in self._collections.items()},
        )

    def _load(self, collection: str) -> dict:
        path = self.collection_path(collection)
        if not path.exists():
            return {}
        entity_cls = COLLECTIONS[collection]
        try:
            with path.open("r", encoding="utf-8") as f:
                data = json.load(f)
            entities = [from_document(entity_cls, doc) for doc in data[collection]]
        except (OSError, ValueError, KeyError, TypeError, ValidationError) as exc:
            logger.error("snapshot_load_failed", collection=collection, path=str(path), error=str(exc))
            raise PersistenceError(f"Cannot load {path}: {exc}") from exc
        return {entity.id: entity for entity in entities}

    def _persist(self, collection: str) -> None:
        path = self.collection_path(collection)
        records = self._collections[collection].values()
        payload = json.dumps({collection: [to_document(e) for e in records]}, ensure_ascii=False, indent=2)
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=f".{collection}.", suffix=".tmp", dir=self.data_dir)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, path)
            except OSError:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as exc:
            logger.error("snapshot_save_failed", collection=collection, path=str(path), error=str(exc))
            raise PersistenceError(f"Cannot write {path}: {exc}") from exc
