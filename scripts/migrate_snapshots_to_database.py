"""One-off migration: JSON snapshot files (DATA_DIR) -> database (DATABASE_URL)."""
from __future__ import annotations

import argparse
from pathlib import Path
import sys

# Make the fieldops package importable when run directly
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlalchemy.exc import SQLAlchemyError

from fieldops.core.config import get_settings
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
from fieldops.db.session import build_engine, make_sessionmaker
from fieldops.repositories.json_storage import JSONFileRepository

RECORDS = {
    "users": UserRecord,
    "teams": TeamRecord,
    "tasks": TaskRecord,
    "features": FeatureRecord,
    "boundaries": BoundaryRecord,
    "taskUpdates": TaskUpdateRecord,
    "taskEvidence": TaskEvidenceRecord,
}


def migrate(data_dir: str, database_url: str) -> dict:
    """Copy every snapshot entity into the database, keeping ids. Re-running updates in place."""
    source = JSONFileRepository(data_dir)
    engine = build_engine(database_url)
    create_all(engine)
    sessions = make_sessionmaker(engine)
    counts = {}
    try:
        with sessions() as session:
            for collection, record_cls in RECORDS.items():
                entities = source.export_collection(collection)
                for entity in entities:
                    record = session.get(record_cls, entity.id)
                    if record is None:
                        session.add(record_cls.from_entity(entity))
                    else:
                        record.update_from(entity)
                counts[collection] = len(entities)
            session.commit()
    finally:
        engine.dispose()
    return counts


def main(argv: list[str] | None = None) -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Copy file snapshots into the database.")
    parser.add_argument("--data-dir", default=settings.data_dir)
    parser.add_argument("--database-url", default=settings.database_url)
    args = parser.parse_args(argv)
    if not args.database_url:
        raise SystemExit("DATABASE_URL is not configured")
    try:
        counts = migrate(args.data_dir, args.database_url)
    except SQLAlchemyError as exc:
        raise SystemExit(f"Migration failed: {exc}") from exc
    for collection, count in counts.items():
        print(f"{collection}: {count}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
