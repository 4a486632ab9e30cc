"""Run the seed routine against the configured backend."""
from __future__ import annotations

import argparse
from pathlib import Path
import sys

# Make the fieldops package importable when run directly
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fieldops.core.config import get_settings
from fieldops.core.logging import setup_logging
from fieldops.repositories.factory import initialize_storage
from fieldops.services.seed import seed_initial_data


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Create the supervisor, initial teams and demo field user.")
    parser.add_argument(
        "--supervisor-password",
        default=None,
        help="password for supervisor12 (defaults to SEED_SUPERVISOR_PASSWORD)",
    )
    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging()
    storage = initialize_storage(settings)
    try:
        seed_initial_data(storage, supervisor_password=args.supervisor_password or settings.seed_supervisor_password)
    finally:
        storage.close()
    print(f"Seed completed on the {storage.backend_name} backend.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
