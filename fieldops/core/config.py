"""
Configuration helpers for the field-operations backend.

Routers, services and storage backends read settings from here instead of
touching os.environ directly.
"""

from dataclasses import dataclass
from functools import lru_cache
import os


@dataclass(frozen=True)
class Settings:
    """Typed view of environment variables."""

    app_env: str
    use_database: bool
    database_url: str
    data_dir: str
    log_level: str
    seed_initial_data: bool
    seed_supervisor_password: str


@lru_cache
def get_settings() -> Settings:
    """Read the current environment and build a Settings instance."""
    def _bool(value: str | None, default: bool = False) -> bool:
        if value is None:
            return default
        return value.strip().lower() in {"1", "true", "yes", "on"}

    use_database = os.getenv("USE_DATABASE")
    if use_database is None:
        # legacy name kept for existing deployments
        use_database = os.getenv("USE_MONGODB")

    return Settings(
        app_env=(os.getenv("APP_ENV") or "dev").lower(),
        use_database=_bool(use_database, True),
        database_url=(os.getenv("DATABASE_URL") or "").strip(),
        data_dir=os.getenv("DATA_DIR") or os.path.join(os.getcwd(), "data"),
        log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        seed_initial_data=_bool(os.getenv("SEED_INITIAL_DATA"), True),
        seed_supervisor_password=os.getenv("SEED_SUPERVISOR_PASSWORD", "supervisor@12"),
    )
