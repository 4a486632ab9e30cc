"""FastAPI application exposing the storage contract over HTTP."""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from fieldops.core.config import Settings, get_settings
from fieldops.core.logging import setup_logging
from fieldops.domain.errors import (
    CapabilityNotSupportedError,
    ConflictError,
    NotFoundError,
    PersistenceError,
    ReferentialIntegrityError,
    StorageConnectionError,
    StorageError,
    ValidationError,
)
from fieldops.repositories.base import Storage
from fieldops.repositories.factory import initialize_storage
from fieldops.routers import analytics as analytics_router
from fieldops.routers import boundaries as boundaries_router
from fieldops.routers import features as features_router
from fieldops.routers import tasks as tasks_router
from fieldops.routers import teams as teams_router
from fieldops.routers import users as users_router
from fieldops.services.seed import seed_initial_data

logger = structlog.get_logger(__name__)

# most specific first; handlers are resolved through the exception MRO
ERROR_STATUS = (
    (ConflictError, 409),
    (ValidationError, 400),
    (ReferentialIntegrityError, 400),
    (NotFoundError, 404),
    (CapabilityNotSupportedError, 501),
    (StorageConnectionError, 503),
    (PersistenceError, 500),
    (StorageError, 500),
)


def _error_body(exc: StorageError) -> dict:
    body = {"error": type(exc).__name__, "message": str(exc)}
    field = getattr(exc, "field", None)
    if field:
        body["field"] = field
    details = getattr(exc, "details", None)
    if details:
        body["details"] = details
    return body


def _register_error_handlers(app: FastAPI) -> None:
    for exc_cls, status_code in ERROR_STATUS:

        async def handler(request: Request, exc: StorageError, status_code: int = status_code) -> JSONResponse:
            if status_code >= 500:
                logger.error("request_failed", path=request.url.path, error=str(exc), status=status_code)
            return JSONResponse(_error_body(exc), status_code=status_code)

        app.add_exception_handler(exc_cls, handler)


def create_app(storage: Optional[Storage] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging()
    if storage is None:
        storage = initialize_storage(settings)
        if settings.seed_initial_data:
            seed_initial_data(storage, supervisor_password=settings.seed_supervisor_password)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        app.state.storage.close()

    app = FastAPI(title="Field Operations API", lifespan=lifespan)
    app.state.storage = storage
    app.state.settings = settings
    _register_error_handlers(app)

    @app.get("/api/health")
    def health():
        return {"ok": True, "backend": app.state.storage.backend_name}

    app.include_router(users_router.router)
    app.include_router(teams_router.router)
    app.include_router(tasks_router.router)
    app.include_router(features_router.router)
    app.include_router(boundaries_router.router)
    app.include_router(analytics_router.router)
    return app
