"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires the repository and capacity service, registers routers, and runs
startup initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from backend.controllers.capacity_controller import router as capacity_router
from backend.repository.data_repository import DataRepository
from backend.services.capacity_service import CapacityAnalysisService
from backend.utils.config import Settings, get_settings
from backend.utils.logger import configure_logging, get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None, seed: bool = True) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Services are injected via app.state; every dependency is traceable from
    this function.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    repository = DataRepository(settings)
    capacity_service = CapacityAnalysisService(
        repository=repository,
        settings=settings,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app, seed=seed)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.include_router(capacity_router)

    app.state.repository = repository
    app.state.capacity_service = capacity_service

    return app


def _startup(app: FastAPI, seed: bool = True) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    The schema must exist before seeding; seeding is skipped when resources
    are already present.
    """
    repository: DataRepository = app.state.repository

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    if seed:
        logger.info("Startup: seeding synthetic team (skipped if Resources table not empty)")
        repository.seed_synthetic_data()

    logger.info("Startup complete | database=%s", repository.database_path)


# Module-level app object for uvicorn
app = create_app()
