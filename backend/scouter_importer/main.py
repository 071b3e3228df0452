"""FastAPI application bootstrap and router wiring."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from scouter_importer.api.routers import health, jobs, uploads
from scouter_importer.core.config import get_settings
from scouter_importer.core.logging_config import configure_logging
from scouter_importer.db.session import init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging and make sure the tables exist before serving."""
    settings = get_settings()
    configure_logging(settings.log_level)
    if settings.create_tables_on_startup:
        init_db()
        logger.info("Database tables ready")
    logger.info(
        f"{settings.app_name} started: chunk_size={settings.chunk_size}, "
        f"execution window={settings.max_execution_seconds}s, "
        f"target tables={settings.target_tables}"
    )
    yield


def create_app() -> FastAPI:
    """Instantiate the FastAPI app and include top-level routers."""
    settings = get_settings()
    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)

    app.include_router(health.router)
    app.include_router(uploads.router, prefix="/api/uploads", tags=["uploads"])
    app.include_router(jobs.router, prefix="/api/jobs", tags=["jobs"])

    return app


app = create_app()
