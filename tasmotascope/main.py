"""TasmotaScope backup API: FastAPI application entry point.

Run locally:
    uvicorn tasmotascope.main:app --reload --port 3001
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tasmotascope.backups.errors import StoreError
from tasmotascope.backups.mirror import InMemoryDeviceRegistry
from tasmotascope.backups.runner import AutoBackupRunner
from tasmotascope.config import get_couchdb_settings, get_settings
from tasmotascope.routers import backups, health, status
from tasmotascope.services.couchdb import CouchDbClient

# ---------- Logging ----------

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("tasmotascope")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logger.info(
        "Starting %s v%s [%s]",
        settings.app_name,
        settings.app_version,
        settings.environment,
    )

    runner: AutoBackupRunner = app.state.auto_backup_runner
    couchdb = get_couchdb_settings()
    if couchdb is not None:
        try:
            await CouchDbClient(couchdb).ensure_database()
        except StoreError as exc:
            logger.error("CouchDB initialization failed: %s", exc)
        runner.start()
    else:
        logger.info(
            "Auto-backup scheduler inactive (COUCHDB_HOST and COUCHDB_DATABASE not set)"
        )

    yield

    await runner.stop()
    logger.info("%s shut down", settings.app_name)


# ---------- App factory ----------

def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="TasmotaScope Backup API",
        description="Settings backups for Tasmota devices, archived in CouchDB.",
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    registry = InMemoryDeviceRegistry()
    app.state.device_registry = registry
    app.state.auto_backup_runner = AutoBackupRunner(
        get_couchdb_settings,
        mirror=registry,
        interval_seconds=settings.auto_backup_interval_seconds,
        initial_delay_seconds=settings.auto_backup_initial_delay_seconds,
        max_concurrent=settings.auto_backup_max_concurrent,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------- Health check (outside /api prefix) ----------
    app.include_router(health.router)

    # ---------- API routes ----------
    app.include_router(status.router, prefix="/api")
    app.include_router(backups.router, prefix="/api")

    return app


app = create_app()
