"""Store status, runtime CouchDB configuration, and the device mirror listing."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request

from tasmotascope.backups.errors import StoreError
from tasmotascope.config import CouchDbSettings, get_couchdb_settings, set_couchdb_override
from tasmotascope.dependencies import DeviceRegistry, HttpClient
from tasmotascope.models.backups import StatusResponse
from tasmotascope.services.couchdb import CouchDbClient

router = APIRouter(tags=["status"])
logger = logging.getLogger("tasmotascope.routers.status")


@router.get("/status", response_model=StatusResponse)
async def get_status(request: Request, http_client: HttpClient) -> Any:
    settings = get_couchdb_settings()
    runner = getattr(request.app.state, "auto_backup_runner", None)
    auto_backup = runner is not None and runner.running
    if settings is None:
        return StatusResponse(couchdb=False, auto_backup=auto_backup)
    ok = await CouchDbClient(settings, http_client=http_client).ping()
    return StatusResponse(couchdb=ok, auto_backup=auto_backup)


@router.put("/config/couchdb", response_model=StatusResponse)
async def configure_couchdb(
    body: CouchDbSettings, request: Request, http_client: HttpClient
) -> Any:
    """Replace the environment CouchDB settings until the next restart."""
    client = CouchDbClient(body, http_client=http_client)
    try:
        await client.ensure_database()
    except StoreError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    set_couchdb_override(body)
    logger.info("CouchDB override set: %s:%d/%s", body.host, body.port, body.database)

    runner = getattr(request.app.state, "auto_backup_runner", None)
    if runner is not None:
        runner.start()
    return StatusResponse(couchdb=True, auto_backup=runner is not None and runner.running)


@router.get("/devices")
async def list_devices(registry: DeviceRegistry) -> dict[str, dict[str, Any]]:
    return registry.snapshot()
