"""Manual backup endpoints: capture a snapshot, delete a stored backup."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException

from tasmotascope.backups.errors import (
    BackupError,
    DeviceUnreachable,
    InvalidIndex,
    RecordNotFound,
    StoreWriteFailed,
)
from tasmotascope.backups.fetcher import SnapshotFetcher
from tasmotascope.backups.orchestrator import BackupOrchestrator
from tasmotascope.config import CouchDbSettings, get_couchdb_settings
from tasmotascope.dependencies import DeviceRegistry, HttpClient
from tasmotascope.models.backups import (
    BackupRequest,
    BackupResponse,
    DeleteBackupRequest,
    DeleteBackupResponse,
)
from tasmotascope.services.couchdb import CouchDbClient

router = APIRouter(tags=["backups"])
logger = logging.getLogger("tasmotascope.routers.backups")


def _resolve_couchdb(explicit: CouchDbSettings | None) -> CouchDbSettings:
    settings = explicit or get_couchdb_settings()
    if settings is None:
        raise HTTPException(status_code=400, detail="CouchDB is not configured")
    return settings


def _http_error(exc: BackupError, action: str) -> HTTPException:
    if isinstance(exc, RecordNotFound):
        status = 404
    elif isinstance(exc, InvalidIndex):
        status = 400
    elif isinstance(exc, StoreWriteFailed) and exc.conflict:
        status = 409
    else:
        # DeviceUnreachable and remaining store failures are upstream errors
        status = 502
    return HTTPException(status_code=status, detail=f"{action} failed: {exc}")


@router.post("/backup", response_model=BackupResponse)
async def create_backup(
    body: BackupRequest, registry: DeviceRegistry, http_client: HttpClient
) -> Any:
    store = CouchDbClient(_resolve_couchdb(body.couchdb), http_client=http_client)
    orchestrator = BackupOrchestrator(
        store, fetcher=SnapshotFetcher(http_client=http_client), mirror=registry
    )
    try:
        summary = await orchestrator.perform_backup(
            body.host, body.device_id, body.broker_id
        )
    except BackupError as exc:
        if isinstance(exc, DeviceUnreachable):
            logger.warning("Backup of %s failed: %s", body.device_id, exc)
        else:
            logger.error("Backup of %s failed: %s", body.device_id, exc)
        raise _http_error(exc, "Backup") from exc

    return BackupResponse(last_timestamp=summary.most_recent_at, count=summary.count)


@router.post("/backup/delete", response_model=DeleteBackupResponse)
async def delete_backup(
    body: DeleteBackupRequest, registry: DeviceRegistry, http_client: HttpClient
) -> Any:
    store = CouchDbClient(_resolve_couchdb(body.couchdb), http_client=http_client)
    orchestrator = BackupOrchestrator(store, mirror=registry)
    try:
        summary = await orchestrator.delete_backup_entry(
            body.device_id, body.broker_id, body.index
        )
    except BackupError as exc:
        logger.warning("Deleting backup %d of %s failed: %s", body.index, body.device_id, exc)
        raise _http_error(exc, "Backup deletion") from exc

    return DeleteBackupResponse(count=summary.count, last_at=summary.most_recent_at)
