"""Request and response schemas for the backup endpoints."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from tasmotascope.config import CouchDbSettings


class TasmotaBase(BaseModel):
    """Base model: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        alias_generator=to_camel,
    )


# ---------- Backup ----------

class BackupRequest(TasmotaBase):
    host: str = Field(min_length=1)
    device_id: str = Field(min_length=1)
    broker_id: str | None = None
    couchdb: CouchDbSettings | None = None


class BackupResponse(TasmotaBase):
    ok: bool = True
    last_timestamp: str | None = None
    count: int


# ---------- Delete ----------

class DeleteBackupRequest(TasmotaBase):
    device_id: str = Field(min_length=1)
    broker_id: str | None = None
    couchdb: CouchDbSettings | None = None
    index: int = Field(ge=0)


class DeleteBackupResponse(TasmotaBase):
    ok: bool = True
    count: int
    last_at: str | None = None


# ---------- Status ----------

class StatusResponse(TasmotaBase):
    couchdb: bool
    auto_backup: bool = False
