"""Shared fixtures: an in-memory CouchDB and fake Tasmota devices behind httpx.MockTransport."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import unquote

import httpx
import pytest

from tasmotascope.backups.base import BackupEntry, DeviceBackupHistory, format_timestamp
from tasmotascope.backups.fetcher import SnapshotFetcher
from tasmotascope.backups.mirror import InMemoryDeviceRegistry
from tasmotascope.backups.orchestrator import BackupOrchestrator
from tasmotascope.config import CouchDbSettings
from tasmotascope.services.couchdb import CouchDbClient

COUCH_HOST = "couch.test"
COUCH_DB = "tasmotascope"
TEST_NOW = datetime(2026, 2, 23, 12, 0, 0, tzinfo=timezone.utc)
DEVICE_ADDRESS = "192.168.1.40"
DEVICE_ID = "tasmota_1A2B3C"
SNAPSHOT_BYTES = b"\x00\x01TasmotaSettings\xff"


# ---------------------------------------------------------------------------
# Fake servers
# ---------------------------------------------------------------------------


class FakeCouchDb:
    """Minimal CouchDB: documents with revision checks and _all_docs ranges."""

    def __init__(self, database: str = COUCH_DB) -> None:
        self.database = database
        self.docs: dict[str, dict[str, Any]] = {}
        self.config: dict[str, str] = {}
        self.database_exists = True
        self.requests: list[httpx.Request] = []
        self.fail_next: dict[str, int] = {}  # method -> status code
        self._rev_counter = 0

    def seed(self, doc: dict[str, Any]) -> str:
        """Insert a document directly and return its revision."""
        rev = self._next_rev()
        self.docs[doc["_id"]] = {**doc, "_rev": rev}
        return rev

    def _next_rev(self) -> str:
        self._rev_counter += 1
        return f"{self._rev_counter}-fake"

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method in self.fail_next:
            status = self.fail_next.pop(request.method)
            return httpx.Response(status, json={"error": "internal", "reason": "injected"})

        path = unquote(request.url.raw_path.decode("ascii").split("?", 1)[0])
        parts = path.lstrip("/").split("/", 1)

        if path == "/_up":
            return httpx.Response(200, json={"status": "ok"})
        if parts[0] == "_node":
            self.config[path.rsplit("/_config/", 1)[-1]] = json.loads(request.content)
            return httpx.Response(200, json="")
        if parts[0] != self.database:
            return httpx.Response(404, json={"error": "not_found", "reason": "Database does not exist."})
        if len(parts) == 1:
            if request.method == "PUT":
                if self.database_exists:
                    return httpx.Response(412, json={"error": "file_exists"})
                self.database_exists = True
                return httpx.Response(201, json={"ok": True})
            return httpx.Response(200, json={"db_name": self.database})
        if parts[1] == "_all_docs":
            return self._all_docs(request)
        if request.method == "GET":
            return self._get(parts[1])
        if request.method == "PUT":
            return self._put(parts[1], json.loads(request.content))
        return httpx.Response(405, json={"error": "method_not_allowed"})

    def _get(self, doc_id: str) -> httpx.Response:
        doc = self.docs.get(doc_id)
        if doc is None:
            return httpx.Response(404, json={"error": "not_found", "reason": "missing"})
        return httpx.Response(200, json=doc)

    def _put(self, doc_id: str, body: dict[str, Any]) -> httpx.Response:
        current = self.docs.get(doc_id)
        current_rev = current["_rev"] if current else None
        if body.get("_rev") != current_rev:
            return httpx.Response(
                409, json={"error": "conflict", "reason": "Document update conflict."}
            )
        rev = self._next_rev()
        self.docs[doc_id] = {**body, "_id": doc_id, "_rev": rev}
        return httpx.Response(201, json={"ok": True, "id": doc_id, "rev": rev})

    def _all_docs(self, request: httpx.Request) -> httpx.Response:
        params = request.url.params
        start = json.loads(params.get("startkey", '""'))
        end = json.loads(params.get("endkey", '"\\ufff0"'))
        include_docs = params.get("include_docs") == "true"
        rows = []
        for doc_id in sorted(self.docs):
            if start <= doc_id <= end:
                row: dict[str, Any] = {
                    "id": doc_id,
                    "key": doc_id,
                    "value": {"rev": self.docs[doc_id]["_rev"]},
                }
                if include_docs:
                    row["doc"] = self.docs[doc_id]
                rows.append(row)
        return httpx.Response(200, json={"total_rows": len(self.docs), "offset": 0, "rows": rows})


class FakeDevices:
    """Tasmota devices keyed by address; unknown addresses refuse the connection."""

    def __init__(self) -> None:
        self.snapshots: dict[str, bytes] = {}
        self.statuses: dict[str, int] = {}
        self.requests: list[httpx.Request] = []

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        address = request.url.host
        if request.url.port:
            address = f"{address}:{request.url.port}"
        if address in self.statuses:
            return httpx.Response(self.statuses[address])
        if address not in self.snapshots:
            raise httpx.ConnectError("Connection refused", request=request)
        if request.url.path != "/dl":
            return httpx.Response(404)
        return httpx.Response(
            200,
            content=self.snapshots[address],
            headers={"Content-Type": "application/octet-stream"},
        )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def couch_settings() -> CouchDbSettings:
    return CouchDbSettings(
        host=COUCH_HOST,
        port=5984,
        username="admin",
        password="secret",
        database=COUCH_DB,
    )


@pytest.fixture
def fake_couch() -> FakeCouchDb:
    return FakeCouchDb()


@pytest.fixture
def fake_devices() -> FakeDevices:
    devices = FakeDevices()
    devices.snapshots[DEVICE_ADDRESS] = SNAPSHOT_BYTES
    return devices


@pytest.fixture
def http_client(fake_couch: FakeCouchDb, fake_devices: FakeDevices) -> httpx.AsyncClient:
    """AsyncClient routing CouchDB traffic to fake_couch and the rest to fake_devices."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == COUCH_HOST:
            return fake_couch.handle(request)
        return fake_devices.handle(request)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def store(couch_settings: CouchDbSettings, http_client: httpx.AsyncClient) -> CouchDbClient:
    return CouchDbClient(couch_settings, http_client=http_client)


@pytest.fixture
def registry() -> InMemoryDeviceRegistry:
    return InMemoryDeviceRegistry()


class FakeClock:
    """Settable clock; each call returns the current value."""

    def __init__(self, now: datetime = TEST_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def orchestrator(
    store: CouchDbClient,
    http_client: httpx.AsyncClient,
    registry: InMemoryDeviceRegistry,
    clock: FakeClock,
) -> BackupOrchestrator:
    return BackupOrchestrator(
        store,
        fetcher=SnapshotFetcher(http_client=http_client),
        mirror=registry,
        clock=clock,
    )


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_entry(n: int, base: datetime = TEST_NOW) -> BackupEntry:
    """Entry ``n`` captured ``n`` hours before ``base``."""
    return BackupEntry(
        payload=f"cGF5bG9hZC0{n}",
        captured_at=format_timestamp(base - timedelta(hours=n)),
    )


def make_history(size: int) -> DeviceBackupHistory:
    """History of ``size`` entries, newest (n=0) first."""
    return DeviceBackupHistory(items=tuple(make_entry(n) for n in range(size)))


def device_doc(
    device_id: str = DEVICE_ID,
    broker_id: str = "default",
    ip: str | None = DEVICE_ADDRESS,
    interval: Any = None,
    last_at: datetime | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Device document as the frontend and listener write it."""
    doc: dict[str, Any] = {
        "_id": f"device:{broker_id}:{device_id}",
        "deviceId": device_id,
        "brokerId": broker_id,
        "topic": device_id,
        "online": True,
        "fields": {"name": "Kitchen Plug", "firmware": "14.3.0"} | ({"ip": ip} if ip is not None else {}),
        "raw": {"StatusNET": {"IPAddress": ip}},
        "autoBackupIntervalDays": interval,
        **extra,
    }
    if last_at is not None:
        stamp = format_timestamp(last_at)
        doc["backups"] = {
            "count": 1,
            "lastAt": stamp,
            "items": [{"data": "b2xk", "createdAt": stamp}],
        }
    return doc
