"""CouchDB client for device records.

Read-then-conditional-write: ``put_record`` attaches the caller's revision
token so CouchDB rejects the write with 409 if another writer got there
first.  Nothing is cached between calls; base URL and auth header are
rebuilt from the settings on every request.

Store requests rely on httpx's default timeout.
"""

from __future__ import annotations

import base64
import json
import logging
from typing import Any
from urllib.parse import quote

import httpx

from tasmotascope.backups.base import DeviceRecord
from tasmotascope.backups.errors import StoreError, StoreQueryFailed, StoreWriteFailed
from tasmotascope.config import CouchDbSettings

logger = logging.getLogger("tasmotascope.couchdb")

PING_TIMEOUT_SECONDS = 5.0

# Upper bound for key-prefix range queries
_RANGE_SENTINEL = "\ufff0"

# Node config applied by ensure_database so browser clients can talk to CouchDB
_CORS_CONFIG: list[tuple[str, str]] = [
    ("httpd/enable_cors", "true"),
    ("cors/origins", "*"),
    ("cors/credentials", "true"),
    ("cors/methods", "GET, PUT, POST, HEAD, DELETE, OPTIONS"),
    ("cors/headers", "accept, authorization, content-type, origin, referer, x-csrf-token"),
]


def build_base_url(settings: CouchDbSettings) -> str:
    protocol = "https" if settings.use_tls else "http"
    return f"{protocol}://{settings.host}:{settings.port}"


def build_auth_header(settings: CouchDbSettings) -> str:
    """Return the HTTP Basic ``Authorization`` header value."""
    token = base64.b64encode(
        f"{settings.username}:{settings.password}".encode("utf-8")
    ).decode("ascii")
    return f"Basic {token}"


def record_url(settings: CouchDbSettings, record_id: str) -> str:
    return (
        f"{build_base_url(settings)}/{quote(settings.database, safe='')}"
        f"/{quote(record_id, safe='')}"
    )


class CouchDbClient:
    """Device record access for one CouchDB database.

    Usage::

        client = CouchDbClient(get_couchdb_settings())
        record = await client.get_record("device:default:tasmota_1A2B3C")
    """

    def __init__(
        self,
        settings: CouchDbSettings,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            settings:    Connection settings; never mutated.
            http_client: Optional pre-configured httpx client (for testing).
        """
        self._settings = settings
        self._http_client = http_client

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def get_record(self, record_id: str) -> DeviceRecord | None:
        """Read one device record.

        Returns:
            The record, or None if CouchDB answers 404.

        Raises:
            StoreQueryFailed: On any other non-2xx response or transport error.
        """
        response = await self._request(
            "GET", record_url(self._settings, record_id), error_cls=StoreQueryFailed
        )
        if response.status_code == 404:
            return None
        if not response.is_success:
            raise StoreQueryFailed(
                f"Reading {record_id} failed",
                status_code=response.status_code,
                detail=response.text,
            )
        return DeviceRecord.from_doc(response.json())

    async def put_record(
        self,
        record_id: str,
        record: DeviceRecord,
        expected_revision: str | None = None,
    ) -> str | None:
        """Write the full record.

        Args:
            record_id:         Document key.
            record:            Record to persist, typed fields and remainder.
            expected_revision: Revision the caller read; attached as ``_rev``
                               so a concurrent update is rejected.

        Returns:
            The new revision token reported by CouchDB, None if the response
            carried none.

        Raises:
            StoreWriteFailed: On non-2xx (409 = revision conflict) or transport error.
        """
        doc = record.to_doc()
        doc["_id"] = record_id
        if expected_revision:
            doc["_rev"] = expected_revision

        response = await self._request(
            "PUT",
            record_url(self._settings, record_id),
            error_cls=StoreWriteFailed,
            json=doc,
        )
        if not response.is_success:
            raise StoreWriteFailed(
                f"Saving {record_id} failed",
                status_code=response.status_code,
                detail=response.text,
            )
        # Already committed; a body without a revision is only logged
        try:
            new_rev = response.json().get("rev")
        except (ValueError, AttributeError):
            logger.warning("Saved %s but the response carried no revision", record_id)
            new_rev = None
        logger.debug("Saved %s (rev %s -> %s)", record_id, expected_revision, new_rev)
        return new_rev

    async def list_records_by_key_prefix(self, prefix: str) -> list[DeviceRecord]:
        """Return every record whose key starts with ``prefix``.

        Raises:
            StoreQueryFailed: On non-2xx response or transport error.
        """
        url = f"{build_base_url(self._settings)}/{quote(self._settings.database, safe='')}/_all_docs"
        params = {
            "include_docs": "true",
            "startkey": json.dumps(prefix),
            "endkey": json.dumps(prefix + _RANGE_SENTINEL),
        }
        response = await self._request(
            "GET", url, error_cls=StoreQueryFailed, params=params
        )
        if not response.is_success:
            raise StoreQueryFailed(
                "Listing device records failed",
                status_code=response.status_code,
                detail=response.text,
            )

        records: list[DeviceRecord] = []
        for row in response.json().get("rows") or []:
            doc = row.get("doc")
            if not doc:
                continue
            try:
                records.append(DeviceRecord.from_doc(doc))
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                logger.warning("Skipping undecodable record %s: %s", row.get("id"), exc)
        return records

    # ------------------------------------------------------------------
    # Server
    # ------------------------------------------------------------------

    async def ping(self) -> bool:
        """Return True if CouchDB answers ``/_up`` with 2xx within 5 seconds."""
        try:
            response = await self._send(
                "GET",
                f"{build_base_url(self._settings)}/_up",
                timeout=PING_TIMEOUT_SECONDS,
            )
        except httpx.HTTPError as exc:
            logger.warning("CouchDB ping failed: %s", exc)
            return False
        return response.is_success

    async def ensure_database(self) -> None:
        """Enable CORS on the node and create the database if missing.

        Idempotent.  Failed CORS settings are logged only.

        Raises:
            StoreError: If the database cannot be created.
        """
        base_url = build_base_url(self._settings)
        for key, value in _CORS_CONFIG:
            response = await self._request(
                "PUT",
                f"{base_url}/_node/_local/_config/{key}",
                error_cls=StoreError,
                content=json.dumps(value),
            )
            if not response.is_success and response.status_code != 412:
                logger.warning(
                    "CouchDB config %s failed (%d): %s",
                    key, response.status_code, response.text,
                )

        response = await self._request(
            "PUT",
            f"{base_url}/{quote(self._settings.database, safe='')}",
            error_cls=StoreError,
        )
        if response.is_success or response.status_code == 412:
            logger.info("CouchDB database %s ready", self._settings.database)
            return
        raise StoreError(
            f"Database {self._settings.database!r} could not be created",
            status_code=response.status_code,
            detail=response.text,
        )

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": build_auth_header(self._settings),
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        headers = self._headers()
        if self._http_client:
            return await self._http_client.request(method, url, headers=headers, **kwargs)
        async with httpx.AsyncClient() as client:
            return await client.request(method, url, headers=headers, **kwargs)

    async def _request(
        self, method: str, url: str, *, error_cls: type[StoreError], **kwargs: Any
    ) -> httpx.Response:
        """Send a request, converting transport failures into ``error_cls``."""
        try:
            return await self._send(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise error_cls(
                f"CouchDB {method} {url} failed", detail=str(exc) or type(exc).__name__
            ) from exc
