"""Backup orchestrator: one device backup or one deletion, end to end.

Both operations are read-modify-write against the store.  The write carries
the revision token of the read, so a concurrent writer makes it fail with a
conflict instead of being overwritten.  Conflicts are surfaced to the
caller, never retried here.

Usage::

    orchestrator = BackupOrchestrator(CouchDbClient(settings), mirror=registry)
    summary = await orchestrator.perform_backup("192.168.1.40", "tasmota_1A2B3C")
"""

from __future__ import annotations

import base64
import logging
from datetime import datetime, timedelta
from typing import Callable

from tasmotascope.backups.base import (
    BackupEntry,
    BackupSummary,
    DeletionSummary,
    DeviceBackupHistory,
    DeviceRecord,
    device_record_id,
    format_timestamp,
    parse_timestamp,
    utc_now,
)
from tasmotascope.backups.errors import RecordNotFound
from tasmotascope.backups.fetcher import SnapshotFetcher
from tasmotascope.backups.mirror import DeviceMirror, MirrorUpdate, NullMirror
from tasmotascope.backups.retention import insert_newest, remove_at
from tasmotascope.services.couchdb import CouchDbClient

logger = logging.getLogger("tasmotascope.backups.orchestrator")


def days_since(timestamp: str | None, now: datetime) -> int | None:
    """Whole days elapsed since ``timestamp``, None if absent or unparseable."""
    captured = parse_timestamp(timestamp)
    if captured is None:
        return None
    return (now - captured) // timedelta(days=1)


class BackupOrchestrator:
    """Compose fetcher, store client and retention policy.

    The orchestrator holds no device state; every call re-reads the record.
    """

    def __init__(
        self,
        store: CouchDbClient,
        fetcher: SnapshotFetcher | None = None,
        mirror: DeviceMirror | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            store:   Document store client.
            fetcher: Snapshot fetcher (defaults to one with its own HTTP client).
            mirror:  Notification sink for successful changes (defaults to no-op).
            clock:   Returns the current aware UTC datetime.
        """
        self._store = store
        self._fetcher = fetcher if fetcher is not None else SnapshotFetcher()
        self._mirror = mirror if mirror is not None else NullMirror()
        self._clock = clock

    async def perform_backup(
        self,
        device_address: str,
        device_id: str,
        broker_id: str | None = None,
    ) -> BackupSummary:
        """Capture a snapshot from the device and add it to its history.

        Creates the device record on first backup.  An existing record keeps
        every field; only the history and ``updatedAt`` change.

        Raises:
            DeviceUnreachable: The snapshot could not be fetched.
            StoreQueryFailed:  Reading the existing record failed.
            StoreWriteFailed:  The store rejected the write (409 = conflict).
        """
        raw = await self._fetcher.fetch(device_address)
        now = self._clock()
        entry = BackupEntry(
            payload=base64.b64encode(raw).decode("ascii"),
            captured_at=format_timestamp(now),
        )

        record_id = device_record_id(broker_id, device_id)
        existing = await self._store.get_record(record_id)

        if existing is not None:
            record = existing
            history = insert_newest(existing.history, entry)
            revision = existing.revision
        else:
            logger.info("First backup for %s, creating record", record_id)
            record = DeviceRecord.new(broker_id, device_id, now)
            history = insert_newest(DeviceBackupHistory(), entry)
            revision = None

        record.history = history
        record.updated_at = format_timestamp(now)
        await self._store.put_record(record_id, record, expected_revision=revision)

        logger.info(
            "Backup stored for %s (%d bytes, %d kept)", record_id, len(raw), history.count
        )
        self._notify(
            device_id,
            MirrorUpdate(
                backup_count=history.count,
                backup_items=list(history.items),
                days_since_backup=0,
            ),
        )
        return BackupSummary(
            most_recent_at=history.most_recent_at,
            count=history.count,
            items=list(history.items),
        )

    async def delete_backup_entry(
        self,
        device_id: str,
        broker_id: str | None,
        index: int,
    ) -> DeletionSummary:
        """Remove the backup at ``index`` (0 = newest) from the device history.

        Raises:
            RecordNotFound:   The device has no record.
            InvalidIndex:     ``index`` is outside the current history.
            StoreQueryFailed: Reading the record failed.
            StoreWriteFailed: The store rejected the write (409 = conflict).
        """
        record_id = device_record_id(broker_id, device_id)
        record = await self._store.get_record(record_id)
        if record is None:
            raise RecordNotFound(record_id)

        history = remove_at(record.history, index)
        now = self._clock()
        record.history = history
        record.updated_at = format_timestamp(now)
        await self._store.put_record(record_id, record, expected_revision=record.revision)

        logger.info(
            "Deleted backup %d of %s (%d left)", index, record_id, history.count
        )
        self._notify(
            device_id,
            MirrorUpdate(
                backup_count=history.count,
                backup_items=list(history.items),
                days_since_backup=days_since(history.most_recent_at, now),
            ),
        )
        return DeletionSummary(count=history.count, most_recent_at=history.most_recent_at)

    def _notify(self, device_id: str, update: MirrorUpdate) -> None:
        """Push to the mirror; failures never affect the committed write."""
        try:
            self._mirror.publish(device_id, update)
        except Exception as exc:
            logger.warning("Mirror update failed for %s: %s", device_id, exc)
