"""Fleet-wide automatic backups.

One sweep:
1. List every device record under the ``device:`` key prefix
2. Skip devices with auto-backup disabled or without an address
3. Work out whether each remaining device is due
4. Back up due devices, each in isolation

A device is due when it has never been backed up, or when the whole days
since its newest backup reach its ``autoBackupIntervalDays``.  One device's
failure is logged and never stops the sweep; the next sweep picks it up
again.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from tasmotascope.backups.base import DEVICE_RECORD_PREFIX, DeviceRecord, utc_now
from tasmotascope.backups.orchestrator import BackupOrchestrator, days_since
from tasmotascope.services.couchdb import CouchDbClient

logger = logging.getLogger("tasmotascope.backups.scheduler")


@dataclass
class AutoBackupResult:
    """Outcome of one device in a sweep.

    Attributes:
        device_id:  Device identifier.
        record_id:  Document key of the device record.
        status:     'success', 'skipped', or 'error'.
        reason:     Why the device was skipped, or the error message.
        count:      Backups held after a successful run.
        checked_at: UTC timestamp of the decision.
    """

    device_id: str
    record_id: str
    status: str = "success"
    reason: str | None = None
    count: int | None = None
    checked_at: datetime = field(default_factory=utc_now)


class FleetScheduler:
    """Decide which devices are due and back them up.

    Usage::

        scheduler = FleetScheduler(store, BackupOrchestrator(store, mirror=registry))
        results = await scheduler.run_scheduled_auto_backups()
    """

    def __init__(
        self,
        store: CouchDbClient,
        orchestrator: BackupOrchestrator,
        max_concurrent: int = 5,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the scheduler.

        Args:
            store:          Store client used to list device records.
            orchestrator:   Performs the individual backups.
            max_concurrent: Maximum number of simultaneous device backups.
            clock:          Returns the current aware UTC datetime.
        """
        self._store = store
        self._orchestrator = orchestrator
        self._max_concurrent = max_concurrent
        self._clock = clock

    def days_since_backup(self, record: DeviceRecord, now: datetime) -> int | None:
        """Whole days since the newest backup, None if never backed up."""
        return days_since(record.history.most_recent_at, now)

    def is_due(self, record: DeviceRecord, now: datetime) -> bool:
        """Return True if an enabled device needs a backup at ``now``."""
        if not record.auto_backup_enabled:
            return False
        elapsed = self.days_since_backup(record, now)
        return elapsed is None or elapsed >= record.auto_backup_interval_days

    async def run_scheduled_auto_backups(self) -> list[AutoBackupResult]:
        """Run one sweep over all device records.

        Returns:
            One AutoBackupResult per device record.

        Raises:
            StoreQueryFailed: If the device records cannot be listed.
        """
        records = await self._store.list_records_by_key_prefix(DEVICE_RECORD_PREFIX)
        now = self._clock()
        logger.info("Auto-backup sweep: %d device records", len(records))

        semaphore = asyncio.Semaphore(self._max_concurrent)
        results = await asyncio.gather(
            *(self._run_device(record, now, semaphore) for record in records)
        )

        logger.info(
            "Auto-backup sweep complete: %d backed up, %d failed, %d skipped",
            sum(1 for r in results if r.status == "success"),
            sum(1 for r in results if r.status == "error"),
            sum(1 for r in results if r.status == "skipped"),
        )
        return list(results)

    async def _run_device(
        self, record: DeviceRecord, now: datetime, semaphore: asyncio.Semaphore
    ) -> AutoBackupResult:
        result = AutoBackupResult(device_id=record.device_id, record_id=record.record_id)

        if not record.auto_backup_enabled:
            result.status = "skipped"
            result.reason = "auto-backup disabled"
            return result

        address = record.address
        if address is None:
            result.status = "skipped"
            result.reason = "no address"
            return result

        if not self.is_due(record, now):
            result.status = "skipped"
            result.reason = "not due"
            return result

        async with semaphore:
            try:
                summary = await self._orchestrator.perform_backup(
                    address, record.device_id, record.broker_id
                )
            except Exception as exc:
                result.status = "error"
                result.reason = str(exc)
                logger.error("[Auto-Backup] %s: %s", record.device_id, exc)
                return result

        result.count = summary.count
        logger.info("[Auto-Backup] %s: backup created", record.device_id)
        return result
