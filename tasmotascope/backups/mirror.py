"""Device mirror: the notification sink written to after each backup change.

The engine pushes a summary of the new backup state to whatever mirror it
was constructed with.  Delivery is best-effort; the orchestrator logs and
drops mirror errors.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Protocol

from tasmotascope.backups.base import BackupEntry

logger = logging.getLogger("tasmotascope.backups.mirror")


@dataclass
class MirrorUpdate:
    """Backup summary pushed to the mirror.

    Attributes:
        backup_count:      Number of stored backups.
        backup_items:      Full item list, newest first.
        days_since_backup: Whole days since the newest backup, None if none.
    """

    backup_count: int
    backup_items: list[BackupEntry] = field(default_factory=list)
    days_since_backup: int | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "backupCount": self.backup_count,
            "backupItems": [item.to_doc() for item in self.backup_items],
            "daysSinceBackup": self.days_since_backup,
        }


class DeviceMirror(Protocol):
    """Anything that accepts backup summaries for a device."""

    def publish(self, device_id: str, update: MirrorUpdate) -> None: ...


class NullMirror:
    """Mirror that discards every update."""

    def publish(self, device_id: str, update: MirrorUpdate) -> None:
        return None


class InMemoryDeviceRegistry:
    """Per-process registry of device info, fed by backup updates.

    Backs the ``/api/devices`` listing.  Updates are merged into any info
    already held for the device.
    """

    def __init__(self) -> None:
        self._devices: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def publish(self, device_id: str, update: MirrorUpdate) -> None:
        with self._lock:
            info = self._devices.setdefault(device_id, {"id": device_id})
            info.update(update.to_payload())
        logger.debug(
            "Mirror updated for %s: %d backups", device_id, update.backup_count
        )

    def get(self, device_id: str) -> dict[str, Any] | None:
        with self._lock:
            info = self._devices.get(device_id)
            return dict(info) if info is not None else None

    def snapshot(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            return {k: dict(v) for k, v in self._devices.items()}
