"""Retention policy for device backup histories.

Pure functions, no I/O.  These are the only places where the retention cap
and newest-first ordering are enforced; every history mutation goes through
them.
"""

from __future__ import annotations

from tasmotascope.backups.base import (
    MAX_BACKUPS_PER_DEVICE,
    BackupEntry,
    DeviceBackupHistory,
)
from tasmotascope.backups.errors import InvalidIndex


def insert_newest(
    history: DeviceBackupHistory, entry: BackupEntry
) -> DeviceBackupHistory:
    """Prepend ``entry`` and drop everything beyond the retention cap.

    Evicted entries are discarded silently.
    """
    items = (entry, *history.items)[:MAX_BACKUPS_PER_DEVICE]
    return DeviceBackupHistory(items=items)


def remove_at(history: DeviceBackupHistory, index: int) -> DeviceBackupHistory:
    """Remove the entry at ``index``, keeping the order of the rest.

    Raises:
        InvalidIndex: If ``index`` is outside ``[0, count)``.
    """
    if index < 0 or index >= history.count:
        raise InvalidIndex(index, history.count)
    items = history.items[:index] + history.items[index + 1 :]
    return DeviceBackupHistory(items=items)
