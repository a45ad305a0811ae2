"""TasmotaScope backup retention and scheduling engine.

Core modules:
    base         - Device record, backup history, and key helpers
    errors       - Error kinds raised by the engine
    retention    - Bounded newest-first history transformations
    fetcher      - Settings snapshot download from devices
    orchestrator - Single-device backup and deletion
    scheduler    - Fleet-wide due check and auto-backup sweep
    runner       - Periodic background sweeps
    mirror       - Notification sink for backup changes
"""

from tasmotascope.backups.base import (
    MAX_BACKUPS_PER_DEVICE,
    BackupEntry,
    BackupSummary,
    DeletionSummary,
    DeviceBackupHistory,
    DeviceRecord,
    device_record_id,
    normalize_broker_id,
)
from tasmotascope.backups.errors import (
    BackupError,
    DeviceUnreachable,
    InvalidIndex,
    RecordNotFound,
    StoreError,
    StoreQueryFailed,
    StoreWriteFailed,
)

__all__ = [
    "MAX_BACKUPS_PER_DEVICE",
    "BackupEntry",
    "BackupSummary",
    "DeletionSummary",
    "DeviceBackupHistory",
    "DeviceRecord",
    "device_record_id",
    "normalize_broker_id",
    "BackupError",
    "DeviceUnreachable",
    "InvalidIndex",
    "RecordNotFound",
    "StoreError",
    "StoreQueryFailed",
    "StoreWriteFailed",
]
