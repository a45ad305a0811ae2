"""Error kinds raised by the backup engine.

Every engine operation fails fast and whole with one of these.  The fleet
scheduler is the only place they are caught and turned into log lines.
"""

from __future__ import annotations


class BackupError(Exception):
    """Base exception for backup and retention logic."""


class DeviceUnreachable(BackupError):
    """Snapshot fetch failed: bad status, network error, or timeout."""

    def __init__(
        self,
        address: str,
        status_code: int | None = None,
        reason: str | None = None,
    ) -> None:
        self.address = address
        self.status_code = status_code
        self.reason = reason
        detail = " ".join(str(p) for p in (status_code, reason) if p)
        super().__init__(f"Device {address} unreachable: {detail or 'no response'}")


class RecordNotFound(BackupError):
    """A device record that must already exist is absent."""

    def __init__(self, record_id: str) -> None:
        self.record_id = record_id
        super().__init__(f"Device record not found: {record_id}")


class InvalidIndex(BackupError):
    """Backup index outside the current history bounds."""

    def __init__(self, index: int, count: int) -> None:
        self.index = index
        self.count = count
        super().__init__(f"Invalid backup index {index} (history holds {count})")


class StoreError(BackupError):
    """The document store rejected or failed a request."""

    def __init__(
        self, message: str, status_code: int | None = None, detail: str = ""
    ) -> None:
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"{message}: {detail}" if detail else message)


class StoreWriteFailed(StoreError):
    """A record write was rejected, including revision conflicts."""

    @property
    def conflict(self) -> bool:
        return self.status_code == 409


class StoreQueryFailed(StoreError):
    """A read or range query against the store failed."""
