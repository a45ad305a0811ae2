"""Canonical data models for device backups.

A device record is the CouchDB document holding one device's identity,
metadata, and backup history.  ``DeviceRecord`` decodes only the fields the
backup engine understands; everything else lands in ``extra`` and is written
back untouched, so fields owned by other writers (rules, UI state, raw
telemetry) survive every backup and deletion.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger("tasmotascope.backups")

#: Maximum number of backups kept per device, newest first.
MAX_BACKUPS_PER_DEVICE = 10

#: Key prefix shared by every device record.
DEVICE_RECORD_PREFIX = "device:"

DEFAULT_BROKER_ID = "default"


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format a datetime as ISO-8601 UTC with millisecond precision and a Z suffix."""
    return (
        value.astimezone(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 string to an aware UTC datetime.

    Naive strings are assumed UTC.  Returns None if the value is None or
    unparseable.
    """
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        logger.warning("Could not parse timestamp: %r", value)
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Record keys
# ---------------------------------------------------------------------------


def normalize_broker_id(broker_id: str | None) -> str:
    """Trim the broker id; empty or missing becomes ``default``."""
    value = (broker_id or "").strip()
    return value or DEFAULT_BROKER_ID


def device_record_id(broker_id: str | None, device_id: str) -> str:
    """Build the record key ``device:<broker>:<device>``."""
    return f"{DEVICE_RECORD_PREFIX}{normalize_broker_id(broker_id)}:{device_id}"


# ---------------------------------------------------------------------------
# Backup history
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BackupEntry:
    """One archived snapshot.

    Attributes:
        payload:     Base64 encoding of the raw ``/dl`` response body.
        captured_at: ISO-8601 UTC timestamp of the capture.
        extra:       Any other keys stored on the item, kept verbatim.
    """

    payload: str
    captured_at: str
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_doc(cls, doc: dict[str, Any]) -> BackupEntry:
        return cls(
            payload=doc.get("data", ""),
            captured_at=doc.get("createdAt", ""),
            extra={k: v for k, v in doc.items() if k not in ("data", "createdAt")},
        )

    def to_doc(self) -> dict[str, Any]:
        return {**self.extra, "data": self.payload, "createdAt": self.captured_at}


@dataclass(frozen=True)
class DeviceBackupHistory:
    """Bounded backup history for one device, newest first.

    ``count`` and ``most_recent_at`` are derived from ``items`` so they can
    never disagree with it.  Build new histories through
    :mod:`tasmotascope.backups.retention`, never by editing ``items``.
    """

    items: tuple[BackupEntry, ...] = ()

    @property
    def count(self) -> int:
        return len(self.items)

    @property
    def most_recent_at(self) -> str | None:
        return self.items[0].captured_at if self.items else None

    @classmethod
    def from_doc(cls, doc: Any) -> DeviceBackupHistory:
        """Decode the stored ``backups`` block.

        A block or item list of the wrong type reads as an empty history;
        items that are not objects are dropped with a warning.
        """
        if not isinstance(doc, dict):
            if doc is not None:
                logger.warning("Ignoring malformed backups block: %r", doc)
            return cls()
        raw_items = doc.get("items") or []
        if not isinstance(raw_items, list):
            logger.warning("Ignoring malformed backup item list: %r", raw_items)
            return cls()
        items = []
        for raw in raw_items:
            if not isinstance(raw, dict):
                logger.warning("Dropping malformed backup item: %r", raw)
                continue
            items.append(BackupEntry.from_doc(raw))
        return cls(items=tuple(items))

    def to_doc(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "lastAt": self.most_recent_at,
            "items": [item.to_doc() for item in self.items],
        }


# ---------------------------------------------------------------------------
# Device record
# ---------------------------------------------------------------------------

# Document keys decoded into typed attributes; everything else goes to ``extra``
_KNOWN_KEYS = frozenset(
    {
        "_id",
        "_rev",
        "deviceId",
        "brokerId",
        "fields",
        "autoBackupIntervalDays",
        "backups",
        "updatedAt",
    }
)


@dataclass
class DeviceRecord:
    """Document-store representation of a device.

    Attributes:
        record_id:                 Document key (``device:<broker>:<device>``).
        device_id:                 Device identifier (MQTT topic).
        broker_id:                 Broker namespace as stored (may be absent).
        revision:                  Store revision token, None for unsaved records.
        fields:                    Device info block; ``fields.ip`` is the address.
        auto_backup_interval_days: Auto-backup interval, None or < 1 = disabled.
        history:                   Backup history.
        updated_at:                Last-modified marker.
        extra:                     Every other document field, kept verbatim.
    """

    record_id: str
    device_id: str
    broker_id: str | None = None
    revision: str | None = None
    fields: dict[str, Any] | None = None
    auto_backup_interval_days: int | None = None
    history: DeviceBackupHistory = field(default_factory=DeviceBackupHistory)
    updated_at: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def address(self) -> str | None:
        """Trimmed network address from ``fields.ip``, None when unusable."""
        ip = (self.fields or {}).get("ip")
        if not isinstance(ip, str) or not ip.strip():
            return None
        return ip.strip()

    @property
    def auto_backup_enabled(self) -> bool:
        return (
            self.auto_backup_interval_days is not None
            and self.auto_backup_interval_days >= 1
        )

    @classmethod
    def new(cls, broker_id: str | None, device_id: str, now: datetime) -> DeviceRecord:
        """Synthesize the minimal record for a device seen for the first time."""
        stamp = format_timestamp(now)
        return cls(
            record_id=device_record_id(broker_id, device_id),
            device_id=device_id,
            broker_id=normalize_broker_id(broker_id),
            fields={},
            updated_at=stamp,
            extra={"lastSeen": stamp, "topic": device_id, "raw": {}},
        )

    @classmethod
    def from_doc(cls, doc: dict[str, Any]) -> DeviceRecord:
        extra = {k: v for k, v in doc.items() if k not in _KNOWN_KEYS}

        # Malformed or null values stay in the remainder so they round-trip
        fields = doc.get("fields")
        if "fields" in doc and not isinstance(fields, dict):
            extra["fields"] = fields
            fields = None
        interval = doc.get("autoBackupIntervalDays")
        if isinstance(interval, bool) or not isinstance(interval, (int, float)):
            if "autoBackupIntervalDays" in doc:
                extra["autoBackupIntervalDays"] = interval
            interval = None

        return cls(
            record_id=doc["_id"],
            device_id=doc.get("deviceId") or doc["_id"].rsplit(":", 1)[-1],
            broker_id=doc.get("brokerId"),
            revision=doc.get("_rev"),
            fields=fields,
            auto_backup_interval_days=interval,
            history=DeviceBackupHistory.from_doc(doc.get("backups")),
            updated_at=doc.get("updatedAt"),
            extra=extra,
        )

    def to_doc(self) -> dict[str, Any]:
        """Encode the record, typed fields and retained remainder together.

        The revision token is not included; the store client attaches it
        explicitly on conditional writes.
        """
        doc: dict[str, Any] = dict(self.extra)
        doc["_id"] = self.record_id
        doc["deviceId"] = self.device_id
        if self.broker_id is not None:
            doc["brokerId"] = self.broker_id
        if self.fields is not None:
            doc["fields"] = self.fields
        if self.auto_backup_interval_days is not None:
            doc["autoBackupIntervalDays"] = self.auto_backup_interval_days
        doc["backups"] = self.history.to_doc()
        if self.updated_at is not None:
            doc["updatedAt"] = self.updated_at
        return doc


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------


@dataclass
class BackupSummary:
    """Result of a successful backup."""

    most_recent_at: str | None
    count: int
    items: list[BackupEntry] = field(default_factory=list)


@dataclass
class DeletionSummary:
    """Result of a successful backup deletion."""

    count: int
    most_recent_at: str | None
