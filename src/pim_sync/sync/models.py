"""Pydantic models for the PIM sync core.

Defines the data contracts shared by the identity store, the conduits and
the orchestrator:

- ``SyncMode`` / ``ConflictResolution``: run mode and conflict policy.
- ``DeviceRecord``: one record of a handheld database.
- ``BackendRecord``: the PC-side representation of a record.
- ``IDMapping``: persistent pairing of a device record and a PC record.
- ``DataLossWarning``: lossy-conversion notice raised by a codec.
- ``SyncStats`` / ``SyncResult``: per-side counters and run outcome.
- ``CollectionInfo``: description of a backend collection.
- ``ConflictInfo`` / ``Resolution``: a conflicting pair and the verdict
  a resolver reached for it.

Records and stats are mutable: the conduit assigns IDs and bumps counters
while a pass is running.  Warnings and collection info are frozen.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class SyncMode(str, Enum):
    """How a conduit reconciles its two replicas."""

    HOTSYNC = "hotsync"
    FULLSYNC = "fullsync"
    COPY_DEVICE_TO_PC = "copy_device_to_pc"
    COPY_PC_TO_DEVICE = "copy_pc_to_device"
    BACKUP = "backup"
    RESTORE = "restore"


class ConflictResolution(str, Enum):
    """Policy applied when both sides changed the same record."""

    ASK_USER = "ask_user"
    DEVICE_WINS = "device_wins"
    PC_WINS = "pc_wins"
    DUPLICATE = "duplicate"
    NEWEST_WINS = "newest_wins"
    SKIP = "skip"


class WarningSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class WarningCategory(str, Enum):
    TRUNCATED = "truncated"
    UNSUPPORTED = "unsupported"
    DOWNGRADED = "downgraded"
    OVERFLOW = "overflow"


# Record attribute bits as stored by the handheld.
ATTR_DELETED = 0x80
ATTR_DIRTY = 0x40
ATTR_BUSY = 0x20
ATTR_SECRET = 0x10
ATTR_ARCHIVED = 0x08


class DeviceRecord(BaseModel):
    """A record read from (or destined for) a handheld database.

    Attributes:
        id: Unique record ID on the device.  ``0`` means the device has
            not assigned one yet; a successful write fills it in.
        category: Category index (0-15).
        deleted: Record was deleted on the device since the last sync.
        dirty: Record was modified on the device since the last sync.
        secret: Record is marked private.
        archived: Record is deleted but kept for archiving.
        raw_data: Packed record payload, opaque to the sync core.
    """

    id: int = 0
    category: int = 0
    deleted: bool = False
    dirty: bool = False
    secret: bool = False
    archived: bool = False
    raw_data: bytes = b""

    @classmethod
    def from_attributes(
        cls, record_id: int, category: int, attributes: int, raw_data: bytes
    ) -> DeviceRecord:
        """Build a record from the device attribute bitmask."""
        return cls(
            id=record_id,
            category=category,
            deleted=bool(attributes & ATTR_DELETED),
            dirty=bool(attributes & ATTR_DIRTY),
            secret=bool(attributes & ATTR_SECRET),
            archived=bool(attributes & ATTR_ARCHIVED),
            raw_data=raw_data,
        )

    @property
    def attributes(self) -> int:
        """The flags packed back into the device bitmask."""
        bits = 0
        if self.deleted:
            bits |= ATTR_DELETED
        if self.dirty:
            bits |= ATTR_DIRTY
        if self.secret:
            bits |= ATTR_SECRET
        if self.archived:
            bits |= ATTR_ARCHIVED
        return bits


class BackendRecord(BaseModel):
    """A record held by the PC-side backend.

    Attributes:
        id: Backend identifier (file path, UID, ...).
        type: Record type: ``memo``, ``contact``, ``event``, ``todo``.
        display_name: Human-readable name, also used for file names.
        data: Encoded record content.
        content_hash: Hash of ``data`` used for change detection.
        last_modified: Modification time reported by the backend.
        is_deleted: Backend reports the record as deleted.
    """

    id: str = ""
    type: str = ""
    display_name: str = ""
    data: bytes = b""
    content_hash: str = ""
    last_modified: datetime | None = None
    is_deleted: bool = False

    def description(self) -> str:
        """Display name, or the ID when no name is set."""
        return self.display_name or self.id


class IDMapping(BaseModel):
    """Persistent pairing of one device record and one PC record."""

    device_id: str
    pc_id: str
    device_category: str = ""
    pc_categories: list[str] = Field(default_factory=list)
    last_synced: datetime | None = None
    archived: bool = False


class DataLossWarning(BaseModel):
    """A conversion that could not carry all data across.

    Attributes:
        severity: How serious the loss is.
        category: Kind of loss.
        field: Which field was affected.
        original_value: The value before conversion.
        result_value: What it became (empty if dropped).
        message: Human-readable explanation.
    """

    severity: WarningSeverity
    category: WarningCategory
    field: str = ""
    original_value: str = ""
    result_value: str = ""
    message: str = ""

    model_config = {"frozen": True}


class CollectionInfo(BaseModel):
    """A backend collection (folder, calendar, address book)."""

    id: str
    name: str = ""
    path: str = ""
    type: str = ""
    is_default: bool = False

    model_config = {"frozen": True}


class SyncStats(BaseModel):
    """Changes applied to one side during a sync."""

    created: int = 0
    updated: int = 0
    deleted: int = 0
    unchanged: int = 0
    conflicts: int = 0
    errors: int = 0

    def total(self) -> int:
        """Records touched: created + updated + deleted + unchanged."""
        return self.created + self.updated + self.deleted + self.unchanged

    def merge(self, other: SyncStats) -> None:
        """Add every counter of *other* to this instance."""
        self.created += other.created
        self.updated += other.updated
        self.deleted += other.deleted
        self.unchanged += other.unchanged
        self.conflicts += other.conflicts
        self.errors += other.errors

    def summary(self) -> str:
        return (
            f"Created: {self.created}, Updated: {self.updated}, "
            f"Deleted: {self.deleted}, Unchanged: {self.unchanged}, "
            f"Conflicts: {self.conflicts}, Errors: {self.errors}"
        )


class SyncResult(BaseModel):
    """Outcome of one conduit run or of a whole sync.

    Attributes:
        success: Whether the run completed without a fatal error.
        error_message: Reason for the failure, empty on success.
        device_stats: Changes made on the device.
        pc_stats: Changes made on the PC.
        warnings: Data-loss warnings collected from the codecs.
        start_time: When the run started.
        end_time: When the run finished.
    """

    success: bool = False
    error_message: str = ""
    device_stats: SyncStats = Field(default_factory=SyncStats)
    pc_stats: SyncStats = Field(default_factory=SyncStats)
    warnings: list[DataLossWarning] = Field(default_factory=list)
    start_time: datetime | None = None
    end_time: datetime | None = None

    def duration_ms(self) -> int:
        """Wall-clock duration in milliseconds (0 when unfinished)."""
        if self.start_time is None or self.end_time is None:
            return 0
        delta = self.end_time - self.start_time
        return int(delta.total_seconds() * 1000)


class Resolution(str, Enum):
    """What a conflict resolver decided to do with a conflicting pair."""

    DEVICE = "device"
    PC = "pc"
    DUPLICATE = "duplicate"
    SKIP = "skip"


class ConflictInfo(BaseModel):
    """A record pair where both sides changed since the last sync.

    Attributes:
        conduit_id: Conduit that detected the conflict.
        device_id: Device record ID (as string).
        pc_id: Backend record ID.
        device_description: Codec description of the device record.
        pc_description: Description of the backend record.
        device_modified: Modification time of the device record, if known.
        pc_modified: Modification time of the backend record, if known.
    """

    conduit_id: str = ""
    device_id: str
    pc_id: str
    device_description: str = ""
    pc_description: str = ""
    device_modified: datetime | None = None
    pc_modified: datetime | None = None

    model_config = {"frozen": True}
