"""Collaborator protocols consumed by the sync core.

The core never talks to hardware, files or record formats directly.  It
drives these structural interfaces instead:

- ``DeviceLink``: record I/O on the handheld.
- ``Backend``: record I/O on the PC side.
- ``RecordCodec``: conversion between the two record shapes, one per
  record type.
- ``KeepAlive``: the link's periodic keep-alive, paused while syncing.

Callback aliases for progress, logging, conflicts and cancellation live
here as well.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from .conduit import SyncContext
    from .models import BackendRecord, CollectionInfo, DeviceRecord

ProgressCallback = Callable[[int, int, str], None]
LogCallback = Callable[[str], None]
CancelCheck = Callable[[], bool]


# ---------------------------------------------------------------------------
# Device side
# ---------------------------------------------------------------------------


class DeviceLink(Protocol):
    """Record-level access to a connected handheld."""

    def is_connected(self) -> bool:
        ...  # pragma: no cover

    def read_user_name(self) -> str:
        """Return the user name stored on the device ("" if unknown)."""
        ...  # pragma: no cover

    def open_collection(self, name: str, read_write: bool = True) -> Any:
        """Open a database by name.

        Returns:
            An opaque handle, or ``None`` when the database cannot be
            opened.
        """
        ...  # pragma: no cover

    def close_collection(self, handle: Any) -> None:
        ...  # pragma: no cover

    def read_all_records(self, handle: Any) -> list[DeviceRecord]:
        ...  # pragma: no cover

    def write_record(self, handle: Any, record: DeviceRecord) -> bool:
        """Write *record*; when ``record.id`` is 0 the link assigns one.

        The assigned ID is stored back on ``record.id``.
        """
        ...  # pragma: no cover

    def delete_record(self, handle: Any, record_id: int) -> bool:
        ...  # pragma: no cover

    def read_app_info_block(self, handle: Any) -> bytes | None:
        """Return the database's category metadata block, if any."""
        ...  # pragma: no cover

    def write_app_info_block(self, handle: Any, data: bytes) -> bool:
        ...  # pragma: no cover

    def clean_up_collection(self, handle: Any) -> None:
        """Purge records flagged deleted or archived."""
        ...  # pragma: no cover

    def reset_sync_flags(self, handle: Any) -> None:
        """Clear the dirty flag on every record."""
        ...  # pragma: no cover


class KeepAlive(Protocol):
    """Periodic keep-alive running on the device channel."""

    def start(self) -> None:
        ...  # pragma: no cover

    def stop(self) -> None:
        ...  # pragma: no cover


# ---------------------------------------------------------------------------
# PC side
# ---------------------------------------------------------------------------


class Backend(Protocol):
    """Record storage on the PC."""

    def load_records(self, collection_id: str) -> list[BackendRecord]:
        ...  # pragma: no cover

    def create_record(
        self, collection_id: str, record: BackendRecord
    ) -> str:
        """Store a new record.

        Returns:
            The assigned record ID, or ``""`` on failure.
        """
        ...  # pragma: no cover

    def update_record(self, record: BackendRecord) -> bool:
        ...  # pragma: no cover

    def delete_record(self, record_id: str) -> bool:
        ...  # pragma: no cover

    def collection_info(self, collection_id: str) -> CollectionInfo:
        ...  # pragma: no cover


# ---------------------------------------------------------------------------
# Record conversion
# ---------------------------------------------------------------------------


class RecordCodec(Protocol):
    """Converts records of one PIM type between device and PC form.

    Codecs may append ``DataLossWarning`` items to ``context.warnings``
    when a conversion drops or simplifies data.
    """

    def device_to_backend(
        self, record: DeviceRecord, context: SyncContext
    ) -> BackendRecord | None:
        ...  # pragma: no cover

    def backend_to_device(
        self, record: BackendRecord, context: SyncContext
    ) -> DeviceRecord | None:
        ...  # pragma: no cover

    def records_equal(
        self, device: DeviceRecord, backend: BackendRecord
    ) -> bool:
        """Compare content, ignoring IDs and sync metadata."""
        ...  # pragma: no cover

    def description_of(self, record: DeviceRecord) -> str:
        """Short descriptive text used to match records on first sync."""
        ...  # pragma: no cover
