"""Per-record-type reconciliation engine.

A ``Conduit`` synchronises one handheld database (memos, contacts, ...)
with one backend collection.  It is generic: everything type-specific is
supplied by a ``RecordCodec``.  A run:

1. Checks prerequisites and opens the device database.
2. Picks an algorithm.  Without prior state the first-sync matcher runs
   whatever mode was requested; otherwise the mode decides:

   - ``hotsync``           -- only device records flagged dirty/deleted.
   - ``fullsync``          -- every record on both sides.
   - ``copy_device_to_pc`` -- device overwrites PC, PC orphans deleted.
   - ``copy_pc_to_device`` -- PC overwrites device, nothing deleted.
   - ``backup``            -- device to PC, nothing deleted, flags kept.
   - ``restore``           -- PC to device, device orphans deleted.

3. Clears device sync flags, closes the database, snapshots the backend
   baseline and saves the identity store.

Error handling is per record: a failed conversion or write is counted in
``errors`` and the pass moves on.  Only prerequisite failures and failures
to load a record set abort the run.
"""

from __future__ import annotations

import logging
import socket
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .errors import BackendError, DeviceLinkError, PimSyncError
from .interfaces import (
    Backend,
    CancelCheck,
    DeviceLink,
    LogCallback,
    ProgressCallback,
    RecordCodec,
)
from .models import (
    BackendRecord,
    ConflictInfo,
    ConflictResolution,
    DataLossWarning,
    DeviceRecord,
    Resolution,
    SyncMode,
    SyncResult,
    SyncStats,
)
from .resolver import ConflictResolver, create_resolver
from .state import SyncState

logger = logging.getLogger(__name__)

PROGRESS_INTERVAL = 50
MATCH_PROGRESS_INTERVAL = 20
DEFAULT_VOLATILITY_THRESHOLD = 70

ConflictCallback = Callable[[str, str], None]
BackendChangeDetector = Callable[[SyncState, BackendRecord], bool]


# ---------------------------------------------------------------------------
# Backend change detection
# ---------------------------------------------------------------------------


def never_modified(state: SyncState, record: BackendRecord) -> bool:
    """Treat PC records as unmodified; only the device drives updates."""
    return False


def baseline_changed(state: SyncState, record: BackendRecord) -> bool:
    """Report a PC record as modified when its hash left the baseline.

    Records without a baseline entry count as unmodified here; new PC
    records are picked up through the unpaired-record path instead.
    """
    baseline = state.baseline_hash(record.id)
    return bool(baseline) and baseline != record.content_hash


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


@dataclass
class SyncContext:
    """Everything a conduit needs for one run.

    ``is_first_sync`` is filled in by the conduit from the identity store.
    ``cancel_check`` is polled together with ``cancelled`` between
    records.  Codecs may append to ``warnings``.
    """

    device_link: DeviceLink | None = None
    backend: Backend | None = None
    state: SyncState | None = None
    mode: SyncMode = SyncMode.HOTSYNC
    conflict_policy: ConflictResolution = ConflictResolution.ASK_USER
    device_database: str = ""
    collection_id: str = ""
    user_name: str = ""
    is_first_sync: bool = False
    cancelled: bool = False
    cancel_check: CancelCheck | None = None
    warnings: list[DataLossWarning] = field(default_factory=list)

    def is_cancelled(self) -> bool:
        if not self.cancelled and self.cancel_check is not None:
            self.cancelled = bool(self.cancel_check())
        return self.cancelled


# ---------------------------------------------------------------------------
# Conduit
# ---------------------------------------------------------------------------


class Conduit:
    """Synchronise one device database with one backend collection.

    Args:
        conduit_id: Unique identifier, e.g. ``"memos"``.
        display_name: Human-readable name.
        device_database: Device database name, e.g. ``"MemoDB"``.
        codec: Converts records between device and backend form.
        record_type: Backend record type tag, e.g. ``"memo"``.
        file_extension: Preferred extension of exported files.
        collection_id: Backend collection; defaults to *conduit_id*.
        run_before: Conduit IDs this one declares it should precede.
            Informational only, the engine runs conduits in registration
            order.
        run_after: Conduit IDs this one declares it should follow.
        backend_change_detector: Decides whether a paired PC record was
            modified since the last sync.  Defaults to ``never_modified``.
        resolver: Conflict resolver overriding the context's policy.
        volatility_threshold: Percentage of changed records above which a
            full sync logs a volatility warning.
    """

    def __init__(
        self,
        conduit_id: str,
        display_name: str,
        device_database: str,
        codec: RecordCodec,
        *,
        record_type: str = "",
        file_extension: str = "",
        collection_id: str | None = None,
        run_before: Sequence[str] = (),
        run_after: Sequence[str] = (),
        backend_change_detector: BackendChangeDetector = never_modified,
        resolver: ConflictResolver | None = None,
        volatility_threshold: int = DEFAULT_VOLATILITY_THRESHOLD,
    ) -> None:
        self.conduit_id = conduit_id
        self.display_name = display_name
        self.device_database = device_database
        self.codec = codec
        self.record_type = record_type
        self.file_extension = file_extension
        self.collection_id = collection_id or conduit_id
        self.run_before = list(run_before)
        self.run_after = list(run_after)
        self.backend_change_detector = backend_change_detector
        self.resolver = resolver
        self.volatility_threshold = volatility_threshold

        self.on_log: LogCallback | None = None
        self.on_error: LogCallback | None = None
        self.on_progress: ProgressCallback | None = None
        self.on_conflict: ConflictCallback | None = None

        self._handle: Any = None
        self._active_resolver: ConflictResolver | None = None

    def __repr__(self) -> str:
        return f"Conduit({self.conduit_id!r}, {self.device_database!r})"

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def can_sync(self, context: SyncContext | None) -> bool:
        """Check that the device, backend and identity store are usable."""
        if context is None:
            return False
        if context.device_link is None or context.backend is None:
            return False
        if context.state is None:
            return False
        return bool(context.device_link.is_connected())

    def sync(self, context: SyncContext) -> SyncResult:
        """Run one synchronisation pass.

        Args:
            context: Sync context with device link, backend and state.

        Returns:
            A ``SyncResult`` with per-side statistics.
        """
        started = datetime.now(timezone.utc)

        if not self.can_sync(context):
            return SyncResult(
                success=False,
                error_message="Sync prerequisites not met",
                start_time=started,
                end_time=datetime.now(timezone.utc),
            )

        link = context.device_link
        database = context.device_database or self.device_database
        self._log(f"Starting {self.display_name} sync...")

        try:
            self._handle = link.open_collection(database, True)
        except DeviceLinkError as exc:
            logger.error("Failed to open %s: %s", database, exc)
            self._handle = None
        if self._handle is None:
            return SyncResult(
                success=False,
                error_message=f"Failed to open device database: {database}",
                start_time=started,
                end_time=datetime.now(timezone.utc),
            )

        self._active_resolver = self.resolver or create_resolver(
            context.conflict_policy
        )
        context.is_first_sync = context.state.is_first_sync()

        try:
            try:
                result = self._dispatch(context)
            except PimSyncError as exc:
                logger.error("%s sync aborted: %s", self.conduit_id, exc)
                self._report_error(str(exc))
                result = SyncResult(success=False, error_message=str(exc))

            if result.success and context.mode != SyncMode.BACKUP:
                try:
                    link.clean_up_collection(self._handle)
                    link.reset_sync_flags(self._handle)
                    self._log("Cleared device sync flags")
                except DeviceLinkError as exc:
                    # Records stay flagged and are seen again next run.
                    logger.warning(
                        "Could not clear sync flags on %s: %s", database, exc
                    )
        finally:
            link.close_collection(self._handle)
            self._handle = None

        if result.success:
            self._save_baseline(context)
            context.state.last_sync_time = datetime.now(timezone.utc)
            context.state.last_sync_pc = socket.gethostname()
            context.state.save()

        result.warnings.extend(context.warnings)
        result.start_time = started
        result.end_time = datetime.now(timezone.utc)
        self._log(
            f"Sync complete: {'Success' if result.success else 'Failed'} "
            f"({result.duration_ms()} ms)"
        )
        return result

    def _dispatch(self, context: SyncContext) -> SyncResult:
        if context.is_first_sync:
            self._log("First sync detected - matching records by content")
            return self.first_sync(context)

        algorithms = {
            SyncMode.HOTSYNC: self.hot_sync,
            SyncMode.FULLSYNC: self.full_sync,
            SyncMode.COPY_DEVICE_TO_PC: self.copy_device_to_pc,
            SyncMode.COPY_PC_TO_DEVICE: self.copy_pc_to_device,
            SyncMode.BACKUP: self.backup,
            SyncMode.RESTORE: self.restore,
        }
        return algorithms.get(context.mode, self.hot_sync)(context)

    @property
    def pending_conflicts(self) -> list[ConflictInfo]:
        """Conflicts deferred by an ask-user resolver during the last run."""
        return list(getattr(self._active_resolver, "pending_conflicts", []))

    # ------------------------------------------------------------------
    # Sync algorithms
    # ------------------------------------------------------------------

    def hot_sync(self, context: SyncContext) -> SyncResult:
        """Reconcile device records flagged dirty or deleted.

        PC-side edits are not looked for here; a PC record only takes part
        when its device counterpart changed.
        """
        self._log("Performing HotSync (modified records only)...")
        result = SyncResult(success=True)

        device_records = self._read_device_records(context, modified_only=True)
        self._log(f"Found {len(device_records)} modified device records")
        backend_by_id = self._load_backend_by_id(context)

        for record in device_records:
            if context.is_cancelled():
                self._log("Sync cancelled")
                break
            self._process_pair(
                record, self._counterpart(record, backend_by_id, context),
                context, result,
            )

        return result

    def full_sync(self, context: SyncContext) -> SyncResult:
        """Reconcile every device record, then every unpaired PC record."""
        self._log("Performing FullSync (all records)...")
        result = SyncResult(success=True)

        device_records = self._read_device_records(context)
        backend_by_id = self._load_backend_by_id(context)
        self._log(
            f"Loaded {len(device_records)} device records, "
            f"{len(backend_by_id)} backend records"
        )

        processed: set[str] = set()
        for count, record in enumerate(device_records, start=1):
            if context.is_cancelled():
                self._log("Sync cancelled")
                return result
            counterpart = self._counterpart(record, backend_by_id, context)
            if counterpart is not None:
                processed.add(counterpart.id)
            self._process_pair(record, counterpart, context, result)
            if count % PROGRESS_INTERVAL == 0:
                self._progress(
                    count, len(device_records), "Processing device records..."
                )

        for backend_record in backend_by_id.values():
            if context.is_cancelled():
                self._log("Sync cancelled")
                return result
            if backend_record.id in processed:
                continue
            self._process_pair(None, backend_record, context, result)

        self.check_volatility(
            result, len(device_records) + len(backend_by_id)
        )
        return result

    def first_sync(self, context: SyncContext) -> SyncResult:
        """Pair records by description when no mappings exist yet."""
        self._log("Performing FirstSync (matching by content)...")
        result = SyncResult(success=True)
        state = context.state

        device_records = self._read_device_records(context)
        backend_records = self._load_backend(context)
        self._log(
            f"Loaded {len(device_records)} device records, "
            f"{len(backend_records)} backend records"
        )

        matched: set[str] = set()
        for count, record in enumerate(device_records, start=1):
            if context.is_cancelled():
                self._log("Sync cancelled")
                return result
            if record.deleted:
                result.device_stats.deleted += 1
                continue

            candidates = [r for r in backend_records if r.id not in matched]
            match = self.find_match(record, candidates)
            if match is not None:
                self._log(
                    f"Matched: {self.codec.description_of(record)} <-> "
                    f"{match.description()}"
                )
                self._map(state, record, match.id)
                matched.add(match.id)
                result.device_stats.unchanged += 1
            else:
                with self._record_guard(result, record.id):
                    self._create_on_backend(
                        record, context, result.pc_stats
                    )

            if count % MATCH_PROGRESS_INTERVAL == 0:
                self._progress(
                    count, len(device_records), "Matching records..."
                )

        for backend_record in backend_records:
            if context.is_cancelled():
                self._log("Sync cancelled")
                return result
            if backend_record.id in matched or backend_record.is_deleted:
                continue
            with self._record_guard(result, backend_record.id):
                self._create_on_device(
                    backend_record, context, result.device_stats
                )

        return result

    def copy_device_to_pc(self, context: SyncContext) -> SyncResult:
        """Make the PC collection mirror the device database."""
        self._log("Copying device -> PC...")
        result = SyncResult(success=True)
        state = context.state

        device_records = self._read_device_records(context)
        existing = self._load_backend(context)

        for count, record in enumerate(device_records, start=1):
            if context.is_cancelled():
                self._log("Sync cancelled")
                return result
            if record.deleted:
                continue
            with self._record_guard(result, record.id):
                self._copy_to_backend(record, context, result.pc_stats)
            if count % PROGRESS_INTERVAL == 0:
                self._progress(count, len(device_records), "Copying to PC...")

        live_ids = {str(r.id) for r in device_records}
        for backend_record in existing:
            if context.is_cancelled():
                self._log("Sync cancelled")
                return result
            device_id = state.device_id_for_pc(backend_record.id)
            if not device_id or device_id in live_ids:
                continue
            with self._record_guard(result, backend_record.id):
                if context.backend.delete_record(backend_record.id):
                    state.remove_pc_mapping(backend_record.id)
                    result.pc_stats.deleted += 1
                else:
                    self._count_error(
                        result.pc_stats,
                        f"Failed to delete PC record {backend_record.id}",
                    )

        return result

    def copy_pc_to_device(self, context: SyncContext) -> SyncResult:
        """Write every PC record to the device.

        Device records without a PC counterpart are left in place.
        """
        self._log("Copying PC -> device...")
        result = SyncResult(success=True)

        backend_records = self._load_backend(context)
        for count, backend_record in enumerate(backend_records, start=1):
            if context.is_cancelled():
                self._log("Sync cancelled")
                return result
            if backend_record.is_deleted:
                continue
            with self._record_guard(result, backend_record.id):
                self._copy_to_device(
                    backend_record, context, result.device_stats
                )
            if count % PROGRESS_INTERVAL == 0:
                self._progress(
                    count, len(backend_records), "Copying to device..."
                )

        return result

    def backup(self, context: SyncContext) -> SyncResult:
        """Copy device records to the PC without deleting anything."""
        self._log("Backing up device -> PC (preserving old files)...")
        result = SyncResult(success=True)

        device_records = self._read_device_records(context)
        for count, record in enumerate(device_records, start=1):
            if context.is_cancelled():
                self._log("Sync cancelled")
                return result
            if record.deleted:
                continue
            with self._record_guard(result, record.id):
                self._copy_to_backend(record, context, result.pc_stats)
            if count % PROGRESS_INTERVAL == 0:
                self._progress(count, len(device_records), "Backing up...")

        self._log(
            f"Backup complete: {result.pc_stats.created} created, "
            f"{result.pc_stats.updated} updated"
        )
        return result

    def restore(self, context: SyncContext) -> SyncResult:
        """Rebuild the device database from the PC collection.

        Device records that were not written during the pass are deleted.
        """
        self._log("Restoring PC -> device (full restore)...")
        result = SyncResult(success=True)
        state = context.state

        backend_records = self._load_backend(context)
        existing = self._read_device_records(context)

        restored: set[str] = set()
        for count, backend_record in enumerate(backend_records, start=1):
            if context.is_cancelled():
                self._log("Sync cancelled")
                return result
            if backend_record.is_deleted:
                continue
            with self._record_guard(result, backend_record.id):
                written = self._copy_to_device(
                    backend_record, context, result.device_stats
                )
                if written is not None:
                    restored.add(str(written.id))
            if count % PROGRESS_INTERVAL == 0:
                self._progress(count, len(backend_records), "Restoring...")

        for record in existing:
            if context.is_cancelled():
                self._log("Sync cancelled")
                return result
            device_id = str(record.id)
            if device_id in restored:
                continue
            with self._record_guard(result, record.id):
                if self._delete_device_record(context, record.id):
                    state.remove_device_mapping(device_id)
                    result.device_stats.deleted += 1
                    self._log(
                        f"Deleted from device: {self.codec.description_of(record)}"
                    )
                else:
                    self._count_error(
                        result.device_stats,
                        f"Failed to delete device record {device_id}",
                    )

        return result

    # ------------------------------------------------------------------
    # Pairwise reconciliation
    # ------------------------------------------------------------------

    def sync_record(
        self,
        device_record: DeviceRecord | None,
        backend_record: BackendRecord | None,
        context: SyncContext,
        device_stats: SyncStats,
        pc_stats: SyncStats,
    ) -> None:
        """Reconcile one record pair; either side may be absent."""
        state = context.state

        if device_record is not None and backend_record is not None:
            device_id = str(device_record.id)
            backend_modified = self.backend_change_detector(
                state, backend_record
            )

            if device_record.deleted and backend_record.is_deleted:
                state.remove_device_mapping(device_id)
                device_stats.deleted += 1
                pc_stats.deleted += 1
            elif device_record.deleted:
                if context.backend.delete_record(backend_record.id):
                    pc_stats.deleted += 1
                else:
                    self._count_error(
                        pc_stats,
                        f"Failed to delete PC record {backend_record.id}",
                    )
                state.remove_device_mapping(device_id)
            elif backend_record.is_deleted:
                if self._delete_device_record(context, device_record.id):
                    device_stats.deleted += 1
                else:
                    self._count_error(
                        device_stats,
                        f"Failed to delete device record {device_id}",
                    )
                state.remove_pc_mapping(backend_record.id)
            elif device_record.dirty and backend_modified:
                self.resolve_conflict(
                    device_record, backend_record, context,
                    device_stats, pc_stats,
                )
            elif device_record.dirty:
                self._update_backend(
                    device_record, backend_record, context, pc_stats
                )
            elif backend_modified:
                self._update_device(
                    device_record, backend_record, context, device_stats
                )
            else:
                device_stats.unchanged += 1

        elif device_record is not None:
            if device_record.deleted:
                state.remove_device_mapping(str(device_record.id))
                device_stats.deleted += 1
            else:
                self._log(
                    f"Creating PC record from device record "
                    f"{device_record.id}: "
                    f"{self.codec.description_of(device_record)}"
                )
                self._create_on_backend(device_record, context, pc_stats)

        elif backend_record is not None:
            if backend_record.is_deleted:
                pc_stats.deleted += 1
            else:
                self._log(
                    f"Creating device record from PC: "
                    f"{backend_record.description()}"
                )
                self._create_on_device(backend_record, context, device_stats)

    def resolve_conflict(
        self,
        device_record: DeviceRecord,
        backend_record: BackendRecord,
        context: SyncContext,
        device_stats: SyncStats,
        pc_stats: SyncStats,
    ) -> bool:
        """Apply the conflict policy to a pair changed on both sides.

        Returns:
            ``True`` if the conflict was resolved, ``False`` if it was
            left for a later run.
        """
        device_desc = self.codec.description_of(device_record)
        pc_desc = backend_record.description()
        if self.on_conflict is not None:
            self.on_conflict(device_desc, pc_desc)

        conflict = ConflictInfo(
            conduit_id=self.conduit_id,
            device_id=str(device_record.id),
            pc_id=backend_record.id,
            device_description=device_desc,
            pc_description=pc_desc,
            pc_modified=backend_record.last_modified,
        )
        resolver = self._active_resolver or create_resolver(
            context.conflict_policy
        )
        resolution = resolver.resolve(conflict)

        if resolution == Resolution.DEVICE:
            self._update_backend(
                device_record, backend_record, context, pc_stats
            )
            return True

        if resolution == Resolution.PC:
            self._update_device(
                device_record, backend_record, context, device_stats
            )
            return True

        if resolution == Resolution.DUPLICATE:
            self._create_on_backend(device_record, context, pc_stats)
            self._create_on_device(
                backend_record, context, device_stats, force_new=True
            )
            return True

        pc_stats.conflicts += 1
        return False

    def find_match(
        self,
        device_record: DeviceRecord,
        candidates: Sequence[BackendRecord],
    ) -> BackendRecord | None:
        """Return the first candidate whose description equals the record's.

        Comparison is case-insensitive on stripped text.  Records with an
        empty description never match.
        """
        wanted = self.codec.description_of(device_record).lower().strip()
        if not wanted:
            return None
        for candidate in candidates:
            if candidate.description().lower().strip() == wanted:
                return candidate
        return None

    def check_volatility(self, result: SyncResult, total_records: int) -> bool:
        """Warn when a pass changed more than the configured share of records.

        Returns:
            ``True`` if the change rate is acceptable.
        """
        if total_records == 0:
            return True
        changed = 0
        for stats in (result.device_stats, result.pc_stats):
            changed += stats.created + stats.updated + stats.deleted
        percent = changed * 100 // total_records
        if percent > self.volatility_threshold:
            logger.warning(
                "High volatility in %s: %d%% of records changed",
                self.conduit_id,
                percent,
            )
            self._log(f"Warning: High volatility detected ({percent}% changes)")
            return False
        return True

    # ------------------------------------------------------------------
    # Record operations
    # ------------------------------------------------------------------

    def _create_on_backend(
        self,
        device_record: DeviceRecord,
        context: SyncContext,
        pc_stats: SyncStats,
    ) -> None:
        converted = self.codec.device_to_backend(device_record, context)
        if converted is None:
            self._count_error(
                pc_stats,
                f"Could not convert device record {device_record.id}",
            )
            return
        new_id = context.backend.create_record(context.collection_id, converted)
        if not new_id:
            self._count_error(
                pc_stats,
                f"Failed to create PC record for device record {device_record.id}",
            )
            return
        self._map(context.state, device_record, new_id)
        pc_stats.created += 1

    def _create_on_device(
        self,
        backend_record: BackendRecord,
        context: SyncContext,
        device_stats: SyncStats,
        force_new: bool = False,
    ) -> None:
        converted = self.codec.backend_to_device(backend_record, context)
        if converted is None:
            self._count_error(
                device_stats,
                f"Could not convert PC record {backend_record.id}",
            )
            return
        if force_new:
            converted.id = 0
        if not self._write_device_record(context, converted):
            self._count_error(
                device_stats,
                f"Failed to write device record for {backend_record.id}",
            )
            return
        if converted.id:
            self._map(context.state, converted, backend_record.id)
        device_stats.created += 1

    def _update_backend(
        self,
        device_record: DeviceRecord,
        backend_record: BackendRecord,
        context: SyncContext,
        pc_stats: SyncStats,
    ) -> None:
        converted = self.codec.device_to_backend(device_record, context)
        if converted is None:
            self._count_error(
                pc_stats,
                f"Could not convert device record {device_record.id}",
            )
            return
        converted.id = backend_record.id
        if context.backend.update_record(converted):
            pc_stats.updated += 1
        else:
            self._count_error(
                pc_stats, f"Failed to update PC record {backend_record.id}"
            )

    def _update_device(
        self,
        device_record: DeviceRecord,
        backend_record: BackendRecord,
        context: SyncContext,
        device_stats: SyncStats,
    ) -> None:
        converted = self.codec.backend_to_device(backend_record, context)
        if converted is None:
            self._count_error(
                device_stats,
                f"Could not convert PC record {backend_record.id}",
            )
            return
        converted.id = device_record.id
        if self._write_device_record(context, converted):
            device_stats.updated += 1
        else:
            self._count_error(
                device_stats,
                f"Failed to update device record {device_record.id}",
            )

    def _copy_to_backend(
        self,
        device_record: DeviceRecord,
        context: SyncContext,
        pc_stats: SyncStats,
    ) -> None:
        """Create or overwrite the PC copy of *device_record*."""
        existing_id = context.state.pc_id_for_device(str(device_record.id))
        if not existing_id:
            self._create_on_backend(device_record, context, pc_stats)
            return
        converted = self.codec.device_to_backend(device_record, context)
        if converted is None:
            self._count_error(
                pc_stats,
                f"Could not convert device record {device_record.id}",
            )
            return
        converted.id = existing_id
        if context.backend.update_record(converted):
            pc_stats.updated += 1
        else:
            self._count_error(
                pc_stats, f"Failed to update PC record {existing_id}"
            )

    def _copy_to_device(
        self,
        backend_record: BackendRecord,
        context: SyncContext,
        device_stats: SyncStats,
    ) -> DeviceRecord | None:
        """Create or overwrite the device copy of *backend_record*.

        Returns:
            The written device record, or ``None`` on failure.
        """
        state = context.state
        device_id = state.device_id_for_pc(backend_record.id)
        converted = self.codec.backend_to_device(backend_record, context)
        if converted is None:
            self._count_error(
                device_stats,
                f"Could not convert PC record {backend_record.id}",
            )
            return None
        if device_id:
            converted.id = int(device_id)
        if not self._write_device_record(context, converted):
            self._count_error(
                device_stats,
                f"Failed to write device record for {backend_record.id}",
            )
            return None
        if device_id:
            device_stats.updated += 1
        else:
            if converted.id:
                self._map(state, converted, backend_record.id)
            device_stats.created += 1
        return converted

    def _map(
        self, state: SyncState, device_record: DeviceRecord, pc_id: str
    ) -> None:
        device_id = str(device_record.id)
        state.map_ids(device_id, pc_id)
        state.update_categories(device_id, str(device_record.category), [])

    # ------------------------------------------------------------------
    # Device and backend access
    # ------------------------------------------------------------------

    def _read_device_records(
        self, context: SyncContext, modified_only: bool = False
    ) -> list[DeviceRecord]:
        if self._handle is None:
            return []
        records = context.device_link.read_all_records(self._handle)
        if not modified_only:
            return list(records)
        return [r for r in records if r.dirty or r.deleted]

    def _write_device_record(
        self, context: SyncContext, record: DeviceRecord
    ) -> bool:
        if self._handle is None:
            return False
        return bool(context.device_link.write_record(self._handle, record))

    def _delete_device_record(self, context: SyncContext, record_id: int) -> bool:
        if self._handle is None:
            return False
        return bool(context.device_link.delete_record(self._handle, record_id))

    def _load_backend(self, context: SyncContext) -> list[BackendRecord]:
        return list(context.backend.load_records(context.collection_id))

    def _load_backend_by_id(
        self, context: SyncContext
    ) -> dict[str, BackendRecord]:
        return {r.id: r for r in self._load_backend(context)}

    @staticmethod
    def _counterpart(
        record: DeviceRecord,
        backend_by_id: dict[str, BackendRecord],
        context: SyncContext,
    ) -> BackendRecord | None:
        pc_id = context.state.pc_id_for_device(str(record.id))
        if not pc_id:
            return None
        return backend_by_id.get(pc_id)

    def _save_baseline(self, context: SyncContext) -> None:
        """Snapshot the hash of every backend record into the state."""
        try:
            records = self._load_backend(context)
        except BackendError as exc:
            logger.warning(
                "Could not snapshot baseline for %s: %s", self.conduit_id, exc
            )
            return
        context.state.save_baseline({r.id: r.content_hash for r in records})

    # ------------------------------------------------------------------
    # Per-record error handling and notifications
    # ------------------------------------------------------------------

    def _process_pair(
        self,
        device_record: DeviceRecord | None,
        backend_record: BackendRecord | None,
        context: SyncContext,
        result: SyncResult,
    ) -> None:
        record_id = (
            device_record.id if device_record is not None else backend_record.id
        )
        with self._record_guard(result, record_id):
            self.sync_record(
                device_record, backend_record, context,
                result.device_stats, result.pc_stats,
            )

    @contextmanager
    def _record_guard(
        self, result: SyncResult, record_id: int | str
    ) -> Iterator[None]:
        """Count collaborator failures for one record instead of aborting."""
        try:
            yield
        except DeviceLinkError as exc:
            self._count_error(
                result.device_stats, f"Device error on record {record_id}: {exc}"
            )
        except BackendError as exc:
            self._count_error(
                result.pc_stats, f"Backend error on record {record_id}: {exc}"
            )

    def _count_error(self, stats: SyncStats, message: str) -> None:
        stats.errors += 1
        self._report_error(message)

    def _report_error(self, message: str) -> None:
        logger.error("[%s] %s", self.conduit_id, message)
        if self.on_error is not None:
            self.on_error(message)

    def _log(self, message: str) -> None:
        logger.info("[%s] %s", self.conduit_id, message)
        if self.on_log is not None:
            self.on_log(message)

    def _progress(self, current: int, total: int, message: str) -> None:
        if self.on_progress is not None:
            self.on_progress(current, total, message)
