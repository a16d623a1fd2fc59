"""Identity store: persistent ID mappings and baseline hashes.

One ``SyncState`` exists per (device user, conduit) pair.  It remembers
which device record corresponds to which PC record, the content hash of
every PC record as of the last successful sync, and when that sync
happened.  State lives in a single JSON file::

    <state_dir>/<user_name>/<conduit_id>/mappings.json

Key design choices:

* **Bijection** -- ``map_ids()`` drops any earlier pairing that uses either
  ID, so a device ID and a PC ID each appear in at most one mapping and the
  reverse index always mirrors the primary one.
* **Atomic writes** -- ``save()`` writes to a temp file then calls
  ``os.replace()`` so readers never see partial data.
* **Plain callbacks** -- ``on_change`` and ``on_error`` are optional
  callables; the store has no event-loop dependency.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timezone
from pathlib import Path
from types import TracebackType

from .errors import StateError
from .models import IDMapping

logger = logging.getLogger(__name__)

STATE_FILE_NAME = "mappings.json"
STATE_VERSION = 1


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        logger.warning("Ignoring malformed timestamp %r", value)
        return None


def _format_timestamp(value: datetime | None) -> str:
    return value.isoformat() if value is not None else ""


class SyncState:
    """Load, save, and query the sync state of one conduit.

    Args:
        state_dir: Base directory for all state files.
        user_name: Device user name (keeps several handhelds apart).
        conduit_id: Conduit identifier, e.g. ``"memos"``.
        on_change: Called with no arguments whenever the state changes.
        on_error: Called with a message when loading or saving fails.
    """

    def __init__(
        self,
        state_dir: Path,
        user_name: str,
        conduit_id: str,
        on_change: Callable[[], None] | None = None,
        on_error: Callable[[str], None] | None = None,
    ) -> None:
        self._user_name = user_name
        self._conduit_id = conduit_id
        self._state_dir = Path(state_dir) / user_name / conduit_id
        self.on_change = on_change
        self.on_error = on_error

        self._mappings: dict[str, IDMapping] = {}
        self._pc_to_device: dict[str, str] = {}
        self._baseline: dict[str, str] = {}
        self._last_sync_time: datetime | None = None
        self._last_sync_pc = ""

    def __enter__(self) -> SyncState:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.save()

    @property
    def user_name(self) -> str:
        return self._user_name

    @property
    def conduit_id(self) -> str:
        return self._conduit_id

    @property
    def state_path(self) -> Path:
        """Directory holding this store's files."""
        return self._state_dir

    @property
    def state_file(self) -> Path:
        return self._state_dir / STATE_FILE_NAME

    # ------------------------------------------------------------------
    # ID mappings
    # ------------------------------------------------------------------

    def map_ids(self, device_id: str, pc_id: str) -> None:
        """Pair *device_id* with *pc_id*, replacing older pairings of either."""
        old = self._mappings.pop(device_id, None)
        if old is not None:
            self._pc_to_device.pop(old.pc_id, None)
        old_device_id = self._pc_to_device.pop(pc_id, None)
        if old_device_id is not None:
            self._mappings.pop(old_device_id, None)

        self._mappings[device_id] = IDMapping(
            device_id=device_id,
            pc_id=pc_id,
            last_synced=datetime.now(timezone.utc),
        )
        self._pc_to_device[pc_id] = device_id
        self._changed()

    def remove_device_mapping(self, device_id: str) -> None:
        """Remove the pairing keyed by *device_id*.  No-op if absent."""
        mapping = self._mappings.pop(device_id, None)
        if mapping is None:
            return
        self._pc_to_device.pop(mapping.pc_id, None)
        self._changed()

    def remove_pc_mapping(self, pc_id: str) -> None:
        """Remove the pairing keyed by *pc_id*.  No-op if absent."""
        device_id = self._pc_to_device.pop(pc_id, None)
        if device_id is None:
            return
        self._mappings.pop(device_id, None)
        self._changed()

    def pc_id_for_device(self, device_id: str) -> str:
        """Return the PC ID paired with *device_id*, or ``""``."""
        mapping = self._mappings.get(device_id)
        return mapping.pc_id if mapping is not None else ""

    def device_id_for_pc(self, pc_id: str) -> str:
        """Return the device ID paired with *pc_id*, or ``""``."""
        return self._pc_to_device.get(pc_id, "")

    def has_device_mapping(self, device_id: str) -> bool:
        return device_id in self._mappings

    def has_pc_mapping(self, pc_id: str) -> bool:
        return pc_id in self._pc_to_device

    def all_device_ids(self) -> list[str]:
        return list(self._mappings)

    def all_pc_ids(self) -> list[str]:
        return list(self._pc_to_device)

    def get_mapping(self, device_id: str) -> IDMapping | None:
        """Return a copy of the mapping for *device_id*, if any."""
        mapping = self._mappings.get(device_id)
        return mapping.model_copy(deep=True) if mapping is not None else None

    def update_categories(
        self,
        device_id: str,
        device_category: str,
        pc_categories: Iterable[str],
    ) -> None:
        """Update category metadata of an existing mapping.

        No-op if *device_id* is not mapped.
        """
        mapping = self._mappings.get(device_id)
        if mapping is None:
            return
        mapping.device_category = device_category
        mapping.pc_categories = list(pc_categories)
        self._changed()

    def validate_mappings(self, device_ids: Iterable[str]) -> bool:
        """Return ``True`` iff the mappings cover exactly *device_ids*."""
        ids = set(device_ids)
        return ids == set(self._mappings)

    # ------------------------------------------------------------------
    # Baseline
    # ------------------------------------------------------------------

    def save_baseline(self, hashes: Mapping[str, str]) -> None:
        """Replace the baseline snapshot with *hashes* (pc_id -> hash)."""
        self._baseline = dict(hashes)
        self._changed()

    def baseline_hash(self, pc_id: str) -> str:
        """Return the baseline hash for *pc_id*, or ``""`` if unknown."""
        return self._baseline.get(pc_id, "")

    def has_file_changed(self, pc_id: str, current_hash: str) -> bool:
        """Return ``True`` if *pc_id* is new or its hash differs."""
        if pc_id not in self._baseline:
            return True
        return self._baseline[pc_id] != current_hash

    @staticmethod
    def content_hash(data: bytes) -> str:
        """Short SHA-256 hex digest used for change detection."""
        return hashlib.sha256(data).hexdigest()[:16]

    # ------------------------------------------------------------------
    # Sync metadata
    # ------------------------------------------------------------------

    @property
    def last_sync_time(self) -> datetime | None:
        return self._last_sync_time

    @last_sync_time.setter
    def last_sync_time(self, value: datetime | None) -> None:
        self._last_sync_time = value
        self._changed()

    @property
    def last_sync_pc(self) -> str:
        return self._last_sync_pc

    @last_sync_pc.setter
    def last_sync_pc(self, value: str) -> None:
        self._last_sync_pc = value
        self._changed()

    def is_first_sync(self) -> bool:
        """No mappings and no recorded sync: nothing to reconcile against."""
        return not self._mappings and self._last_sync_time is None

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> bool:
        """Load state from disk.

        Returns:
            ``True`` on success, including when no state file exists yet
            (first run).  ``False`` when the file is unreadable or
            malformed; the in-memory state is then left as it was.
        """
        path = self.state_file
        if not path.exists():
            logger.debug("No state file for %s/%s", self._user_name, self._conduit_id)
            return True

        try:
            with open(path, encoding="utf-8") as fh:
                root = json.load(fh)
            mappings, baseline = self._parse_root(root)
        except (OSError, ValueError, StateError) as exc:
            self._report_error(f"Failed to load sync state {path}: {exc}")
            return False

        self._mappings = {m.device_id: m for m in mappings}
        self._pc_to_device = {m.pc_id: m.device_id for m in mappings}
        self._baseline = baseline
        self._last_sync_time = _parse_timestamp(root.get("lastSyncTime"))
        self._last_sync_pc = root.get("lastSyncPC", "")

        logger.debug(
            "Loaded %d mappings for %s", len(self._mappings), self._conduit_id
        )
        return True

    def save(self) -> bool:
        """Persist state to disk atomically.

        Creates the state directory when needed.

        Returns:
            ``True`` on success, ``False`` if the file could not be written.
        """
        root = {
            "userName": self._user_name,
            "conduitId": self._conduit_id,
            "lastSyncTime": _format_timestamp(self._last_sync_time),
            "lastSyncPC": self._last_sync_pc,
            "version": STATE_VERSION,
            "mappings": [
                self._mapping_to_json(m) for m in self._mappings.values()
            ],
            "baseline": dict(self._baseline),
        }

        try:
            self._state_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=str(self._state_dir), suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(root, fh, indent=2)
                os.replace(tmp_path, self.state_file)
            except BaseException:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
                raise
        except OSError as exc:
            self._report_error(
                f"Failed to save sync state {self.state_file}: {exc}"
            )
            return False

        logger.debug(
            "Saved %d mappings for %s", len(self._mappings), self._conduit_id
        )
        return True

    def close(self) -> None:
        """Save pending changes; the store stays usable afterwards."""
        self.save()

    def clear(self) -> None:
        """Forget every mapping, the baseline and the sync metadata."""
        self._mappings.clear()
        self._pc_to_device.clear()
        self._baseline.clear()
        self._last_sync_time = None
        self._last_sync_pc = ""
        self._changed()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change()

    def _report_error(self, message: str) -> None:
        logger.error("%s", message)
        if self.on_error is not None:
            self.on_error(message)

    @classmethod
    def _parse_root(cls, root: object) -> tuple[list[IDMapping], dict[str, str]]:
        if not isinstance(root, dict):
            raise StateError(f"expected an object, got {type(root).__name__}")
        items = root.get("mappings", [])
        baseline = root.get("baseline", {})
        if not isinstance(items, list) or not isinstance(baseline, dict):
            raise StateError("'mappings' must be a list and 'baseline' an object")
        if not all(isinstance(item, dict) for item in items):
            raise StateError("every mapping must be an object")
        mappings = [cls._mapping_from_json(item) for item in items]
        return mappings, {str(k): str(v) for k, v in baseline.items()}

    @staticmethod
    def _mapping_to_json(mapping: IDMapping) -> dict:
        return {
            "deviceId": mapping.device_id,
            "pcId": mapping.pc_id,
            "deviceCategory": mapping.device_category,
            "pcCategories": list(mapping.pc_categories),
            "lastSynced": _format_timestamp(mapping.last_synced),
            "archived": mapping.archived,
        }

    @staticmethod
    def _mapping_from_json(data: dict) -> IDMapping:
        return IDMapping(
            device_id=str(data.get("deviceId", "")),
            pc_id=str(data.get("pcId", "")),
            device_category=data.get("deviceCategory", ""),
            pc_categories=[str(c) for c in data.get("pcCategories", [])],
            last_synced=_parse_timestamp(data.get("lastSynced")),
            archived=bool(data.get("archived", False)),
        )
