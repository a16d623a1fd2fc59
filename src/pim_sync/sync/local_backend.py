"""Plain-file backend: one file per record under a base directory.

Layout::

    <base>/<collection>/<sanitised display name><extension>

The record ID is the file path.  Collections default to ``memos`` (.md),
``contacts`` (.vcf), ``calendar`` (.ics) and ``todos`` (.ics); any other
collection uses ``.txt`` unless an extension is configured.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from pathlib import Path

from .errors import BackendError
from .models import BackendRecord, CollectionInfo
from .state import SyncState

logger = logging.getLogger(__name__)

DEFAULT_COLLECTIONS = ("memos", "contacts", "calendar", "todos")

DEFAULT_EXTENSIONS = {
    "memos": ".md",
    "contacts": ".vcf",
    "calendar": ".ics",
    "todos": ".ics",
}

FALLBACK_EXTENSION = ".txt"
MAX_FILENAME_LENGTH = 100
MAX_UNIQUE_ATTEMPTS = 10000

_UNSAFE_CHARS = re.compile(r'[/\\:*?"<>|]')


def sanitize_filename(name: str) -> str:
    """Turn a display name into a safe file name stem.

    Path separators and shell-hostile characters become ``_``, line
    breaks become spaces, runs of spaces or underscores collapse, and the
    result is capped at 100 characters.  An empty result is ``unnamed``.
    """
    safe = _UNSAFE_CHARS.sub("_", name)
    safe = safe.replace("\n", " ").replace("\r", " ")
    safe = re.sub(r" {2,}", " ", safe)
    safe = re.sub(r"_{2,}", "_", safe)
    safe = safe.strip()[:MAX_FILENAME_LENGTH].strip()
    return safe or "unnamed"


class LocalFileBackend:
    """Store records as individual files.

    Args:
        base_path: Root directory; created on demand.
        extensions: Per-collection extension overrides.
    """

    def __init__(
        self, base_path: Path | str, extensions: dict[str, str] | None = None
    ) -> None:
        self.base_path = Path(base_path)
        self._extensions = dict(DEFAULT_EXTENSIONS)
        for collection_id, ext in (extensions or {}).items():
            self.set_file_extension(collection_id, ext)

    def is_available(self) -> bool:
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.error("Backend directory %s unusable: %s", self.base_path, exc)
            return False
        return True

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def available_collections(self) -> list[CollectionInfo]:
        return [self.collection_info(c) for c in DEFAULT_COLLECTIONS]

    def collection_info(self, collection_id: str) -> CollectionInfo:
        return CollectionInfo(
            id=collection_id,
            name=collection_id[:1].upper() + collection_id[1:],
            path=str(self.collection_path(collection_id)),
            type=collection_id,
            is_default=collection_id in DEFAULT_COLLECTIONS,
        )

    def create_collection(self, collection_id: str) -> str:
        """Create the collection directory; returns ``""`` on failure."""
        path = self.collection_path(collection_id)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.error("Failed to create collection %s: %s", path, exc)
            return ""
        return collection_id

    def collection_path(self, collection_id: str) -> Path:
        return self.base_path / collection_id

    def set_file_extension(self, collection_id: str, extension: str) -> None:
        if not extension.startswith("."):
            extension = "." + extension
        self._extensions[collection_id] = extension

    def file_extension(self, collection_id: str) -> str:
        return self._extensions.get(collection_id, FALLBACK_EXTENSION)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def load_records(self, collection_id: str) -> list[BackendRecord]:
        """Read every record file of *collection_id*.

        Raises:
            BackendError: If the collection directory cannot be listed.
        """
        path = self.collection_path(collection_id)
        if not path.exists():
            self.create_collection(collection_id)
            return []

        ext = self.file_extension(collection_id)
        try:
            files = sorted(p for p in path.iterdir() if p.is_file())
        except OSError as exc:
            raise BackendError(f"Cannot list collection {path}: {exc}") from exc

        records = []
        for file_path in files:
            if file_path.suffix.lower() != ext.lower():
                continue
            record = self.load_record(str(file_path))
            if record is not None:
                records.append(record)

        logger.debug("Loaded %d records from %s", len(records), collection_id)
        return records

    def load_record(self, record_id: str) -> BackendRecord | None:
        path = Path(record_id)
        if not path.exists():
            return None
        try:
            data = path.read_bytes()
            mtime = path.stat().st_mtime
        except OSError as exc:
            logger.error("Failed to read %s: %s", path, exc)
            return None

        return BackendRecord(
            id=record_id,
            type=self._record_type(path),
            display_name=path.stem,
            data=data,
            content_hash=SyncState.content_hash(data),
            last_modified=datetime.fromtimestamp(mtime, tz=timezone.utc),
        )

    def create_record(self, collection_id: str, record: BackendRecord) -> str:
        """Write *record* to a new, uniquely named file.

        Returns:
            The new file path, or ``""`` on failure.
        """
        if not self.create_collection(collection_id):
            return ""

        base_name = (
            record.display_name or SyncState.content_hash(record.data)[:12]
        )
        ext = self.file_extension(collection_id)
        path = self.unique_path(collection_id, base_name, ext)
        try:
            path.write_bytes(record.data)
        except OSError as exc:
            logger.error("Failed to create %s: %s", path, exc)
            return ""
        logger.debug("Created %s", path)
        return str(path)

    def update_record(self, record: BackendRecord) -> bool:
        """Overwrite an existing file; missing files are not recreated."""
        if not record.id:
            logger.error("Cannot update record with empty ID")
            return False
        path = Path(record.id)
        if not path.exists():
            logger.error("Record not found: %s", record.id)
            return False
        try:
            path.write_bytes(record.data)
        except OSError as exc:
            logger.error("Failed to write %s: %s", path, exc)
            return False
        return True

    def delete_record(self, record_id: str) -> bool:
        """Remove a record file; an already missing file counts as deleted."""
        if not record_id:
            return False
        path = Path(record_id)
        if not path.exists():
            return True
        try:
            path.unlink()
        except OSError as exc:
            logger.error("Failed to delete %s: %s", path, exc)
            return False
        return True

    def modified_since(
        self, collection_id: str, since: datetime
    ) -> list[BackendRecord]:
        """Records whose file changed after *since*."""
        return [
            r
            for r in self.load_records(collection_id)
            if r.last_modified is not None and r.last_modified > since
        ]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def unique_path(self, collection_id: str, base_name: str, ext: str) -> Path:
        """Return a non-existing path, appending ``_N`` when needed."""
        directory = self.collection_path(collection_id)
        stem = sanitize_filename(base_name)
        candidate = directory / f"{stem}{ext}"
        counter = 1
        while candidate.exists():
            if counter > MAX_UNIQUE_ATTEMPTS:
                digest = SyncState.content_hash(
                    f"{stem}{datetime.now(timezone.utc).isoformat()}".encode()
                )
                return directory / f"{stem}_{digest[:8]}{ext}"
            candidate = directory / f"{stem}_{counter}{ext}"
            counter += 1
        return candidate

    @staticmethod
    def _record_type(path: Path) -> str:
        ext = path.suffix.lower()
        if ext == ".md":
            return "memo"
        if ext == ".vcf":
            return "contact"
        if ext == ".ics":
            parent = path.parent.name
            if parent == "calendar":
                return "event"
            if parent == "todos":
                return "todo"
            return "icalendar"
        return ""
