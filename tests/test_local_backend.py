"""Tests for the plain-file backend."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from pim_sync.sync.errors import BackendError
from pim_sync.sync.local_backend import (
    LocalFileBackend,
    sanitize_filename,
)
from pim_sync.sync.models import BackendRecord
from pim_sync.sync.state import SyncState


@pytest.fixture
def store(tmp_path: Path) -> LocalFileBackend:
    return LocalFileBackend(tmp_path / "data")


def _record(name: str, text: str) -> BackendRecord:
    return BackendRecord(type="memo", display_name=name, data=text.encode("utf-8"))


# ---------------------------------------------------------------------------
# File names
# ---------------------------------------------------------------------------


class TestSanitizeFilename:
    """Tests for sanitize_filename()."""

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("Shopping list", "Shopping list"),
            ("a/b\\c", "a_b_c"),
            ('what? "now" <ok>', "what_ _now_ _ok_"),
            ("line one\nline two", "line one line two"),
            ("a   b", "a b"),
            ("x::y", "x_y"),
            ("", "unnamed"),
            ("   ", "unnamed"),
        ],
    )
    def test_sanitize(self, name, expected) -> None:
        assert sanitize_filename(name) == expected

    def test_length_capped(self) -> None:
        assert len(sanitize_filename("x" * 250)) == 100


class TestUniquePath:
    """Tests for unique_path()."""

    def test_suffixes_existing_names(self, store) -> None:
        store.create_collection("memos")
        first = store.unique_path("memos", "Note", ".md")
        first.write_text("1")
        second = store.unique_path("memos", "Note", ".md")
        second.write_text("2")
        third = store.unique_path("memos", "Note", ".md")

        assert first.name == "Note.md"
        assert second.name == "Note_1.md"
        assert third.name == "Note_2.md"


# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------


class TestCollections:
    """Tests for collection helpers and extensions."""

    def test_default_extensions(self, store) -> None:
        assert store.file_extension("memos") == ".md"
        assert store.file_extension("contacts") == ".vcf"
        assert store.file_extension("todos") == ".ics"
        assert store.file_extension("expenses") == ".txt"

    def test_extension_override_adds_dot(self, tmp_path: Path) -> None:
        backend = LocalFileBackend(tmp_path, extensions={"memos": "txt"})
        assert backend.file_extension("memos") == ".txt"

    def test_collection_info(self, store) -> None:
        info = store.collection_info("memos")
        assert info.name == "Memos"
        assert info.is_default is True
        assert info.path.endswith("memos")
        assert store.collection_info("expenses").is_default is False

    def test_available_collections(self, store) -> None:
        ids = [c.id for c in store.available_collections()]
        assert ids == ["memos", "contacts", "calendar", "todos"]

    def test_is_available_creates_base(self, store) -> None:
        assert store.is_available() is True
        assert store.base_path.is_dir()


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class TestRecords:
    """Tests for record create/load/update/delete."""

    def test_create_and_load(self, store) -> None:
        record_id = store.create_record("memos", _record("Groceries", "milk\neggs"))

        assert record_id.endswith("Groceries.md")
        loaded = store.load_record(record_id)
        assert loaded.data == b"milk\neggs"
        assert loaded.display_name == "Groceries"
        assert loaded.type == "memo"
        assert loaded.content_hash == SyncState.content_hash(b"milk\neggs")
        assert loaded.last_modified.tzinfo is not None

    def test_create_same_name_twice(self, store) -> None:
        first = store.create_record("memos", _record("Note", "a"))
        second = store.create_record("memos", _record("Note", "b"))
        assert first != second
        assert Path(second).name == "Note_1.md"

    def test_create_without_name_uses_hash(self, store) -> None:
        record_id = store.create_record("memos", _record("", "anonymous"))
        digest = SyncState.content_hash(b"anonymous")
        assert Path(record_id).stem == digest[:12]

    def test_load_missing_collection_creates_it(self, store) -> None:
        assert store.load_records("memos") == []
        assert store.collection_path("memos").is_dir()

    def test_load_filters_by_extension(self, store) -> None:
        store.create_record("memos", _record("Keep", "x"))
        (store.collection_path("memos") / "stray.txt").write_text("y")
        (store.collection_path("memos") / "sub").mkdir()

        records = store.load_records("memos")
        assert [r.display_name for r in records] == ["Keep"]

    def test_load_unlistable_collection_raises(self, store) -> None:
        store.base_path.mkdir(parents=True)
        store.collection_path("memos").write_text("not a directory")
        with pytest.raises(BackendError):
            store.load_records("memos")

    def test_load_record_missing(self, store, tmp_path: Path) -> None:
        assert store.load_record(str(tmp_path / "gone.md")) is None

    def test_update(self, store) -> None:
        record_id = store.create_record("memos", _record("Note", "old"))
        updated = _record("Note", "new").model_copy(update={"id": record_id})

        assert store.update_record(updated) is True
        assert Path(record_id).read_bytes() == b"new"

    def test_update_missing_file_is_not_recreated(self, store, tmp_path) -> None:
        record = _record("Gone", "x").model_copy(
            update={"id": str(tmp_path / "gone.md")}
        )
        assert store.update_record(record) is False
        assert not (tmp_path / "gone.md").exists()

    def test_update_empty_id(self, store) -> None:
        assert store.update_record(_record("x", "y")) is False

    def test_delete(self, store) -> None:
        record_id = store.create_record("memos", _record("Note", "x"))
        assert store.delete_record(record_id) is True
        assert not Path(record_id).exists()

    def test_delete_missing_counts_as_deleted(self, store, tmp_path) -> None:
        assert store.delete_record(str(tmp_path / "gone.md")) is True
        assert store.delete_record("") is False

    @pytest.mark.parametrize(
        "collection, ext, expected",
        [
            ("contacts", ".vcf", "contact"),
            ("calendar", ".ics", "event"),
            ("todos", ".ics", "todo"),
        ],
    )
    def test_record_type(self, store, collection, ext, expected) -> None:
        record_id = store.create_record(collection, _record("Item", "x"))
        assert record_id.endswith(ext)
        assert store.load_record(record_id).type == expected

    def test_modified_since(self, store) -> None:
        store.create_record("memos", _record("Note", "x"))
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        future = datetime.now(timezone.utc) + timedelta(hours=1)

        assert len(store.modified_since("memos", past)) == 1
        assert store.modified_since("memos", future) == []
