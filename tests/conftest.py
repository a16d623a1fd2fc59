"""Shared pytest fixtures for pim-sync tests.

Provides in-memory stand-ins for the collaborators of the sync core:

- ``FakeDeviceLink``: databases of ``DeviceRecord`` keyed by name.
- ``FakeBackend``: collections of ``BackendRecord`` keyed by ID.
- ``FakeCodec``: memo-like codec whose payload is plain UTF-8 text.
- ``FakeKeepAlive``: records start/stop calls.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from pim_sync.sync.conduit import Conduit, SyncContext
from pim_sync.sync.errors import BackendError, DeviceLinkError
from pim_sync.sync.models import (
    BackendRecord,
    CollectionInfo,
    ConflictResolution,
    DeviceRecord,
    SyncMode,
)
from pim_sync.sync.state import SyncState

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeDeviceLink:
    """In-memory handheld.

    ``events`` logs opens and closes so tests can check call ordering.
    """

    def __init__(self, user_name: str = "Test User") -> None:
        self.databases: dict[str, dict[int, DeviceRecord]] = {}
        self.connected = True
        self.user_name = user_name
        self.next_id = 1000
        self.events: list[str] = []
        self.fail_open: set[str] = set()
        self.user_name_error: Exception | None = None
        self.fail_writes = False
        self.raise_on_write = False
        self.cleaned: list[str] = []
        self.flags_reset: list[str] = []
        self.app_info: dict[str, bytes] = {}

    # -- test helpers --------------------------------------------------

    def add(
        self,
        database: str,
        record_id: int,
        text: str,
        *,
        dirty: bool = False,
        deleted: bool = False,
        category: int = 0,
    ) -> DeviceRecord:
        record = DeviceRecord(
            id=record_id,
            category=category,
            dirty=dirty,
            deleted=deleted,
            raw_data=text.encode("utf-8"),
        )
        self.databases.setdefault(database, {})[record_id] = record
        return record

    def texts(self, database: str) -> dict[int, str]:
        return {
            rid: r.raw_data.decode("utf-8")
            for rid, r in self.databases.get(database, {}).items()
        }

    # -- DeviceLink protocol -------------------------------------------

    def is_connected(self) -> bool:
        return self.connected

    def read_user_name(self) -> str:
        self.events.append("read_user")
        if self.user_name_error is not None:
            raise self.user_name_error
        return self.user_name

    def open_collection(self, name: str, read_write: bool = True):
        self.events.append(f"open:{name}")
        if name in self.fail_open:
            return None
        self.databases.setdefault(name, {})
        return name

    def close_collection(self, handle) -> None:
        self.events.append(f"close:{handle}")

    def read_all_records(self, handle) -> list[DeviceRecord]:
        records = self.databases[handle]
        return [records[rid].model_copy() for rid in sorted(records)]

    def write_record(self, handle, record: DeviceRecord) -> bool:
        if self.raise_on_write:
            raise DeviceLinkError("link dropped")
        if self.fail_writes:
            return False
        if record.id == 0:
            record.id = self.next_id
            self.next_id += 1
        self.databases[handle][record.id] = record.model_copy(
            update={"dirty": False, "deleted": False}
        )
        return True

    def delete_record(self, handle, record_id: int) -> bool:
        self.databases[handle].pop(record_id, None)
        return True

    def read_app_info_block(self, handle) -> bytes | None:
        return self.app_info.get(handle)

    def write_app_info_block(self, handle, data: bytes) -> bool:
        self.app_info[handle] = data
        return True

    def clean_up_collection(self, handle) -> None:
        self.cleaned.append(handle)
        records = self.databases[handle]
        for rid in [r.id for r in records.values() if r.deleted or r.archived]:
            del records[rid]

    def reset_sync_flags(self, handle) -> None:
        self.flags_reset.append(handle)
        for record in self.databases[handle].values():
            record.dirty = False


class FakeBackend:
    """In-memory PC store with generated IDs ``pc-1``, ``pc-2``, ..."""

    def __init__(self) -> None:
        self.collections: dict[str, dict[str, BackendRecord]] = {}
        self.counter = 0
        self.raise_on_load = False
        self.fail_create = False

    # -- test helpers --------------------------------------------------

    def add(
        self,
        collection_id: str,
        record_id: str,
        text: str,
        *,
        is_deleted: bool = False,
    ) -> BackendRecord:
        data = text.encode("utf-8")
        record = BackendRecord(
            id=record_id,
            type="memo",
            display_name=text.splitlines()[0] if text else "",
            data=data,
            content_hash=SyncState.content_hash(data),
            is_deleted=is_deleted,
        )
        self.collections.setdefault(collection_id, {})[record_id] = record
        return record

    def texts(self, collection_id: str) -> dict[str, str]:
        return {
            rid: r.data.decode("utf-8")
            for rid, r in self.collections.get(collection_id, {}).items()
        }

    def _find(self, record_id: str) -> dict[str, BackendRecord] | None:
        for records in self.collections.values():
            if record_id in records:
                return records
        return None

    # -- Backend protocol ----------------------------------------------

    def load_records(self, collection_id: str) -> list[BackendRecord]:
        if self.raise_on_load:
            raise BackendError("store offline")
        records = self.collections.get(collection_id, {})
        return [records[rid].model_copy() for rid in sorted(records)]

    def create_record(self, collection_id: str, record: BackendRecord) -> str:
        if self.fail_create:
            return ""
        self.counter += 1
        new_id = f"pc-{self.counter}"
        stored = record.model_copy(
            update={
                "id": new_id,
                "content_hash": SyncState.content_hash(record.data),
            }
        )
        self.collections.setdefault(collection_id, {})[new_id] = stored
        return new_id

    def update_record(self, record: BackendRecord) -> bool:
        records = self._find(record.id)
        if records is None:
            return False
        records[record.id] = record.model_copy(
            update={"content_hash": SyncState.content_hash(record.data)}
        )
        return True

    def delete_record(self, record_id: str) -> bool:
        records = self._find(record_id)
        if records is not None:
            del records[record_id]
        return True

    def collection_info(self, collection_id: str) -> CollectionInfo:
        return CollectionInfo(id=collection_id, name=collection_id.title())


class FakeCodec:
    """Memo-style codec: the payload is text, the first line describes it.

    Text starting with ``!bad`` cannot be converted.
    """

    def device_to_backend(self, record: DeviceRecord, context) -> BackendRecord | None:
        text = record.raw_data.decode("utf-8")
        if text.startswith("!bad"):
            return None
        return BackendRecord(
            type="memo",
            display_name=self._first_line(text),
            data=record.raw_data,
            content_hash=SyncState.content_hash(record.raw_data),
        )

    def backend_to_device(self, record: BackendRecord, context) -> DeviceRecord | None:
        if record.data.startswith(b"!bad"):
            return None
        return DeviceRecord(raw_data=record.data)

    def records_equal(self, device: DeviceRecord, backend: BackendRecord) -> bool:
        return device.raw_data == backend.data

    def description_of(self, record: DeviceRecord) -> str:
        return self._first_line(record.raw_data.decode("utf-8"))

    @staticmethod
    def _first_line(text: str) -> str:
        lines = text.splitlines()
        return lines[0] if lines else ""


class FakeKeepAlive:
    """Appends ``start``/``stop`` to a shared event list."""

    def __init__(self, events: list[str]) -> None:
        self.events = events

    def start(self) -> None:
        self.events.append("keepalive:start")

    def stop(self) -> None:
        self.events.append("keepalive:stop")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def device() -> FakeDeviceLink:
    return FakeDeviceLink()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def codec() -> FakeCodec:
    return FakeCodec()


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    path = tmp_path / "state"
    path.mkdir()
    return path


@pytest.fixture
def state(state_dir: Path) -> SyncState:
    return SyncState(state_dir, "Test User", "memos")


@pytest.fixture
def make_conduit(codec):
    """Factory for memo conduits over ``MemoDB`` / ``memos``."""

    def _make(**kwargs) -> Conduit:
        kwargs.setdefault("record_type", "memo")
        return Conduit(
            kwargs.pop("conduit_id", "memos"),
            kwargs.pop("display_name", "Memos"),
            kwargs.pop("device_database", "MemoDB"),
            codec,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_context(device, backend, state):
    """Factory for a ``SyncContext`` bound to the shared fakes."""

    def _make(
        mode: SyncMode = SyncMode.HOTSYNC,
        policy: ConflictResolution = ConflictResolution.ASK_USER,
        **kwargs,
    ) -> SyncContext:
        return SyncContext(
            device_link=device,
            backend=backend,
            state=state,
            mode=mode,
            conflict_policy=policy,
            device_database="MemoDB",
            collection_id="memos",
            user_name="Test User",
            **kwargs,
        )

    return _make


@pytest.fixture
def keep_alive(device) -> FakeKeepAlive:
    """Keep-alive writing into the device's event log."""
    return FakeKeepAlive(device.events)
