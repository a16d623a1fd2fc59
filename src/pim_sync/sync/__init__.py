"""Handheld <-> PC record synchronisation core.

Architecture
------------
Each PIM record type (memos, contacts, calendar, todos) is handled by a
``Conduit`` which reconciles one device database against one backend
collection.  Records are paired through a persistent identity store
(``SyncState``): a device ID and a PC ID are mapped one-to-one, and the
backend content hashes of the last successful sync are kept as a
baseline.  The ``SyncEngine`` runs all registered conduits for a session.

Modules:

- ``engine``        -- ``SyncEngine``: conduit registry and sessions.
- ``conduit``       -- ``Conduit``, ``SyncContext``: the sync algorithms.
- ``state``         -- ``SyncState``: mappings, baseline, JSON persistence.
- ``resolver``      -- Conflict policies (device-wins, pc-wins, ...).
- ``interfaces``    -- ``DeviceLink``, ``Backend``, ``RecordCodec``,
  ``KeepAlive`` protocols.
- ``models``        -- Records, stats, results and enums.
- ``local_backend`` -- ``LocalFileBackend``: one file per record.
- ``reporter``      -- Human-readable and JSON output.
- ``errors``        -- Exception hierarchy.

Usage example
-------------
::

    from pim_sync.sync import Conduit, LocalFileBackend, SyncEngine, SyncMode

    engine = SyncEngine(
        device_link=link,               # DeviceLink implementation
        backend=LocalFileBackend("~/PalmData"),
        state_dir="~/.local/share/pim-sync/state",
    )
    engine.register_conduit(
        Conduit("memos", "Memos", "MemoDB", memo_codec, record_type="memo")
    )
    result = engine.sync_all(SyncMode.HOTSYNC)
    print(format_sync_result(result))
"""

from .conduit import Conduit, SyncContext, baseline_changed, never_modified
from .engine import SyncEngine
from .errors import BackendError, DeviceLinkError, PimSyncError, StateError
from .local_backend import LocalFileBackend
from .models import (
    BackendRecord,
    CollectionInfo,
    ConflictInfo,
    ConflictResolution,
    DataLossWarning,
    DeviceRecord,
    IDMapping,
    Resolution,
    SyncMode,
    SyncResult,
    SyncStats,
)
from .reporter import format_sync_result, result_to_json
from .resolver import create_resolver
from .state import SyncState

__all__ = [
    "BackendError",
    "BackendRecord",
    "CollectionInfo",
    "Conduit",
    "ConflictInfo",
    "ConflictResolution",
    "DataLossWarning",
    "DeviceLinkError",
    "DeviceRecord",
    "IDMapping",
    "LocalFileBackend",
    "PimSyncError",
    "Resolution",
    "StateError",
    "SyncContext",
    "SyncEngine",
    "SyncMode",
    "SyncResult",
    "SyncState",
    "SyncStats",
    "baseline_changed",
    "create_resolver",
    "format_sync_result",
    "never_modified",
    "result_to_json",
]
