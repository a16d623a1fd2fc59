"""Orchestrator that runs every registered conduit for one sync session.

The ``SyncEngine`` owns the conduit registry and the identity stores.  A
session:

1. Fails fast when no device is connected or no backend is configured.
2. Pauses the device keep-alive for the whole run.
3. Runs each enabled conduit in registration order with a fresh
   ``SyncContext`` and the cached ``SyncState`` of (user, conduit).
4. Aggregates the per-conduit results into one ``SyncResult``.

Cancellation is cooperative: ``cancel_sync()`` may be called from another
thread and is honoured between records and between conduits.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from .conduit import BackendChangeDetector, Conduit, SyncContext, baseline_changed
from .errors import DeviceLinkError
from .interfaces import (
    Backend,
    CancelCheck,
    DeviceLink,
    KeepAlive,
    LogCallback,
    ProgressCallback,
)
from .models import ConflictResolution, SyncMode, SyncResult
from .state import SyncState

if TYPE_CHECKING:
    from pim_sync.config import Config
    from pim_sync.config_schema import UnifiedConfig

logger = logging.getLogger(__name__)

DEFAULT_USER = "default"

EngineConflictCallback = Callable[[str, str, str], None]


def _default_state_dir() -> Path:
    return Path.home() / ".local" / "share" / "pim-sync" / "state"


class SyncEngine:
    """Run registered conduits against one device link and one backend.

    Args:
        device_link: Connection to the handheld.
        backend: PC-side record storage.
        state_dir: Base directory for identity stores.
        conflict_policy: Policy handed to every conduit.
        cancel_check: Optional external cancellation predicate.
    """

    def __init__(
        self,
        device_link: DeviceLink | None = None,
        backend: Backend | None = None,
        state_dir: Path | str | None = None,
        conflict_policy: ConflictResolution = ConflictResolution.ASK_USER,
        cancel_check: CancelCheck | None = None,
    ) -> None:
        self.device_link = device_link
        self.backend = backend
        self.conflict_policy = ConflictResolution(conflict_policy)
        self.cancel_check = cancel_check

        # Engine-wide overrides applied to conduits on registration.
        self.backend_change_detector: BackendChangeDetector | None = None
        self.volatility_threshold: int | None = None
        self.disabled_conduits: set[str] = set()

        self.on_progress: ProgressCallback | None = None
        self.on_log: LogCallback | None = None
        self.on_error: LogCallback | None = None
        self.on_conflict: EngineConflictCallback | None = None

        self._state_dir = Path(state_dir) if state_dir else _default_state_dir()
        self._conduits: dict[str, Conduit] = {}
        self._enabled: dict[str, bool] = {}
        self._states: dict[str, SyncState] = {}
        self._keep_alive: KeepAlive | None = None
        self._user_name = ""
        self._cancel = threading.Event()
        self._syncing = False

    @classmethod
    def from_config(
        cls,
        config: UnifiedConfig | Config,
        device_link: DeviceLink | None = None,
        backend: Backend | None = None,
    ) -> SyncEngine:
        """Build an engine from a runtime ``Config`` or a ``UnifiedConfig``.

        Both carry the same sync fields; a unified config keeps them in its
        ``sync`` section.
        """
        settings = getattr(config, "sync", config)
        engine = cls(
            device_link=device_link,
            backend=backend,
            state_dir=Path(settings.state_dir).expanduser(),
            conflict_policy=ConflictResolution(settings.conflict_policy),
        )
        if settings.detect_backend_changes:
            engine.backend_change_detector = baseline_changed
        engine.volatility_threshold = settings.volatility_threshold
        engine.disabled_conduits = set(settings.disabled_conduits)
        return engine

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state_directory(self) -> Path:
        return self._state_dir

    @state_directory.setter
    def state_directory(self, value: Path | str) -> None:
        self.close()
        self._states.clear()
        self._state_dir = Path(value)

    @property
    def user_name(self) -> str:
        """Device user name of the current or last session."""
        return self._user_name or DEFAULT_USER

    @user_name.setter
    def user_name(self, value: str) -> None:
        self._user_name = value

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    def set_keep_alive(self, keep_alive: KeepAlive | None) -> None:
        self._keep_alive = keep_alive

    # ------------------------------------------------------------------
    # Conduit registry
    # ------------------------------------------------------------------

    def register_conduit(self, conduit: Conduit) -> None:
        """Add *conduit*, replacing any conduit with the same ID."""
        conduit_id = conduit.conduit_id
        if conduit_id in self._conduits:
            logger.info("Replacing conduit %s", conduit_id)
            del self._conduits[conduit_id]
        if self.backend_change_detector is not None:
            conduit.backend_change_detector = self.backend_change_detector
        if self.volatility_threshold is not None:
            conduit.volatility_threshold = self.volatility_threshold
        self._conduits[conduit_id] = conduit
        self._enabled[conduit_id] = conduit_id not in self.disabled_conduits
        logger.debug("Registered conduit %s", conduit_id)

    def unregister_conduit(self, conduit_id: str) -> None:
        self._conduits.pop(conduit_id, None)
        self._enabled.pop(conduit_id, None)

    def conduit(self, conduit_id: str) -> Conduit | None:
        return self._conduits.get(conduit_id)

    def registered_conduits(self) -> list[str]:
        """IDs of all conduits in registration order."""
        return list(self._conduits)

    def set_conduit_enabled(self, conduit_id: str, enabled: bool) -> None:
        if conduit_id in self._conduits:
            self._enabled[conduit_id] = enabled

    def is_conduit_enabled(self, conduit_id: str) -> bool:
        return self._enabled.get(conduit_id, False)

    # ------------------------------------------------------------------
    # Sync sessions
    # ------------------------------------------------------------------

    def sync_all(self, mode: SyncMode = SyncMode.HOTSYNC) -> SyncResult:
        """Run every enabled conduit and aggregate the results.

        The combined result succeeds only if every conduit succeeded; its
        error message is the first failure's.
        """
        started = datetime.now(timezone.utc)
        failure = self._check_ready()
        if failure is not None:
            return failure

        combined = SyncResult(success=True, start_time=started)
        self._syncing = True
        try:
            with self.keep_alive_paused():
                self._begin_session()
                self._log(f"Starting {SyncMode(mode).value} sync")
                for conduit in list(self._conduits.values()):
                    if self._is_cancelled():
                        self._log("Sync cancelled")
                        break
                    if not self.is_conduit_enabled(conduit.conduit_id):
                        logger.debug("Skipping disabled conduit %s", conduit.conduit_id)
                        continue
                    self._merge(combined, self._run_conduit(conduit, mode))
        finally:
            self._syncing = False

        combined.end_time = datetime.now(timezone.utc)
        self._log(
            f"Sync finished: {'Success' if combined.success else 'Failed'}"
        )
        return combined

    def sync_conduit(
        self, conduit_id: str, mode: SyncMode = SyncMode.HOTSYNC
    ) -> SyncResult:
        """Run a single conduit, enabled or not."""
        conduit = self._conduits.get(conduit_id)
        if conduit is None:
            return self._failure(f"Unknown conduit: {conduit_id}")
        failure = self._check_ready()
        if failure is not None:
            return failure

        self._syncing = True
        try:
            with self.keep_alive_paused():
                self._begin_session()
                return self._run_conduit(conduit, mode)
        finally:
            self._syncing = False

    def cancel_sync(self) -> None:
        """Ask the running session to stop after the current record."""
        logger.info("Sync cancellation requested")
        self._cancel.set()

    @contextmanager
    def keep_alive_paused(self) -> Iterator[None]:
        """Stop the device keep-alive for the duration of the block."""
        keep_alive = self._keep_alive
        if keep_alive is None:
            yield
            return
        keep_alive.stop()
        try:
            yield
        finally:
            keep_alive.start()

    # ------------------------------------------------------------------
    # Identity stores
    # ------------------------------------------------------------------

    def state_for_conduit(self, conduit_id: str) -> SyncState:
        """Return the cached identity store of *conduit_id*, loading it lazily."""
        user = self.user_name
        key = f"{user}/{conduit_id}"
        state = self._states.get(key)
        if state is None:
            state = SyncState(
                self._state_dir, user, conduit_id, on_error=self._error
            )
            state.load()
            self._states[key] = state
        return state

    def close(self) -> None:
        """Persist every cached identity store."""
        for state in self._states.values():
            state.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _check_ready(self) -> SyncResult | None:
        if self._syncing:
            return self._failure("Sync already in progress")
        if self.device_link is None or not self.device_link.is_connected():
            return self._failure("No device connected")
        if self.backend is None:
            return self._failure("No backend configured")
        return None

    def _begin_session(self) -> None:
        """Reset the cancel flag and pick up the device user name."""
        self._cancel.clear()
        try:
            name = self.device_link.read_user_name()
        except DeviceLinkError as exc:
            logger.warning("Could not read device user name: %s", exc)
            name = ""
        if name:
            self._user_name = name

    def _run_conduit(self, conduit: Conduit, mode: SyncMode) -> SyncResult:
        conduit_id = conduit.conduit_id
        conduit.on_log = self.on_log
        conduit.on_error = self.on_error
        conduit.on_progress = self.on_progress
        if self.on_conflict is not None:
            callback = self.on_conflict
            conduit.on_conflict = lambda device_desc, pc_desc: callback(
                conduit_id, device_desc, pc_desc
            )
        else:
            conduit.on_conflict = None

        context = SyncContext(
            device_link=self.device_link,
            backend=self.backend,
            state=self.state_for_conduit(conduit_id),
            mode=SyncMode(mode),
            conflict_policy=self.conflict_policy,
            device_database=conduit.device_database,
            collection_id=conduit.collection_id,
            user_name=self.user_name,
            cancel_check=self._is_cancelled,
        )
        logger.info("Running conduit %s (%s)", conduit_id, context.mode.value)
        result = conduit.sync(context)
        if not result.success:
            self._error(f"{conduit.display_name}: {result.error_message}")
        return result

    @staticmethod
    def _merge(combined: SyncResult, result: SyncResult) -> None:
        combined.device_stats.merge(result.device_stats)
        combined.pc_stats.merge(result.pc_stats)
        combined.warnings.extend(result.warnings)
        if not result.success:
            if combined.success:
                combined.error_message = result.error_message
            combined.success = False

    def _is_cancelled(self) -> bool:
        if self._cancel.is_set():
            return True
        if self.cancel_check is not None and self.cancel_check():
            self._cancel.set()
            return True
        return False

    def _failure(self, message: str) -> SyncResult:
        self._error(message)
        now = datetime.now(timezone.utc)
        return SyncResult(
            success=False, error_message=message, start_time=now, end_time=now
        )

    def _log(self, message: str) -> None:
        logger.info("%s", message)
        if self.on_log is not None:
            self.on_log(message)

    def _error(self, message: str) -> None:
        logger.error("%s", message)
        if self.on_error is not None:
            self.on_error(message)
