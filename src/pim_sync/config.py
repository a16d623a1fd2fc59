"""Runtime configuration for pim-sync.

Reads sync settings from CLI args, environment variables, .env files and
YAML config fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    PIM_SYNC_STATE_DIR: Base directory of identity stores
    PIM_SYNC_DATA_DIR: Root directory of the local file backend
    PIM_SYNC_MODE: Default sync mode (hotsync, fullsync, ...)
    PIM_SYNC_CONFLICT_POLICY: Conflict policy (ask_user, device_wins, ...)
    PIM_SYNC_DETECT_BACKEND_CHANGES: Detect PC-side edits (true/false)
    PIM_SYNC_VOLATILITY_THRESHOLD: Volatility warning threshold, 0-100
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from .config_schema import DEFAULT_DATA_DIR, DEFAULT_STATE_DIR
from .sync.models import ConflictResolution, SyncMode

logger = logging.getLogger(__name__)


@dataclass
class Config:
    state_dir: str = DEFAULT_STATE_DIR
    data_dir: str = DEFAULT_DATA_DIR
    default_mode: str = SyncMode.HOTSYNC.value
    conflict_policy: str = ConflictResolution.ASK_USER.value
    detect_backend_changes: bool = False
    volatility_threshold: int = 70
    disabled_conduits: list[str] = field(default_factory=list)
    debug: bool = False

    @property
    def state_path(self) -> Path:
        return Path(self.state_dir).expanduser()

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Raises:
        ValueError: If a directory is empty, the mode or policy is
            unknown, or the threshold is out of range.
    """
    config.state_dir = config.state_dir.strip()
    config.data_dir = config.data_dir.strip()

    if not config.state_dir:
        raise ValueError(
            "State directory cannot be empty. Set PIM_SYNC_STATE_DIR."
        )
    if not config.data_dir:
        raise ValueError("Data directory cannot be empty. Set PIM_SYNC_DATA_DIR.")

    modes = sorted(m.value for m in SyncMode)
    if config.default_mode not in modes:
        raise ValueError(
            f"Invalid sync mode '{config.default_mode}': must be one of {modes}"
        )

    policies = sorted(p.value for p in ConflictResolution)
    if config.conflict_policy not in policies:
        raise ValueError(
            f"Invalid conflict policy '{config.conflict_policy}': "
            f"must be one of {policies}"
        )

    if not (0 <= config.volatility_threshold <= 100):
        raise ValueError(
            f"Invalid volatility threshold '{config.volatility_threshold}': "
            "must be a number between 0 and 100"
        )

    if config.conflict_policy == ConflictResolution.NEWEST_WINS.value:
        logger.warning(
            "Conflict policy newest_wins is not implemented; "
            "conflicts will be left unresolved"
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def load_config(
    state_dir: str | None = None,
    data_dir: str | None = None,
    mode: str | None = None,
    conflict_policy: str | None = None,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        state_dir: Override the state directory.
        data_dir: Override the backend data directory.
        mode: Override the default sync mode.
        conflict_policy: Override the conflict policy.
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Values of the YAML ``sync`` section.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If a resolved value is invalid.
    """
    fb = yaml_fallbacks or {}

    # --- String fields: CLI > env > YAML > default ---

    final_state_dir = (
        state_dir
        or os.getenv("PIM_SYNC_STATE_DIR")
        or fb.get("state_dir")
        or DEFAULT_STATE_DIR
    )
    final_data_dir = (
        data_dir
        or os.getenv("PIM_SYNC_DATA_DIR")
        or fb.get("data_dir")
        or DEFAULT_DATA_DIR
    )
    final_mode = (
        mode
        or os.getenv("PIM_SYNC_MODE")
        or fb.get("default_mode")
        or SyncMode.HOTSYNC.value
    )
    final_policy = (
        conflict_policy
        or os.getenv("PIM_SYNC_CONFLICT_POLICY")
        or fb.get("conflict_policy")
        or ConflictResolution.ASK_USER.value
    )

    # --- Boolean fields: env > YAML > default ---

    env_detect = _get_bool_env("PIM_SYNC_DETECT_BACKEND_CHANGES")
    if env_detect is not None:
        final_detect = env_detect
    else:
        final_detect = bool(fb.get("detect_backend_changes", False))

    # --- Numeric fields: env > YAML > default ---

    threshold_raw = os.getenv("PIM_SYNC_VOLATILITY_THRESHOLD")
    if threshold_raw is not None:
        try:
            final_threshold = int(threshold_raw)
        except ValueError:
            raise ValueError(
                f"Invalid PIM_SYNC_VOLATILITY_THRESHOLD '{threshold_raw}': "
                "must be a number between 0 and 100"
            ) from None
    elif "volatility_threshold" in fb:
        final_threshold = int(fb["volatility_threshold"])
    else:
        final_threshold = 70

    config = Config(
        state_dir=str(final_state_dir),
        data_dir=str(final_data_dir),
        default_mode=str(final_mode).lower(),
        conflict_policy=str(final_policy).lower(),
        detect_backend_changes=final_detect,
        volatility_threshold=final_threshold,
        disabled_conduits=[str(c) for c in fb.get("disabled_conduits", [])],
        debug=debug,
    )

    validate_config(config)

    return config
