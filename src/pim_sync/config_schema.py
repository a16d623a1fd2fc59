"""Configuration schema for pim_sync.

Pydantic models for the YAML config: a ``sync`` section for the engine
and a ``logging`` section.  ``to_config`` turns the validated models into
the runtime ``Config`` dataclass, applying CLI overrides.

Usage:
    from pim_sync.config_schema import build_config, to_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
    config = to_config(unified, cli_overrides={"state_dir": "/tmp/state"})
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from .sync.models import ConflictResolution, SyncMode

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = "~/.local/share/pim-sync/state"
DEFAULT_DATA_DIR = "~/PalmData"


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class SyncSettings(BaseModel):
    """Sync engine settings.

    Every field has a default so an empty ``sync:`` section is valid.
    """

    state_dir: str = Field(
        default=DEFAULT_STATE_DIR, description="Base directory of identity stores"
    )
    data_dir: str = Field(
        default=DEFAULT_DATA_DIR, description="Root of the local file backend"
    )
    default_mode: SyncMode = Field(
        default=SyncMode.HOTSYNC, description="Mode used when none is given"
    )
    conflict_policy: ConflictResolution = Field(
        default=ConflictResolution.ASK_USER,
        description="Policy for records changed on both sides",
    )
    detect_backend_changes: bool = Field(
        default=False,
        description="Compare PC records against the baseline to detect edits",
    )
    volatility_threshold: int = Field(
        default=70,
        ge=0,
        le=100,
        description="Percent of changed records that triggers a warning (0-100)",
    )
    disabled_conduits: list[str] = Field(
        default_factory=list, description="Conduit IDs registered but disabled"
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level configuration; ``UnifiedConfig()`` is always valid."""

    sync: SyncSettings = Field(default_factory=SyncSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


def build_config(raw_data: dict) -> UnifiedConfig:
    """Validate the merged dict from ``load_hierarchical_config()``.

    Missing sections get defaults; a ``None`` section (``sync:`` with no
    body) counts as missing.

    Raises:
        pydantic.ValidationError: If a value is out of range or unknown.
    """
    if not raw_data:
        return UnifiedConfig()
    cleaned = {k: v for k, v in raw_data.items() if v is not None}
    return UnifiedConfig(**cleaned)


# ---------------------------------------------------------------------------
# Adapter: UnifiedConfig -> runtime Config
# ---------------------------------------------------------------------------


def to_config(
    unified: UnifiedConfig,
    cli_overrides: dict | None = None,
) -> Config:
    """Build the runtime ``Config`` from *unified*, CLI overrides first.

    Override keys: state_dir, data_dir, mode, conflict_policy, debug.
    The result is not validated; call ``validate_config()`` on it.
    """
    from .config import Config

    overrides = cli_overrides or {}
    settings = unified.sync

    return Config(
        state_dir=overrides.get("state_dir") or settings.state_dir,
        data_dir=overrides.get("data_dir") or settings.data_dir,
        default_mode=overrides.get("mode") or settings.default_mode.value,
        conflict_policy=overrides.get("conflict_policy")
        or settings.conflict_policy.value,
        detect_backend_changes=settings.detect_backend_changes,
        volatility_threshold=settings.volatility_threshold,
        disabled_conduits=list(settings.disabled_conduits),
        debug=overrides.get("debug", False),
    )
