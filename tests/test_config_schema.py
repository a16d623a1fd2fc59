"""Tests for the unified config schema and the to_config() adapter.

Covers the Pydantic models in config_schema.py (UnifiedConfig,
SyncSettings, LoggingConfig), the build_config() factory and the
to_config() adapter that produces the runtime Config.
"""

import pytest
from pydantic import ValidationError

from pim_sync.config import Config
from pim_sync.config_schema import (
    DEFAULT_DATA_DIR,
    DEFAULT_STATE_DIR,
    LoggingConfig,
    SyncSettings,
    UnifiedConfig,
    build_config,
    to_config,
)
from pim_sync.sync.models import ConflictResolution, SyncMode

# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class TestUnifiedConfig:
    """Tests for the top-level UnifiedConfig model."""

    def test_defaults(self):
        config = UnifiedConfig()
        assert config.sync.state_dir == DEFAULT_STATE_DIR
        assert config.sync.data_dir == DEFAULT_DATA_DIR
        assert config.sync.default_mode is SyncMode.HOTSYNC
        assert config.sync.conflict_policy is ConflictResolution.ASK_USER
        assert config.sync.detect_backend_changes is False
        assert config.sync.volatility_threshold == 70
        assert config.sync.disabled_conduits == []
        assert config.logging.level == "INFO"
        assert config.logging.file is None

    def test_frozen(self):
        config = UnifiedConfig()
        with pytest.raises(ValidationError):
            config.sync = SyncSettings()


class TestSyncSettings:
    """Tests for SyncSettings validation."""

    def test_enum_values_from_strings(self):
        settings = SyncSettings(default_mode="fullsync", conflict_policy="pc_wins")
        assert settings.default_mode is SyncMode.FULLSYNC
        assert settings.conflict_policy is ConflictResolution.PC_WINS

    def test_unknown_mode_rejected(self):
        with pytest.raises(ValidationError):
            SyncSettings(default_mode="turbo")

    def test_unknown_policy_rejected(self):
        with pytest.raises(ValidationError):
            SyncSettings(conflict_policy="coin_flip")

    @pytest.mark.parametrize("threshold", [-1, 101])
    def test_threshold_range(self, threshold):
        with pytest.raises(ValidationError):
            SyncSettings(volatility_threshold=threshold)

    @pytest.mark.parametrize("threshold", [0, 100])
    def test_threshold_bounds_inclusive(self, threshold):
        assert SyncSettings(volatility_threshold=threshold).volatility_threshold == threshold


class TestLoggingConfig:
    def test_values(self):
        config = LoggingConfig(level="DEBUG", file="/tmp/pim.log")
        assert config.level == "DEBUG"
        assert config.file == "/tmp/pim.log"


# ---------------------------------------------------------------------------
# build_config()
# ---------------------------------------------------------------------------


class TestBuildConfig:
    """Tests for build_config() from a raw merged dict."""

    def test_empty_dict(self):
        assert build_config({}) == UnifiedConfig()

    def test_none_section_counts_as_missing(self):
        config = build_config({"sync": None, "logging": {"level": "WARNING"}})
        assert config.sync == SyncSettings()
        assert config.logging.level == "WARNING"

    def test_full_sync_section(self):
        config = build_config(
            {
                "sync": {
                    "state_dir": "/state",
                    "conflict_policy": "duplicate",
                    "detect_backend_changes": True,
                    "disabled_conduits": ["todos"],
                }
            }
        )
        assert config.sync.state_dir == "/state"
        assert config.sync.conflict_policy is ConflictResolution.DUPLICATE
        assert config.sync.detect_backend_changes is True
        assert config.sync.disabled_conduits == ["todos"]

    def test_invalid_value_raises(self):
        with pytest.raises(ValidationError):
            build_config({"sync": {"volatility_threshold": 500}})

    def test_validation_error_is_value_error(self):
        with pytest.raises(ValueError):
            build_config({"sync": {"default_mode": "sideways"}})


# ---------------------------------------------------------------------------
# to_config()
# ---------------------------------------------------------------------------


class TestToConfig:
    """Tests for the to_config() adapter."""

    def test_plain_conversion(self):
        unified = build_config(
            {
                "sync": {
                    "state_dir": "/state",
                    "default_mode": "backup",
                    "volatility_threshold": 30,
                    "disabled_conduits": ["memos"],
                }
            }
        )
        config = to_config(unified)

        assert isinstance(config, Config)
        assert config.state_dir == "/state"
        assert config.default_mode == "backup"
        assert config.conflict_policy == "ask_user"
        assert config.volatility_threshold == 30
        assert config.disabled_conduits == ["memos"]
        assert config.debug is False

    def test_cli_overrides_win(self):
        unified = build_config({"sync": {"state_dir": "/state"}})
        config = to_config(
            unified,
            cli_overrides={
                "state_dir": "/cli",
                "mode": "fullsync",
                "conflict_policy": "skip",
                "debug": True,
            },
        )
        assert config.state_dir == "/cli"
        assert config.default_mode == "fullsync"
        assert config.conflict_policy == "skip"
        assert config.debug is True

    def test_none_override_ignored(self):
        config = to_config(UnifiedConfig(), cli_overrides={"data_dir": None})
        assert config.data_dir == DEFAULT_DATA_DIR

    def test_disabled_list_is_copied(self):
        unified = build_config({"sync": {"disabled_conduits": ["todos"]}})
        config = to_config(unified)
        config.disabled_conduits.append("memos")
        assert unified.sync.disabled_conduits == ["todos"]
