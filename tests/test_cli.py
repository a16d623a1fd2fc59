"""Tests for the pim-sync command-line interface."""

import json
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from pim_sync import __version__
from pim_sync.cli import build_parser, find_stores, main
from pim_sync.sync.state import SyncState


@pytest.fixture(autouse=True)
def cli_env(tmp_path, monkeypatch):
    """Run every CLI test in an empty CWD/HOME without logging setup."""
    for var in (
        "PIM_SYNC_CONFIG",
        "PIM_SYNC_STATE_DIR",
        "PIM_SYNC_DATA_DIR",
        "PIM_SYNC_MODE",
        "PIM_SYNC_CONFLICT_POLICY",
        "PIM_SYNC_DETECT_BACKEND_CHANGES",
        "PIM_SYNC_VOLATILITY_THRESHOLD",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    with patch("pim_sync.cli.setup_logging"), patch("pim_sync.cli.load_dotenv"):
        yield


@pytest.fixture
def seeded(state_dir):
    """Two stores for one user, one for another."""
    synced = datetime(2026, 4, 2, 8, 15, tzinfo=timezone.utc)
    for user, conduit, pairs in [
        ("Jane", "memos", [("1", "/memos/a.md"), ("2", "/memos/b.md")]),
        ("Jane", "contacts", [("7", "/contacts/x.vcf")]),
        ("Bob", "memos", []),
    ]:
        state = SyncState(state_dir, user, conduit)
        for device_id, pc_id in pairs:
            state.map_ids(device_id, pc_id)
        state.last_sync_time = synced
        state.save()
    return state_dir


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class TestParser:
    def test_requires_command(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_version(self, capsys):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--version"])
        assert __version__ in capsys.readouterr().out

    def test_show_arguments(self):
        args = build_parser().parse_args(["show", "Jane Doe", "memos", "--json"])
        assert args.user == "Jane Doe"
        assert args.conduit == "memos"
        assert args.json is True


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class TestStatus:
    """Tests for ``pim-sync status``."""

    def test_no_state(self, tmp_path, capsys):
        empty = tmp_path / "nothing"
        assert main(["--state-dir", str(empty), "status"]) == 0
        assert "No sync state found" in capsys.readouterr().out

    def test_lists_stores(self, seeded, capsys):
        assert main(["--state-dir", str(seeded), "status"]) == 0
        out = capsys.readouterr().out

        assert "USER" in out and "CONDUIT" in out
        assert "Jane" in out and "Bob" in out
        assert "contacts" in out
        assert "2026-04-02T08:15:00" in out

    def test_filter_by_user(self, seeded, capsys):
        main(["--state-dir", str(seeded), "status", "--user", "Bob"])
        out = capsys.readouterr().out
        assert "Bob" in out
        assert "Jane" not in out

    def test_state_dir_from_env(self, seeded, monkeypatch, capsys):
        monkeypatch.setenv("PIM_SYNC_STATE_DIR", str(seeded))
        assert main(["status"]) == 0
        assert "Jane" in capsys.readouterr().out

    def test_state_dir_from_yaml(self, seeded, tmp_path, capsys):
        config = tmp_path / ".pim_sync" / "config.yml"
        config.parent.mkdir()
        config.write_text(f"sync:\n  state_dir: {seeded}\n")

        assert main(["status"]) == 0
        assert "Jane" in capsys.readouterr().out


class TestShow:
    """Tests for ``pim-sync show``."""

    def test_table(self, seeded, capsys):
        assert main(["--state-dir", str(seeded), "show", "Jane", "memos"]) == 0
        out = capsys.readouterr().out
        assert "Mappings for Jane/memos" in out
        assert "/memos/a.md" in out
        assert "Total: 2" in out

    def test_json(self, seeded, capsys):
        assert main(
            ["--state-dir", str(seeded), "show", "Jane", "contacts", "--json"]
        ) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["conduit_id"] == "contacts"
        assert data["mappings"][0]["pc_id"] == "/contacts/x.vcf"

    def test_missing_store(self, seeded, capsys):
        assert main(["--state-dir", str(seeded), "show", "Jane", "todos"]) == 1
        assert "No sync state for Jane/todos" in capsys.readouterr().err

    def test_unreadable_store(self, seeded, capsys):
        (seeded / "Jane" / "memos" / "mappings.json").write_text("{broken")
        assert main(["--state-dir", str(seeded), "show", "Jane", "memos"]) == 1
        assert "unreadable" in capsys.readouterr().err


class TestReset:
    """Tests for ``pim-sync reset``."""

    def test_clears_mappings(self, seeded, capsys):
        assert main(["--state-dir", str(seeded), "reset", "Jane", "memos"]) == 0
        assert "removed 2 mappings" in capsys.readouterr().out

        state = SyncState(seeded, "Jane", "memos")
        state.load()
        assert state.all_device_ids() == []
        assert state.is_first_sync() is True

    def test_missing_store(self, seeded):
        assert main(["--state-dir", str(seeded), "reset", "Nobody", "memos"]) == 1


class TestInitConfig:
    def test_writes_starter(self, tmp_path, capsys):
        assert main(["init-config"]) == 0
        assert (tmp_path / ".pim_sync" / "config.yml").exists()
        assert "Config file:" in capsys.readouterr().out


class TestConfigErrors:
    def test_invalid_env_returns_2(self, monkeypatch, capsys):
        monkeypatch.setenv("PIM_SYNC_MODE", "sideways")
        assert main(["status"]) == 2
        assert "Configuration error" in capsys.readouterr().err

    def test_invalid_yaml_value_returns_2(self, tmp_path, capsys):
        config = tmp_path / ".pim_sync" / "config.yml"
        config.parent.mkdir()
        config.write_text("sync:\n  volatility_threshold: 900\n")

        assert main(["status"]) == 2

    def test_malformed_yaml_returns_2(self, tmp_path, capsys):
        config = tmp_path / ".pim_sync" / "config.yml"
        config.parent.mkdir()
        config.write_text("sync: [unclosed\n")

        assert main(["status"]) == 2
        assert "Cannot load config file" in capsys.readouterr().err


# ---------------------------------------------------------------------------
# find_stores()
# ---------------------------------------------------------------------------


class TestFindStores:
    def test_missing_dir(self, tmp_path):
        assert find_stores(tmp_path / "absent") == []

    def test_skips_unreadable(self, seeded):
        (seeded / "Bob" / "memos" / "mappings.json").write_text("[]")
        names = [(s.user_name, s.conduit_id) for s in find_stores(seeded)]
        assert names == [("Jane", "contacts"), ("Jane", "memos")]
