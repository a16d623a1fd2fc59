"""
YAML config files for pim_sync.

A config file has two sections, ``sync`` and ``logging``.  Several files
may exist at once (explicit path, project, user); they are merged section
by section with the more specific file winning, and ``${VAR}`` references
in string values are expanded afterwards.

Usage:
    from pim_sync.config_loader import load_hierarchical_config

    raw = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "PIM_SYNC_CONFIG"
PROJECT_DIR = ".pim_sync"
PROJECT_FILES = ("config.yml", "config.yaml")

# ${VAR} or ${VAR:-default}
_ENV_REF = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Expand ``${VAR}`` and ``${VAR:-default}`` in *value*.

    Unset and empty variables both fall back to the default, or to ``""``.
    A ``${`` without its closing brace is left as written.
    """

    def _lookup(match: re.Match) -> str:
        return os.environ.get(match.group(1)) or (match.group(2) or "")

    return _ENV_REF.sub(_lookup, value)


def expand_env_vars(obj: Any) -> Any:
    """Apply ``interpolate_env_vars`` to every string inside *obj*."""
    if isinstance(obj, str):
        return interpolate_env_vars(obj)
    if isinstance(obj, dict):
        return {key: expand_env_vars(val) for key, val in obj.items()}
    if isinstance(obj, list):
        return [expand_env_vars(item) for item in obj]
    return obj


def user_config_path() -> Path:
    return Path.home() / ".config" / "pim_sync" / "config.yml"


def discover_config_files() -> list[Path]:
    """Existing config files, most specific first.

    ``$PIM_SYNC_CONFIG``, then ``.pim_sync/config.yml`` and
    ``.pim_sync/config.yaml`` in the working directory, then the user file.
    """
    candidates: list[Path] = []
    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        candidates.append(Path(explicit).expanduser().resolve())
    candidates.extend(Path.cwd() / PROJECT_DIR / name for name in PROJECT_FILES)
    candidates.append(user_config_path())
    return [path for path in candidates if path.exists()]


def read_config_file(path: Path) -> dict[str, Any]:
    """Parse one config file.

    An empty file reads as ``{}``.  A file whose top level is not a mapping
    is logged and ignored.

    Raises:
        ValueError: If the file cannot be read or is not valid YAML.
    """
    try:
        with open(path, encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError) as exc:
        raise ValueError(f"Cannot load config file {path}: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning(
            "Ignoring config file %s: top level is %s, not a mapping",
            path,
            type(data).__name__,
        )
        return {}
    return data


def load_hierarchical_config() -> dict[str, Any]:
    """Merge every discovered config file into one raw dict.

    A section present in a more specific file replaces the same section of
    a less specific one as a whole.  Returns ``{}`` when there is no file.
    """
    merged: dict[str, Any] = {}
    for path in reversed(discover_config_files()):
        logger.debug("Loading config: %s", path)
        merged.update(read_config_file(path))
    return expand_env_vars(merged)


_STARTER_CONFIG = """\
# pim-sync configuration
#
# Values may reference environment variables: ${HOME}, ${VAR:-default}.
# PIM_SYNC_* environment variables override the values in this file.
#
# sync:
#   state_dir: ${HOME}/.local/share/pim-sync/state
#   data_dir: ${HOME}/PalmData
#   default_mode: hotsync          # hotsync, fullsync, copy_device_to_pc,
#                                  # copy_pc_to_device, backup, restore
#   conflict_policy: ask_user      # ask_user, device_wins, pc_wins,
#                                  # duplicate, newest_wins, skip
#   detect_backend_changes: false
#   volatility_threshold: 70
#   disabled_conduits: []
#
# logging:
#   level: INFO
#   file: null
"""


def ensure_config(target: Path | None = None) -> Path:
    """Return the active config file, creating a commented starter if none.

    The starter goes to *target*, or ``.pim_sync/config.yml`` in the
    working directory.
    """
    existing = discover_config_files()
    if existing:
        logger.debug("Config file already exists: %s", existing[0])
        return existing[0]

    path = target or Path.cwd() / PROJECT_DIR / PROJECT_FILES[0]
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", path)
    return path
