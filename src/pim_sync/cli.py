"""Command-line interface for inspecting and maintaining sync state.

The sync core is driven by a device front end; this CLI works on the
persisted identity stores only:

- ``status``      -- list stores with mapping counts and last sync time.
- ``show``        -- print the mappings of one store.
- ``reset``       -- forget the mappings of one store (next sync is a
  first sync again).
- ``init-config`` -- write a starter config file.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from . import __version__
from .config import Config, load_config
from .config_loader import discover_config_files, ensure_config, load_hierarchical_config
from .config_schema import build_config
from .logger import setup_logging
from .sync.reporter import format_mappings, mappings_to_json
from .sync.state import STATE_FILE_NAME, SyncState

logger = logging.getLogger(__name__)


def resolve_config(overrides: dict | None = None) -> Config:
    """Resolve the runtime config from CLI overrides, env, .env and YAML.

    Raises:
        ValueError: If the configuration is invalid.
    """
    # .env first so ${VAR} references in YAML can use its values
    load_dotenv()

    yaml_fallbacks = None
    config_files = discover_config_files()
    if config_files:
        unified = build_config(load_hierarchical_config())
        yaml_fallbacks = unified.sync.model_dump(mode="json", exclude_unset=True)
        logger.debug("Configuration file: %s", config_files[0])

    overrides = overrides or {}
    return load_config(
        state_dir=overrides.get("state_dir"),
        debug=overrides.get("debug", False),
        yaml_fallbacks=yaml_fallbacks,
    )


def find_stores(state_dir: Path, user: str | None = None) -> list[SyncState]:
    """Load every identity store under *state_dir*, optionally for one user."""
    if not state_dir.is_dir():
        return []

    stores: list[SyncState] = []
    for state_file in sorted(state_dir.glob(f"*/*/{STATE_FILE_NAME}")):
        conduit_dir = state_file.parent
        user_name = conduit_dir.parent.name
        if user is not None and user_name != user:
            continue
        state = SyncState(state_dir, user_name, conduit_dir.name)
        if state.load():
            stores.append(state)
    return stores


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_status(args: argparse.Namespace, config: Config) -> int:
    stores = find_stores(config.state_path, args.user)
    if not stores:
        print(f"No sync state found in {config.state_path}")
        return 0

    print(f"{'USER':<16} {'CONDUIT':<12} {'MAPPINGS':>8}  LAST SYNC")
    for state in stores:
        last = state.last_sync_time
        print(
            f"{state.user_name:<16} {state.conduit_id:<12} "
            f"{len(state.all_device_ids()):>8}  "
            f"{last.isoformat() if last else 'never'}"
        )
    return 0


def _open_store(args: argparse.Namespace, config: Config) -> SyncState | None:
    state = SyncState(config.state_path, args.user, args.conduit)
    if not state.state_file.exists():
        print(
            f"No sync state for {args.user}/{args.conduit} in {config.state_path}",
            file=sys.stderr,
        )
        return None
    if not state.load():
        print(f"Sync state {state.state_file} is unreadable", file=sys.stderr)
        return None
    return state


def cmd_show(args: argparse.Namespace, config: Config) -> int:
    state = _open_store(args, config)
    if state is None:
        return 1
    if args.json:
        print(json.dumps(mappings_to_json(state), indent=2))
    else:
        print(format_mappings(state))
    return 0


def cmd_reset(args: argparse.Namespace, config: Config) -> int:
    state = _open_store(args, config)
    if state is None:
        return 1
    count = len(state.all_device_ids())
    state.clear()
    if not state.save():
        return 1
    print(f"Reset {args.user}/{args.conduit}: removed {count} mappings")
    return 0


def cmd_init_config(args: argparse.Namespace, config: Config | None) -> int:
    path = ensure_config()
    print(f"Config file: {path}")
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pim-sync",
        description="pim-sync - inspect and maintain handheld sync state",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # List every identity store
  pim-sync status

  # Mappings of the memo conduit for one device user
  pim-sync show "Jane Doe" memos

  # Same, machine-readable
  pim-sync show "Jane Doe" memos --json

  # Force a first sync (content matching) for contacts
  pim-sync reset "Jane Doe" contacts

  # Write a starter .pim_sync/config.yml
  pim-sync init-config

Note: settings come from CLI flags, PIM_SYNC_* environment variables,
a .env file and the YAML config, in that order of precedence.
        """,
    )
    parser.add_argument(
        "--state-dir",
        help="Identity store directory (takes precedence over PIM_SYNC_STATE_DIR and config files)",
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    parser.add_argument("--log-file", help="Also write log output to this file")
    parser.add_argument(
        "--version",
        action="version",
        version=f"pim-sync version {__version__}",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    status = sub.add_parser("status", help="List identity stores")
    status.add_argument("--user", help="Only show stores of this device user")
    status.set_defaults(func=cmd_status)

    show = sub.add_parser("show", help="Print the mappings of one store")
    show.add_argument("user", help="Device user name")
    show.add_argument("conduit", help="Conduit ID, e.g. memos")
    show.add_argument("--json", action="store_true", help="Output JSON")
    show.set_defaults(func=cmd_show)

    reset = sub.add_parser("reset", help="Clear the mappings of one store")
    reset.add_argument("user", help="Device user name")
    reset.add_argument("conduit", help="Conduit ID, e.g. memos")
    reset.set_defaults(func=cmd_reset)

    init = sub.add_parser("init-config", help="Write a starter config file")
    init.set_defaults(func=cmd_init_config)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point for the ``pim-sync`` console script."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(mode="cli", debug=args.debug, log_file=args.log_file)

    if args.command == "init-config":
        return args.func(args, None)

    overrides: dict = {"debug": args.debug}
    if args.state_dir:
        overrides["state_dir"] = args.state_dir

    try:
        config = resolve_config(overrides)
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        print(f"ERROR: Configuration error: {e}", file=sys.stderr)
        return 2

    return args.func(args, config)


if __name__ == "__main__":
    sys.exit(main())
