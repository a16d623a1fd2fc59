"""Sync report formatting functions.

Provides human-readable and machine-readable output for sync results:

- ``format_sync_result`` -- post-sync summary with per-side counters.
- ``format_conflicts`` -- list of conflicts deferred to the user.
- ``format_mappings`` -- the ID pairings of one identity store.
- ``result_to_json`` / ``mappings_to_json`` -- structured dicts.
"""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ConflictInfo, SyncResult, SyncStats
    from .state import SyncState

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def _stats_line(label: str, stats: SyncStats) -> str:
    return f"  {label:<7} {stats.summary()}"


def format_sync_result(result: SyncResult, title: str = "Sync") -> str:
    """Format a sync result as human-readable text.

    The warnings section is grouped by category and only included when
    there is at least one warning.

    Args:
        result: The finished sync result.
        title: Heading, e.g. the conduit name.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    status = "succeeded" if result.success else "FAILED"
    lines.append(f"{title} {status} in {result.duration_ms()} ms")
    if result.start_time is not None:
        lines.append(f"Started: {result.start_time.isoformat()}")
    if result.error_message:
        lines.append(f"Error: {result.error_message}")
    lines.append("")

    lines.append("Changes:")
    lines.append(_stats_line("Device:", result.device_stats))
    lines.append(_stats_line("PC:", result.pc_stats))
    lines.append("")

    if result.warnings:
        groups: dict[str, list[str]] = defaultdict(list)
        for warning in result.warnings:
            text = warning.message or f"{warning.field}: {warning.original_value}"
            groups[warning.category.value].append(
                f"[{warning.severity.value}] {text}"
            )
        lines.append(f"Data-loss warnings ({len(result.warnings)}):")
        for category in sorted(groups):
            lines.append(f"  {category}:")
            for text in groups[category]:
                lines.append(f"    {text}")
        lines.append("")

    return "\n".join(lines).rstrip()


def format_conflicts(conflicts: list[ConflictInfo]) -> str:
    """Format conflicts awaiting a user decision, one per line."""
    if not conflicts:
        return "No pending conflicts."
    lines = [f"Pending conflicts ({len(conflicts)}):"]
    for c in conflicts:
        device = c.device_description or c.device_id
        pc = c.pc_description or c.pc_id
        lines.append(f"  [{c.conduit_id}] {device} <-> {pc}")
    return "\n".join(lines)


def format_mappings(state: SyncState) -> str:
    """Format the mappings of one identity store as a table."""
    lines: list[str] = []
    lines.append(f"Mappings for {state.user_name}/{state.conduit_id}")
    last = state.last_sync_time
    lines.append(f"Last sync: {last.isoformat() if last else 'never'}")
    if state.last_sync_pc:
        lines.append(f"Last sync PC: {state.last_sync_pc}")
    lines.append("")

    device_ids = state.all_device_ids()
    if not device_ids:
        lines.append("No mappings.")
        return "\n".join(lines)

    for device_id in sorted(device_ids, key=_numeric_first):
        lines.append(f"  {device_id:>10} <-> {state.pc_id_for_device(device_id)}")
    lines.append("")
    lines.append(f"Total: {len(device_ids)}")
    return "\n".join(lines)


def _numeric_first(value: str) -> tuple[int, int, str]:
    if value.isdigit():
        return (0, int(value), "")
    return (1, 0, value)


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def result_to_json(result: SyncResult) -> dict:
    """Convert a sync result to a structured dict for JSON serialisation."""
    return {
        "success": result.success,
        "error_message": result.error_message,
        "started_at": result.start_time.isoformat() if result.start_time else "",
        "completed_at": result.end_time.isoformat() if result.end_time else "",
        "duration_ms": result.duration_ms(),
        "device": result.device_stats.model_dump(),
        "pc": result.pc_stats.model_dump(),
        "warnings": [w.model_dump(mode="json") for w in result.warnings],
    }


def mappings_to_json(state: SyncState) -> dict:
    """Convert one identity store to a structured dict."""
    mappings = []
    for device_id in state.all_device_ids():
        mapping = state.get_mapping(device_id)
        if mapping is not None:
            mappings.append(mapping.model_dump(mode="json"))
    last = state.last_sync_time
    return {
        "user_name": state.user_name,
        "conduit_id": state.conduit_id,
        "last_sync_time": last.isoformat() if last else "",
        "last_sync_pc": state.last_sync_pc,
        "mappings": mappings,
    }
