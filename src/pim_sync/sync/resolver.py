"""Conflict resolution strategies for the sync core.

A resolver only decides; the conduit applies the verdict.  One strategy
exists per ``ConflictResolution`` policy:

- ``DeviceWinsResolver``: the device record overwrites the PC record.
- ``PCWinsResolver``: the PC record overwrites the device record.
- ``DuplicateResolver``: keep both, splitting the pair in two.
- ``SkipResolver``: leave both sides untouched.
- ``AskUserResolver``: leave both untouched and queue the conflict for an
  external decision-maker (the core never blocks waiting for an answer).
- ``NewestWinsResolver``: declared policy without an agreed rule yet;
  behaves like skip and says so in the log.

The ``create_resolver()`` factory maps policies to resolver instances.
"""

from __future__ import annotations

import logging
from typing import Protocol

from .models import ConflictInfo, ConflictResolution, Resolution

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class ConflictResolver(Protocol):
    """Protocol that all conflict resolvers must satisfy."""

    def resolve(self, conflict: ConflictInfo) -> Resolution:
        """Decide what to do with a conflicting pair.

        Args:
            conflict: Details about the conflicting device/PC pair.

        Returns:
            The ``Resolution`` the conduit should apply.
        """
        ...  # pragma: no cover


# ---------------------------------------------------------------------------
# Simple resolvers
# ---------------------------------------------------------------------------


class DeviceWinsResolver:
    """Always resolve conflicts in favour of the device record."""

    def resolve(self, conflict: ConflictInfo) -> Resolution:
        return Resolution.DEVICE


class PCWinsResolver:
    """Always resolve conflicts in favour of the PC record."""

    def resolve(self, conflict: ConflictInfo) -> Resolution:
        return Resolution.PC


class DuplicateResolver:
    """Keep both versions as independent records."""

    def resolve(self, conflict: ConflictInfo) -> Resolution:
        return Resolution.DUPLICATE


class SkipResolver:
    """Leave both records unchanged."""

    def resolve(self, conflict: ConflictInfo) -> Resolution:
        return Resolution.SKIP


# ---------------------------------------------------------------------------
# Deferred resolvers
# ---------------------------------------------------------------------------


class AskUserResolver:
    """Defer conflicts to the user.

    There is no synchronous answer inside a sync pass, so every conflict is
    skipped and accumulated in ``pending_conflicts`` for a front end to
    present.  The pair stays conflicting and shows up again next run
    unless the user settles it in between.
    """

    def __init__(self) -> None:
        self.pending_conflicts: list[ConflictInfo] = []

    def resolve(self, conflict: ConflictInfo) -> Resolution:
        logger.info(
            "Conflict on %s <-> %s needs user resolution, skipping for now",
            conflict.device_description or conflict.device_id,
            conflict.pc_description or conflict.pc_id,
        )
        self.pending_conflicts.append(conflict)
        return Resolution.SKIP


class NewestWinsResolver:
    """Placeholder for timestamp-based resolution.

    Which timestamps to compare (device records carry none) and how to
    break ties is undecided, so conflicts are skipped.
    """

    def resolve(self, conflict: ConflictInfo) -> Resolution:
        logger.warning(
            "newest_wins is not implemented; leaving %s <-> %s unchanged",
            conflict.device_id,
            conflict.pc_id,
        )
        return Resolution.SKIP


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_POLICY_MAP: dict[ConflictResolution, type] = {
    ConflictResolution.ASK_USER: AskUserResolver,
    ConflictResolution.DEVICE_WINS: DeviceWinsResolver,
    ConflictResolution.PC_WINS: PCWinsResolver,
    ConflictResolution.DUPLICATE: DuplicateResolver,
    ConflictResolution.NEWEST_WINS: NewestWinsResolver,
    ConflictResolution.SKIP: SkipResolver,
}


def create_resolver(policy: ConflictResolution | str) -> ConflictResolver:
    """Create a conflict resolver for *policy*.

    Args:
        policy: A ``ConflictResolution`` member or its string value
            (e.g. ``"device_wins"``).

    Returns:
        A ``ConflictResolver`` implementation instance.

    Raises:
        ValueError: If the policy is not recognised.
    """
    try:
        key = ConflictResolution(policy)
    except ValueError:
        raise ValueError(
            f"Unknown conflict policy: '{policy}'. Valid policies: "
            f"{sorted(p.value for p in ConflictResolution)}"
        ) from None
    return _POLICY_MAP[key]()  # type: ignore[return-value]
