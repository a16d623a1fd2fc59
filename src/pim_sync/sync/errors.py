"""Exception hierarchy for the sync core.

Collaborators (device links, backends) raise these to signal failures that
are not expressed through their boolean return values.  The conduit
catches them per record so one bad record never aborts a pass.
"""


class PimSyncError(Exception):
    """Base class for all pim_sync errors."""


class DeviceLinkError(PimSyncError):
    """The device link failed to read, write or open a collection."""


class BackendError(PimSyncError):
    """The PC-side backend failed to load or store a record."""


class StateError(PimSyncError):
    """The identity store could not be read or written."""
