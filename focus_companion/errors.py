"""
============================================================
 Focus Companion — Error Taxonomy
============================================================
"""


class FocusCompanionError(Exception):
    """Base class for every error raised by the package."""


class MonitoringStartError(FocusCompanionError):
    """Terminal for the current monitoring session: the poll loop never starts."""


class DeviceUnavailable(MonitoringStartError):
    """No camera capability on this machine."""


class PermissionDenied(MonitoringStartError):
    """The camera exists but access was refused."""


class ModelLoadFailure(MonitoringStartError):
    """One or more of the three detectors could not initialize."""


class TransientDetectionFailure(FocusCompanionError):
    """A single inference call failed. The tick is skipped."""
