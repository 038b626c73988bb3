"""
Error taxonomy for package status changes.
NotFound / InvalidTransition / Persistence are fatal and surface to the caller.
Failures of log, notification and sync steps are reported, not raised.
"""


class ClearanceError(Exception):
    """Base class for errors raised by the clearance core."""


class PackageNotFoundError(ClearanceError):
    """Raised when package_id does not resolve to a stored package."""
    def __init__(self, package_id: str):
        self.package_id = package_id
        super().__init__(f"package {package_id} not found")


class InvalidTransitionError(ClearanceError):
    """Raised when the requested status is unknown or not allowed from the current one."""
    def __init__(self, requested: str, current: str | None = None):
        self.requested = requested
        self.current = current
        if current is None:
            super().__init__(f"unknown package status {requested!r}")
        else:
            super().__init__(f"transition {current} -> {requested} not allowed")


class PersistenceError(ClearanceError):
    """Raised when the atomic package update fails. Nothing downstream has run."""


class PackageBusyError(ClearanceError):
    """Raised when the per-package lock cannot be acquired in time."""
    def __init__(self, package_id: str):
        self.package_id = package_id
        super().__init__(f"package {package_id} is being updated by another request")
