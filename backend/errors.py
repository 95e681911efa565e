"""
Error taxonomy shared by the server and the kiosk.
"""


class AttendanceError(Exception):
    """Base class for expected attendance failures."""


class NotFoundError(AttendanceError):
    """A company, person or enrollment photo does not exist."""


class ConflictError(AttendanceError):
    """The write was already applied (duplicate entry, exit or enrollment)."""


class TransientNetworkError(AttendanceError):
    """The backend could not be reached or failed while handling the request."""
