# serpshot/errors.py
"""Exception hierarchy shared across serpshot."""


class SerpshotError(Exception):
    """Base class for all serpshot errors."""


class CsvInputError(SerpshotError):
    """The query CSV could not be read."""


class BrowserLaunchError(SerpshotError):
    """Browser or context failed to start. Fatal for the whole run."""


class CaptureError(SerpshotError):
    """A single capture attempt failed and may be retried."""


class CaptureCancelled(SerpshotError):
    """The run was cancelled before this capture could finish."""
