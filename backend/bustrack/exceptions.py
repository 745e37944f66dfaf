"""
Tracking Errors

Validation failures are results, not exceptions. Only input errors, lookups
on unknown identities and storage trouble are raised.
"""


class TrackingError(Exception):
    """Base class for all tracking core errors"""


class InvalidSubmissionError(TrackingError, ValueError):
    """Malformed input, rejected before any state mutation"""


class UnknownDeviceError(TrackingError):
    """Device token was never registered"""


class DeviceNotFoundError(TrackingError, LookupError):
    """Ledger lookup on a token hash that does not exist"""


class SessionNotFoundError(TrackingError, LookupError):
    """Tracking session id does not exist"""


class TransientStorageError(TrackingError):
    """Storage failed or a write conflict persisted after retry; caller should try again"""

    def __init__(self, message: str = "Temporary storage failure, try again"):
        super().__init__(message)
