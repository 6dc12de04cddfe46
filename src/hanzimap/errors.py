"""Exception hierarchy for the client core."""
from typing import Optional


class HanziMapError(Exception):
    """Base class for all errors raised by hanzimap."""


class ValidationError(HanziMapError, ValueError):
    """Input rejected before any state was touched."""


class InvalidQuality(ValidationError):
    """Quality rating outside the 0-5 range."""

    def __init__(self, quality: object):
        super().__init__(f"Quality must be an integer between 0 and 5, got {quality!r}")
        self.quality = quality


class PersistenceError(HanziMapError):
    """The local store failed to read or write a key."""


class RemoteAPIError(HanziMapError):
    """A call to the remote store failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientNetworkError(RemoteAPIError):
    """A remote call failed in a way that is worth retrying."""


class LogicError(HanziMapError):
    """An engine operation was requested in a state where it makes no sense."""
