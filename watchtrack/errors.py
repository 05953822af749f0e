"""Error taxonomy shared by the tracking core and its collaborators."""

from __future__ import annotations


class WatchTrackError(RuntimeError):
    """Base class for every error raised by the tracking core."""


class InvalidInput(WatchTrackError, ValueError):
    """Raised when a request is malformed, out of range or oversized.

    Rejected synchronously; no state is changed.
    """


class NotFound(WatchTrackError, LookupError):
    """Raised when a media identifier has no registered timeline."""


class Conflict(WatchTrackError):
    """Raised when a concurrent write won the race and retries ran out.

    The caller may safely retry the whole update with fresh state.
    """


class StorageUnavailable(WatchTrackError):
    """Raised when the persistence collaborator fails to read or write."""
