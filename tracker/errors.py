class TrackerError(Exception):
    """Base exception for anticipated tracker failures."""
    pass


class UpstreamError(TrackerError):
    """
    Raised when the Hyperliquid info API fails or returns an unusable payload.

    Always transient from the tracker's point of view: callers fall back to
    stale prices or skip the address for the current cycle.
    """
    pass


class NotificationError(TrackerError):
    """
    Raised by an email transport when the provider rejects a message or
    cannot be reached.
    """
    pass


class DuplicateError(TrackerError):
    """Raised by the store when a unique address or recipient already exists."""
    pass
