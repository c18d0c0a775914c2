"""
Error taxonomy for streamsync.

None of these are fatal to the consumer. The coordinator catches every one of
them at its boundary; the worst visible symptom is a temporarily stale store.

    StreamSyncError
    ├── RemoteLogError
    │   ├── TransientNetworkError   (retried on the next trigger)
    │   └── RemoteNotFoundError
    ├── DecodeError                 (single record skipped)
    ├── SubscriptionError           (session degraded, reconnect scheduled)
    └── CursorStallError            (catch-up aborted, cursor unchanged)
"""


class StreamSyncError(Exception):
    """Base exception for streamsync errors."""


class RemoteLogError(StreamSyncError):
    """Remote log request failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransientNetworkError(RemoteLogError):
    """Pull or subscribe failure that is safe to retry."""


class RemoteNotFoundError(RemoteLogError):
    """Requested index or stream does not exist on the remote log."""

    def __init__(self, message: str):
        super().__init__(message, status_code=404)


class DecodeError(StreamSyncError):
    """Payload could not be decoded by any configured strategy."""

    def __init__(self, message: str, causes: dict[str, str] | None = None):
        super().__init__(message)
        self.causes = causes or {}


class SubscriptionError(StreamSyncError):
    """Push channel failed, rejected the subscription or closed unexpectedly."""


class CursorStallError(StreamSyncError):
    """Catch-up fetch failed; the cursor was left where it was."""

    def __init__(self, cursor: int, remote_total: int | None, cause: Exception):
        self.cursor = cursor
        self.remote_total = remote_total
        self.cause = cause
        target = "unknown head" if remote_total is None else f"head {remote_total}"
        super().__init__(f"Catch-up stalled at cursor {cursor} ({target}): {cause}")
