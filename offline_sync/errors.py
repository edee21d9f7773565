from typing import Optional


class OfflineSyncError(Exception):
    """Base class for offline sync failures."""


class StorageError(OfflineSyncError):
    """A durable-storage operation failed; nothing was written."""

    def __init__(self, operation: str, detail: str = ""):
        self.operation = operation
        self.detail = detail
        super().__init__(f"storage {operation} failed: {detail}" if detail else f"storage {operation} failed")


class RemoteWriteError(OfflineSyncError):
    """A single message could not be written to the remote table."""

    def __init__(self, message_id: str, detail: str = "", status_code: Optional[int] = None):
        self.message_id = message_id
        self.status_code = status_code
        self.detail = detail
        parts = [f"remote write failed for {message_id}"]
        if status_code is not None:
            parts.append(f"status={status_code}")
        if detail:
            parts.append(detail)
        super().__init__(" ".join(parts))


class UnsupportedPlatformError(OfflineSyncError):
    """The host cannot run background sync."""
