"""Error taxonomy for the offline sync core."""

from __future__ import annotations

from typing import Any


class OfflineSyncError(RuntimeError):
    """Base error raised by the offline sync layer."""

    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason


class StorageError(OfflineSyncError):
    """Raised when the persistent store cannot be read or written.

    A failed write means the request was *not* queued; callers must surface it.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message, reason="storage")


class NetworkError(OfflineSyncError):
    """No response could be obtained from the remote API."""

    def __init__(self, message: str) -> None:
        super().__init__(message, reason="network")


class ApplicationError(OfflineSyncError):
    """The remote API answered with a failure status."""

    def __init__(self, status: int, body: Any = None) -> None:
        super().__init__(f"request failed with status {status}", reason="application")
        self.status = status
        self.body = body
