"""Custom exception classes for the application."""

from typing import Optional


class ChannelSyncException(Exception):
    """Base exception for all channel sync errors."""

    def __init__(self, message: str = "An unexpected error occurred"):
        self.message = message
        super().__init__(self.message)


class NotFoundError(ChannelSyncException):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(f"{resource} with identifier '{identifier}' not found")


class SetupError(ChannelSyncException):
    """Raised when a bulk run cannot start (no store config, no publication list)."""


class RemoteAPIError(ChannelSyncException):
    """Raised when the remote commerce API call fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ThrottledError(RemoteAPIError):
    """Raised when the remote API signals that its rate limit is exhausted."""

    def __init__(self, message: str = "Throttled", status_code: Optional[int] = None):
        super().__init__(message, status_code)


class TransientRemoteError(RemoteAPIError):
    """Raised on timeouts, dropped connections and 5xx responses."""


class ClientRequestError(RemoteAPIError):
    """Raised on 4xx responses and query-level errors. Never retried."""


class BulkOperationError(ChannelSyncException):
    """Raised when a bulk operation cannot be submitted or has failed."""


class BulkOperationNotReadyError(BulkOperationError):
    """Raised when results are requested before the bulk operation completed."""

    def __init__(self, operation_id: str, status: str):
        super().__init__(
            f"Bulk operation {operation_id} is not completed yet (status: {status})"
        )
        self.operation_id = operation_id
        self.status = status
