"""Error taxonomy shared by adapters, the destination client and the sync core.

Every error raised by convoport code carries an ErrorClass so recovery can
be decided without inspecting message text.
"""

from enum import Enum
from typing import Any


class ErrorClass(str, Enum):
    RATE_LIMIT = "RATE_LIMIT"
    AUTH_ERROR = "AUTH_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    DATA_ERROR = "DATA_ERROR"
    UNKNOWN = "UNKNOWN"


class SyncError(Exception):
    """Base class for all convoport errors."""

    error_class: ErrorClass = ErrorClass.UNKNOWN


class ConfigError(SyncError):
    """Missing or invalid configuration."""

    error_class = ErrorClass.DATA_ERROR


class NoSourceSessionError(SyncError):
    """No live source session is available to read threads from."""

    error_class = ErrorClass.AUTH_ERROR


class AdapterUnavailableError(SyncError):
    """The source platform session is not authenticated."""

    error_class = ErrorClass.AUTH_ERROR


class NotFoundError(SyncError):
    """A thread (or destination object) no longer exists."""

    error_class = ErrorClass.DATA_ERROR


class ValidationFailedError(SyncError):
    """Content failed validation, locally or at the destination."""

    error_class = ErrorClass.DATA_ERROR


class RateLimitedError(SyncError):
    error_class = ErrorClass.RATE_LIMIT

    def __init__(self, message: str = "Too many requests", retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class AuthRequiredError(SyncError):
    """The destination bearer token is missing or rejected."""

    error_class = ErrorClass.AUTH_ERROR


class TransientNetworkError(SyncError):
    error_class = ErrorClass.NETWORK_ERROR


NetworkError = TransientNetworkError


class QueueTimeoutError(SyncError):
    """A call waited in the rate limiter queue longer than allowed."""

    error_class = ErrorClass.NETWORK_ERROR


class UploadPartialError(SyncError):
    """The destination record was created but appending content failed.

    The record stays in place; the thread is reported as partially exported.
    """

    error_class = ErrorClass.UNKNOWN

    def __init__(
        self,
        message: str,
        record: dict[str, Any],
        blocks_written: int,
        blocks_total: int,
    ) -> None:
        super().__init__(message)
        self.record = record
        self.blocks_written = blocks_written
        self.blocks_total = blocks_total


class UnknownSyncError(SyncError):
    error_class = ErrorClass.UNKNOWN


class OperationInProgressError(SyncError):
    """A second run of an already running named operation was rejected."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Operation already in progress: {key}")
        self.key = key
