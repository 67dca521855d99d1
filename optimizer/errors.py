"""Domain exceptions for the optimization engine."""

from typing import Optional

__all__ = [
    "OptimizationError",
    "ClientError",
    "ValidationError",
    "UnknownStrategyError",
    "AnalysisError",
    "CorruptInputError",
    "UnsupportedFormatError",
    "RetryableError",
    "TranscodeBackendError",
    "StorageError",
    "TaskTimeoutError",
    "TaskCancelledError",
    "ServiceError",
]


class OptimizationError(Exception):
    """Base class for engine errors."""


class ClientError(OptimizationError):
    """Raised for problems with the caller's input; never retried."""


class ValidationError(ClientError):
    """Raised when an enum value, field or batch size is invalid."""


class UnknownStrategyError(ValidationError):
    """Raised when a strategy key is not in the catalog."""


class AnalysisError(ClientError):
    """Raised when media cannot be read during analysis."""


class CorruptInputError(ClientError):
    """Raised when a transcoder cannot decode its input."""


class UnsupportedFormatError(ClientError):
    """Raised when the content type does not match the backend."""


class RetryableError(OptimizationError):
    """Base class for transient failures."""


class TranscodeBackendError(RetryableError):
    """Raised when the codec backend crashes or runs out of resources."""


class StorageError(RetryableError):
    """Raised when the storage collaborator fails to read or write."""


class TaskTimeoutError(RetryableError, TimeoutError):
    """Raised when a task exceeds its time budget."""


class TaskCancelledError(OptimizationError):
    """Raised when a batch cancellation aborts a task."""


class ServiceError(OptimizationError):
    """Raised when retries are exhausted; ``cause`` holds the last error."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
