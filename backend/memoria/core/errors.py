"""
Custom exceptions for the storage subsystem.
"""

from __future__ import annotations

from typing import Optional


class StorageError(Exception):
    """Base exception for all storage errors.

    Carries the failing backend ("relational" or "vector") and, where the
    backend answered over HTTP, the status code it returned.
    """

    def __init__(self, message: str, backend: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.backend = backend
        self.status_code = status_code


class NotInitializedError(StorageError):
    """Raised when a data-plane operation runs before ``initialize()`` completed."""


class ConnectionFailureError(StorageError):
    """
    Backend is unreachable.

    Raised when:
    - The liveness probe fails during initialization
    - A request cannot be delivered (connect error, timeout) after retries
    """


class StorageValidationError(StorageError, ValueError):
    """
    Input rejected before any I/O.

    Raised when:
    - Batch arrays have mismatched lengths
    - A partial update names unknown fields or the record key
    - Required configuration values are missing
    """


class BackendRequestError(StorageError):
    """A backend answered with an error (HTTP status or SQL failure)."""


class PartialBatchFailureError(BackendRequestError):
    """
    One chunk of a multi-chunk vector upsert failed.

    Chunks before ``failed_batch`` stay committed; later chunks were never sent.
    """

    def __init__(
        self,
        message: str,
        *,
        committed: int,
        failed_batch: int,
        backend: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, backend=backend, status_code=status_code)
        self.committed = committed
        self.failed_batch = failed_batch


class TransactionFailureError(StorageError):
    """A relational batch failed and was rolled back as a whole."""


class DocumentNotFoundError(StorageError):
    """A vector document addressed by id does not exist."""


class BackupNotFoundError(StorageError):
    """A backup identifier does not resolve to a readable backup."""
