from enum import Enum


class ErrorKind(Enum):
    TRANSPORT = "transport"
    NOT_FOUND = "not_found"
    OPTIMISTIC_CONFLICT = "optimistic_conflict"
    LEASE_CONFLICT = "lease_conflict"


class BlobStoreError(Exception):
    """Base class for every error raised by asyncblobguard."""

    kind: ErrorKind = ErrorKind.TRANSPORT

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error_code: str | None = None,
        container: str | None = None,
        blob_name: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.container = container
        self.blob_name = blob_name


class TransportError(BlobStoreError):
    """Raised for any store or network failure not classified further."""

    kind = ErrorKind.TRANSPORT


class BlobNotFoundError(TransportError):
    """Raised when a requested blob or container does not exist."""

    kind = ErrorKind.NOT_FOUND


class OptimisticConflictError(BlobStoreError):
    """Raised when an ETag-guarded write finds the blob changed since it was read."""

    kind = ErrorKind.OPTIMISTIC_CONFLICT

    def __init__(self, message: str, *, expected_etag: str | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.expected_etag = expected_etag


class LeaseConflictError(BlobStoreError):
    """Raised when a lease cannot be acquired or is no longer valid at write time."""

    kind = ErrorKind.LEASE_CONFLICT

    def __init__(self, message: str, *, lease_id: str | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.lease_id = lease_id
